"""
ascend.bot.cogs.meta — Member-Facing Commands
==============================================

- /rank         — your (or another member's) level, XP and position
- /leaderboard  — top members by XP (card or text per guild setting)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from ascend.constants import LEADERBOARD_DEFAULT_LIMIT, LEADERBOARD_MAX_LIMIT
from ascend.engine.guild_settings import LeaderboardStyle
from ascend.services.embeds import (
    build_leaderboard_embed,
    build_rank_embed,
    format_leaderboard_lines,
)

if TYPE_CHECKING:
    from ascend.bot.core import AscendBot

logger = logging.getLogger(__name__)


class Meta(commands.Cog, name="Meta"):
    """Rank and leaderboard lookups."""

    def __init__(self, bot: AscendBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /rank
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="rank",
        description="View your (or another member's) level and rank.",
    )
    @commands.guild_only()
    @app_commands.describe(member="The member to look up (defaults to you)")
    async def rank(self, ctx: commands.Context, member: discord.Member | None = None) -> None:
        target = member or ctx.author
        if target.bot:
            await ctx.send("\U0001f916 Bots don't earn XP.", ephemeral=True)
            return
        guild_id = ctx.guild.id
        try:
            user = await self.bot.ledger.get_user_level_data(guild_id, target.id)
            position = await self.bot.ledger.rank(guild_id, target.id)
            settings = await self.bot.configs.get_config(guild_id)
        except Exception:
            logger.exception("/rank failed for %s/%s", guild_id, target.id)
            await ctx.send("❌ Something went wrong. Try again later.", ephemeral=True)
            return

        embed = build_rank_embed(
            target.display_name, target.display_avatar.url, user, position,
            settings.rank_card_background,
        )
        await ctx.send(embed=embed)

    # -------------------------------------------------------------------
    # /leaderboard
    # -------------------------------------------------------------------
    @commands.hybrid_command(  # type: ignore[arg-type]
        name="leaderboard",
        description="View the top members by XP.",
    )
    @commands.guild_only()
    @app_commands.describe(limit=f"How many members to show (1-{LEADERBOARD_MAX_LIMIT})")
    async def leaderboard(self, ctx: commands.Context, limit: int = LEADERBOARD_DEFAULT_LIMIT) -> None:
        guild = ctx.guild
        try:
            entries = await self.bot.ledger.leaderboard(guild.id, limit)
            settings = await self.bot.configs.get_config(guild.id)
        except Exception:
            logger.exception("/leaderboard failed for guild %s", guild.id)
            await ctx.send("❌ Something went wrong. Try again later.", ephemeral=True)
            return

        if not entries:
            await ctx.send(
                "No data yet! Start chatting to appear on the leaderboard.",
                ephemeral=True,
            )
            return

        names: dict[int, str] = {}
        for entry in entries:
            m = guild.get_member(entry.user_id)
            if m is not None:
                names[entry.user_id] = m.display_name

        if settings.leaderboard_style is LeaderboardStyle.TEXT:
            header = f"**\U0001f3c6 {guild.name} Leaderboard**"
            await ctx.send("\n".join([header, *format_leaderboard_lines(entries, names)]))
        else:
            await ctx.send(embed=build_leaderboard_embed(guild.name, entries, names))


async def setup(bot: AscendBot) -> None:
    await bot.add_cog(Meta(bot))
