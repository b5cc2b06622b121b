"""
ascend.services.embeds — Discord embed builders
================================================

All embed construction lives here so the announcer and cogs only supply
data.  Level-up and rank "cards" are rendered as embeds.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence

import discord

from ascend.constants import RANK_BADGES, level_progress, progress_bar
from ascend.engine.records import UserLevelSnapshot


def build_level_up_embed(
    user_id: int,
    display_name: str,
    avatar_url: str | None,
    new_level: int,
    rank: int,
    xp: int,
    background_url: str | None = None,
) -> discord.Embed:
    """Level-up celebration embed with @mention and progress to the next level."""
    progress = level_progress(xp)
    embed = discord.Embed(
        title="⚡ Level Up!",
        description=f"<@{user_id}> reached **Level {new_level}**!",
        color=discord.Color.gold(),
    )
    embed.add_field(name="Rank", value=f"#{rank}" if rank else "—", inline=True)
    embed.add_field(
        name="Next level",
        value=f"{progress_bar(progress.ratio)}  {progress.remaining:,} XP to go",
        inline=False,
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    if background_url:
        embed.set_image(url=background_url)
    embed.set_footer(text=display_name)
    return embed


def build_rank_embed(
    display_name: str,
    avatar_url: str | None,
    user: UserLevelSnapshot,
    rank: int,
    background_url: str | None = None,
) -> discord.Embed:
    progress = level_progress(user.xp)
    embed = discord.Embed(
        title=f"{display_name}'s Rank",
        color=discord.Color.blurple(),
    )
    embed.add_field(name="Rank", value=f"#{rank}" if rank else "Unranked", inline=True)
    embed.add_field(name="Level", value=str(user.level), inline=True)
    embed.add_field(name="XP", value=f"{user.xp:,}", inline=True)
    embed.add_field(
        name=f"Progress to Level {progress.level + 1}",
        value=f"{progress_bar(progress.ratio)}  {user.xp:,} / {progress.next_level_xp:,}",
        inline=False,
    )
    embed.add_field(name="Messages", value=f"{user.total_messages:,}", inline=True)
    embed.add_field(
        name="Voice", value=f"{user.total_voice_ms // 60_000:,} min", inline=True,
    )
    if avatar_url:
        embed.set_thumbnail(url=avatar_url)
    if background_url:
        embed.set_image(url=background_url)
    return embed


def format_leaderboard_lines(
    entries: Sequence[UserLevelSnapshot], names: Mapping[int, str],
) -> list[str]:
    """One line per entry: badge/position, name, level, XP."""
    lines: list[str] = []
    for position, entry in enumerate(entries, start=1):
        badge = RANK_BADGES[position - 1] if position <= len(RANK_BADGES) else f"`#{position}`"
        name = names.get(entry.user_id, f"<@{entry.user_id}>")
        lines.append(f"{badge} **{name}** — Level {entry.level} · {entry.xp:,} XP")
    return lines


def build_leaderboard_embed(
    guild_name: str,
    entries: Sequence[UserLevelSnapshot],
    names: Mapping[int, str],
) -> discord.Embed:
    lines = format_leaderboard_lines(entries, names)
    return discord.Embed(
        title=f"\U0001f3c6 {guild_name} Leaderboard",
        description="\n".join(lines) if lines else "No one has earned XP yet.",
        color=discord.Color.gold(),
    )
