"""
ascend.bot.cogs.activity — Message XP
======================================

Normalizes ``on_message`` into a :class:`MessageActivity` and hands it to
the activity service, after noting the channel for level-up fallbacks.
Also runs the periodic cache purge.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from ascend.bot.gateway import message_activity_from

if TYPE_CHECKING:
    from ascend.bot.core import AscendBot

logger = logging.getLogger(__name__)


class Activity(commands.Cog, name="Activity"):
    """Awards XP for chat messages."""

    def __init__(self, bot: AscendBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self._purge_cache.start()

    async def cog_unload(self) -> None:
        self._purge_cache.cancel()

    @tasks.loop(minutes=5)
    async def _purge_cache(self) -> None:
        purged = self.bot.cache.purge_expired()
        if purged:
            logger.debug("Purged %d expired cache entries", purged)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.guild is None:
            return
        # Recorded before the grant so its level-up announcement can land here.
        self.bot.notifier.remember_channel(message.guild.id, message.author.id, message.channel.id)
        try:
            await self.bot.activity.handle_message(message_activity_from(message))
        except Exception:
            logger.exception("Error processing message %s", message.id)

    @commands.Cog.listener()
    async def on_member_remove(self, member: discord.Member) -> None:
        self.bot.notifier.forget_member(member.guild.id, member.id)

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        self.bot.notifier.forget_guild(guild.id)


async def setup(bot: AscendBot) -> None:
    await bot.add_cog(Activity(bot))
