"""
ascend.bot.cogs.voice — Voice Presence XP
==========================================

Forwards voice-state updates to the :class:`VoiceAccumulator` and runs its
periodic sweep.  Updates that change neither the channel nor the
deafen/suppress flags (self-mute, video, streaming) are ignored.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord.ext import commands, tasks

from ascend.bot.gateway import presence_from, voice_member_from

if TYPE_CHECKING:
    from ascend.bot.core import AscendBot

logger = logging.getLogger(__name__)


class Voice(commands.Cog, name="Voice"):
    """Tracks eligible voice presence and converts it into XP."""

    def __init__(self, bot: AscendBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.voice_sweep_loop.change_interval(minutes=self.bot.cfg.voice_sweep_minutes)
        self.voice_sweep_loop.start()

    async def cog_unload(self) -> None:
        self.voice_sweep_loop.cancel()

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if member.bot:
            return
        old, new = presence_from(before), presence_from(after)
        if old == new:
            return
        try:
            await self.bot.voice.handle_presence_change(
                voice_member_from(member, after), old, new,
            )
        except Exception:
            logger.exception("Error processing voice state update for user %s", member.id)

    @tasks.loop(minutes=5)
    async def voice_sweep_loop(self) -> None:
        try:
            await self.bot.voice.sweep()
        except Exception:
            logger.exception("Voice sweep failed")

    @voice_sweep_loop.before_loop
    async def _before_sweep(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: AscendBot) -> None:
    await bot.add_cog(Voice(bot))
