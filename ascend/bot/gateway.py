"""
ascend.bot.gateway — discord.py Adapters
=========================================

Translates between discord.py objects and the library-free envelopes the
services consume, and implements the role / presence / notification
capabilities on top of the bot's member cache.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from ascend.engine.events import MessageActivity, VoiceMember, VoicePresence
from ascend.services.role_service import RoleMutationError

if TYPE_CHECKING:
    from discord.ext import commands

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------
def role_ids_of(member: discord.Member | discord.User | None) -> frozenset[str]:
    roles = getattr(member, "roles", None) or ()
    return frozenset(str(r.id) for r in roles)


def message_activity_from(message: discord.Message) -> MessageActivity:
    member = message.author if isinstance(message.author, discord.Member) else None
    return MessageActivity(
        guild_id=message.guild.id if message.guild else None,
        user_id=message.author.id,
        channel_id=message.channel.id,
        role_ids=role_ids_of(member),
        content=message.content or "",
        author_is_bot=message.author.bot,
        is_system=message.is_system(),
        has_member=member is not None,
    )


def presence_from(state: discord.VoiceState | None) -> VoicePresence:
    if state is None or state.channel is None:
        return VoicePresence(channel_id=None)
    return VoicePresence(
        channel_id=state.channel.id,
        deafened=bool(state.deaf),
        suppressed=bool(state.suppress),
    )


def voice_member_from(member: discord.Member, state: discord.VoiceState | None = None) -> VoiceMember:
    return VoiceMember(
        guild_id=member.guild.id,
        user_id=member.id,
        role_ids=role_ids_of(member),
        presence=presence_from(state if state is not None else member.voice),
        is_bot=member.bot,
    )


def voice_members_of(guilds: list[discord.Guild]) -> list[VoiceMember]:
    """Every non-bot member currently in a voice channel, across *guilds*."""
    members: list[VoiceMember] = []
    for guild in guilds:
        for channel in guild.voice_channels + list(guild.stage_channels):
            for member in channel.members:
                if not member.bot:
                    members.append(voice_member_from(member))
    return members


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------
class DiscordPresenceSource:
    """``lookup_member`` for :class:`VoiceAccumulator` backed by the guild cache."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def __call__(self, guild_id: int, user_id: int) -> VoiceMember | None:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is None:
            return None
        return voice_member_from(member)


class DiscordRoleGateway:
    """Role reads/writes for :class:`RoleRewardService`."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot

    async def _member(self, guild_id: int, user_id: int) -> discord.Member:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise RoleMutationError(f"guild {guild_id} not available")
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.HTTPException as exc:
            raise RoleMutationError(f"member {user_id} not fetchable: {exc}") from exc

    async def fetch_role_ids(self, guild_id: int, user_id: int) -> set[str]:
        member = await self._member(guild_id, user_id)
        return set(role_ids_of(member))

    async def add_role(self, guild_id: int, user_id: int, role_id: str, reason: str) -> None:
        member = await self._member(guild_id, user_id)
        role = member.guild.get_role(int(role_id))
        if role is None:
            raise RoleMutationError(f"role {role_id} not found")
        try:
            await member.add_roles(role, reason=reason)
        except discord.HTTPException as exc:
            raise RoleMutationError(f"cannot add {role.name}: {exc}") from exc

    async def remove_role(self, guild_id: int, user_id: int, role_id: str, reason: str) -> None:
        member = await self._member(guild_id, user_id)
        role = member.guild.get_role(int(role_id))
        if role is None:
            raise RoleMutationError(f"role {role_id} not found")
        try:
            await member.remove_roles(role, reason=reason)
        except discord.HTTPException as exc:
            raise RoleMutationError(f"cannot remove {role.name}: {exc}") from exc


class DiscordNotifier:
    """Channel resolution and sending for :class:`LevelUpAnnouncer`.

    Remembers the last text channel each member posted in, which is the
    fallback when a guild has no announcement channel configured.  Entries
    are dropped when the member leaves or the bot is removed from the guild.
    """

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        self._last_channel: dict[tuple[int, int], int] = {}

    def remember_channel(self, guild_id: int, user_id: int, channel_id: int) -> None:
        self._last_channel[(guild_id, user_id)] = channel_id

    def forget_member(self, guild_id: int, user_id: int) -> None:
        self._last_channel.pop((guild_id, user_id), None)

    def forget_guild(self, guild_id: int) -> None:
        for key in [key for key in self._last_channel if key[0] == guild_id]:
            del self._last_channel[key]

    def guild_name(self, guild_id: int) -> str:
        guild = self.bot.get_guild(guild_id)
        return guild.name if guild else str(guild_id)

    def member_profile(self, guild_id: int, user_id: int) -> tuple[str, str] | None:
        guild = self.bot.get_guild(guild_id)
        member = guild.get_member(user_id) if guild else None
        if member is None:
            return None
        return member.display_name, member.display_avatar.url

    async def resolve_channel(
        self, guild_id: int, user_id: int, channel_id: str | None,
    ) -> discord.abc.Messageable | None:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            return None
        candidates = []
        if channel_id:
            candidates.append(int(channel_id))
        last = self._last_channel.get((guild_id, user_id))
        if last:
            candidates.append(last)
        for candidate in candidates:
            channel = guild.get_channel(candidate)
            if isinstance(channel, discord.abc.Messageable):
                return channel
            if channel_id and candidate == int(channel_id):
                logger.warning(
                    "Configured level-up channel %s missing in guild %s", channel_id, guild_id,
                )
        return guild.system_channel

    async def send(
        self, channel: discord.abc.Messageable, content: str, embed: discord.Embed | None = None,
    ) -> bool:
        try:
            await channel.send(
                content=content,
                embed=embed,
                allowed_mentions=discord.AllowedMentions(users=True, roles=False, everyone=False),
            )
            return True
        except discord.Forbidden:
            logger.warning("Missing permission to announce in channel %s", getattr(channel, "id", "?"))
        except discord.HTTPException:
            logger.exception("Failed to send level-up announcement")
        return False
