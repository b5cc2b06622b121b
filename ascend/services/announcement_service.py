"""
ascend.services.announcement_service — Level-Up Announcements
==============================================================

Subscribes to ``level_increased`` and posts the guild's level-up message.

Channel resolution:
  1. ``level_up_channel_id`` from the guild settings
  2. the notifier's fallback (the channel the member was last active in,
     else the guild's system channel)

The notifier is any object offering::

    guild_name(guild_id) -> str
    member_profile(guild_id, user_id) -> (display_name, avatar_url) | None
    async resolve_channel(guild_id, user_id, channel_id) -> channel | None
    async send(channel, content, embed) -> bool

(see :class:`ascend.bot.gateway.DiscordNotifier`).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ascend.engine.bus import EventType
from ascend.services.embeds import build_level_up_embed

if TYPE_CHECKING:
    from ascend.engine.bus import EventBus, LevelIncreased
    from ascend.services.guild_config_service import GuildConfigStore
    from ascend.services.ledger_service import LevelLedger

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

TEMPLATE_PLACEHOLDERS: frozenset[str] = frozenset({
    "user_mention", "username", "user_id", "level", "rank", "guild_name",
})


def render_level_up_message(template: str, values: Mapping[str, Any]) -> str:
    """Fill ``{placeholder}`` tokens; unknown tokens are left untouched."""
    def _sub(match: re.Match[str]) -> str:
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return _PLACEHOLDER.sub(_sub, template)


class LevelUpAnnouncer:
    """Posts level-up messages for guilds that have them enabled."""

    def __init__(
        self,
        configs: GuildConfigStore,
        ledger: LevelLedger,
        bus: EventBus,
        notifier: Any,
    ) -> None:
        self.configs = configs
        self.ledger = ledger
        self.bus = bus
        self.notifier = notifier

    def register(self) -> None:
        self.bus.subscribe(EventType.LEVEL_INCREASED, self.on_level_increased)

    async def on_level_increased(self, event: LevelIncreased) -> bool:
        settings = await self.configs.get_config(event.guild_id)
        if not settings.level_up_enabled:
            return False

        channel = await self.notifier.resolve_channel(
            event.guild_id, event.user_id, settings.level_up_channel_id,
        )
        if channel is None:
            logger.warning("No channel for level-up announcement in guild %s", event.guild_id)
            return False

        profile = self.notifier.member_profile(event.guild_id, event.user_id)
        display_name, avatar_url = profile if profile else (str(event.user_id), None)
        rank = await self.ledger.rank(event.guild_id, event.user_id)

        content = render_level_up_message(settings.level_up_message, {
            "user_mention": f"<@{event.user_id}>",
            "username": display_name,
            "user_id": event.user_id,
            "level": event.new_level,
            "rank": rank,
            "guild_name": self.notifier.guild_name(event.guild_id),
        })
        embed = build_level_up_embed(
            event.user_id, display_name, avatar_url, event.new_level, rank,
            event.user.xp, settings.rank_card_background,
        )
        return await self.notifier.send(channel, content, embed)
