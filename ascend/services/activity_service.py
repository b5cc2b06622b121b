"""
ascend.services.activity_service — Activity Gatekeeper
=======================================================

Turns normalized activity (messages, flushed voice spans, manual penalties)
into ledger calls, applying the rules in :mod:`ascend.engine.gatekeeper`.

Nothing in here raises into the Discord event loop: failures are logged and
the activity is dropped.  Database failures have already been published as
``operation_failed`` by the ledger.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from ascend.engine.events import ActivitySource
from ascend.engine.gatekeeper import (
    GateDecision,
    check_message_rules,
    check_voice,
    cooldown_active,
    message_experience,
    precheck_message,
    voice_experience,
)

if TYPE_CHECKING:
    from ascend.engine.events import MessageActivity, VoiceMember
    from ascend.engine.records import GrantResult, UserLevelSnapshot
    from ascend.services.guild_config_service import GuildConfigStore
    from ascend.services.ledger_service import LevelLedger

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class ActivityService:
    """Decides whether activity earns XP and forwards grants to the ledger."""

    def __init__(
        self,
        ledger: LevelLedger,
        configs: GuildConfigStore,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.ledger = ledger
        self.configs = configs
        self._clock = clock

    async def handle_message(self, activity: MessageActivity) -> GrantResult | None:
        """Grant message XP if every rule passes; ``None`` otherwise."""
        decision = precheck_message(activity)
        if decision is not GateDecision.GRANTED:
            return None
        guild_id, user_id = activity.guild_id, activity.user_id
        try:
            settings = await self.configs.get_config(guild_id)
            decision = check_message_rules(activity, settings)
            if decision is not GateDecision.GRANTED:
                logger.debug("Message from %s/%s rejected: %s", guild_id, user_id, decision)
                return None

            user = await self.ledger.get_user_level_data(guild_id, user_id)
            now = self._clock()
            if cooldown_active(user.last_message_at_ms, now, settings):
                return None

            amount = message_experience(
                settings.xp_per_message, activity.role_ids, activity.channel_id, settings,
            )
            # Stamp the cooldown before granting so a burst can't double-dip
            await self.ledger.record_message(guild_id, user_id, now)
            return await self.ledger.grant_experience(
                guild_id, user_id, amount, ActivitySource.MESSAGE,
            )
        except Exception:
            logger.exception("Message XP failed for %s/%s", guild_id, user_id)
            return None

    async def handle_voice(
        self,
        member: VoiceMember | None,
        channel_id: int | None,
        duration_ms: float,
    ) -> GrantResult | None:
        """Grant XP for a flushed voice span of *duration_ms*."""
        if duration_ms <= 0 or member is None:
            return None
        guild_id, user_id = member.guild_id, member.user_id
        try:
            settings = await self.configs.get_config(guild_id)
            decision = check_voice(member, channel_id, duration_ms, settings)
            if decision is not GateDecision.GRANTED:
                logger.debug("Voice span for %s/%s rejected: %s", guild_id, user_id, decision)
                return None

            amount = voice_experience(
                duration_ms, settings.xp_per_voice_minute, member.role_ids, settings,
            )
            await self.ledger.record_voice_time(guild_id, user_id, round(duration_ms))
            return await self.ledger.grant_experience(
                guild_id, user_id, amount, ActivitySource.VOICE,
            )
        except Exception:
            logger.exception("Voice XP failed for %s/%s", guild_id, user_id)
            return None

    async def apply_penalty(
        self, guild_id: int, user_id: int, amount: int, reason: str = "",
    ) -> UserLevelSnapshot | None:
        """Revoke XP, only when the guild has the penalty system enabled."""
        settings = await self.configs.get_config(guild_id)
        if not settings.enable_penalty_system:
            logger.info("Penalty for %s/%s skipped: penalty system disabled", guild_id, user_id)
            return None
        return await self.ledger.revoke_experience(guild_id, user_id, amount, reason)
