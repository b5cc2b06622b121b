"""
ascend.engine.gatekeeper — Accrual Rules
=========================================

Pure calculation pipeline deciding *whether* an activity earns experience
and *how much*.  No Discord I/O, no DB I/O.

Message XP::

    amount = max(1, floor(xp_per_message × clamp₀(role_mult × channel_mult)))

Voice XP (role multiplier only)::

    amount = max(1, floor(minutes × xp_per_voice_minute × clamp₀(role_mult)))
"""

from __future__ import annotations

import enum
import math
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ascend.engine.events import MessageActivity, VoiceMember
    from ascend.engine.guild_settings import GuildSettings


class GateDecision(enum.StrEnum):
    GRANTED = "granted"
    BOT_AUTHOR = "bot_author"
    NO_GUILD = "no_guild"
    NO_MEMBER = "no_member"
    SYSTEM_MESSAGE = "system_message"
    EMPTY_CONTENT = "empty_content"
    DISABLED = "disabled"
    IGNORED_CHANNEL = "ignored_channel"
    IGNORED_ROLE = "ignored_role"
    COOLDOWN = "cooldown"
    NO_DURATION = "no_duration"


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------
def role_multiplier(role_ids: Iterable[str], settings: GuildSettings) -> float:
    """Highest configured multiplier among the member's roles.

    The 1.0 baseline always participates, so a configured factor below 1.0
    never lowers a member's rate.
    """
    best = 1.0
    for role_id in role_ids:
        factor = settings.role_multipliers.get(role_id)
        if factor is not None and factor > best:
            best = factor
    return best


def channel_multiplier(channel_id: int | str | None, settings: GuildSettings) -> float:
    if channel_id is None:
        return 1.0
    return settings.channel_multipliers.get(str(channel_id), 1.0)


def message_experience(
    base: int, role_ids: Iterable[str], channel_id: int | str | None,
    settings: GuildSettings,
) -> int:
    multiplier = max(0.0, role_multiplier(role_ids, settings) * channel_multiplier(channel_id, settings))
    return max(1, math.floor(base * multiplier))


def voice_experience(
    duration_ms: float, rate: int, role_ids: Iterable[str], settings: GuildSettings,
) -> int:
    minutes = duration_ms / 60_000
    multiplier = max(0.0, role_multiplier(role_ids, settings))
    return max(1, math.floor(minutes * rate * multiplier))


def _holds_ignored_role(role_ids: Iterable[str], settings: GuildSettings) -> bool:
    ignored = settings.ignored_role_ids
    return bool(ignored) and any(r in ignored for r in role_ids)


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------
def precheck_message(activity: MessageActivity) -> GateDecision:
    """Checks that need no configuration or ledger state."""
    if activity.author_is_bot:
        return GateDecision.BOT_AUTHOR
    if activity.guild_id is None:
        return GateDecision.NO_GUILD
    if activity.is_system:
        return GateDecision.SYSTEM_MESSAGE
    if not activity.has_member:
        return GateDecision.NO_MEMBER
    if not activity.content or not activity.content.strip():
        return GateDecision.EMPTY_CONTENT
    return GateDecision.GRANTED


def check_message_rules(activity: MessageActivity, settings: GuildSettings) -> GateDecision:
    """Configuration-dependent checks (rate, channel and role exclusions)."""
    if settings.xp_per_message <= 0:
        return GateDecision.DISABLED
    if str(activity.channel_id) in settings.ignored_channel_ids:
        return GateDecision.IGNORED_CHANNEL
    if _holds_ignored_role(activity.role_ids, settings):
        return GateDecision.IGNORED_ROLE
    return GateDecision.GRANTED


def cooldown_active(
    last_message_at_ms: int, now_ms: int, settings: GuildSettings,
) -> bool:
    """``True`` while ``now < last + cooldown``; the boundary itself is allowed."""
    return now_ms < last_message_at_ms + settings.message_cooldown_seconds * 1000


def check_message(
    activity: MessageActivity,
    settings: GuildSettings,
    last_message_at_ms: int,
    now_ms: int,
) -> GateDecision:
    """Full message decision in evaluation order."""
    decision = precheck_message(activity)
    if decision is not GateDecision.GRANTED:
        return decision
    decision = check_message_rules(activity, settings)
    if decision is not GateDecision.GRANTED:
        return decision
    if cooldown_active(last_message_at_ms, now_ms, settings):
        return GateDecision.COOLDOWN
    return GateDecision.GRANTED


def check_voice(
    member: VoiceMember | None,
    channel_id: int | None,
    duration_ms: float,
    settings: GuildSettings,
) -> GateDecision:
    """Decide whether a flushed voice span earns experience."""
    if duration_ms <= 0:
        return GateDecision.NO_DURATION
    if member is None:
        return GateDecision.NO_MEMBER
    if member.is_bot:
        return GateDecision.BOT_AUTHOR
    if settings.xp_per_voice_minute <= 0:
        return GateDecision.DISABLED
    if _holds_ignored_role(member.role_ids, settings):
        return GateDecision.IGNORED_ROLE
    if channel_id is not None and str(channel_id) in settings.ignored_channel_ids:
        return GateDecision.IGNORED_CHANNEL
    return GateDecision.GRANTED
