"""
ascend.engine.events — Normalized Activity Envelopes
=====================================================

Every Discord interaction is normalized into one of these frozen dataclasses
before the gatekeeper sees it.  Nothing here imports discord.py, so the
rules can be tested with plain values.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

__all__ = ["ActivitySource", "MessageActivity", "VoicePresence", "VoiceMember"]


class ActivitySource(enum.StrEnum):
    """Why experience moved."""
    MESSAGE = "message"
    VOICE = "voice"
    MANUAL = "manual"
    PENALTY = "penalty"


@dataclass(frozen=True, slots=True)
class MessageActivity:
    """A chat message, reduced to what the accrual rules need."""

    guild_id: int | None
    user_id: int
    channel_id: int
    role_ids: frozenset[str]
    content: str
    author_is_bot: bool = False
    is_system: bool = False
    has_member: bool = True


@dataclass(frozen=True, slots=True)
class VoicePresence:
    """One side of a voice-state transition."""

    channel_id: int | None
    deafened: bool = False
    suppressed: bool = False

    @property
    def eligible(self) -> bool:
        """Connected, not server-deafened, not suppressed."""
        return self.channel_id is not None and not self.deafened and not self.suppressed


@dataclass(frozen=True, slots=True)
class VoiceMember:
    """Live snapshot of a guild member's voice presence."""

    guild_id: int
    user_id: int
    role_ids: frozenset[str]
    presence: VoicePresence
    is_bot: bool = False
