"""
ascend.engine.records — Immutable Ledger Records
=================================================

:class:`UserLevelSnapshot` is the only shape that crosses the cache and the
event bus; ORM rows never leave a session.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True, slots=True)
class UserLevelSnapshot:
    guild_id: int
    user_id: int
    xp: int = 0
    level: int = 0
    last_message_at_ms: int = 0
    total_messages: int = 0
    total_voice_ms: int = 0
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class GrantResult:
    """Outcome of a single grant.

    ``applied`` is ``False`` for the degraded result returned when the row
    disappeared mid-operation; ``new_level`` then equals ``old_level``.
    """

    old_level: int
    new_level: int
    amount: int
    user: UserLevelSnapshot
    applied: bool = True

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level
