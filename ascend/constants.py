"""
ascend.constants — Level Formula & Presentation Constants
==========================================================

Single source of truth for the leveling curve.  Import from here instead of
re-deriving it in cogs, services, or the API.

The curve is *per level*, not cumulative::

    experience_for_level(L) = 5·L² + 50·L + 100      (L ≥ 1)

so level 1 needs 155 XP, level 2 needs 220 XP, level 10 needs 1100 XP.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉

# Leaderboard page bounds
LEADERBOARD_DEFAULT_LIMIT = 10
LEADERBOARD_MAX_LIMIT = 50


# ---------------------------------------------------------------------------
# Leveling formula
# ---------------------------------------------------------------------------
def experience_for_level(level: int) -> int:
    """XP threshold for *level*.  ``0`` for level ≤ 0."""
    if level <= 0:
        return 0
    return 5 * level * level + 50 * level + 100


def level_from_experience(xp: int) -> int:
    """Largest level L with ``experience_for_level(L) <= xp``.

    Solves the quadratic with an integer square root, then corrects the
    estimate against the exact thresholds so rounding can never move a
    boundary.
    """
    if xp < experience_for_level(1):
        return 0
    # 5L² + 50L + 100 ≤ xp  ⇔  L ≤ (√(20·xp + 500) − 50) / 10
    level = max(0, (math.isqrt(20 * xp + 500) - 50) // 10)
    while experience_for_level(level + 1) <= xp:
        level += 1
    while level > 0 and experience_for_level(level) > xp:
        level -= 1
    return level


@dataclass(frozen=True, slots=True)
class LevelProgress:
    """Where a user sits on the curve (for rank embeds and the API)."""

    level: int
    xp: int
    next_level_xp: int

    @property
    def remaining(self) -> int:
        return max(0, self.next_level_xp - self.xp)

    @property
    def ratio(self) -> float:
        floor = experience_for_level(self.level)
        span = self.next_level_xp - floor
        if span <= 0:
            return 0.0
        return min(1.0, max(0.0, (self.xp - floor) / span))


def level_progress(xp: int) -> LevelProgress:
    level = level_from_experience(xp)
    return LevelProgress(level=level, xp=xp, next_level_xp=experience_for_level(level + 1))


def progress_bar(ratio: float, width: int = 12) -> str:
    """Render *ratio* as a block bar, e.g. ``▰▰▰▱▱▱``."""
    filled = round(max(0.0, min(1.0, ratio)) * width)
    return "▰" * filled + "▱" * (width - filled)
