"""
ascend.engine.roles — Role Reward Resolver
===========================================

Given a level transition, the guild's ``level → role`` map and the roles the
member currently holds, compute which roles to add and which to remove.
Pure: the caller applies the diff and decides what to do on failure.

Strategies (upward transitions only):

* ``keep_all``        — never remove.
* ``highest_only``    — keep only the reward of the *current tier* (highest
  required level ≤ new level).
* ``remove_previous`` — remove rewards of tiers below the current tier,
  unless the same role is also the current tier's reward.  The current tier
  itself is kept even when its required level is below the new level (reaching
  12 with rewards at 5 and 10 keeps the level-10 role).

Downward transitions always strip rewards above the new level.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ascend.engine.guild_settings import RoleRemovalStrategy


@dataclass(frozen=True, slots=True)
class RoleDiff:
    """Proposed role changes.

    ``earned`` / ``revoked`` are what the rules selected; ``add`` / ``remove``
    are the net operations against the member's current roles.
    """

    earned: frozenset[str] = frozenset()
    revoked: frozenset[str] = frozenset()
    add: frozenset[str] = frozenset()
    remove: frozenset[str] = frozenset()

    @property
    def empty(self) -> bool:
        return not self.add and not self.remove


def current_tier(level: int, rewards: Mapping[int, str]) -> int | None:
    """Highest required level reached at *level*, or ``None`` below every tier."""
    reached = [req for req in rewards if req <= level]
    return max(reached) if reached else None


def _strategy_revocations(
    new_level: int,
    rewards: Mapping[int, str],
    held: frozenset[str],
    strategy: RoleRemovalStrategy,
) -> frozenset[str]:
    if strategy is RoleRemovalStrategy.KEEP_ALL:
        return frozenset()
    tier = current_tier(new_level, rewards)
    if tier is None:
        return frozenset()
    keep = rewards[tier]
    if strategy is RoleRemovalStrategy.HIGHEST_ONLY:
        return frozenset(r for r in rewards.values() if r != keep and r in held)
    # remove_previous
    return frozenset(
        role for req, role in rewards.items()
        if req < tier and role != keep and role in held
    )


def resolve_level_up(
    old_level: int,
    new_level: int,
    rewards: Mapping[int, str],
    current_roles: Iterable[str],
    strategy: RoleRemovalStrategy = RoleRemovalStrategy.KEEP_ALL,
) -> RoleDiff:
    """Roles to grant (every tier crossed, including skipped ones) and revoke."""
    current = frozenset(current_roles)
    earned = frozenset(
        role for req, role in rewards.items()
        if old_level < req <= new_level and role not in current
    )
    revoked = _strategy_revocations(new_level, rewards, current | earned, strategy)
    return RoleDiff(
        earned=earned,
        revoked=revoked,
        add=earned - revoked,
        remove=revoked & current,
    )


def resolve_level_down(
    new_level: int,
    rewards: Mapping[int, str],
    current_roles: Iterable[str],
) -> RoleDiff:
    """Strip held rewards whose required level is above *new_level*."""
    current = frozenset(current_roles)
    keep = {role for req, role in rewards.items() if req <= new_level}
    revoked = frozenset(
        role for req, role in rewards.items()
        if req > new_level and role in current and role not in keep
    )
    return RoleDiff(revoked=revoked, remove=revoked)


def reconcile(
    level: int,
    rewards: Mapping[int, str],
    current_roles: Iterable[str],
    strategy: RoleRemovalStrategy = RoleRemovalStrategy.KEEP_ALL,
) -> RoleDiff:
    """Re-derive the reward roles that should be held at *level* from scratch.

    Used to retry a role sync that failed part-way; safe to run repeatedly.
    """
    up = resolve_level_up(0, level, rewards, current_roles, strategy)
    down = resolve_level_down(level, rewards, current_roles)
    return RoleDiff(
        earned=up.earned,
        revoked=up.revoked | down.revoked,
        add=up.add,
        remove=up.remove | down.remove,
    )
