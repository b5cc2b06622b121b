"""
ascend.services.role_service — Role Reward Executor
====================================================

Subscribes to ``level_increased`` / ``level_decreased``, asks
:mod:`ascend.engine.roles` for the diff and applies it through a role
gateway.  Role changes are best-effort: a missing permission or an
unfetchable member is logged and published as ``operation_failed``, and the
ledger is never rolled back.  :meth:`RoleRewardService.sync_member` re-derives
the correct role set from the member's current level, so a failed sync can
be retried at any time.

The gateway is any object with these coroutines (see
:class:`ascend.bot.gateway.DiscordRoleGateway`)::

    fetch_role_ids(guild_id, user_id) -> set[str]
    add_role(guild_id, user_id, role_id, reason) -> None
    remove_role(guild_id, user_id, role_id, reason) -> None

each raising :class:`RoleMutationError` on failure.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ascend.engine.bus import (
    EventType,
    OperationFailed,
    RoleAwarded,
    RoleRemoved,
)
from ascend.engine.roles import (
    RoleDiff,
    reconcile,
    resolve_level_down,
    resolve_level_up,
)

if TYPE_CHECKING:
    from ascend.engine.bus import EventBus, LevelDecreased, LevelIncreased
    from ascend.services.guild_config_service import GuildConfigStore
    from ascend.services.ledger_service import LevelLedger

logger = logging.getLogger(__name__)


class RoleMutationError(Exception):
    """A role could not be read, added or removed (permissions, hierarchy, gone)."""


class RoleRewardService:
    """Keeps level-reward roles in step with the ledger."""

    def __init__(
        self,
        configs: GuildConfigStore,
        ledger: LevelLedger,
        bus: EventBus,
        gateway: Any,
    ) -> None:
        self.configs = configs
        self.ledger = ledger
        self.bus = bus
        self.gateway = gateway

    def register(self) -> None:
        self.bus.subscribe(EventType.LEVEL_INCREASED, self.on_level_increased)
        self.bus.subscribe(EventType.LEVEL_DECREASED, self.on_level_decreased)

    async def _current_roles(self, guild_id: int, user_id: int) -> frozenset[str] | None:
        try:
            return frozenset(await self.gateway.fetch_role_ids(guild_id, user_id))
        except RoleMutationError as exc:
            logger.warning("Cannot read roles for %s/%s: %s", guild_id, user_id, exc)
            await self.bus.publish(OperationFailed(
                operation="fetch_roles", guild_id=guild_id, user_id=user_id, detail=str(exc),
            ))
            return None

    async def _apply(
        self,
        guild_id: int,
        user_id: int,
        level: int,
        diff: RoleDiff,
        *,
        add_reason: str,
        remove_reason: str,
        event_reason: str,
        award_reason: str = "level_up",
    ) -> tuple[int, int]:
        """Apply *diff* role by role.  Returns ``(added, removed)`` counts."""
        added = removed = 0
        for role_id in sorted(diff.add):
            try:
                await self.gateway.add_role(guild_id, user_id, role_id, add_reason)
            except RoleMutationError as exc:
                logger.warning("Failed to add role %s to %s/%s: %s", role_id, guild_id, user_id, exc)
                await self.bus.publish(OperationFailed(
                    operation="add_role", guild_id=guild_id, user_id=user_id, detail=str(exc),
                ))
                continue
            added += 1
            await self.bus.publish(RoleAwarded(
                guild_id=guild_id, user_id=user_id, role_id=role_id,
                level=level, reason=award_reason,
            ))
        for role_id in sorted(diff.remove):
            try:
                await self.gateway.remove_role(guild_id, user_id, role_id, remove_reason)
            except RoleMutationError as exc:
                logger.warning(
                    "Failed to remove role %s from %s/%s: %s", role_id, guild_id, user_id, exc,
                )
                await self.bus.publish(OperationFailed(
                    operation="remove_role", guild_id=guild_id, user_id=user_id, detail=str(exc),
                ))
                continue
            removed += 1
            await self.bus.publish(RoleRemoved(
                guild_id=guild_id, user_id=user_id, role_id=role_id,
                level=level, reason=event_reason,
            ))
        if added or removed:
            logger.info(
                "Role sync %s/%s at level %d: +%d -%d", guild_id, user_id, level, added, removed,
            )
        return added, removed

    # -------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------
    async def on_level_increased(self, event: LevelIncreased) -> None:
        settings = await self.configs.get_config(event.guild_id)
        if not settings.level_role_rewards:
            return
        current = await self._current_roles(event.guild_id, event.user_id)
        if current is None:
            return
        strategy = settings.role_removal_strategy
        diff = resolve_level_up(
            event.old_level, event.new_level, settings.level_role_rewards, current, strategy,
        )
        await self._apply(
            event.guild_id, event.user_id, event.new_level, diff,
            add_reason=f"Reached Level {event.new_level}",
            remove_reason=f"Level up to {event.new_level} (strategy {strategy})",
            event_reason=f"level_up_{strategy}",
        )

    async def on_level_decreased(self, event: LevelDecreased) -> None:
        settings = await self.configs.get_config(event.guild_id)
        if not settings.level_role_rewards:
            return
        current = await self._current_roles(event.guild_id, event.user_id)
        if current is None:
            return
        diff = resolve_level_down(event.new_level, settings.level_role_rewards, current)
        await self._apply(
            event.guild_id, event.user_id, event.new_level, diff,
            add_reason="",
            remove_reason=f"Level dropped to {event.new_level}",
            event_reason="level_down",
        )

    # -------------------------------------------------------------------
    # On-demand reconciliation
    # -------------------------------------------------------------------
    async def sync_member(self, guild_id: int, user_id: int) -> RoleDiff | None:
        """Bring the member's reward roles in line with their current level."""
        settings = await self.configs.get_config(guild_id)
        user = await self.ledger.get_user_level_data(guild_id, user_id)
        current = await self._current_roles(guild_id, user_id)
        if current is None:
            return None
        strategy = settings.role_removal_strategy
        diff = reconcile(user.level, settings.level_role_rewards, current, strategy)
        await self._apply(
            guild_id, user_id, user.level, diff,
            add_reason=f"Reached Level {user.level}",
            remove_reason=f"Role sync at level {user.level} (strategy {strategy})",
            event_reason="sync",
            award_reason="sync",
        )
        return diff
