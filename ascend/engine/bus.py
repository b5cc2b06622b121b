"""
ascend.engine.bus — Typed Domain Event Bus
===========================================

The ledger, config store and role service *publish* frozen event objects;
anything that reacts to progress (role sync, level-up announcements, audit
logging) *subscribes* by :class:`EventType`.

Subscribers are independent: each is awaited in isolation and an exception
in one is logged without reaching the producer or its siblings.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, ClassVar

from ascend.engine.events import ActivitySource
from ascend.engine.records import UserLevelSnapshot

logger = logging.getLogger(__name__)


class EventType(enum.StrEnum):
    EXPERIENCE_GRANTED = "experience_granted"
    EXPERIENCE_REVOKED = "experience_revoked"
    LEVEL_INCREASED = "level_increased"
    LEVEL_DECREASED = "level_decreased"
    ROLE_AWARDED = "role_awarded"
    ROLE_REMOVED = "role_removed"
    CONFIG_UPDATED = "config_updated"
    CONFIG_DELETED = "config_deleted"
    USER_RESET = "user_reset"
    SERVER_RESET = "server_reset"
    OPERATION_FAILED = "operation_failed"


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ExperienceGranted:
    event_type: ClassVar[EventType] = EventType.EXPERIENCE_GRANTED
    guild_id: int
    user_id: int
    amount: int
    source: ActivitySource
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int


@dataclass(frozen=True, slots=True)
class ExperienceRevoked:
    event_type: ClassVar[EventType] = EventType.EXPERIENCE_REVOKED
    guild_id: int
    user_id: int
    amount: int
    reason: str
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int


@dataclass(frozen=True, slots=True)
class LevelIncreased:
    event_type: ClassVar[EventType] = EventType.LEVEL_INCREASED
    guild_id: int
    user_id: int
    old_level: int
    new_level: int
    user: UserLevelSnapshot


@dataclass(frozen=True, slots=True)
class LevelDecreased:
    event_type: ClassVar[EventType] = EventType.LEVEL_DECREASED
    guild_id: int
    user_id: int
    old_level: int
    new_level: int
    user: UserLevelSnapshot


@dataclass(frozen=True, slots=True)
class RoleAwarded:
    event_type: ClassVar[EventType] = EventType.ROLE_AWARDED
    guild_id: int
    user_id: int
    role_id: str
    level: int
    reason: str


@dataclass(frozen=True, slots=True)
class RoleRemoved:
    event_type: ClassVar[EventType] = EventType.ROLE_REMOVED
    guild_id: int
    user_id: int
    role_id: str
    level: int
    reason: str


@dataclass(frozen=True, slots=True)
class ConfigUpdated:
    event_type: ClassVar[EventType] = EventType.CONFIG_UPDATED
    guild_id: int
    changes: dict[str, Any] = field(default_factory=dict)
    settings: Any = None


@dataclass(frozen=True, slots=True)
class ConfigDeleted:
    event_type: ClassVar[EventType] = EventType.CONFIG_DELETED
    guild_id: int


@dataclass(frozen=True, slots=True)
class UserReset:
    event_type: ClassVar[EventType] = EventType.USER_RESET
    guild_id: int
    user_id: int


@dataclass(frozen=True, slots=True)
class ServerReset:
    event_type: ClassVar[EventType] = EventType.SERVER_RESET
    guild_id: int
    deleted: int


@dataclass(frozen=True, slots=True)
class OperationFailed:
    event_type: ClassVar[EventType] = EventType.OPERATION_FAILED
    operation: str
    guild_id: int | None
    user_id: int | None
    detail: str


Handler = Callable[[Any], Awaitable[None] | None]


# ---------------------------------------------------------------------------
# Bus
# ---------------------------------------------------------------------------
class EventBus:
    """In-process publish/subscribe keyed by :class:`EventType`.

    Usage:
        bus = EventBus()
        bus.subscribe(EventType.LEVEL_INCREASED, announcer.on_level_increased)
        await bus.publish(LevelIncreased(...))
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: EventType, handler: Handler) -> Callable[[], None]:
        """Register *handler*; returns a callable that unsubscribes it."""
        self._handlers[event_type].append(handler)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._handlers.get(event_type, ()))

    async def publish(self, event: Any) -> None:
        """Deliver *event* to every subscriber of its type and wait for them."""
        handlers = list(self._handlers.get(event.event_type, ()))
        if not handlers:
            return
        await asyncio.gather(*(self._deliver(h, event) for h in handlers))

    async def _deliver(self, handler: Handler, event: Any) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(
                "Subscriber %s failed handling %s", getattr(handler, "__qualname__", handler),
                event.event_type,
            )
