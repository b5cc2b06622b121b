"""
ascend.services.ledger_service — Experience & Level Ledger
===========================================================

The only writer of ``user_levels``.  Every XP change is applied by one
conditional UPDATE keyed by (guild, user) and guarded on the XP value that
was read, so two grants racing on the same member can never overwrite each
other: the loser re-reads and retries.  ``level`` is always recomputed from
the new XP inside the same statement.

After every write the cache entry is *replaced* (grant / revoke) or
*evicted* (metadata writes, resets), then domain events are published.

Sync helpers take an ``Engine`` and are meant for :func:`run_db`; the
:class:`LevelLedger` facade is the async API used by cogs, services and the
HTTP API.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ascend.constants import (
    LEADERBOARD_DEFAULT_LIMIT,
    LEADERBOARD_MAX_LIMIT,
    level_from_experience,
)
from ascend.database.engine import get_session, run_db
from ascend.database.models import UserLevel, utcnow
from ascend.engine.bus import (
    ExperienceGranted,
    ExperienceRevoked,
    LevelDecreased,
    LevelIncreased,
    OperationFailed,
    ServerReset,
    UserReset,
)
from ascend.engine.cache import DEFAULT_TTL_SECONDS, level_key, level_prefix
from ascend.engine.events import ActivitySource
from ascend.engine.records import GrantResult, UserLevelSnapshot

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.engine.bus import EventBus
    from ascend.engine.cache import TTLCache

logger = logging.getLogger(__name__)

# Conditional-update attempts before a grant is reported as failed
MAX_WRITE_ATTEMPTS = 5

_SNAPSHOT_COLUMNS = (
    UserLevel.guild_id,
    UserLevel.user_id,
    UserLevel.xp,
    UserLevel.level,
    UserLevel.last_message_at_ms,
    UserLevel.total_messages,
    UserLevel.total_voice_ms,
    UserLevel.updated_at,
)


def _snapshot(row: Any) -> UserLevelSnapshot:
    return UserLevelSnapshot(
        guild_id=row.guild_id,
        user_id=row.user_id,
        xp=row.xp,
        level=row.level,
        last_message_at_ms=row.last_message_at_ms,
        total_messages=row.total_messages,
        total_voice_ms=row.total_voice_ms,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Sync DB helpers (call via run_db)
# ---------------------------------------------------------------------------
def fetch_user_level(engine: Engine, guild_id: int, user_id: int) -> UserLevelSnapshot | None:
    """Read one row without creating it."""
    with Session(engine) as session:
        row = session.execute(
            select(*_SNAPSHOT_COLUMNS).where(
                UserLevel.guild_id == guild_id, UserLevel.user_id == user_id,
            )
        ).one_or_none()
        return _snapshot(row) if row is not None else None


def get_or_create_user_level(engine: Engine, guild_id: int, user_id: int) -> UserLevelSnapshot:
    """Upsert-on-read: return the row, inserting zero defaults on first sight."""
    with Session(engine) as session:
        row = session.scalar(
            select(UserLevel).where(
                UserLevel.guild_id == guild_id, UserLevel.user_id == user_id,
            )
        )
        if row is not None:
            return _snapshot(row)
        try:
            with session.begin_nested():   # SAVEPOINT
                row = UserLevel(
                    guild_id=guild_id, user_id=user_id, xp=0, level=0,
                    last_message_at_ms=0, total_messages=0, total_voice_ms=0,
                    updated_at=utcnow(),
                )
                session.add(row)
                session.flush()
            session.commit()
        except IntegrityError:
            # A concurrent first-read inserted the row; use theirs.
            session.rollback()
            row = session.scalar(
                select(UserLevel).where(
                    UserLevel.guild_id == guild_id, UserLevel.user_id == user_id,
                )
            )
        return _snapshot(row)


def conditional_set_experience(
    engine: Engine, guild_id: int, user_id: int, expected_xp: int, new_xp: int,
) -> UserLevelSnapshot | None:
    """Write ``(new_xp, level(new_xp))`` iff the row still holds *expected_xp*.

    Returns the updated snapshot, or ``None`` when no row matched (either
    another writer got there first or the row is gone).
    """
    with get_session(engine) as session:
        row = session.execute(
            update(UserLevel)
            .where(
                UserLevel.guild_id == guild_id,
                UserLevel.user_id == user_id,
                UserLevel.xp == expected_xp,
            )
            .values(xp=new_xp, level=level_from_experience(new_xp), updated_at=utcnow())
            .returning(*_SNAPSHOT_COLUMNS)
            .execution_options(synchronize_session=False)
        ).one_or_none()
        return _snapshot(row) if row is not None else None


def apply_experience_change(
    engine: Engine,
    guild_id: int,
    user_id: int,
    compute: Callable[[int], int],
    known: UserLevelSnapshot | None = None,
) -> tuple[UserLevelSnapshot | None, UserLevelSnapshot | None]:
    """Apply ``new_xp = compute(old_xp)`` with optimistic retries.

    *known* (typically the cached snapshot) seeds the first attempt; every
    retry re-reads from the database.

    Returns ``(before, after)``.  ``after`` is ``None`` when the row vanished
    or every attempt lost a race; ``before`` is then the last state seen.
    """
    before = known
    last_seen = known
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        if before is None:
            before = fetch_user_level(engine, guild_id, user_id)
            if before is None:
                return last_seen, None
            last_seen = before
        after = conditional_set_experience(
            engine, guild_id, user_id, before.xp, compute(before.xp),
        )
        if after is not None:
            return before, after
        logger.debug(
            "XP guard missed for %s/%s (attempt %d), re-reading",
            guild_id, user_id, attempt,
        )
        before = None
    return last_seen, None


def record_message_activity(engine: Engine, guild_id: int, user_id: int, now_ms: int) -> bool:
    """Stamp the cooldown timestamp and bump the message counter."""
    with get_session(engine) as session:
        result = session.execute(
            update(UserLevel)
            .where(UserLevel.guild_id == guild_id, UserLevel.user_id == user_id)
            .values(
                last_message_at_ms=now_ms,
                total_messages=UserLevel.total_messages + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


def record_voice_activity(engine: Engine, guild_id: int, user_id: int, duration_ms: int) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            update(UserLevel)
            .where(UserLevel.guild_id == guild_id, UserLevel.user_id == user_id)
            .values(
                total_voice_ms=UserLevel.total_voice_ms + duration_ms,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


def count_users_above(engine: Engine, guild_id: int, xp: int) -> int:
    with Session(engine) as session:
        return session.scalar(
            select(func.count()).select_from(UserLevel).where(
                UserLevel.guild_id == guild_id, UserLevel.xp > xp,
            )
        ) or 0


def top_users(engine: Engine, guild_id: int, limit: int) -> list[UserLevelSnapshot]:
    with Session(engine) as session:
        rows = session.execute(
            select(*_SNAPSHOT_COLUMNS)
            .where(UserLevel.guild_id == guild_id, UserLevel.xp > 0)
            .order_by(UserLevel.xp.desc(), UserLevel.updated_at.desc(), UserLevel.id.desc())
            .limit(limit)
        ).all()
        return [_snapshot(r) for r in rows]


def zero_user_level(engine: Engine, guild_id: int, user_id: int) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            update(UserLevel)
            .where(UserLevel.guild_id == guild_id, UserLevel.user_id == user_id)
            .values(
                xp=0, level=0, last_message_at_ms=0,
                total_messages=0, total_voice_ms=0, updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0


def delete_guild_levels(engine: Engine, guild_id: int) -> int:
    with get_session(engine) as session:
        result = session.execute(
            delete(UserLevel)
            .where(UserLevel.guild_id == guild_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


def _require_guild(guild_id: int | None) -> None:
    if not guild_id:
        raise ValueError("guild_id is required")


def _require_ids(guild_id: int | None, user_id: int | None) -> None:
    if not guild_id or not user_id:
        raise ValueError("guild_id and user_id are required")


def _require_positive(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"amount must be a positive integer, got {amount!r}")
    return amount


# ---------------------------------------------------------------------------
# Async facade
# ---------------------------------------------------------------------------
class LevelLedger:
    """Async API over ``user_levels`` with caching and event publication.

    Usage:
        ledger = LevelLedger(engine, cache, bus)
        result = await ledger.grant_experience(guild_id, user_id, 15, ActivitySource.MESSAGE)
        if result.leveled_up: ...
    """

    def __init__(
        self,
        engine: Engine,
        cache: TTLCache,
        bus: EventBus,
        ttl: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.bus = bus
        self._ttl = ttl

    async def _db(self, operation: str, guild_id: int | None, user_id: int | None, func, *args):
        """Run a sync helper; persistence errors are published then re-raised."""
        try:
            return await run_db(func, self.engine, *args)
        except SQLAlchemyError as exc:
            logger.exception("%s failed for %s/%s", operation, guild_id, user_id)
            await self.bus.publish(OperationFailed(
                operation=operation, guild_id=guild_id, user_id=user_id, detail=str(exc),
            ))
            raise

    def _remember(self, snapshot: UserLevelSnapshot) -> None:
        self.cache.set(level_key(snapshot.guild_id, snapshot.user_id), snapshot, self._ttl)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    async def get_user_level_data(self, guild_id: int, user_id: int) -> UserLevelSnapshot:
        """Cached read; creates the row with zero defaults on first sight."""
        _require_ids(guild_id, user_id)
        cached = self.cache.get(level_key(guild_id, user_id))
        if cached is not None:
            return cached
        snapshot = await self._db(
            "get_user_level_data", guild_id, user_id,
            get_or_create_user_level, guild_id, user_id,
        )
        self._remember(snapshot)
        return snapshot

    async def rank(self, guild_id: int, user_id: int) -> int:
        """1-based position by XP; ``0`` for a member with no XP."""
        user = await self.get_user_level_data(guild_id, user_id)
        if user.xp <= 0:
            return 0
        above = await self._db("rank", guild_id, user_id, count_users_above, guild_id, user.xp)
        return above + 1

    async def leaderboard(
        self, guild_id: int, limit: int = LEADERBOARD_DEFAULT_LIMIT,
    ) -> list[UserLevelSnapshot]:
        _require_guild(guild_id)
        limit = max(1, min(LEADERBOARD_MAX_LIMIT, int(limit)))
        return await self._db("leaderboard", guild_id, None, top_users, guild_id, limit)

    # -------------------------------------------------------------------
    # Experience
    # -------------------------------------------------------------------
    async def grant_experience(
        self,
        guild_id: int,
        user_id: int,
        amount: int,
        source: ActivitySource = ActivitySource.MANUAL,
    ) -> GrantResult:
        """Add *amount* XP; publishes ``experience_granted`` and, on level
        change, ``level_increased``.

        Raises
        ------
        ValueError
            Missing ids or non-positive amount.  Nothing is written.
        """
        _require_ids(guild_id, user_id)
        _require_positive(amount)
        known = await self.get_user_level_data(guild_id, user_id)
        before, after = await self._db(
            "grant_experience", guild_id, user_id,
            apply_experience_change, guild_id, user_id, lambda xp: xp + amount, known,
        )
        if after is None:
            return await self._degraded("grant_experience", guild_id, user_id, before or known)

        self._remember(after)
        logger.debug(
            "Granted %d XP to %s/%s (%s): %d → %d",
            amount, guild_id, user_id, source, before.xp, after.xp,
        )
        await self.bus.publish(ExperienceGranted(
            guild_id=guild_id, user_id=user_id, amount=amount, source=source,
            old_xp=before.xp, new_xp=after.xp,
            old_level=before.level, new_level=after.level,
        ))
        if after.level > before.level:
            logger.info("Level up: %s/%s %d → %d", guild_id, user_id, before.level, after.level)
            await self.bus.publish(LevelIncreased(
                guild_id=guild_id, user_id=user_id,
                old_level=before.level, new_level=after.level, user=after,
            ))
        return GrantResult(
            old_level=before.level, new_level=after.level, amount=amount, user=after,
        )

    async def revoke_experience(
        self, guild_id: int, user_id: int, amount: int, reason: str = "",
    ) -> UserLevelSnapshot | None:
        """Remove up to *amount* XP (floored at zero)."""
        _require_ids(guild_id, user_id)
        _require_positive(amount)
        known = await self.get_user_level_data(guild_id, user_id)
        before, after = await self._db(
            "revoke_experience", guild_id, user_id,
            apply_experience_change, guild_id, user_id, lambda xp: max(0, xp - amount), known,
        )
        if after is None:
            await self._degraded("revoke_experience", guild_id, user_id, before or known)
            return None

        self._remember(after)
        await self.bus.publish(ExperienceRevoked(
            guild_id=guild_id, user_id=user_id, amount=before.xp - after.xp,
            reason=reason, old_xp=before.xp, new_xp=after.xp,
            old_level=before.level, new_level=after.level,
        ))
        if after.level < before.level:
            logger.info("Level down: %s/%s %d → %d", guild_id, user_id, before.level, after.level)
            await self.bus.publish(LevelDecreased(
                guild_id=guild_id, user_id=user_id,
                old_level=before.level, new_level=after.level, user=after,
            ))
        return after

    async def _degraded(
        self, operation: str, guild_id: int, user_id: int, last: UserLevelSnapshot,
    ) -> GrantResult:
        logger.error("%s: record %s/%s changed or vanished mid-write", operation, guild_id, user_id)
        self.cache.delete(level_key(guild_id, user_id))
        await self.bus.publish(OperationFailed(
            operation=operation, guild_id=guild_id, user_id=user_id,
            detail="record not found or write conflict",
        ))
        return GrantResult(
            old_level=last.level, new_level=last.level, amount=0, user=last, applied=False,
        )

    # -------------------------------------------------------------------
    # Activity metadata
    # -------------------------------------------------------------------
    async def record_message(self, guild_id: int, user_id: int, now_ms: int) -> None:
        """Cooldown stamp + message counter.  Failures are logged only."""
        try:
            await run_db(record_message_activity, self.engine, guild_id, user_id, now_ms)
        except SQLAlchemyError:
            logger.exception("Failed to record message activity for %s/%s", guild_id, user_id)
        finally:
            self.cache.delete(level_key(guild_id, user_id))

    async def record_voice_time(self, guild_id: int, user_id: int, duration_ms: int) -> None:
        try:
            await run_db(record_voice_activity, self.engine, guild_id, user_id, duration_ms)
        except SQLAlchemyError:
            logger.exception("Failed to record voice time for %s/%s", guild_id, user_id)
        finally:
            self.cache.delete(level_key(guild_id, user_id))

    # -------------------------------------------------------------------
    # Resets
    # -------------------------------------------------------------------
    async def reset_user(self, guild_id: int, user_id: int) -> bool:
        _require_ids(guild_id, user_id)
        existed = await self._db("reset_user", guild_id, user_id, zero_user_level, guild_id, user_id)
        self.cache.delete(level_key(guild_id, user_id))
        logger.info("Reset level data for %s/%s", guild_id, user_id)
        await self.bus.publish(UserReset(guild_id=guild_id, user_id=user_id))
        return existed

    async def reset_server(self, guild_id: int) -> int:
        _require_guild(guild_id)
        deleted = await self._db("reset_server", guild_id, None, delete_guild_levels, guild_id)
        self.cache.delete_prefix(level_prefix(guild_id))
        logger.info("Reset %d level records for guild %s", deleted, guild_id)
        await self.bus.publish(ServerReset(guild_id=guild_id, deleted=deleted))
        return deleted
