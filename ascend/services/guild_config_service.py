"""
ascend.services.guild_config_service — Guild Configuration Store
=================================================================

Persists the sparse per-guild override layer (``guild_configs``) and serves
the effective :class:`GuildSettings` through the shared TTL cache.

A guild without a row simply runs on the defaults; deleting the row reverts
it to them.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ascend.database.engine import get_session, run_db
from ascend.database.models import GuildConfig
from ascend.engine.bus import ConfigDeleted, ConfigUpdated, OperationFailed
from ascend.engine.cache import CONFIG_TTL_SECONDS, config_key
from ascend.engine.guild_settings import (
    DEFAULT_GUILD_SETTINGS,
    SETTING_FIELDS,
    GuildSettings,
    normalize_settings,
    resolve_settings,
    settings_provenance,
    to_storage,
)

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ascend.engine.bus import EventBus
    from ascend.engine.cache import TTLCache

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Sync DB helpers (call via run_db)
# ---------------------------------------------------------------------------
def _row_to_override(row: GuildConfig) -> dict[str, Any]:
    raw = {name: getattr(row, name) for name in SETTING_FIELDS}
    try:
        return normalize_settings(raw)
    except ValueError:
        # Column-by-column so one corrupt value doesn't discard the rest
        override: dict[str, Any] = {}
        for name, value in raw.items():
            try:
                override.update(normalize_settings({name: value}))
            except ValueError:
                logger.warning("Ignoring corrupt %s for guild %s", name, row.guild_id)
        return override


def load_override(engine: Engine, guild_id: int) -> dict[str, Any]:
    """Return the guild's normalized override values (empty when no row)."""
    with Session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        if row is None:
            return {}
        return _row_to_override(row)


def upsert_override(engine: Engine, guild_id: int, values: Mapping[str, Any]) -> dict[str, Any]:
    """Write normalized *values* onto the guild's row, creating it if needed."""
    with get_session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        if row is None:
            row = GuildConfig(guild_id=guild_id)
            session.add(row)
        for name, value in values.items():
            setattr(row, name, to_storage(name, value))
        session.flush()
        return _row_to_override(row)


def delete_override(engine: Engine, guild_id: int) -> bool:
    with get_session(engine) as session:
        result = session.execute(
            delete(GuildConfig).where(GuildConfig.guild_id == guild_id)
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Async store
# ---------------------------------------------------------------------------
class GuildConfigStore:
    """Cached access to effective guild settings.

    Usage:
        store = GuildConfigStore(engine, cache, bus, defaults=cfg.guild_defaults)
        settings = await store.get_config(guild_id)
        await store.update_config(guild_id, {"xp_per_message": 20})
    """

    def __init__(
        self,
        engine: Engine,
        cache: TTLCache,
        bus: EventBus,
        defaults: GuildSettings = DEFAULT_GUILD_SETTINGS,
        ttl: float = CONFIG_TTL_SECONDS,
    ) -> None:
        self.engine = engine
        self.cache = cache
        self.bus = bus
        self.defaults = defaults
        self._ttl = ttl

    async def _db(self, operation: str, guild_id: int, func, *args):
        try:
            return await run_db(func, self.engine, guild_id, *args)
        except SQLAlchemyError as exc:
            logger.exception("%s failed for guild %s", operation, guild_id)
            await self.bus.publish(OperationFailed(
                operation=operation, guild_id=guild_id, user_id=None, detail=str(exc),
            ))
            raise

    async def get_override(self, guild_id: int) -> dict[str, Any]:
        return await self._db("get_config", guild_id, load_override)

    async def get_config(self, guild_id: int) -> GuildSettings:
        """Effective settings; defaults when the guild has no row."""
        key = config_key(guild_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        settings = resolve_settings(self.defaults, await self.get_override(guild_id))
        self.cache.set(key, settings, self._ttl)
        return settings

    async def provenance(self, guild_id: int) -> dict[str, str]:
        return settings_provenance(self.defaults, await self.get_override(guild_id))

    async def update_config(self, guild_id: int, changes: Mapping[str, Any]) -> GuildSettings:
        """Apply a partial update.  ``None`` values clear an override.

        Raises
        ------
        ValueError
            Unknown field or uncoercible value; nothing is written.
        """
        if not guild_id:
            raise ValueError("guild_id is required")
        normalized = normalize_settings(changes)
        if not normalized:
            return await self.get_config(guild_id)

        override = await self._db("update_config", guild_id, upsert_override, normalized)
        settings = resolve_settings(self.defaults, override)
        self.cache.set(config_key(guild_id), settings, self._ttl)
        logger.info("Guild %s config updated: %s", guild_id, ", ".join(sorted(normalized)))
        await self.bus.publish(ConfigUpdated(
            guild_id=guild_id, changes=normalized, settings=settings,
        ))
        return settings

    async def delete_config(self, guild_id: int) -> bool:
        """Drop the override row; the guild falls back to defaults."""
        removed = await self._db("delete_config", guild_id, delete_override)
        self.cache.delete(config_key(guild_id))
        if removed:
            logger.info("Guild %s config deleted, reverted to defaults", guild_id)
            await self.bus.publish(ConfigDeleted(guild_id=guild_id))
        return removed

    # -------------------------------------------------------------------
    # Map / list editing helpers (slash commands)
    # -------------------------------------------------------------------
    async def set_level_reward(self, guild_id: int, level: int, role_id: str | None) -> GuildSettings:
        """Map *level* to *role_id*, or unmap it when *role_id* is ``None``."""
        current = await self.get_config(guild_id)
        rewards = dict(current.level_role_rewards)
        if role_id is None:
            rewards.pop(level, None)
        else:
            rewards[level] = str(role_id)
        return await self.update_config(guild_id, {"level_role_rewards": rewards})

    async def set_multiplier(
        self, guild_id: int, kind: str, target_id: str, factor: float | None,
    ) -> GuildSettings:
        """Set or clear a role/channel multiplier.  *kind* is ``role`` or ``channel``."""
        field_name = f"{kind}_multipliers"
        if field_name not in ("role_multipliers", "channel_multipliers"):
            raise ValueError(f"Unknown multiplier kind: {kind!r}")
        current = await self.get_config(guild_id)
        multipliers = dict(getattr(current, field_name))
        if factor is None:
            multipliers.pop(str(target_id), None)
        else:
            multipliers[str(target_id)] = factor
        return await self.update_config(guild_id, {field_name: multipliers})

    async def set_ignored(
        self, guild_id: int, kind: str, target_id: str, ignored: bool,
    ) -> GuildSettings:
        """Add or remove a role/channel id from the ignore list."""
        field_name = f"ignored_{kind}_ids"
        if field_name not in ("ignored_role_ids", "ignored_channel_ids"):
            raise ValueError(f"Unknown ignore kind: {kind!r}")
        current = list(getattr(await self.get_config(guild_id), field_name))
        target = str(target_id)
        if ignored and target not in current:
            current.append(target)
        elif not ignored and target in current:
            current.remove(target)
        return await self.update_config(guild_id, {field_name: current})
