"""
ascend.engine.cache — Thread-Safe TTL Cache
============================================

Short-lived key/value store in front of the database.  Two key families:

* ``level:<guild>:<user>``  → :class:`UserLevelSnapshot` (default TTL 5 min)
* ``config:<guild>``        → :class:`GuildSettings`     (TTL 30 min)

Values are immutable snapshots.  Writers *replace* entries, they never
mutate a cached object.  A ``threading.Lock`` guards the table because DB
helpers call into the cache from ``run_db`` worker threads.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300
CONFIG_TTL_SECONDS = 1800


def level_key(guild_id: int, user_id: int) -> str:
    return f"level:{guild_id}:{user_id}"


def level_prefix(guild_id: int) -> str:
    return f"level:{guild_id}:"


def config_key(guild_id: int) -> str:
    return f"config:{guild_id}"


@dataclass(frozen=True, slots=True)
class CacheStats:
    hits: int
    misses: int
    keys: int


class TTLCache:
    """In-memory cache with per-entry expiry.

    Usage:
        cache = TTLCache()
        cache.set(level_key(g, u), snapshot)
        snapshot = cache.get(level_key(g, u))
        cache.delete_prefix(level_prefix(g))
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._clock = clock
        self._lock = threading.Lock()
        # key → (expires_at, value)
        self._entries: dict[str, tuple[float, Any]] = {}
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store *value* under *key*.  ``None`` is refused (it means "miss")."""
        if value is None:
            logger.warning("Refusing to cache None for key %s", key)
            return False
        expires_at = self._clock() + (self._default_ttl if ttl is None else ttl)
        with self._lock:
            self._entries[key] = (expires_at, value)
        return True

    def delete(self, keys: str | Iterable[str]) -> int:
        """Evict one key or many.  Returns how many entries were present."""
        if isinstance(keys, str):
            keys = (keys,)
        removed = 0
        with self._lock:
            for key in keys:
                if self._entries.pop(key, None) is not None:
                    removed += 1
        return removed

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
        if doomed:
            logger.debug("Evicted %d cache keys with prefix %s", len(doomed), prefix)
        return len(doomed)

    def keys(self) -> list[str]:
        now = self._clock()
        with self._lock:
            return [k for k, (exp, _) in self._entries.items() if exp > now]

    def purge_expired(self) -> int:
        """Drop expired entries eagerly (called from a periodic task)."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (exp, _) in self._entries.items() if exp <= now]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Cache flushed")

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, keys=len(self._entries))
