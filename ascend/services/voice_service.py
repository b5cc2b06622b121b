"""
ascend.services.voice_service — Voice Presence Accumulator
===========================================================

Tracks how long each member has been *eligibly* present in voice (connected,
not server-deafened, not suppressed) and converts that time into voice XP.

Per (guild, user) the state is either not-tracked or tracked-since-T in a
given channel.  Time is flushed into a grant when:

* the member stops being eligible (span must exceed 10 s),
* the member moves to another channel (same guard, then re-tracked),
* the periodic sweep finds the entry stale or ≥ 95 % of an interval old,
* the bot shuts down (span must exceed 1 s).

The table is in memory only; :meth:`VoiceAccumulator.rebuild` repopulates
it from live presence at startup.  A span leaves the table (or is restarted)
before its flush is awaited, so concurrent updates never grant it twice.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ascend.services.activity_service import now_ms

if TYPE_CHECKING:
    from ascend.engine.events import VoiceMember, VoicePresence
    from ascend.services.activity_service import ActivityService

logger = logging.getLogger(__name__)

SWEEP_INTERVAL_MS = 5 * 60_000
MIN_FLUSH_MS = 10_000
SHUTDOWN_MIN_FLUSH_MS = 1_000
REFRESH_RATIO = 0.95

# (guild_id, user_id) → live VoiceMember, or None when the member/guild is gone
MemberLookup = Callable[[int, int], Awaitable["VoiceMember | None"]]


@dataclass(slots=True)
class TrackedSpan:
    started_at_ms: int
    channel_id: int | None


class VoiceAccumulator:
    """In-memory voice presence table feeding :meth:`ActivityService.handle_voice`."""

    def __init__(
        self,
        activity: ActivityService,
        lookup_member: MemberLookup,
        clock: Callable[[], int] = now_ms,
        sweep_interval_ms: int = SWEEP_INTERVAL_MS,
    ) -> None:
        self.activity = activity
        self._lookup_member = lookup_member
        self._clock = clock
        self.sweep_interval_ms = sweep_interval_ms
        self._tracked: dict[tuple[int, int], TrackedSpan] = {}

    # -------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------
    def is_tracked(self, guild_id: int, user_id: int) -> bool:
        return (guild_id, user_id) in self._tracked

    def span(self, guild_id: int, user_id: int) -> TrackedSpan | None:
        return self._tracked.get((guild_id, user_id))

    def __len__(self) -> int:
        return len(self._tracked)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _track(self, key: tuple[int, int], channel_id: int | None, now: int) -> None:
        self._tracked[key] = TrackedSpan(started_at_ms=now, channel_id=channel_id)
        logger.debug("Voice tracking started for %s/%s", *key)

    async def _flush(
        self, member: VoiceMember | None, span: TrackedSpan, now: int, min_ms: int,
    ) -> bool:
        elapsed = now - span.started_at_ms
        if elapsed <= min_ms:
            return False
        result = await self.activity.handle_voice(member, span.channel_id, elapsed)
        return result is not None

    # -------------------------------------------------------------------
    # Event-driven transitions
    # -------------------------------------------------------------------
    async def handle_presence_change(
        self, member: VoiceMember, before: VoicePresence, after: VoicePresence,
    ) -> None:
        """Apply one voice-state update."""
        if member.is_bot:
            return
        key = (member.guild_id, member.user_id)
        now = self._clock()
        span = self._tracked.get(key)

        if not after.eligible:
            if span is not None:
                del self._tracked[key]
                await self._flush(member, span, now, MIN_FLUSH_MS)
                logger.debug("Voice tracking stopped for %s/%s", *key)
            return

        if span is None:
            self._track(key, after.channel_id, now)
        elif before.eligible and span.channel_id != after.channel_id:
            # Channel move: close the old segment so ignore lists apply per channel.
            # The new span replaces the old one before any await.
            self._track(key, after.channel_id, now)
            await self._flush(member, span, now, MIN_FLUSH_MS)

    # -------------------------------------------------------------------
    # Periodic sweep
    # -------------------------------------------------------------------
    async def sweep(self) -> int:
        """Flush stale or long-running spans.  Returns how many were flushed.

        Voice-state updates keep arriving while the sweep awaits, so every
        span is claimed (removed, replaced or restarted) before its flush.
        """
        now = self._clock()
        flushed = 0
        for key, span in list(self._tracked.items()):
            guild_id, user_id = key
            try:
                member = await self._lookup_member(guild_id, user_id)
            except Exception:
                logger.exception("Voice sweep lookup failed for %s/%s", guild_id, user_id)
                continue

            # A presence update already closed or replaced this span
            if self._tracked.get(key) is not span:
                continue

            if member is None:
                del self._tracked[key]
                logger.debug("Voice sweep dropped %s/%s: member or guild gone", guild_id, user_id)
                continue

            if not member.presence.eligible:
                del self._tracked[key]
                flushed += await self._flush(member, span, now, MIN_FLUSH_MS)
                continue

            if member.presence.channel_id != span.channel_id:
                self._track(key, member.presence.channel_id, now)
                flushed += await self._flush(member, span, now, MIN_FLUSH_MS)
                continue

            if now - span.started_at_ms >= REFRESH_RATIO * self.sweep_interval_ms:
                claimed = TrackedSpan(started_at_ms=span.started_at_ms, channel_id=span.channel_id)
                span.started_at_ms = now
                flushed += await self._flush(member, claimed, now, 0)

        if flushed:
            logger.info("Voice sweep flushed %d spans (%d tracked)", flushed, len(self._tracked))
        return flushed

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def rebuild(self, members: Iterable[VoiceMember]) -> int:
        """Reset the table from live presence (process start)."""
        self._tracked.clear()
        now = self._clock()
        for member in members:
            if member.is_bot or not member.presence.eligible:
                continue
            self._track((member.guild_id, member.user_id), member.presence.channel_id, now)
        logger.info("Voice table rebuilt: %d members tracked", len(self._tracked))
        return len(self._tracked)

    async def shutdown(self) -> int:
        """Flush every span longer than a second, then clear the table."""
        now = self._clock()
        flushed = 0
        claimed = list(self._tracked.items())
        self._tracked.clear()
        for (guild_id, user_id), span in claimed:
            try:
                member = await self._lookup_member(guild_id, user_id)
                if member is None:
                    logger.warning("Shutdown flush skipped for %s/%s: member gone", guild_id, user_id)
                    continue
                flushed += await self._flush(member, span, now, SHUTDOWN_MIN_FLUSH_MS)
            except Exception:
                logger.exception("Shutdown flush failed for %s/%s", guild_id, user_id)
        logger.info("Voice accumulator shut down, %d spans flushed", flushed)
        return flushed
