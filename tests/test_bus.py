"""
tests/test_bus.py — EventBus Tests
===================================
"""

from __future__ import annotations

import asyncio

from ascend.engine.bus import (
    ConfigDeleted,
    EventBus,
    EventType,
    UserReset,
)


def run_async(coro):
    """Helper to run an async function in sync tests."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class TestDelivery:
    def test_sync_and_async_handlers_both_receive(self):
        bus = EventBus()
        seen: list[str] = []

        def sync_handler(event):
            seen.append(f"sync:{event.user_id}")

        async def async_handler(event):
            await asyncio.sleep(0)
            seen.append(f"async:{event.user_id}")

        bus.subscribe(EventType.USER_RESET, sync_handler)
        bus.subscribe(EventType.USER_RESET, async_handler)
        run_async(bus.publish(UserReset(guild_id=1, user_id=2)))

        assert sorted(seen) == ["async:2", "sync:2"]

    def test_only_matching_type_is_delivered(self):
        bus = EventBus()
        seen = []
        bus.subscribe(EventType.CONFIG_DELETED, seen.append)
        run_async(bus.publish(UserReset(guild_id=1, user_id=2)))
        assert seen == []

    def test_publish_without_subscribers_is_noop(self):
        run_async(EventBus().publish(ConfigDeleted(guild_id=1)))


class TestIsolation:
    def test_failing_subscriber_does_not_block_siblings(self):
        bus = EventBus()
        seen = []

        async def broken(event):
            raise RuntimeError("boom")

        def also_broken(event):
            raise KeyError("nope")

        bus.subscribe(EventType.USER_RESET, broken)
        bus.subscribe(EventType.USER_RESET, also_broken)
        bus.subscribe(EventType.USER_RESET, seen.append)

        # Does not raise into the publisher
        run_async(bus.publish(UserReset(guild_id=1, user_id=2)))
        assert len(seen) == 1


class TestSubscriptions:
    def test_unsubscribe_callable(self):
        bus = EventBus()
        seen = []
        unsubscribe = bus.subscribe(EventType.USER_RESET, seen.append)
        assert bus.subscriber_count(EventType.USER_RESET) == 1

        unsubscribe()
        run_async(bus.publish(UserReset(guild_id=1, user_id=2)))

        assert seen == []
        assert bus.subscriber_count(EventType.USER_RESET) == 0

    def test_unsubscribe_unknown_handler_is_noop(self):
        bus = EventBus()
        bus.unsubscribe(EventType.USER_RESET, print)
        assert bus.subscriber_count(EventType.USER_RESET) == 0
