"""
tests/test_role_service.py — RoleRewardService Tests
=====================================================
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ascend.engine.bus import EventType, LevelDecreased, LevelIncreased
from ascend.engine.guild_settings import DEFAULT_GUILD_SETTINGS, RoleRemovalStrategy
from ascend.engine.records import UserLevelSnapshot
from ascend.services.role_service import RoleMutationError, RoleRewardService

GUILD = 1001
USER = 7
REWARDS = {5: "100", 10: "200", 15: "300"}


def run_async(coro):
    """Helper to run an async function in sync tests."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class FakeRoleGateway:
    """In-memory member roles; ``broken`` role ids fail to add/remove."""

    def __init__(self, held=(), broken=(), unreadable=False) -> None:
        self.held = set(held)
        self.broken = set(broken)
        self.unreadable = unreadable
        self.calls: list[tuple[str, str, str]] = []

    async def fetch_role_ids(self, guild_id, user_id):
        if self.unreadable:
            raise RoleMutationError("member left")
        return set(self.held)

    async def add_role(self, guild_id, user_id, role_id, reason):
        self.calls.append(("add", role_id, reason))
        if role_id in self.broken:
            raise RoleMutationError("role above bot")
        self.held.add(role_id)

    async def remove_role(self, guild_id, user_id, role_id, reason):
        self.calls.append(("remove", role_id, reason))
        if role_id in self.broken:
            raise RoleMutationError("role above bot")
        self.held.discard(role_id)


def _settings(**overrides):
    return replace(DEFAULT_GUILD_SETTINGS, level_role_rewards=REWARDS, **overrides)


def _configs(settings):
    configs = MagicMock()
    configs.get_config = AsyncMock(return_value=settings)
    return configs


def _ledger(level: int):
    ledger = MagicMock()
    ledger.get_user_level_data = AsyncMock(
        return_value=UserLevelSnapshot(guild_id=GUILD, user_id=USER, level=level),
    )
    return ledger


def _level_up(old, new):
    return LevelIncreased(
        guild_id=GUILD, user_id=USER, old_level=old, new_level=new,
        user=UserLevelSnapshot(guild_id=GUILD, user_id=USER, level=new),
    )


def _level_down(old, new):
    return LevelDecreased(
        guild_id=GUILD, user_id=USER, old_level=old, new_level=new,
        user=UserLevelSnapshot(guild_id=GUILD, user_id=USER, level=new),
    )


@pytest.fixture
def gateway():
    return FakeRoleGateway()


def _service(bus, gateway, settings=None, level=0):
    return RoleRewardService(_configs(settings or _settings()), _ledger(level), bus, gateway)


class TestLevelUp:
    def test_keep_all_awards_every_crossed_tier(self, bus, recorder, gateway):
        run_async(_service(bus, gateway).on_level_increased(_level_up(4, 12)))

        assert gateway.held == {"100", "200"}
        awarded = recorder.of(EventType.ROLE_AWARDED)
        assert sorted(e.role_id for e in awarded) == ["100", "200"]
        assert all(e.level == 12 for e in awarded)
        assert ("add", "200", "Reached Level 12") in gateway.calls

    def test_highest_only_strips_lower_reward(self, bus, recorder):
        gateway = FakeRoleGateway(held={"100"})
        settings = _settings(role_removal_strategy=RoleRemovalStrategy.HIGHEST_ONLY)
        run_async(_service(bus, gateway, settings).on_level_increased(_level_up(9, 10)))

        assert gateway.held == {"200"}
        [removed] = recorder.of(EventType.ROLE_REMOVED)
        assert (removed.role_id, removed.reason) == ("100", "level_up_highest_only")

    def test_failed_role_does_not_stop_the_rest(self, bus, recorder):
        gateway = FakeRoleGateway(broken={"100"})
        run_async(_service(bus, gateway).on_level_increased(_level_up(4, 12)))

        assert gateway.held == {"200"}
        [failure] = recorder.of(EventType.OPERATION_FAILED)
        assert failure.operation == "add_role"

    def test_unreadable_member_is_reported(self, bus, recorder):
        gateway = FakeRoleGateway(unreadable=True)
        run_async(_service(bus, gateway).on_level_increased(_level_up(4, 12)))

        assert gateway.calls == []
        [failure] = recorder.of(EventType.OPERATION_FAILED)
        assert failure.operation == "fetch_roles"

    def test_guild_without_rewards_skips_gateway(self, bus, gateway):
        settings = replace(DEFAULT_GUILD_SETTINGS)
        gateway.fetch_role_ids = AsyncMock()
        run_async(_service(bus, gateway, settings).on_level_increased(_level_up(4, 12)))
        gateway.fetch_role_ids.assert_not_awaited()


class TestLevelDown:
    def test_roles_above_new_level_removed(self, bus, recorder):
        gateway = FakeRoleGateway(held={"100", "200", "300"})
        run_async(_service(bus, gateway).on_level_decreased(_level_down(16, 7)))

        assert gateway.held == {"100"}
        assert {e.reason for e in recorder.of(EventType.ROLE_REMOVED)} == {"level_down"}


class TestWiring:
    def test_register_subscribes_to_level_events(self, bus, gateway):
        service = _service(bus, gateway)
        service.register()
        run_async(bus.publish(_level_up(4, 5)))
        assert gateway.held == {"100"}


class TestSyncMember:
    def test_sync_repairs_roles(self, bus):
        gateway = FakeRoleGateway(held={"300"})
        diff = run_async(_service(bus, gateway, level=12).sync_member(GUILD, USER))

        assert diff.add == {"100", "200"}
        assert diff.remove == {"300"}
        assert gateway.held == {"100", "200"}

    def test_sync_returns_none_when_roles_unreadable(self, bus):
        gateway = FakeRoleGateway(unreadable=True)
        assert run_async(_service(bus, gateway, level=12).sync_member(GUILD, USER)) is None
