"""
tests/test_activity_service.py — ActivityService Tests
=======================================================
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ascend.engine.events import ActivitySource, MessageActivity, VoiceMember, VoicePresence
from ascend.services.activity_service import ActivityService

GUILD = 1001
USER = 7


def run_async(coro):
    """Helper to run an async function in sync tests."""
    return asyncio.get_event_loop_policy().new_event_loop().run_until_complete(coro)


class FakeClock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _message(**overrides) -> MessageActivity:
    values = dict(
        guild_id=GUILD, user_id=USER, channel_id=3, role_ids=frozenset(), content="hi there",
    )
    values.update(overrides)
    return MessageActivity(**values)


def _voice_member(**overrides) -> VoiceMember:
    values = dict(
        guild_id=GUILD, user_id=USER, role_ids=frozenset(), presence=VoicePresence(channel_id=5),
    )
    values.update(overrides)
    return VoiceMember(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def activity(ledger, configs, clock):
    return ActivityService(ledger, configs, clock=clock)


class TestMessages:
    def test_first_message_grants_base_rate(self, activity):
        result = run_async(activity.handle_message(_message()))
        assert result.amount == 15
        assert result.user.xp == 15

    def test_cooldown_blocks_then_releases(self, activity, clock):
        assert run_async(activity.handle_message(_message())) is not None

        clock.now += 1
        assert run_async(activity.handle_message(_message())) is None

        clock.now += 61_000
        result = run_async(activity.handle_message(_message()))
        assert result.user.xp == 30

    def test_cooldown_stamped_with_message_count(self, activity, ledger, clock):
        run_async(activity.handle_message(_message()))
        user = run_async(ledger.get_user_level_data(GUILD, USER))
        assert user.last_message_at_ms == clock.now
        assert user.total_messages == 1

    def test_ignored_channel_and_role(self, activity, configs, ledger):
        run_async(configs.update_config(GUILD, {
            "ignored_channel_ids": ["3"], "ignored_role_ids": ["50"],
        }))
        assert run_async(activity.handle_message(_message())) is None
        assert run_async(activity.handle_message(
            _message(channel_id=4, role_ids=frozenset({"50"})),
        )) is None
        assert run_async(ledger.get_user_level_data(GUILD, USER)).xp == 0

    def test_multipliers_applied(self, activity, configs):
        run_async(configs.update_config(GUILD, {
            "role_multipliers": {"50": 2}, "channel_multipliers": {"3": 1.5},
        }))
        result = run_async(activity.handle_message(_message(role_ids=frozenset({"50"}))))
        assert result.amount == 45

    def test_bot_message_ignored(self, activity):
        assert run_async(activity.handle_message(_message(author_is_bot=True))) is None

    def test_failures_are_swallowed(self, clock):
        configs = MagicMock()
        configs.get_config = AsyncMock(side_effect=RuntimeError("db down"))
        service = ActivityService(MagicMock(), configs, clock=clock)
        assert run_async(service.handle_message(_message())) is None

    def test_records_before_granting(self, clock):
        order: list[str] = []
        ledger = MagicMock()
        ledger.get_user_level_data = AsyncMock(return_value=MagicMock(last_message_at_ms=0))
        ledger.record_message = AsyncMock(side_effect=lambda *a: order.append("record"))
        ledger.grant_experience = AsyncMock(side_effect=lambda *a: order.append("grant"))
        configs = MagicMock()
        from ascend.engine.guild_settings import DEFAULT_GUILD_SETTINGS
        configs.get_config = AsyncMock(return_value=DEFAULT_GUILD_SETTINGS)

        run_async(ActivityService(ledger, configs, clock=clock).handle_message(_message()))

        assert order == ["record", "grant"]
        ledger.grant_experience.assert_awaited_once_with(GUILD, USER, 15, ActivitySource.MESSAGE)


class TestVoice:
    def test_ten_minutes_of_voice(self, activity, ledger):
        result = run_async(activity.handle_voice(_voice_member(), 5, 600_000))
        assert result.amount == 50
        assert run_async(ledger.get_user_level_data(GUILD, USER)).total_voice_ms == 600_000

    def test_voice_ignores_channel_multiplier(self, activity, configs):
        run_async(configs.update_config(GUILD, {"channel_multipliers": {"5": 3}}))
        result = run_async(activity.handle_voice(_voice_member(), 5, 600_000))
        assert result.amount == 50

    def test_ignored_voice_channel(self, activity, configs):
        run_async(configs.update_config(GUILD, {"ignored_channel_ids": ["5"]}))
        assert run_async(activity.handle_voice(_voice_member(), 5, 600_000)) is None

    def test_no_member_or_duration(self, activity):
        assert run_async(activity.handle_voice(None, 5, 600_000)) is None
        assert run_async(activity.handle_voice(_voice_member(), 5, 0)) is None


class TestPenalty:
    def test_disabled_by_default(self, activity, ledger):
        run_async(ledger.grant_experience(GUILD, USER, 100))
        assert run_async(activity.apply_penalty(GUILD, USER, 50, "spam")) is None
        assert run_async(ledger.get_user_level_data(GUILD, USER)).xp == 100

    def test_enabled_revokes(self, activity, configs, ledger):
        run_async(configs.update_config(GUILD, {"enable_penalty_system": True}))
        run_async(ledger.grant_experience(GUILD, USER, 100))
        user = run_async(activity.apply_penalty(GUILD, USER, 30, "spam"))
        assert user.xp == 70
