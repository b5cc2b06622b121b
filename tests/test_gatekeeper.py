"""
tests/test_gatekeeper.py — Accrual Rule Tests
==============================================
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from ascend.engine.events import MessageActivity, VoiceMember, VoicePresence
from ascend.engine.gatekeeper import (
    GateDecision,
    channel_multiplier,
    check_message,
    check_voice,
    cooldown_active,
    message_experience,
    role_multiplier,
    voice_experience,
)
from ascend.engine.guild_settings import DEFAULT_GUILD_SETTINGS


def _message(**overrides) -> MessageActivity:
    base = MessageActivity(
        guild_id=1, user_id=2, channel_id=3, role_ids=frozenset({"10"}), content="hello",
    )
    return replace(base, **overrides)


def _voice_member(**overrides) -> VoiceMember:
    base = VoiceMember(
        guild_id=1, user_id=2, role_ids=frozenset({"10"}), presence=VoicePresence(channel_id=5),
    )
    return replace(base, **overrides)


SETTINGS = replace(
    DEFAULT_GUILD_SETTINGS,
    role_multipliers={"10": 2.0, "11": 1.5, "12": 0.5},
    channel_multipliers={"3": 1.5},
)


class TestMultipliers:
    def test_role_multiplier_takes_highest(self):
        assert role_multiplier({"10", "11"}, SETTINGS) == 2.0

    def test_role_multiplier_below_one_never_lowers(self):
        assert role_multiplier({"12"}, SETTINGS) == 1.0

    def test_role_multiplier_without_config(self):
        assert role_multiplier({"99"}, SETTINGS) == 1.0

    def test_channel_multiplier(self):
        assert channel_multiplier(3, SETTINGS) == 1.5
        assert channel_multiplier(4, SETTINGS) == 1.0
        assert channel_multiplier(None, SETTINGS) == 1.0

    def test_message_experience_combines_role_and_channel(self):
        # 15 × 2.0 × 1.5
        assert message_experience(15, {"10"}, 3, SETTINGS) == 45

    def test_message_experience_floors(self):
        # 15 × 1.5 = 22.5
        assert message_experience(15, {"11"}, 4, SETTINGS) == 22

    def test_message_experience_minimum_one(self):
        zero_channel = replace(SETTINGS, channel_multipliers={"3": 0.0})
        assert message_experience(15, set(), 3, zero_channel) == 1

    def test_voice_ignores_channel_multiplier(self):
        # 10 min × 5 × 2.0; channel 3 (×1.5) plays no part
        assert voice_experience(600_000, 5, {"10"}, SETTINGS) == 100

    def test_voice_short_span_still_earns_one(self):
        assert voice_experience(11_000, 5, set(), SETTINGS) == 1


class TestCooldown:
    def test_cooldown_boundary_is_allowed(self):
        assert cooldown_active(1_000, 61_000, DEFAULT_GUILD_SETTINGS) is False

    def test_one_ms_before_boundary_blocks(self):
        assert cooldown_active(1_000, 60_999, DEFAULT_GUILD_SETTINGS) is True

    def test_never_messaged(self):
        assert cooldown_active(0, 10_000_000, DEFAULT_GUILD_SETTINGS) is False


class TestCheckMessage:
    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({"author_is_bot": True}, GateDecision.BOT_AUTHOR),
            ({"guild_id": None}, GateDecision.NO_GUILD),
            ({"is_system": True}, GateDecision.SYSTEM_MESSAGE),
            ({"has_member": False}, GateDecision.NO_MEMBER),
            ({"content": "   "}, GateDecision.EMPTY_CONTENT),
            ({"content": ""}, GateDecision.EMPTY_CONTENT),
        ],
    )
    def test_prechecks(self, overrides, expected):
        assert check_message(_message(**overrides), SETTINGS, 0, 10**9) is expected

    def test_bot_checked_before_guild(self):
        decision = check_message(_message(author_is_bot=True, guild_id=None), SETTINGS, 0, 10**9)
        assert decision is GateDecision.BOT_AUTHOR

    def test_disabled_when_rate_zero(self):
        settings = replace(SETTINGS, xp_per_message=0)
        assert check_message(_message(), settings, 0, 10**9) is GateDecision.DISABLED

    def test_ignored_channel(self):
        settings = replace(SETTINGS, ignored_channel_ids=("3",))
        assert check_message(_message(), settings, 0, 10**9) is GateDecision.IGNORED_CHANNEL

    def test_ignored_role(self):
        settings = replace(SETTINGS, ignored_role_ids=("10",))
        assert check_message(_message(), settings, 0, 10**9) is GateDecision.IGNORED_ROLE

    def test_cooldown(self):
        assert check_message(_message(), SETTINGS, 1_000, 2_000) is GateDecision.COOLDOWN

    def test_granted(self):
        assert check_message(_message(), SETTINGS, 0, 10**9) is GateDecision.GRANTED


class TestCheckVoice:
    def test_no_duration(self):
        assert check_voice(_voice_member(), 5, 0, SETTINGS) is GateDecision.NO_DURATION

    def test_missing_member(self):
        assert check_voice(None, 5, 60_000, SETTINGS) is GateDecision.NO_MEMBER

    def test_bot(self):
        assert check_voice(_voice_member(is_bot=True), 5, 60_000, SETTINGS) is GateDecision.BOT_AUTHOR

    def test_disabled(self):
        settings = replace(SETTINGS, xp_per_voice_minute=0)
        assert check_voice(_voice_member(), 5, 60_000, settings) is GateDecision.DISABLED

    def test_ignored_role_and_channel(self):
        settings = replace(SETTINGS, ignored_role_ids=("10",))
        assert check_voice(_voice_member(), 5, 60_000, settings) is GateDecision.IGNORED_ROLE
        settings = replace(SETTINGS, ignored_channel_ids=("5",))
        assert check_voice(_voice_member(), 5, 60_000, settings) is GateDecision.IGNORED_CHANNEL

    def test_granted(self):
        assert check_voice(_voice_member(), 5, 60_000, SETTINGS) is GateDecision.GRANTED
