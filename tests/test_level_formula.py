"""
tests/test_level_formula.py — Level Curve Tests
================================================
"""

from __future__ import annotations

import pytest

from ascend.constants import (
    experience_for_level,
    level_from_experience,
    level_progress,
    progress_bar,
)


class TestExperienceForLevel:
    @pytest.mark.parametrize(
        "level, expected",
        [(0, 0), (-3, 0), (1, 155), (2, 220), (5, 475), (10, 1100), (100, 55_100)],
    )
    def test_known_values(self, level, expected):
        assert experience_for_level(level) == expected


class TestLevelFromExperience:
    @pytest.mark.parametrize("xp, expected", [(0, 0), (-50, 0), (154, 0), (155, 1), (219, 1), (220, 2)])
    def test_boundaries(self, xp, expected):
        assert level_from_experience(xp) == expected

    def test_round_trip_on_every_threshold(self):
        for level in range(0, 500):
            threshold = experience_for_level(level)
            assert level_from_experience(threshold) == level
            if level >= 1:
                assert level_from_experience(threshold - 1) == level - 1

    def test_large_values_stay_exact(self):
        level = 1_000_000
        threshold = experience_for_level(level)
        assert level_from_experience(threshold) == level
        assert level_from_experience(threshold - 1) == level - 1

    def test_monotonic(self):
        previous = 0
        for xp in range(0, 5000, 7):
            current = level_from_experience(xp)
            assert current >= previous
            previous = current


class TestProgress:
    def test_progress_below_first_level(self):
        progress = level_progress(100)
        assert progress.level == 0
        assert progress.next_level_xp == 155
        assert progress.remaining == 55

    def test_progress_ratio_bounds(self):
        assert 0.0 <= level_progress(300).ratio <= 1.0

    def test_progress_bar_width(self):
        assert progress_bar(0.5, width=10) == "▰" * 5 + "▱" * 5
        assert progress_bar(2.0, width=4) == "▰▰▰▰"
