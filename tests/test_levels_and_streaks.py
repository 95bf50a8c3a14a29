"""
Tests for star levels and the streak rule.
"""

from datetime import date, timedelta

import pytest

from starpath.gamification.levels import LEVEL_THRESHOLDS, NEW_LEARNER, calculate_level, level_summary, next_level
from starpath.gamification.stats_store import advance_streak


class TestLevels:

    @pytest.mark.parametrize("stars,expected", [
        (0, NEW_LEARNER),
        (1, "First Star"),
        (9, "First Star"),
        (10, "Getting Started"),
        (49, "Star Beginner"),
        (50, "Rising Star"),
        (999, "Diamond Level"),
        (2500, "Mega Star"),
        (10000, "Mega Star"),
    ])
    def test_calculate_level(self, stars, expected):
        assert calculate_level(stars) == expected

    def test_none_counts_as_zero(self):
        assert calculate_level(None) == NEW_LEARNER

    def test_next_level_reports_stars_needed(self):
        assert next_level(0) == {"level": "First Star", "stars_needed": 1}
        assert next_level(40) == {"level": "Rising Star", "stars_needed": 10}

    def test_next_level_at_top(self):
        assert next_level(3000) == {"level": None, "stars_needed": 0}

    def test_level_summary(self):
        summary = level_summary(120)
        assert summary == {"level": "Super Learner", "next_level": "Star Collector", "stars_to_next_level": 130}

    def test_thresholds_ascend(self):
        thresholds = [threshold for _, threshold in LEVEL_THRESHOLDS]
        assert thresholds == sorted(thresholds)
        assert thresholds == [1, 10, 25, 50, 100, 250, 500, 1000, 2500]


class TestAdvanceStreak:

    today = date(2024, 3, 10)

    def test_first_activity_starts_at_one(self):
        assert advance_streak(0, 0, None, self.today) == (1, 1, self.today)

    def test_same_day_is_unchanged(self):
        assert advance_streak(4, 9, self.today, self.today) == (4, 9, self.today)

    def test_next_day_extends(self):
        yesterday = self.today - timedelta(days=1)
        assert advance_streak(4, 4, yesterday, self.today) == (5, 5, self.today)

    def test_next_day_keeps_longer_longest(self):
        yesterday = self.today - timedelta(days=1)
        assert advance_streak(4, 12, yesterday, self.today) == (5, 12, self.today)

    def test_gap_resets_to_one(self):
        last_week = self.today - timedelta(days=7)
        assert advance_streak(6, 6, last_week, self.today) == (1, 6, self.today)
