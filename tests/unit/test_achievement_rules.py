"""
Unit tests for levels and achievement trigger rules.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from engines.achievements import (
    ACHIEVEMENT_CATALOG,
    CompletionHistory,
    SubmissionFacts,
    current_streak,
    level_for,
    qualifying_achievements,
)

UTC = ZoneInfo("UTC")
WEDNESDAY_10AM = datetime(2024, 3, 13, 10, 0)


def history(times=(), languages=("english",), total=None) -> CompletionHistory:
    times = tuple(times)
    return CompletionHistory(
        total_completed=len(times) if total is None else total,
        completion_times=times,
        languages=frozenset(languages),
    )


def facts(score=90, time_spent=600, completed_at=WEDNESDAY_10AM) -> SubmissionFacts:
    return SubmissionFacts(score=score, time_spent=time_spent, completed_at=completed_at)


class TestLevels:
    """Tests for the points-to-level mapping."""

    @pytest.mark.parametrize(
        "points,level,title",
        [
            (0, 1, "Beginner Coder"),
            (49, 1, "Beginner Coder"),
            (50, 2, "Code Adventurer"),
            (99, 2, "Code Adventurer"),
            (100, 3, "Code Explorer"),
            (199, 3, "Code Explorer"),
            (200, 4, "Code Master"),
            (5000, 4, "Code Master"),
        ],
    )
    def test_thresholds(self, points, level, title):
        """Each boundary lands in the right level."""
        assert level_for(points) == (level, title)

    def test_catalog_points(self):
        """Catalog carries the published point values."""
        points = {spec.key: spec.points for spec in ACHIEVEMENT_CATALOG}

        assert points == {
            "first_lesson": 10,
            "perfect_score": 10,
            "speed_racer": 15,
            "early_bird": 15,
            "weekend_warrior": 20,
            "fast_learner": 25,
            "coding_streak": 30,
            "language_explorer": 50,
        }


class TestSubmissionRules:
    """Tests for rules driven by the submission just recorded."""

    def test_first_lesson(self):
        """The first completion earns first_lesson only."""
        keys = qualifying_achievements(history([WEDNESDAY_10AM]), facts(), WEDNESDAY_10AM, UTC)

        assert keys == ["first_lesson"]

    def test_fast_learner_on_fifth(self):
        """The fifth completion earns fast_learner."""
        keys = qualifying_achievements(history([WEDNESDAY_10AM], total=5), facts(), WEDNESDAY_10AM, UTC)

        assert "fast_learner" in keys
        assert "first_lesson" not in keys

    def test_perfect_score(self):
        """A 100 score earns perfect_score."""
        keys = qualifying_achievements(history([WEDNESDAY_10AM], total=2), facts(score=100), WEDNESDAY_10AM, UTC)

        assert keys == ["perfect_score"]

    def test_speed_racer_boundary(self):
        """Under 300 seconds qualifies; exactly 300 does not."""
        fast = qualifying_achievements(history(total=2), facts(time_spent=299), WEDNESDAY_10AM, UTC)
        slow = qualifying_achievements(history(total=2), facts(time_spent=300), WEDNESDAY_10AM, UTC)

        assert "speed_racer" in fast
        assert "speed_racer" not in slow

    def test_early_bird_uses_local_time(self):
        """Completion hour is read in the configured zone."""
        completed = datetime(2024, 3, 13, 12, 30)  # 08:30 in New York (UTC-4)
        new_york = ZoneInfo("America/New_York")

        local = qualifying_achievements(history(total=2), facts(completed_at=completed), completed, new_york)
        utc = qualifying_achievements(history(total=2), facts(completed_at=completed), completed, UTC)

        assert "early_bird" in local
        assert "early_bird" not in utc

    def test_history_only_skips_submission_rules(self):
        """Without submission facts only history rules run."""
        keys = qualifying_achievements(history([WEDNESDAY_10AM], total=1), None, WEDNESDAY_10AM, UTC)

        assert keys == []


class TestHistoryRules:
    """Tests for streak, language and weekend rules."""

    def test_streak_needs_three_distinct_days(self):
        """Two completions on one day plus one more day is not a streak."""
        times = [
            WEDNESDAY_10AM - timedelta(days=1),
            WEDNESDAY_10AM - timedelta(days=1, hours=2),
            WEDNESDAY_10AM,
        ]

        assert "coding_streak" not in qualifying_achievements(history(times), None, WEDNESDAY_10AM, UTC)

    def test_streak_within_window(self):
        """Three distinct days inside the trailing week qualify."""
        times = [WEDNESDAY_10AM - timedelta(days=d) for d in (0, 2, 6)]

        assert "coding_streak" in qualifying_achievements(history(times), None, WEDNESDAY_10AM, UTC)

    def test_streak_outside_window(self):
        """Days older than the window do not count."""
        times = [WEDNESDAY_10AM - timedelta(days=d) for d in (0, 1, 9)]

        assert "coding_streak" not in qualifying_achievements(history(times), None, WEDNESDAY_10AM, UTC)

    def test_language_explorer(self):
        """Three target languages earn language_explorer."""
        keys = qualifying_achievements(
            history([WEDNESDAY_10AM], languages=("english", "spanish", "french")),
            None,
            WEDNESDAY_10AM,
            UTC,
        )

        assert keys == ["language_explorer"]

    def test_weekend_warrior_lifetime(self):
        """Any Saturday and any Sunday count, even from different weekends."""
        saturday = datetime(2024, 3, 2, 11, 0)
        later_sunday = datetime(2024, 3, 10, 11, 0)

        keys = qualifying_achievements(history([saturday, later_sunday]), None, WEDNESDAY_10AM, UTC)

        assert "weekend_warrior" in keys

    def test_weekend_warrior_needs_both_days(self):
        """Two Saturdays are not enough."""
        saturdays = [datetime(2024, 3, 2, 11, 0), datetime(2024, 3, 9, 11, 0)]

        assert "weekend_warrior" not in qualifying_achievements(history(saturdays), None, WEDNESDAY_10AM, UTC)


class TestCurrentStreak:
    """Tests for the dashboard streak counter."""

    def test_counts_consecutive_days_ending_today(self):
        """Today and the two days before make a streak of three."""
        times = [WEDNESDAY_10AM - timedelta(days=d) for d in (0, 1, 2)]

        assert current_streak(times, WEDNESDAY_10AM, UTC) == 3

    def test_streak_may_end_yesterday(self):
        """Nothing yet today still keeps yesterday's streak."""
        times = [WEDNESDAY_10AM - timedelta(days=d) for d in (1, 2)]

        assert current_streak(times, WEDNESDAY_10AM, UTC) == 2

    def test_gap_breaks_streak(self):
        """A missing day ends the streak."""
        times = [WEDNESDAY_10AM - timedelta(days=d) for d in (0, 2, 3)]

        assert current_streak(times, WEDNESDAY_10AM, UTC) == 1

    def test_no_completions(self):
        """No completions means no streak."""
        assert current_streak([], WEDNESDAY_10AM, UTC) == 0
