"""
Unit tests for course status, percentages and recommendations.
"""

import uuid

import pytest

from engines.catalog import (
    CourseOverview,
    CourseProgress,
    CourseStatus,
    age_group_for,
    categorize,
    completion_percentage,
    course_status,
    rank_recommendations,
)
from engines.dependencies import AchievementRequirement, Edge, Resolution, UserState, resolve
from models.course import Course


def overview(total=4, done=0, locked=False, age_group="8-12", difficulty=1, order=0) -> CourseOverview:
    course = Course(
        id=uuid.uuid4(),
        title="Course",
        language_target="english",
        coding_language="python",
        age_group=age_group,
        difficulty_level=difficulty,
        order_index=order,
    )
    resolution = Resolution()
    if locked:
        edge = Edge(None, "course", course.id, AchievementRequirement("fast_learner"), "Fast Learner!")
        resolution = resolve([edge], UserState())
    return CourseOverview(
        course=course,
        resolution=resolution,
        progress=CourseProgress(total_lessons=total, completed_lessons=done),
    )


class TestCompletionPercentage:
    """Tests for completion percentage."""

    def test_three_of_four(self):
        """3 of 4 lessons is 75%."""
        assert completion_percentage(3, 4) == 75

    def test_empty_course(self):
        """No lessons is 0%, not a division error."""
        assert completion_percentage(0, 0) == 0

    @pytest.mark.parametrize("completed,total,expected", [(1, 3, 33), (2, 3, 67), (1, 8, 13), (1, 2, 50)])
    def test_rounding(self, completed, total, expected):
        """Rounds to the nearest whole percent, halves up."""
        assert completion_percentage(completed, total) == expected


class TestCourseStatus:
    """Tests for the status partition."""

    def test_locked_wins(self):
        """A locked course is locked even with progress."""
        assert course_status(overview(total=2, done=2, locked=True)) is CourseStatus.LOCKED

    def test_completed(self):
        assert course_status(overview(total=2, done=2)) is CourseStatus.COMPLETED

    def test_in_progress(self):
        assert course_status(overview(total=4, done=1)) is CourseStatus.IN_PROGRESS

    def test_not_started(self):
        assert course_status(overview(total=4, done=0)) is CourseStatus.NOT_STARTED

    def test_empty_course_is_not_started(self):
        """A course without lessons is never completed."""
        assert course_status(overview(total=0, done=0)) is CourseStatus.NOT_STARTED

    def test_categorize_is_a_partition(self):
        """Each course lands in exactly one status bucket; available is every unlocked one."""
        courses = [
            overview(locked=True),
            overview(total=2, done=2),
            overview(total=4, done=1),
            overview(total=4, done=0),
        ]

        buckets = categorize(courses)

        status_buckets = [buckets[s.value] for s in CourseStatus]
        assert sorted(len(b) for b in status_buckets) == [1, 1, 1, 1]
        assert sum(len(b) for b in status_buckets) == len(courses)
        assert buckets["available"] == courses[1:]

    def test_lock_reason_serialised(self):
        """Locked courses expose the first unmet dependency."""
        data = overview(locked=True).to_dict()

        assert data["is_locked"] is True
        assert data["lock_reason"]["requirement"] == 'Earn "Fast Learner!" achievement'
        assert data["status"] == "locked"


class TestRecommendations:
    """Tests for age-based course recommendations."""

    @pytest.mark.parametrize("age,group", [(4, "4-7"), (7, "4-7"), (8, "8-12"), (12, "8-12"), (13, "13+"), (None, "13+")])
    def test_age_groups(self, age, group):
        assert age_group_for(age) == group

    def test_in_progress_first_then_easiest(self):
        """Started courses lead, then by difficulty; locked and other ages are excluded."""
        hard = overview(difficulty=3)
        easy = overview(difficulty=1)
        started = overview(difficulty=5, done=1)
        locked = overview(locked=True)
        other_age = overview(age_group="4-7")

        ranked = rank_recommendations([hard, easy, started, locked, other_age], "8-12")

        assert ranked == [started, easy, hard]

    def test_limit(self):
        """At most six courses are recommended."""
        courses = [overview(order=i) for i in range(10)]

        assert len(rank_recommendations(courses, "8-12")) == 6
