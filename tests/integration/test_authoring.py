"""
Integration tests for course authoring and prerequisite validation.
"""

import uuid

import pytest

from core.errors import ErrorCode
from engines.authoring import CourseAuthoring


class TestCreateCatalog:
    """Tests for course and lesson creation."""

    async def test_create_course_and_lesson(self, db_session):
        """Created rows come back with ids."""
        authoring = CourseAuthoring(db_session)

        course = (await authoring.create_course(
            title="Story Time",
            language_target="english",
            coding_language="python",
            age_group="4-7",
        )).unwrap()
        lesson = (await authoring.create_lesson(course.id, title="Magic Forest", order_index=1)).unwrap()

        assert course.id is not None
        assert lesson.course_id == course.id
        assert lesson.is_optional is False

    async def test_duplicate_order_index(self, db_session, make_course, make_lesson):
        """Two lessons of one course cannot share an order index."""
        course = await make_course()
        await make_lesson(course, 1)

        result = await CourseAuthoring(db_session).create_lesson(course.id, title="Again", order_index=1)

        assert result.unwrap_err().code == ErrorCode.E4011_DUPLICATE_KEY

    async def test_lesson_for_unknown_course(self, db_session):
        """A lesson needs an existing course."""
        result = await CourseAuthoring(db_session).create_lesson(uuid.uuid4(), title="Orphan", order_index=1)

        assert result.unwrap_err().code == ErrorCode.E4010_NOT_FOUND


class TestAddDependency:
    """Tests for prerequisite edge validation."""

    async def test_lesson_dependency(self, db_session, make_course, make_lesson):
        """A valid lesson edge is stored with its minimum score."""
        course = await make_course()
        first = await make_lesson(course, 1)
        second = await make_lesson(course, 2)

        dependency = (await CourseAuthoring(db_session).add_dependency(
            "lesson", second.id, "lesson", required_id=first.id, min_score=70,
        )).unwrap()

        assert dependency.subject_id == second.id
        assert dependency.required_id == first.id
        assert dependency.min_score == 70

    async def test_self_dependency_rejected(self, db_session, make_course, make_lesson):
        """A lesson cannot require itself."""
        lesson = await make_lesson(await make_course(), 1)

        result = await CourseAuthoring(db_session).add_dependency("lesson", lesson.id, "lesson", required_id=lesson.id)

        error = result.unwrap_err()
        assert error.code == ErrorCode.E2005_CONSTRAINT_VIOLATION
        assert "itself" in error.message

    async def test_cycle_rejected(self, db_session, make_course, make_lesson, make_dependency):
        """Closing A→B→C→A is refused and reports the cycle."""
        course = await make_course()
        a = await make_lesson(course, 1)
        b = await make_lesson(course, 2)
        c = await make_lesson(course, 3)
        await make_dependency(b, lesson=a)
        await make_dependency(c, lesson=b)

        result = await CourseAuthoring(db_session).add_dependency("lesson", a.id, "lesson", required_id=c.id)

        error = result.unwrap_err()
        assert error.code == ErrorCode.E2005_CONSTRAINT_VIOLATION
        assert error.message == "Dependency would create a cycle"
        assert str(a.id) in error.metadata["cycle"]

    async def test_course_cycle_rejected(self, db_session, make_course, make_dependency):
        """Course edges are checked for cycles too."""
        basics = await make_course()
        stories = await make_course()
        await make_dependency(stories, course=basics, min_score=70)

        result = await CourseAuthoring(db_session).add_dependency("course", basics.id, "course", required_id=stories.id)

        assert result.unwrap_err().code == ErrorCode.E2005_CONSTRAINT_VIOLATION

    async def test_cross_kind_edge_is_not_a_cycle(self, db_session, make_course, make_lesson, make_dependency):
        """A course may require a lesson that lives inside it."""
        course = await make_course()
        lesson = await make_lesson(course, 1)

        result = await CourseAuthoring(db_session).add_dependency("course", course.id, "lesson", required_id=lesson.id)

        assert result.is_ok()

    async def test_achievement_dependency(self, db_session, make_course, make_lesson):
        """Achievement edges reference a catalog key and ignore min_score."""
        lesson = await make_lesson(await make_course(), 1)

        dependency = (await CourseAuthoring(db_session).add_dependency(
            "lesson", lesson.id, "achievement", required_achievement_type="first_lesson", min_score=50,
        )).unwrap()

        assert dependency.required_id is None
        assert dependency.min_score == 0

    async def test_unknown_achievement_type(self, db_session, make_course, make_lesson):
        """The achievement key must exist in the catalog."""
        lesson = await make_lesson(await make_course(), 1)

        result = await CourseAuthoring(db_session).add_dependency(
            "lesson", lesson.id, "achievement", required_achievement_type="moon_landing",
        )

        error = result.unwrap_err()
        assert error.code == ErrorCode.E4010_NOT_FOUND
        assert error.metadata["entity"] == "AchievementType"

    async def test_unknown_target(self, db_session, make_course, make_lesson):
        """A lesson edge needs an existing target lesson."""
        lesson = await make_lesson(await make_course(), 1)

        result = await CourseAuthoring(db_session).add_dependency("lesson", lesson.id, "lesson", required_id=uuid.uuid4())

        assert result.unwrap_err().code == ErrorCode.E4010_NOT_FOUND

    @pytest.mark.parametrize(
        ("dependency_type", "min_score", "kwargs"),
        [
            ("badge", 0, {}),
            ("lesson", 101, {}),
            ("lesson", 0, {"required_achievement_type": "first_lesson"}),
            ("achievement", 0, {}),
        ],
    )
    async def test_malformed_edges(self, db_session, make_course, make_lesson, dependency_type, min_score, kwargs):
        """Unknown kinds, out-of-range scores and mixed targets are validation errors."""
        course = await make_course()
        first = await make_lesson(course, 1)
        second = await make_lesson(course, 2)
        if dependency_type == "lesson" and "required_achievement_type" not in kwargs:
            kwargs = {"required_id": first.id}
        elif dependency_type == "lesson":
            kwargs = {**kwargs, "required_id": first.id}

        result = await CourseAuthoring(db_session).add_dependency(
            "lesson", second.id, dependency_type, min_score=min_score, **kwargs,
        )

        assert result.unwrap_err().code.category == "validation"
