"""
Integration tests for progression, prerequisites and achievement triggers.
"""

import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select

from core.errors import ErrorCode
from engines.achievements import AchievementEngine
from engines.dependencies import DependencyResolver
from engines.navigation import NavigationPlanner
from engines.progression import ProgressionTracker
from models.achievement import UserAchievement
from models.progress import UserProgress

WEDNESDAY_10AM = datetime(2024, 3, 13, 10, 0)


async def earned_types(db_session, user_id) -> list[str]:
    rows = await db_session.execute(
        select(UserAchievement.achievement_type).where(UserAchievement.user_id == user_id)
    )
    return sorted(rows.scalars().all())


class TestDependencyGate:
    """Tests for score-gated prerequisites."""

    async def test_score_gate_flips_when_score_rises(self, db_session, make_user, make_course, make_lesson, make_dependency):
        """70 on the prerequisite is unmet for an 80 gate; 80 meets it."""
        user = await make_user()
        course = await make_course()
        prereq = await make_lesson(course, 1)
        gated = await make_lesson(course, 2)
        await make_dependency(gated, lesson=prereq, min_score=80)
        tracker = ProgressionTracker(db_session)
        resolver = DependencyResolver(db_session)

        await tracker.submit(user.id, prereq.id, "print(1)", 600, 70, now=WEDNESDAY_10AM)
        before = await resolver.check_lesson(gated.id, user.id)

        await tracker.submit(user.id, prereq.id, "print(1)", 600, 80, now=WEDNESDAY_10AM)
        after = await resolver.check_lesson(gated.id, user.id)

        assert before.statuses[0].is_met is False
        assert before.statuses[0].current_value == 70
        assert after.statuses[0].is_met is True
        assert after.statuses[0].current_value == 80

    async def test_locked_submission_rejected(self, db_session, make_user, make_course, make_lesson, make_dependency):
        """A locked, never-completed lesson cannot be submitted."""
        user = await make_user()
        course = await make_course()
        prereq = await make_lesson(course, 1, title="Hello, Colors!")
        locked = await make_lesson(course, 2)
        await make_dependency(locked, lesson=prereq, min_score=80)
        tracker = ProgressionTracker(db_session)

        result = await tracker.submit(user.id, locked.id, "print(1)", 600, 100, now=WEDNESDAY_10AM)

        assert result.is_err()
        error = result.unwrap_err()
        assert error.code == ErrorCode.E5021_DEPENDENCY_NOT_MET
        assert error.metadata["requirements"] == ['Complete "Hello, Colors!" with 80% score']
        assert await tracker.get_progress(user.id, locked.id) is None

    async def test_optional_lesson_is_submittable(self, db_session, make_user, make_course, make_lesson, make_dependency):
        """Optional lessons are open regardless of prerequisites."""
        user = await make_user()
        course = await make_course()
        prereq = await make_lesson(course, 1)
        bonus = await make_lesson(course, 2, is_optional=True)
        await make_dependency(bonus, lesson=prereq, min_score=50)

        result = await ProgressionTracker(db_session).submit(user.id, bonus.id, "", 600, 90, now=WEDNESDAY_10AM)

        assert result.is_ok()
        assert result.unwrap().progress.completed is True

    async def test_unknown_lesson(self, db_session, make_user):
        """Submitting a lesson that does not exist is NotFound."""
        user = await make_user()

        result = await ProgressionTracker(db_session).submit(user.id, uuid.uuid4(), "", 0, 100)

        assert result.unwrap_err().code == ErrorCode.E4010_NOT_FOUND

    async def test_course_gate_at_zero_is_open(self, db_session, make_user, make_course, make_lesson, make_dependency):
        """A course edge with min_score 0 is met before anything is completed."""
        user = await make_user()
        basics = await make_course()
        await make_lesson(basics, 1)
        stories = await make_course()
        await make_dependency(stories, course=basics, min_score=0)

        resolution = await DependencyResolver(db_session).check_course(stories.id, user.id)

        assert resolution.all_met is True
        assert resolution.statuses[0].current_value == 0


class TestProgressStateMachine:
    """Tests for the per-lesson lifecycle."""

    async def test_save_code_creates_in_progress_row(self, db_session, make_user, make_course, make_lesson):
        """The first save starts the lesson without completing it."""
        user = await make_user()
        lesson = await make_lesson(await make_course(), 1)

        progress = (await ProgressionTracker(db_session).save_code(user.id, lesson.id, "print('hi')")).unwrap()

        assert progress.completed is False
        assert progress.score == 0
        assert progress.code_submission == "print('hi')"

    async def test_save_code_never_regresses_completion(self, db_session, make_user, make_course, make_lesson):
        """Saving code after completion keeps the completion and score."""
        user = await make_user()
        lesson = await make_lesson(await make_course(), 1)
        tracker = ProgressionTracker(db_session)
        await tracker.submit(user.id, lesson.id, "print(1)", 600, 90, now=WEDNESDAY_10AM)

        progress = (await tracker.save_code(user.id, lesson.id, "print(2)")).unwrap()

        assert progress.completed is True
        assert progress.score == 90
        assert progress.completed_at == WEDNESDAY_10AM
        assert progress.code_submission == "print(2)"

    async def test_failed_attempt_keeps_completion(self, db_session, make_user, make_course, make_lesson):
        """A failing resubmission leaves a completed lesson completed."""
        user = await make_user()
        lesson = await make_lesson(await make_course(), 1)
        tracker = ProgressionTracker(db_session)
        await tracker.submit(user.id, lesson.id, "print(1)", 600, 90, now=WEDNESDAY_10AM)

        outcome = (await tracker.submit(user.id, lesson.id, "oops", 120, 0, passed=False, now=WEDNESDAY_10AM)).unwrap()

        assert outcome.progress.completed is True
        assert outcome.progress.score == 90
        assert outcome.progress.time_spent == 720
        assert outcome.new_achievements == []

    async def test_completed_at_set_once(self, db_session, make_user, make_course, make_lesson):
        """Resubmitting keeps the original completion time; the score is last-write."""
        user = await make_user()
        lesson = await make_lesson(await make_course(), 1)
        tracker = ProgressionTracker(db_session)
        await tracker.submit(user.id, lesson.id, "a", 600, 90, now=WEDNESDAY_10AM)

        outcome = (await tracker.submit(user.id, lesson.id, "b", 600, 60, now=WEDNESDAY_10AM + timedelta(days=1))).unwrap()

        assert outcome.was_completed is True
        assert outcome.newly_completed is False
        assert outcome.progress.completed_at == WEDNESDAY_10AM
        assert outcome.progress.score == 60


class TestAchievementTriggers:
    """Tests for achievements awarded by submissions."""

    async def test_end_to_end_progression(self, db_session, make_user, make_course, make_lesson, make_dependency):
        """first_lesson then perfect_score; a gated lesson opens once both prerequisites hold."""
        user = await make_user()
        course = await make_course()
        lesson1 = await make_lesson(course, 1)
        lesson2 = await make_lesson(course, 2)
        lesson3 = await make_lesson(course, 3)
        await make_dependency(lesson3, lesson=lesson1, min_score=80)
        await make_dependency(lesson3, achievement="first_lesson")
        tracker = ProgressionTracker(db_session)
        planner = NavigationPlanner(db_session)
        achievements = AchievementEngine(db_session)

        before = {i.id: i for i in await planner.course_lessons(course.id, user.id)}

        first = (await tracker.submit(user.id, lesson1.id, "print(1)", 600, 90, now=WEDNESDAY_10AM)).unwrap()
        points_after_first = await achievements.points(user.id)
        after = {i.id: i for i in await planner.course_lessons(course.id, user.id)}

        second = (await tracker.submit(user.id, lesson2.id, "print(2)", 600, 100, now=WEDNESDAY_10AM)).unwrap()
        points_after_second = await achievements.points(user.id)

        assert before[lesson3.id].is_accessible is False
        assert [a.achievement_type for a in first.new_achievements] == ["first_lesson"]
        assert points_after_first == {"total_points": 10, "current_level": 1, "level_title": "Beginner Coder"}
        assert after[lesson3.id].is_accessible is True
        assert [a.achievement_type for a in second.new_achievements] == ["perfect_score"]
        assert points_after_second["total_points"] == 20

    async def test_streak_awarded_once(self, db_session, make_user, make_course, make_lesson):
        """Three distinct days earn coding_streak; a fourth day in the week adds nothing."""
        user = await make_user()
        course = await make_course()
        lessons = [await make_lesson(course, i) for i in range(1, 5)]
        tracker = ProgressionTracker(db_session)
        monday = WEDNESDAY_10AM - timedelta(days=2)
        awarded = []

        for day, lesson in enumerate(lessons):
            outcome = (await tracker.submit(user.id, lesson.id, "", 600, 90, now=monday + timedelta(days=day))).unwrap()
            awarded.append([a.achievement_type for a in outcome.new_achievements])

        assert awarded == [["first_lesson"], [], ["coding_streak"], []]
        streak_rows = await db_session.scalar(
            select(func.count(UserAchievement.id)).where(
                UserAchievement.user_id == user.id,
                UserAchievement.achievement_type == "coding_streak",
            )
        )
        assert streak_rows == 1

    async def test_failed_submission_awards_nothing(self, db_session, make_user, make_course, make_lesson):
        """Wrong answers never trigger achievements."""
        user = await make_user()
        lesson = await make_lesson(await make_course(), 1)

        outcome = (await ProgressionTracker(db_session).submit(
            user.id, lesson.id, "", 100, 0, passed=False, now=WEDNESDAY_10AM,
        )).unwrap()

        assert outcome.progress.completed is False
        assert outcome.new_achievements == []
        assert await earned_types(db_session, user.id) == []

    async def test_check_all_awards_from_history(self, db_session, make_user, make_course, make_lesson):
        """The explicit check awards history rules without a submission."""
        user = await make_user()
        for language in ("english", "spanish", "french"):
            course = await make_course(language_target=language)
            lesson = await make_lesson(course, 1)
            db_session.add(UserProgress(
                id=uuid.uuid4(),
                user_id=user.id,
                lesson_id=lesson.id,
                course_id=course.id,
                score=90,
                completed=True,
                completed_at=WEDNESDAY_10AM,
                time_spent=600,
            ))
        await db_session.commit()

        result = await AchievementEngine(db_session).check_all(user.id, now=WEDNESDAY_10AM)

        assert [a.achievement_type for a in result.unwrap()] == ["language_explorer"]
        again = await AchievementEngine(db_session).check_all(user.id, now=WEDNESDAY_10AM)
        assert again.unwrap() == []
