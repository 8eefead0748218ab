"""Learner Views

Composes the resolver, navigation, progression, achievements and catalog
engines into the payloads the API serves: lesson and course pages, lesson
submission, unlock checks and the dashboard.
"""
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.database import fetch_one
from core.errors import AppError, EngineErrorMapper, Ok, Result, dependency_not_met, map_errors, not_found
from core.logging import engine_logger
from engines.achievements import AchievementEngine, achievement_dict, current_streak
from engines.catalog import CourseCatalogAggregator, CourseOverview, completion_percentage
from engines.dependencies import DependencyResolver, is_accessible
from engines.execution import (
    NO_CHECK_FEEDBACK,
    CodeExecutor,
    SubprocessExecutor,
    ValidationResult,
    validate_output,
)
from engines.navigation import LessonAccess, NavigationPlanner, next_accessible_incomplete, plan
from engines.progression import ProgressionTracker, progress_dict
from models.course import Course, Lesson, SubjectType
from models.progress import CodeExecution, UserProgress
from models.user import User

log = engine_logger()

RECENT_PROGRESS_LIMIT = 5
DASHBOARD_ACHIEVEMENTS_LIMIT = 3


def lesson_dict(lesson: Lesson) -> dict:
    return {
        "id": str(lesson.id),
        "course_id": str(lesson.course_id),
        "title": lesson.title,
        "description": lesson.description,
        "instructions": lesson.instructions,
        "order_index": lesson.order_index,
        "coding_challenge": lesson.coding_challenge,
        "expected_output": lesson.expected_output,
        "is_optional": lesson.is_optional,
        "estimated_duration": lesson.estimated_duration,
    }


def lesson_item(item: LessonAccess) -> dict:
    return {
        **lesson_dict(item.lesson),
        "is_accessible": item.is_accessible,
        "is_locked": not item.is_accessible,
        "is_completed": item.is_completed,
        "user_score": item.score,
        "dependencies": item.resolution.to_dict(),
        "dependency_count": len(item.resolution.statuses),
    }


class LearnerViews:
    __slots__ = ("_db", "_resolver", "_navigation", "_progression", "_achievements", "_catalog", "_executor")

    def __init__(self, db: AsyncSession, executor: CodeExecutor | None = None):
        self._db = db
        self._resolver = DependencyResolver(db)
        self._navigation = NavigationPlanner(db)
        self._progression = ProgressionTracker(db)
        self._achievements = AchievementEngine(db)
        self._catalog = CourseCatalogAggregator(db)
        self._executor = executor or SubprocessExecutor()

    # =========================================================================
    # Lessons
    # =========================================================================

    async def lesson_view(self, lesson_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        """Lesson page. A locked lesson is still returned, flagged inaccessible."""
        found = await fetch_one(self._db, Lesson, lesson_id, "Lesson")
        if found.is_err():
            return found
        lesson = found.unwrap()

        state = await self._resolver.load_user_state(user_id)
        items = await self._navigation.course_lessons(lesson.course_id, user_id, state)
        current = next(item for item in items if item.id == lesson_id)
        progress = await self._progression.get_progress(user_id, lesson_id)

        return Ok({
            "lesson": {
                **lesson_dict(lesson),
                "is_accessible": current.is_accessible,
                "is_completed": current.is_completed,
                "dependencies": current.resolution.to_dict(),
            },
            "navigation": plan(items, lesson_id).to_dict(),
            "user_progress": {
                "is_completed": current.is_completed,
                "score": progress.score if progress else None,
                "user_code": progress.code_submission if progress else None,
            },
        })

    async def lesson_dependencies(self, lesson_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        found = await fetch_one(self._db, Lesson, lesson_id, "Lesson")
        if found.is_err():
            return found
        resolution = await self._resolver.check_lesson(lesson_id, user_id)
        return Ok(resolution.to_dict())

    async def lesson_navigation(self, lesson_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        found = await fetch_one(self._db, Lesson, lesson_id, "Lesson")
        if found.is_err():
            return found
        navigation = await self._navigation.navigate(found.unwrap().course_id, user_id, lesson_id)
        return Ok(navigation.to_dict())

    @map_errors(EngineErrorMapper("views"))
    async def submit_lesson(
        self,
        lesson_id: UUID,
        user_id: UUID,
        code: str,
        time_spent: int,
        now: datetime | None = None,
    ) -> Result[dict, AppError]:
        """Grade, record and reward a submission, then point at the next lesson.

        Code is only executed for accessible lessons; a locked lesson is
        rejected with its unmet prerequisites.
        """
        found = await fetch_one(self._db, Lesson, lesson_id, "Lesson")
        if found.is_err():
            return found
        lesson = found.unwrap()

        state = await self._resolver.load_user_state(user_id)
        resolution = await self._resolver.check_lesson(lesson_id, user_id, state)
        if not is_accessible(resolution, state.is_completed(lesson_id), bool(lesson.is_optional)):
            return dependency_not_met(
                "lesson",
                lesson_id,
                [s.to_dict() for s in resolution.unmet],
                origin="views.submit_lesson",
            )

        course = await self._db.get(Course, lesson.course_id)
        if lesson.expected_output:
            validation = await validate_output(self._executor, code, lesson.expected_output, course.coding_language)
        else:
            validation = ValidationResult(True, 100, NO_CHECK_FEEDBACK, None)

        self._db.add(CodeExecution(
            user_id=user_id,
            lesson_id=lesson_id,
            language=course.coding_language,
            code=code,
            output=validation.actual_output,
            success=validation.valid,
            error_message=None if validation.valid else validation.feedback,
        ))
        await self._db.flush()

        submitted = await self._progression.submit(
            user_id,
            lesson_id,
            code,
            time_spent,
            validation.score,
            passed=validation.valid,
            now=now,
        )
        if submitted.is_err():
            return submitted
        outcome = submitted.unwrap()

        items = await self._navigation.course_lessons(lesson.course_id, user_id)
        following = next_accessible_incomplete(items, lesson_id)
        return Ok({
            "message": "Lesson submitted successfully",
            "progress": progress_dict(outcome.progress),
            "validation": validation.to_dict(),
            "new_achievements": [achievement_dict(a) for a in outcome.new_achievements],
            "next_lesson": following.summary() if following else None,
            "course_completed": validation.valid and following is None,
        })

    async def save_code(self, lesson_id: UUID, user_id: UUID, code: str) -> Result[dict, AppError]:
        saved = await self._progression.save_code(user_id, lesson_id, code)
        return saved.map(progress_dict)

    # =========================================================================
    # Courses
    # =========================================================================

    async def course_view(self, course_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        found = await fetch_one(self._db, Course, course_id, "Course")
        if found.is_err():
            return found
        course = found.unwrap()

        state = await self._resolver.load_user_state(user_id)
        items = await self._navigation.course_lessons(course_id, user_id, state)
        resolution = await self._resolver.check_course(course_id, user_id, state)
        progress = (await self._catalog.course_progress(user_id, [course_id]))[course_id]
        overview = CourseOverview(course=course, resolution=resolution, progress=progress)

        return Ok({
            "course": overview.to_dict(),
            "lessons": [lesson_item(item) for item in items],
        })

    async def course_dependencies(self, course_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        found = await fetch_one(self._db, Course, course_id, "Course")
        if found.is_err():
            return found
        resolution = await self._resolver.check_course(course_id, user_id)
        return Ok(resolution.to_dict())

    async def course_lesson_progress(self, course_id: UUID, user_id: UUID) -> Result[dict, AppError]:
        """Per-lesson access for a course plus counts."""
        found = await fetch_one(self._db, Course, course_id, "Course")
        if found.is_err():
            return found

        items = await self._navigation.course_lessons(course_id, user_id)
        completed = sum(1 for i in items if i.is_completed)
        return Ok({
            "lessons": [lesson_item(item) for item in items],
            "stats": {
                "total_lessons": len(items),
                "completed_lessons": completed,
                "accessible_lessons": sum(1 for i in items if i.is_accessible),
                "locked_lessons": sum(1 for i in items if not i.is_accessible and not i.is_completed),
                "total_dependencies": sum(len(i.resolution.statuses) for i in items),
                "completion_percentage": completion_percentage(completed, len(items)),
            },
        })

    async def next_lesson(
        self,
        course_id: UUID,
        user_id: UUID,
        current_lesson_id: UUID | None = None,
    ) -> Result[dict, AppError]:
        found = await fetch_one(self._db, Course, course_id, "Course")
        if found.is_err():
            return found
        items = await self._navigation.course_lessons(course_id, user_id)
        following = next_accessible_incomplete(items, current_lesson_id)
        return Ok({
            "next_lesson": following.summary() if following else None,
            "completed_course": following is None,
        })

    async def course_progress_rows(self, user_id: UUID, course_id: UUID | None = None) -> list[dict]:
        """The learner's lesson progress rows, most recent first."""
        query = (
            select(UserProgress, Lesson.title, Course.title)
            .join(Lesson, Lesson.id == UserProgress.lesson_id)
            .join(Course, Course.id == UserProgress.course_id)
            .where(UserProgress.user_id == user_id)
            .order_by(UserProgress.updated_at.desc())
        )
        if course_id is not None:
            query = query.where(UserProgress.course_id == course_id)
        rows = await self._db.execute(query)
        return [
            {**progress_dict(p), "lesson_title": lesson_title, "course_title": course_title}
            for p, lesson_title, course_title in rows.all()
        ]

    # =========================================================================
    # Unlock checks
    # =========================================================================

    async def check_unlock(
        self,
        subject_type: SubjectType,
        subject_id: UUID,
        user_id: UUID,
    ) -> Result[dict, AppError]:
        """Accessible subjects pass, admins override, everyone else is refused."""
        model = Lesson if subject_type is SubjectType.LESSON else Course
        found = await fetch_one(self._db, model, subject_id, model.__name__)
        if found.is_err():
            return found
        subject = found.unwrap()
        name = subject_type.value

        state = await self._resolver.load_user_state(user_id)
        resolution = await self._resolver.check(subject_type, subject_id, user_id, state)
        if subject_type is SubjectType.LESSON:
            accessible = is_accessible(resolution, state.is_completed(subject_id), bool(subject.is_optional))
            payload = lesson_dict(subject)
        else:
            accessible = is_accessible(resolution)
            payload = {"id": str(subject.id), "title": subject.title}

        if accessible:
            return Ok({
                "message": f"{name.capitalize()} is already accessible",
                name: payload,
                "dependencies": resolution.to_dict(),
                "admin_override": False,
            })

        user = await self._db.get(User, user_id)
        if user is not None and user.is_admin:
            log.info("unlock_admin_override", subject_type=name, subject_id=str(subject_id), user_id=str(user_id))
            return Ok({
                "message": f"{name.capitalize()} unlocked by admin override",
                name: payload,
                "dependencies": resolution.to_dict(),
                "admin_override": True,
            })

        return dependency_not_met(
            name,
            subject_id,
            [s.to_dict() for s in resolution.unmet],
            origin="views.check_unlock",
        )

    # =========================================================================
    # Dashboard
    # =========================================================================

    async def dashboard(self, user_id: UUID, now: datetime | None = None) -> Result[dict, AppError]:
        user = await self._db.get(User, user_id)
        if user is None:
            return not_found("User", user_id, origin="views.dashboard")
        now = now or utcnow()

        totals = await self._db.execute(
            select(func.count(UserProgress.id), func.coalesce(func.sum(UserProgress.score), 0))
            .where(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
        )
        completed, total_score = totals.one()
        history = await self._achievements.completion_history(user_id)
        achievements = await self._achievements.user_achievements(user_id)
        state = await self._resolver.load_user_state(user_id)

        return Ok({
            "stats": {
                "completedLessons": completed,
                "totalScore": int(total_score),
                "averageScore": int(total_score / completed + 0.5) if completed else 0,
                "achievementsCount": len(achievements),
                "currentStreak": current_streak(history.completion_times, now),
            },
            "points": await self._achievements.points(user_id),
            "recentProgress": (await self.course_progress_rows(user_id))[:RECENT_PROGRESS_LIMIT],
            "achievements": achievements[:DASHBOARD_ACHIEVEMENTS_LIMIT],
            "recommendedCourses": await self._catalog.recommended(user_id, state),
        })

    # =========================================================================
    # Free-form runs
    # =========================================================================

    async def run_code(self, user_id: UUID, code: str, language: str) -> Result[dict, AppError]:
        """Execute outside any lesson. Failures are reported in the payload."""
        executed = await self._executor.execute(code, language)
        if executed.is_ok():
            result = executed.unwrap()
            success, output, error = True, result.output, None
        else:
            success, output, error = False, None, executed.unwrap_err().message

        self._db.add(CodeExecution(
            user_id=user_id,
            language=language,
            code=code,
            output=output,
            success=success,
            error_message=error,
        ))
        await self._db.flush()
        return Ok({"success": success, "output": output, "error": error})
