"""Progression Tracker

Per (user, lesson) state machine: NotStarted → InProgress → Completed.

NotStarted is the absence of a ``user_progress`` row. ``save_code`` creates
the row as InProgress; a passing ``submit`` moves it to Completed. A
Completed row never goes back.

Both writes are single ``INSERT ... ON CONFLICT (user_id, lesson_id)``
statements, so concurrent saves/submits never fail on the unique pair. Two
racing submissions resolve last-writer-wins on the score.
"""
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import utcnow
from core.database import dialect_insert, fetch_one
from core.errors import AppError, EngineErrorMapper, Ok, Result, dependency_not_met, map_errors
from core.logging import progression_logger
from engines.achievements import AchievementEngine, SubmissionFacts
from engines.dependencies import DependencyResolver, is_accessible
from models.achievement import UserAchievement
from models.course import Lesson
from models.progress import UserProgress

log = progression_logger()


@dataclass(slots=True)
class SubmissionOutcome:
    progress: UserProgress
    passed: bool
    was_completed: bool  # completed before this submission
    new_achievements: list[UserAchievement] = field(default_factory=list)

    @property
    def newly_completed(self) -> bool:
        return self.passed and not self.was_completed


def progress_dict(progress: UserProgress | None) -> dict | None:
    if progress is None:
        return None
    return {
        "id": str(progress.id),
        "lesson_id": str(progress.lesson_id),
        "course_id": str(progress.course_id),
        "code_submission": progress.code_submission,
        "score": progress.score,
        "completed": progress.completed,
        "completed_at": progress.completed_at.isoformat() if progress.completed_at else None,
        "time_spent": progress.time_spent,
        "updated_at": progress.updated_at.isoformat() if progress.updated_at else None,
    }


class ProgressionTracker:
    """Records code saves and submissions and triggers achievement rules."""

    __slots__ = ("_db", "_resolver", "_achievements")

    def __init__(self, db: AsyncSession):
        self._db = db
        self._resolver = DependencyResolver(db)
        self._achievements = AchievementEngine(db)

    async def get_progress(self, user_id: UUID, lesson_id: UUID) -> UserProgress | None:
        return await self._db.scalar(
            select(UserProgress)
            .where(UserProgress.user_id == user_id, UserProgress.lesson_id == lesson_id)
            .execution_options(populate_existing=True)
        )

    @map_errors(EngineErrorMapper("progression"))
    async def save_code(self, user_id: UUID, lesson_id: UUID, code: str) -> Result[UserProgress, AppError]:
        """Store the learner's current code; creates an in-progress row if absent."""
        lesson_result = await fetch_one(self._db, Lesson, lesson_id)
        if lesson_result.is_err():
            return lesson_result
        lesson = lesson_result.unwrap()

        now = utcnow()
        stmt = dialect_insert(self._db, UserProgress).values(
            id=uuid4(),
            user_id=user_id,
            lesson_id=lesson_id,
            course_id=lesson.course_id,
            code_submission=code,
            score=0,
            completed=False,
            time_spent=0,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id", "lesson_id"],
            set_={
                "code_submission": stmt.excluded.code_submission,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._db.execute(stmt)

        log.debug("code_saved", user_id=str(user_id), lesson_id=str(lesson_id), size=len(code or ""))
        return Ok(await self.get_progress(user_id, lesson_id))

    @map_errors(EngineErrorMapper("progression"))
    async def submit(
        self,
        user_id: UUID,
        lesson_id: UUID,
        code: str,
        time_spent: int,
        score: int,
        passed: bool = True,
        now: datetime | None = None,
    ) -> Result[SubmissionOutcome, AppError]:
        """Record a graded submission.

        A lesson must be accessible to be submitted. A passing submission
        completes the lesson, overwrites the score and runs the achievement
        rules; a failing one only records code and time.
        """
        lesson_result = await fetch_one(self._db, Lesson, lesson_id)
        if lesson_result.is_err():
            return lesson_result
        lesson = lesson_result.unwrap()

        state = await self._resolver.load_user_state(user_id)
        was_completed = state.is_completed(lesson_id)
        resolution = await self._resolver.check_lesson(lesson_id, user_id, state)
        if not is_accessible(resolution, completed=was_completed, optional=lesson.is_optional):
            unmet = [s.to_dict() for s in resolution.unmet]
            log.info(
                "submission_blocked",
                user_id=str(user_id),
                lesson_id=str(lesson_id),
                unmet=len(unmet),
            )
            return dependency_not_met("lesson", lesson_id, unmet, origin="progression.submit")

        now = now or utcnow()
        time_spent = max(int(time_spent or 0), 0)
        await self._upsert_submission(user_id, lesson, code, time_spent, score, passed, now)
        progress = await self.get_progress(user_id, lesson_id)

        outcome = SubmissionOutcome(progress=progress, passed=passed, was_completed=was_completed)
        log.info(
            "lesson_submitted",
            user_id=str(user_id),
            lesson_id=str(lesson_id),
            passed=passed,
            score=score,
            newly_completed=outcome.newly_completed,
        )

        if passed:
            facts = SubmissionFacts(score=score, time_spent=time_spent, completed_at=progress.completed_at or now)
            awarded = await self._achievements.evaluate(user_id, facts, now)
            if awarded.is_err():
                return awarded
            outcome.new_achievements = awarded.unwrap()

        return Ok(outcome)

    async def _upsert_submission(
        self,
        user_id: UUID,
        lesson: Lesson,
        code: str,
        time_spent: int,
        score: int,
        passed: bool,
        now: datetime,
    ) -> None:
        stmt = dialect_insert(self._db, UserProgress).values(
            id=uuid4(),
            user_id=user_id,
            lesson_id=lesson.id,
            course_id=lesson.course_id,
            code_submission=code,
            score=score,
            completed=passed,
            completed_at=now if passed else None,
            time_spent=time_spent,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        set_ = {
            "code_submission": excluded.code_submission,
            "time_spent": UserProgress.time_spent + excluded.time_spent,
            "updated_at": excluded.updated_at,
        }
        if passed:
            set_.update({
                "score": excluded.score,
                "completed": True,
                # Only stamped on the transition into completed
                "completed_at": case(
                    (UserProgress.completed.is_(True), UserProgress.completed_at),
                    else_=excluded.completed_at,
                ),
            })
        else:
            # A failed attempt never touches a completed lesson's score
            set_["score"] = case(
                (UserProgress.completed.is_(True), UserProgress.score),
                else_=excluded.score,
            )
        stmt = stmt.on_conflict_do_update(index_elements=["user_id", "lesson_id"], set_=set_)
        await self._db.execute(stmt)
