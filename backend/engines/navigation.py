"""Navigation Planner

Previous/next lesson within a course, skipping lessons the learner cannot
open yet. A locked lesson in between never blocks reaching a later
accessible one.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from engines.dependencies import DependencyResolver, Resolution, UserState, is_accessible, resolve
from models.course import Lesson, SubjectType


@dataclass(frozen=True, slots=True)
class LessonAccess:
    """A lesson with the learner's access and progress folded in."""
    lesson: Lesson
    is_accessible: bool
    is_completed: bool
    score: int | None
    resolution: Resolution

    @property
    def id(self) -> UUID:
        return self.lesson.id

    def summary(self) -> dict:
        return {
            "id": str(self.lesson.id),
            "title": self.lesson.title,
            "order_index": self.lesson.order_index,
            "is_accessible": self.is_accessible,
            "is_completed": self.is_completed,
        }


@dataclass(frozen=True, slots=True)
class Navigation:
    previous: LessonAccess | None
    next: LessonAccess | None
    current: LessonAccess | None
    total: int
    completed: int
    current_position: int | None

    def to_dict(self) -> dict:
        return {
            "previous": self.previous.summary() if self.previous else None,
            "next": self.next.summary() if self.next else None,
            "current": self.current.summary() if self.current else None,
            "total": self.total,
            "completed": self.completed,
            "currentPosition": self.current_position,
        }


def plan(items: Sequence[LessonAccess], current_id: UUID) -> Navigation:
    """Navigation around ``current_id`` over lessons in course order."""
    total = len(items)
    completed = sum(1 for item in items if item.is_completed)

    index = next((i for i, item in enumerate(items) if item.id == current_id), None)
    if index is None:
        return Navigation(None, None, None, total, completed, None)

    previous = next((items[i] for i in range(index - 1, -1, -1) if items[i].is_accessible), None)
    following = next((items[i] for i in range(index + 1, total) if items[i].is_accessible), None)
    return Navigation(previous, following, items[index], total, completed, index + 1)


def next_accessible_incomplete(items: Sequence[LessonAccess], current_id: UUID | None = None) -> LessonAccess | None:
    """First open, unfinished lesson after ``current_id``, else from the start."""
    start = 0
    if current_id is not None:
        start = next((i + 1 for i, item in enumerate(items) if item.id == current_id), 0)
    for item in (*items[start:], *items[:start]):
        if item.is_accessible and not item.is_completed:
            return item
    return None


def lesson_access(lesson: Lesson, resolution: Resolution, state: UserState) -> LessonAccess:
    progress = state.lessons.get(lesson.id)
    completed = progress is not None and progress.completed
    return LessonAccess(
        lesson=lesson,
        is_accessible=is_accessible(resolution, completed=completed, optional=bool(lesson.is_optional)),
        is_completed=completed,
        score=progress.score if progress else None,
        resolution=resolution,
    )


class NavigationPlanner:
    __slots__ = ("_db", "_resolver")

    def __init__(self, db: AsyncSession):
        self._db = db
        self._resolver = DependencyResolver(db)

    async def course_lessons(
        self,
        course_id: UUID,
        user_id: UUID,
        state: UserState | None = None,
    ) -> list[LessonAccess]:
        """Every lesson of the course in order, with access resolved in one pass."""
        result = await self._db.execute(
            select(Lesson).where(Lesson.course_id == course_id).order_by(Lesson.order_index)
        )
        lessons = result.scalars().all()
        if state is None:
            state = await self._resolver.load_user_state(user_id)
        edges = await self._resolver.load_edges(SubjectType.LESSON, [lesson.id for lesson in lessons])
        return [lesson_access(lesson, resolve(edges[lesson.id], state), state) for lesson in lessons]

    async def navigate(
        self,
        course_id: UUID,
        user_id: UUID,
        current_lesson_id: UUID,
        state: UserState | None = None,
    ) -> Navigation:
        return plan(await self.course_lessons(course_id, user_id, state), current_lesson_id)
