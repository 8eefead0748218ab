"""Course Catalog Aggregator

Course listings with the learner's progress, course-level locks and a
status bucket per course.

Course status is a partition: every course lands in exactly one of
locked / completed / in_progress / not_started. ``available`` is the
union of the three unlocked buckets.
"""
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging import engine_logger
from engines.dependencies import DependencyResolver, Resolution, UserState, resolve
from models.course import AgeGroup, Course, Lesson, SubjectType
from models.progress import UserProgress
from models.user import User

log = engine_logger()

RECOMMENDATION_LIMIT = 6


class CourseStatus(str, Enum):
    LOCKED = "locked"
    COMPLETED = "completed"
    IN_PROGRESS = "in_progress"
    NOT_STARTED = "not_started"


@dataclass(frozen=True, slots=True)
class CourseFilters:
    age_group: str | None = None
    language_target: str | None = None
    coding_language: str | None = None

    def apply(self, query):
        if self.age_group:
            query = query.where(Course.age_group == self.age_group)
        if self.language_target:
            query = query.where(Course.language_target == self.language_target)
        if self.coding_language:
            query = query.where(Course.coding_language == self.coding_language)
        return query


def completion_percentage(completed: int, total: int) -> int:
    """Whole percent, halves rounded up; 0 for an empty course."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass(frozen=True, slots=True)
class CourseProgress:
    total_lessons: int = 0
    completed_lessons: int = 0
    average_score: float | None = None  # over completed lessons
    total_time_spent: int = 0
    last_activity: datetime | None = None

    @property
    def completion_percentage(self) -> int:
        return completion_percentage(self.completed_lessons, self.total_lessons)

    def to_dict(self) -> dict:
        return {
            "total_lessons": self.total_lessons,
            "completed_lessons": self.completed_lessons,
            "average_score": round(self.average_score, 1) if self.average_score is not None else None,
            "total_time_spent": self.total_time_spent,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
        }


@dataclass(slots=True)
class CourseOverview:
    """A course as one learner sees it."""
    course: Course
    resolution: Resolution
    progress: CourseProgress = field(default_factory=CourseProgress)

    @property
    def id(self) -> UUID:
        return self.course.id

    @property
    def is_locked(self) -> bool:
        return not self.resolution.all_met

    @property
    def status(self) -> CourseStatus:
        return course_status(self)

    def to_dict(self) -> dict:
        lock = self.resolution.first_unmet
        return {
            **course_dict(self.course),
            "lesson_count": self.progress.total_lessons,
            "dependencies": self.resolution.to_dict(),
            "is_locked": self.is_locked,
            "lock_reason": lock.to_dict() if lock else None,
            "user_progress": self.progress.to_dict(),
            "completion_percentage": self.progress.completion_percentage,
            "status": self.status.value,
        }


def course_dict(course: Course) -> dict:
    return {
        "id": str(course.id),
        "title": course.title,
        "description": course.description,
        "language_target": course.language_target,
        "coding_language": course.coding_language,
        "age_group": course.age_group,
        "difficulty_level": course.difficulty_level,
        "thumbnail_url": course.thumbnail_url,
        "order_index": course.order_index,
    }


def course_status(overview: CourseOverview) -> CourseStatus:
    if overview.is_locked:
        return CourseStatus.LOCKED
    done, total = overview.progress.completed_lessons, overview.progress.total_lessons
    if total > 0 and done >= total:
        return CourseStatus.COMPLETED
    if done > 0:
        return CourseStatus.IN_PROGRESS
    return CourseStatus.NOT_STARTED


def categorize(overviews: Iterable[CourseOverview]) -> dict[str, list[CourseOverview]]:
    buckets: dict[str, list[CourseOverview]] = {status.value: [] for status in CourseStatus}
    buckets["available"] = []
    for overview in overviews:
        status = course_status(overview)
        buckets[status.value].append(overview)
        if status is not CourseStatus.LOCKED:
            buckets["available"].append(overview)
    return buckets


def age_group_for(age: int | None) -> str:
    if age is not None and age <= 7:
        return AgeGroup.YOUNG.value
    if age is not None and age <= 12:
        return AgeGroup.MIDDLE.value
    return AgeGroup.TEEN.value


def rank_recommendations(
    overviews: Iterable[CourseOverview],
    age_group: str,
    limit: int = RECOMMENDATION_LIMIT,
) -> list[CourseOverview]:
    """Unlocked courses for the age group: started ones first, then easiest."""
    candidates = [
        o for o in overviews
        if o.course.age_group == age_group and course_status(o) in (CourseStatus.IN_PROGRESS, CourseStatus.NOT_STARTED)
    ]
    candidates.sort(key=lambda o: (
        course_status(o) is not CourseStatus.IN_PROGRESS,
        o.course.difficulty_level,
        o.course.order_index,
    ))
    return candidates[:limit]


class CourseCatalogAggregator:
    __slots__ = ("_db", "_resolver")

    def __init__(self, db: AsyncSession):
        self._db = db
        self._resolver = DependencyResolver(db)

    async def _courses(self, filters: CourseFilters | None = None) -> Sequence[Course]:
        query = select(Course).order_by(Course.order_index, Course.title)
        if filters is not None:
            query = filters.apply(query)
        result = await self._db.execute(query)
        return result.scalars().all()

    async def lesson_counts(self, course_ids: Sequence[UUID]) -> dict[UUID, int]:
        if not course_ids:
            return {}
        rows = await self._db.execute(
            select(Lesson.course_id, func.count(Lesson.id))
            .where(Lesson.course_id.in_(list(course_ids)))
            .group_by(Lesson.course_id)
        )
        return dict(rows.all())

    async def list_courses(self, filters: CourseFilters | None = None) -> list[dict]:
        """Plain catalogue, no learner data."""
        courses = await self._courses(filters)
        counts = await self.lesson_counts([c.id for c in courses])
        return [{**course_dict(c), "lesson_count": counts.get(c.id, 0)} for c in courses]

    async def course_progress(self, user_id: UUID, course_ids: Sequence[UUID]) -> dict[UUID, CourseProgress]:
        """Aggregate of the learner's lesson progress per course."""
        if not course_ids:
            return {}
        counts = await self.lesson_counts(course_ids)
        completed = UserProgress.completed.is_(True)
        rows = await self._db.execute(
            select(
                UserProgress.course_id,
                func.sum(case((completed, 1), else_=0)),
                func.avg(case((completed, UserProgress.score))),
                func.coalesce(func.sum(UserProgress.time_spent), 0),
                func.max(UserProgress.completed_at),
            )
            .where(UserProgress.user_id == user_id, UserProgress.course_id.in_(list(course_ids)))
            .group_by(UserProgress.course_id)
        )
        aggregates = {row[0]: row[1:] for row in rows.all()}

        progress = {}
        for course_id in course_ids:
            done, avg, spent, last = aggregates.get(course_id, (0, None, 0, None))
            progress[course_id] = CourseProgress(
                total_lessons=counts.get(course_id, 0),
                completed_lessons=int(done or 0),
                average_score=float(avg) if avg is not None else None,
                total_time_spent=int(spent or 0),
                last_activity=last,
            )
        return progress

    async def overviews(
        self,
        user_id: UUID,
        filters: CourseFilters | None = None,
        state: UserState | None = None,
    ) -> list[CourseOverview]:
        courses = await self._courses(filters)
        ids = [c.id for c in courses]
        if state is None:
            state = await self._resolver.load_user_state(user_id)
        edges = await self._resolver.load_edges(SubjectType.COURSE, ids)
        progress = await self.course_progress(user_id, ids)
        return [
            CourseOverview(course=c, resolution=resolve(edges.get(c.id, []), state), progress=progress[c.id])
            for c in courses
        ]

    async def list_available(self, user_id: UUID, filters: CourseFilters | None = None) -> dict:
        """Every course with lock state, progress and its status bucket."""
        overviews = await self.overviews(user_id, filters)
        buckets = categorize(overviews)
        log.debug(
            "courses_categorized",
            user_id=str(user_id),
            total=len(overviews),
            locked=len(buckets[CourseStatus.LOCKED.value]),
        )
        return {
            "courses": [o.to_dict() for o in overviews],
            "categorized": {name: [o.to_dict() for o in items] for name, items in buckets.items()},
            "stats": {
                "total": len(overviews),
                "available": len(buckets["available"]),
                "locked": len(buckets[CourseStatus.LOCKED.value]),
                "completed": len(buckets[CourseStatus.COMPLETED.value]),
                "in_progress": len(buckets[CourseStatus.IN_PROGRESS.value]),
                "not_started": len(buckets[CourseStatus.NOT_STARTED.value]),
            },
        }

    async def recommended(
        self,
        user_id: UUID,
        state: UserState | None = None,
        limit: int = RECOMMENDATION_LIMIT,
    ) -> list[dict]:
        age = await self._db.scalar(select(User.age).where(User.id == user_id))
        group = age_group_for(age)
        overviews = await self.overviews(user_id, CourseFilters(age_group=group), state)
        return [o.to_dict() for o in rank_recommendations(overviews, group, limit)]
