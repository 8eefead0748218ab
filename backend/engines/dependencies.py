"""Dependency Resolver

Decides whether a lesson or course is accessible to a learner.

A subject (lesson or course) has zero or more prerequisite edges, each one
of three requirement kinds:

- LessonRequirement: the lesson is completed with score >= min_score
- CourseRequirement: the best completed-lesson score in the course >= min_score
- AchievementRequirement: the learner owns the achievement

Resolution is a pure function of the edges and a ``UserState`` snapshot.
Nothing about accessibility is persisted, so edited content or prerequisites
are reflected on the next request.
"""
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.logging import progression_logger
from models.achievement import AchievementType, UserAchievement
from models.course import Course, Dependency, DependencyType, Lesson, SubjectType
from models.progress import UserProgress

log = progression_logger()


# =============================================================================
# Requirements (tagged union)
# =============================================================================

@dataclass(frozen=True, slots=True)
class LessonRequirement:
    lesson_id: UUID
    min_score: int = 0


@dataclass(frozen=True, slots=True)
class CourseRequirement:
    course_id: UUID
    min_score: int = 0


@dataclass(frozen=True, slots=True)
class AchievementRequirement:
    achievement_type: str


Requirement = LessonRequirement | CourseRequirement | AchievementRequirement


def requirement_from_row(row: Dependency) -> Requirement:
    """Convert a stored edge into its requirement variant."""
    match row.dependency_type:
        case DependencyType.LESSON.value:
            return LessonRequirement(row.required_id, row.min_score or 0)
        case DependencyType.COURSE.value:
            return CourseRequirement(row.required_id, row.min_score or 0)
        case DependencyType.ACHIEVEMENT.value:
            return AchievementRequirement(row.required_achievement_type)
    raise ValueError(f"Unknown dependency type '{row.dependency_type}' on dependency {row.id}")


@dataclass(frozen=True, slots=True)
class Edge:
    """Prerequisite edge with the display title of what it requires."""
    id: UUID | None
    subject_type: str
    subject_id: UUID
    requirement: Requirement
    title: str | None = None


# =============================================================================
# Learner snapshot
# =============================================================================

@dataclass(frozen=True, slots=True)
class LessonState:
    score: int
    completed: bool


@dataclass(frozen=True, slots=True)
class UserState:
    """Read-only snapshot of everything resolution looks at."""
    lessons: Mapping[UUID, LessonState] = field(default_factory=dict)
    course_best: Mapping[UUID, int] = field(default_factory=dict)  # MAX score over completed lessons
    achievements: frozenset[str] = frozenset()

    def is_completed(self, lesson_id: UUID) -> bool:
        progress = self.lessons.get(lesson_id)
        return progress is not None and progress.completed


# =============================================================================
# Resolution
# =============================================================================

def requirement_text(requirement: Requirement, title: str | None) -> str:
    """Human-readable requirement shown to the learner."""
    match requirement:
        case LessonRequirement(min_score=min_score) | CourseRequirement(min_score=min_score):
            return f'Complete "{title or "Unknown"}" with {min_score}% score'
        case AchievementRequirement(achievement_type=key):
            return f'Earn "{title or key}" achievement'


@dataclass(frozen=True, slots=True)
class DependencyStatus:
    edge: Edge
    is_met: bool
    current_value: int | str

    @property
    def requirement(self) -> str:
        return requirement_text(self.edge.requirement, self.edge.title)

    def to_dict(self) -> dict:
        req = self.edge.requirement
        match req:
            case LessonRequirement(lesson_id=target, min_score=min_score):
                dep_type, target, min_score = "lesson", str(target), min_score
            case CourseRequirement(course_id=target, min_score=min_score):
                dep_type, target, min_score = "course", str(target), min_score
            case AchievementRequirement(achievement_type=target):
                dep_type, min_score = "achievement", 0
        return {
            "id": str(self.edge.id) if self.edge.id else None,
            "type": dep_type,
            "target": target,
            "title": self.edge.title,
            "min_score": min_score,
            "is_met": self.is_met,
            "current_value": self.current_value,
            "requirement": self.requirement,
        }


def evaluate(requirement: Requirement, state: UserState) -> tuple[bool, int | str]:
    """Check one requirement. Returns (is_met, current_value)."""
    match requirement:
        case LessonRequirement(lesson_id=lesson_id, min_score=min_score):
            progress = state.lessons.get(lesson_id)
            if progress is None:
                return False, 0
            return progress.completed and progress.score >= min_score, progress.score
        case CourseRequirement(course_id=course_id, min_score=min_score):
            # No completed lessons counts as a best score of 0
            best = state.course_best.get(course_id, 0)
            return best >= min_score, best
        case AchievementRequirement(achievement_type=key):
            earned = key in state.achievements
            return earned, "Earned" if earned else "Not Earned"


@dataclass(slots=True)
class Resolution:
    statuses: list[DependencyStatus] = field(default_factory=list)

    @property
    def met(self) -> list[DependencyStatus]:
        return [s for s in self.statuses if s.is_met]

    @property
    def unmet(self) -> list[DependencyStatus]:
        return [s for s in self.statuses if not s.is_met]

    @property
    def all_met(self) -> bool:
        return all(s.is_met for s in self.statuses)

    @property
    def first_unmet(self) -> DependencyStatus | None:
        return next((s for s in self.statuses if not s.is_met), None)

    def to_dict(self) -> dict:
        met = self.met
        unmet = self.unmet
        return {
            "all_met": not unmet,
            "met": [s.to_dict() for s in met],
            "unmet": [s.to_dict() for s in unmet],
            "total_dependencies": len(self.statuses),
            "met_count": len(met),
            "unmet_count": len(unmet),
        }


def resolve(edges: Iterable[Edge], state: UserState) -> Resolution:
    """Evaluate every edge against the snapshot, keeping edge order."""
    statuses = []
    for edge in edges:
        is_met, current_value = evaluate(edge.requirement, state)
        statuses.append(DependencyStatus(edge, is_met, current_value))
    return Resolution(statuses)


def is_accessible(resolution: Resolution, completed: bool = False, optional: bool = False) -> bool:
    """Accessible when every prerequisite is met, or it is already done, or optional."""
    return resolution.all_met or completed or optional


def find_cycle(
    edges: Iterable[tuple[UUID, UUID]],
    subject_id: UUID,
    required_id: UUID,
) -> list[UUID] | None:
    """Path that would close a cycle if ``subject_id`` started requiring ``required_id``.

    ``edges`` are existing (subject, required) pairs of the same kind. Returns
    the path from ``required_id`` back to ``subject_id``, or None.
    """
    if subject_id == required_id:
        return [subject_id]

    graph: dict[UUID, list[UUID]] = defaultdict(list)
    for subject, required in edges:
        graph[subject].append(required)

    stack: list[tuple[UUID, list[UUID]]] = [(required_id, [required_id])]
    seen: set[UUID] = set()
    while stack:
        node, path = stack.pop()
        if node == subject_id:
            return path
        if node in seen:
            continue
        seen.add(node)
        for nxt in graph.get(node, ()):
            stack.append((nxt, [*path, nxt]))
    return None


# =============================================================================
# Loading
# =============================================================================

class DependencyResolver:
    """Loads edges and learner state from the store and resolves them."""

    __slots__ = ("_db",)

    def __init__(self, db: AsyncSession):
        self._db = db

    async def load_user_state(self, user_id: UUID) -> UserState:
        """One query per table: progress, per-course best score, achievements."""
        rows = await self._db.execute(
            select(UserProgress.lesson_id, UserProgress.score, UserProgress.completed)
            .where(UserProgress.user_id == user_id)
        )
        lessons = {
            lesson_id: LessonState(score=score or 0, completed=bool(completed))
            for lesson_id, score, completed in rows.all()
        }

        best_rows = await self._db.execute(
            select(UserProgress.course_id, func.max(UserProgress.score))
            .where(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
            .group_by(UserProgress.course_id)
        )
        course_best = {course_id: best or 0 for course_id, best in best_rows.all()}

        earned = await self._db.execute(
            select(UserAchievement.achievement_type).where(UserAchievement.user_id == user_id)
        )
        return UserState(
            lessons=lessons,
            course_best=course_best,
            achievements=frozenset(earned.scalars().all()),
        )

    async def load_edges(
        self,
        subject_type: SubjectType,
        subject_ids: Sequence[UUID],
    ) -> dict[UUID, list[Edge]]:
        """Edges for many subjects at once, in authoring order, titles attached."""
        if not subject_ids:
            return {}

        result = await self._db.execute(
            select(Dependency)
            .where(
                Dependency.subject_type == subject_type.value,
                Dependency.subject_id.in_(list(subject_ids)),
            )
            .order_by(Dependency.created_at, Dependency.id)
        )
        rows = result.scalars().all()

        requirements = [(row, requirement_from_row(row)) for row in rows]
        titles = await self._titles(req for _, req in requirements)

        edges: dict[UUID, list[Edge]] = {sid: [] for sid in subject_ids}
        for row, req in requirements:
            edges[row.subject_id].append(Edge(
                id=row.id,
                subject_type=row.subject_type,
                subject_id=row.subject_id,
                requirement=req,
                title=titles.get(_target_key(req)),
            ))
        return edges

    async def _titles(self, requirements: Iterable[Requirement]) -> dict[tuple[str, object], str]:
        lesson_ids, course_ids, keys = set(), set(), set()
        for req in requirements:
            match req:
                case LessonRequirement(lesson_id=lid):
                    lesson_ids.add(lid)
                case CourseRequirement(course_id=cid):
                    course_ids.add(cid)
                case AchievementRequirement(achievement_type=key):
                    keys.add(key)

        titles: dict[tuple[str, object], str] = {}
        if lesson_ids:
            rows = await self._db.execute(select(Lesson.id, Lesson.title).where(Lesson.id.in_(lesson_ids)))
            titles.update({("lesson", i): t for i, t in rows.all()})
        if course_ids:
            rows = await self._db.execute(select(Course.id, Course.title).where(Course.id.in_(course_ids)))
            titles.update({("course", i): t for i, t in rows.all()})
        if keys:
            rows = await self._db.execute(
                select(AchievementType.key, AchievementType.title).where(AchievementType.key.in_(keys))
            )
            titles.update({("achievement", k): t for k, t in rows.all()})
        return titles

    async def check(
        self,
        subject_type: SubjectType,
        subject_id: UUID,
        user_id: UUID,
        state: UserState | None = None,
    ) -> Resolution:
        edges = (await self.load_edges(subject_type, [subject_id]))[subject_id]
        if state is None:
            state = await self.load_user_state(user_id)
        resolution = resolve(edges, state)
        log.debug(
            "dependencies_checked",
            subject_type=subject_type.value,
            subject_id=str(subject_id),
            user_id=str(user_id),
            total=len(resolution.statuses),
            unmet=len(resolution.unmet),
        )
        return resolution

    async def check_lesson(self, lesson_id: UUID, user_id: UUID, state: UserState | None = None) -> Resolution:
        return await self.check(SubjectType.LESSON, lesson_id, user_id, state)

    async def check_course(self, course_id: UUID, user_id: UUID, state: UserState | None = None) -> Resolution:
        return await self.check(SubjectType.COURSE, course_id, user_id, state)

    async def same_kind_edges(self, kind: SubjectType) -> list[tuple[UUID, UUID]]:
        """All lesson→lesson or course→course pairs, for cycle checks."""
        rows = await self._db.execute(
            select(Dependency.subject_id, Dependency.required_id).where(
                Dependency.subject_type == kind.value,
                Dependency.dependency_type == kind.value,
            )
        )
        return [(s, r) for s, r in rows.all()]


def _target_key(req: Requirement) -> tuple[str, object]:
    match req:
        case LessonRequirement(lesson_id=lid):
            return ("lesson", lid)
        case CourseRequirement(course_id=cid):
            return ("course", cid)
        case AchievementRequirement(achievement_type=key):
            return ("achievement", key)
