"""Course Authoring

Creates courses, lessons and prerequisite edges. Edges are validated on the
way in: the target must exist, a subject cannot require itself, and an edge
that would close a lesson→lesson or course→course cycle is refused. The
resolver never checks for cycles at read time.
"""
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import create_entity, fetch_one
from core.errors import AppError, Result, constraint_violation, duplicate_key, not_found, validation_error
from core.logging import engine_logger
from engines.dependencies import DependencyResolver, find_cycle
from models.achievement import AchievementType
from models.course import Course, Dependency, DependencyType, Lesson, SubjectType

log = engine_logger()


class CourseAuthoring:
    __slots__ = ("_db", "_resolver")

    def __init__(self, db: AsyncSession):
        self._db = db
        self._resolver = DependencyResolver(db)

    async def create_course(self, **fields) -> Result[Course, AppError]:
        result = await create_entity(self._db, Course(**fields))
        if result.is_ok():
            log.info("course_created", course_id=str(result.unwrap().id), title=fields.get("title"))
        return result

    async def create_lesson(self, course_id: UUID, **fields) -> Result[Lesson, AppError]:
        found = await fetch_one(self._db, Course, course_id, "Course")
        if found.is_err():
            return found

        order_index = fields.get("order_index")
        taken = await self._db.scalar(
            select(Lesson.id).where(Lesson.course_id == course_id, Lesson.order_index == order_index)
        )
        if taken is not None:
            return duplicate_key("Lesson", "order_index", str(order_index), origin="authoring.create_lesson")

        result = await create_entity(self._db, Lesson(course_id=course_id, **fields))
        if result.is_ok():
            log.info("lesson_created", course_id=str(course_id), lesson_id=str(result.unwrap().id))
        return result

    async def add_dependency(
        self,
        subject_type: str,
        subject_id: UUID,
        dependency_type: str,
        required_id: UUID | None = None,
        required_achievement_type: str | None = None,
        min_score: int = 0,
    ) -> Result[Dependency, AppError]:
        origin = "authoring.add_dependency"
        try:
            subject_kind = SubjectType(subject_type)
        except ValueError:
            return validation_error(f"Unknown subject type '{subject_type}'", field="subject_type", value=subject_type, origin=origin)
        try:
            kind = DependencyType(dependency_type)
        except ValueError:
            return validation_error(
                f"Unknown dependency type '{dependency_type}'",
                field="dependency_type",
                value=dependency_type,
                origin=origin,
            )
        if not 0 <= min_score <= 100:
            return validation_error("min_score must be between 0 and 100", field="min_score", value=str(min_score), origin=origin)

        subject_model = Lesson if subject_kind is SubjectType.LESSON else Course
        found = await fetch_one(self._db, subject_model, subject_id, subject_model.__name__)
        if found.is_err():
            return found

        if kind is DependencyType.ACHIEVEMENT:
            if not required_achievement_type or required_id is not None:
                return validation_error(
                    "Achievement dependencies need required_achievement_type and no required_id",
                    field="required_achievement_type",
                    origin=origin,
                )
            if await self._db.get(AchievementType, required_achievement_type) is None:
                return not_found("AchievementType", required_achievement_type, origin=origin)
            min_score = 0
        else:
            if required_id is None or required_achievement_type:
                return validation_error(
                    f"{kind.value.capitalize()} dependencies need required_id and no required_achievement_type",
                    field="required_id",
                    origin=origin,
                )
            target_model = Lesson if kind is DependencyType.LESSON else Course
            target = await fetch_one(self._db, target_model, required_id, target_model.__name__)
            if target.is_err():
                return target

            if kind.value == subject_kind.value:
                if required_id == subject_id:
                    return constraint_violation(
                        f"A {kind.value} cannot depend on itself",
                        origin=origin,
                        subject_id=str(subject_id),
                    )
                path = find_cycle(await self._resolver.same_kind_edges(subject_kind), subject_id, required_id)
                if path is not None:
                    log.info("dependency_cycle_rejected", subject_id=str(subject_id), required_id=str(required_id))
                    return constraint_violation(
                        "Dependency would create a cycle",
                        origin=origin,
                        cycle=[str(node) for node in path],
                    )

        result = await create_entity(self._db, Dependency(
            subject_type=subject_kind.value,
            subject_id=subject_id,
            dependency_type=kind.value,
            required_id=required_id,
            required_achievement_type=required_achievement_type if kind is DependencyType.ACHIEVEMENT else None,
            min_score=min_score,
        ))
        if result.is_ok():
            log.info(
                "dependency_added",
                subject_type=subject_kind.value,
                subject_id=str(subject_id),
                dependency_type=kind.value,
            )
        return result
