"""Courses API

Catalogue, learner course pages, course-level locks and authoring.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import fetch_one, get_db
from core.errors import raise_result
from core.logging import api_logger
from core.security import get_author_id, get_current_user_id
from engines.authoring import CourseAuthoring
from engines.catalog import CourseCatalogAggregator, CourseFilters
from engines.views import LearnerViews
from models.course import AgeGroup, CodingLanguage, Course, DependencyType, SubjectType

log = api_logger()

router = APIRouter()


class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    language_target: str = Field(..., min_length=1, max_length=50)
    coding_language: CodingLanguage = CodingLanguage.PYTHON
    age_group: AgeGroup
    difficulty_level: int = Field(1, ge=1, le=5)
    thumbnail_url: str | None = None
    order_index: int = 0


class CourseResponse(BaseModel):
    id: UUID
    title: str
    description: str | None
    language_target: str
    coding_language: str
    age_group: str
    difficulty_level: int
    thumbnail_url: str | None
    order_index: int

    model_config = ConfigDict(from_attributes=True)


class LessonCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    instructions: str | None = None
    order_index: int = Field(..., ge=0)
    coding_challenge: str | None = None
    expected_output: str | None = None
    is_optional: bool = False
    estimated_duration: int = Field(10, ge=1)


class LessonResponse(BaseModel):
    id: UUID
    course_id: UUID
    title: str
    order_index: int
    expected_output: str | None
    is_optional: bool

    model_config = ConfigDict(from_attributes=True)


class DependencyCreate(BaseModel):
    dependency_type: DependencyType
    required_id: UUID | None = None
    required_achievement_type: str | None = None
    min_score: int = Field(0, ge=0, le=100)


class DependencyResponse(BaseModel):
    id: UUID
    subject_type: str
    subject_id: UUID
    dependency_type: str
    required_id: UUID | None
    required_achievement_type: str | None
    min_score: int

    model_config = ConfigDict(from_attributes=True)


# =============================================================================
# Catalogue
# =============================================================================

@router.get("")
async def list_courses(
    age_group: AgeGroup | None = Query(None),
    language_target: str | None = Query(None),
    coding_language: CodingLanguage | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """All courses with lesson counts."""
    filters = CourseFilters(
        age_group=age_group.value if age_group else None,
        language_target=language_target,
        coding_language=coding_language.value if coding_language else None,
    )
    return {"courses": await CourseCatalogAggregator(db).list_courses(filters)}


@router.get("/available")
async def list_available_courses(
    age_group: AgeGroup | None = Query(None),
    language_target: str | None = Query(None),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Courses with lock state and progress, split into status buckets."""
    filters = CourseFilters(age_group=age_group.value if age_group else None, language_target=language_target)
    return await CourseCatalogAggregator(db).list_available(user_id, filters)


@router.get("/recommended")
async def recommended_courses(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return {"courses": await CourseCatalogAggregator(db).recommended(user_id)}


@router.post("", response_model=CourseResponse, status_code=201)
async def create_course(
    data: CourseCreate,
    author_id: UUID = Depends(get_author_id),
    db: AsyncSession = Depends(get_db),
):
    fields = data.model_dump()
    fields["coding_language"] = data.coding_language.value
    fields["age_group"] = data.age_group.value
    course = raise_result(await CourseAuthoring(db).create_course(**fields))
    log.info("course_authored", course_id=str(course.id), author_id=str(author_id))
    return course


# =============================================================================
# Learner course pages
# =============================================================================

@router.get("/{course_id}")
async def get_course(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Course with per-lesson access, course lock and progress."""
    return raise_result(await LearnerViews(db).course_view(course_id, user_id))


@router.get("/{course_id}/dependencies")
async def get_course_dependencies(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).course_dependencies(course_id, user_id))


@router.get("/{course_id}/progress")
async def get_course_progress(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Aggregate progress for one course."""
    raise_result(await fetch_one(db, Course, course_id, "Course"))
    progress = (await CourseCatalogAggregator(db).course_progress(user_id, [course_id]))[course_id]
    return {
        "course_id": str(course_id),
        **progress.to_dict(),
        "completion_percentage": progress.completion_percentage,
    }


@router.get("/{course_id}/lessons/progress")
async def get_course_lesson_progress(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).course_lesson_progress(course_id, user_id))


@router.get("/{course_id}/next")
async def get_next_lesson(
    course_id: UUID,
    current_lesson_id: UUID | None = Query(None),
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """First open, unfinished lesson after the current one."""
    return raise_result(await LearnerViews(db).next_lesson(course_id, user_id, current_lesson_id))


@router.post("/{course_id}/unlock")
async def unlock_course(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).check_unlock(SubjectType.COURSE, course_id, user_id))


# =============================================================================
# Authoring
# =============================================================================

@router.post("/{course_id}/lessons", response_model=LessonResponse, status_code=201)
async def create_lesson(
    course_id: UUID,
    data: LessonCreate,
    author_id: UUID = Depends(get_author_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await CourseAuthoring(db).create_lesson(course_id, **data.model_dump()))


@router.post("/{course_id}/dependencies", response_model=DependencyResponse, status_code=201)
async def add_course_dependency(
    course_id: UUID,
    data: DependencyCreate,
    author_id: UUID = Depends(get_author_id),
    db: AsyncSession = Depends(get_db),
):
    """Make the course require a lesson, another course or an achievement."""
    result = await CourseAuthoring(db).add_dependency(
        SubjectType.COURSE.value,
        course_id,
        data.dependency_type.value,
        required_id=data.required_id,
        required_achievement_type=data.required_achievement_type,
        min_score=data.min_score,
    )
    return raise_result(result)
