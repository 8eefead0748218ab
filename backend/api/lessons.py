"""Lessons API

Lesson pages, code saves, graded submissions and lesson-level locks.
"""
from functools import lru_cache
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from api.courses import DependencyCreate, DependencyResponse
from core.database import get_db
from core.errors import raise_result
from core.logging import api_logger
from core.security import get_author_id, get_current_user_id
from engines.authoring import CourseAuthoring
from engines.execution import CodeExecutor, SubprocessExecutor
from engines.views import LearnerViews
from models.course import SubjectType

log = api_logger()

router = APIRouter()


@lru_cache
def get_code_executor() -> CodeExecutor:
    """Shared execution collaborator; overridden in tests."""
    return SubprocessExecutor()


class CodeSave(BaseModel):
    code: str = ""


class LessonSubmission(BaseModel):
    code: str
    time_spent: int = Field(0, alias="timeSpent", ge=0)  # seconds

    model_config = ConfigDict(populate_by_name=True)


@router.get("/{lesson_id}")
async def get_lesson(
    lesson_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Lesson with access flag, prerequisites, navigation and saved code."""
    return raise_result(await LearnerViews(db).lesson_view(lesson_id, user_id))


@router.get("/{lesson_id}/dependencies")
async def get_lesson_dependencies(
    lesson_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).lesson_dependencies(lesson_id, user_id))


@router.get("/{lesson_id}/navigation")
async def get_lesson_navigation(
    lesson_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).lesson_navigation(lesson_id, user_id))


@router.put("/{lesson_id}/code")
async def save_code(
    lesson_id: UUID,
    data: CodeSave,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Store work in progress without grading it."""
    progress = raise_result(await LearnerViews(db).save_code(lesson_id, user_id, data.code))
    await db.commit()
    return {"progress": progress}


@router.post("/{lesson_id}/submit")
async def submit_lesson(
    lesson_id: UUID,
    data: LessonSubmission,
    user_id: UUID = Depends(get_current_user_id),
    executor: CodeExecutor = Depends(get_code_executor),
    db: AsyncSession = Depends(get_db),
):
    """Grade the code, record progress and award achievements."""
    views = LearnerViews(db, executor)
    outcome = raise_result(await views.submit_lesson(lesson_id, user_id, data.code, data.time_spent))
    await db.commit()
    log.info(
        "lesson_submission_committed",
        lesson_id=str(lesson_id),
        valid=outcome["validation"]["valid"],
        new_achievements=len(outcome["new_achievements"]),
    )
    return outcome


@router.post("/{lesson_id}/unlock")
async def unlock_lesson(
    lesson_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return raise_result(await LearnerViews(db).check_unlock(SubjectType.LESSON, lesson_id, user_id))


@router.post("/{lesson_id}/dependencies", response_model=DependencyResponse, status_code=201)
async def add_lesson_dependency(
    lesson_id: UUID,
    data: DependencyCreate,
    author_id: UUID = Depends(get_author_id),
    db: AsyncSession = Depends(get_db),
):
    result = await CourseAuthoring(db).add_dependency(
        SubjectType.LESSON.value,
        lesson_id,
        data.dependency_type.value,
        required_id=data.required_id,
        required_achievement_type=data.required_achievement_type,
        min_score=data.min_score,
    )
    return raise_result(result)
