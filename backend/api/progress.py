"""Progress API

Learner dashboard, per-course progress rows and free-form code runs.
"""
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.lessons import get_code_executor
from core.database import fetch_one, get_db
from core.errors import raise_result
from core.security import get_current_user_id
from engines.execution import CodeExecutor
from engines.views import LearnerViews
from models.course import CodingLanguage, Course

router = APIRouter()


class RunCodeRequest(BaseModel):
    code: str
    language: CodingLanguage = CodingLanguage.PYTHON


@router.get("")
async def get_dashboard(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Stats, points, recent progress, latest achievements and recommendations."""
    return raise_result(await LearnerViews(db).dashboard(user_id))


@router.get("/courses/{course_id}")
async def get_course_progress_rows(
    course_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    raise_result(await fetch_one(db, Course, course_id, "Course"))
    return {"progress": await LearnerViews(db).course_progress_rows(user_id, course_id)}


@router.post("/run-code")
async def run_code(
    data: RunCodeRequest,
    user_id: UUID = Depends(get_current_user_id),
    executor: CodeExecutor = Depends(get_code_executor),
    db: AsyncSession = Depends(get_db),
):
    """Run code outside a lesson; nothing is graded."""
    result = raise_result(await LearnerViews(db, executor).run_code(user_id, data.code, data.language.value))
    await db.commit()
    return result
