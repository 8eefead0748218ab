"""Achievements API"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db
from core.errors import raise_result
from core.logging import api_logger
from core.security import get_current_user_id
from engines.achievements import AchievementEngine, achievement_dict

log = api_logger()

router = APIRouter()


@router.get("")
async def list_achievements(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Achievements the learner has earned, newest first."""
    return {"achievements": await AchievementEngine(db).user_achievements(user_id)}


@router.get("/available")
async def list_available_achievements(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The whole catalog with an earned flag per entry."""
    return {"achievements": await AchievementEngine(db).available(user_id)}


@router.get("/stats")
async def achievement_stats(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await AchievementEngine(db).stats(user_id)


@router.get("/leaderboard")
async def leaderboard(limit: int = Query(10, ge=1, le=100), db: AsyncSession = Depends(get_db)):
    return {"leaderboard": await AchievementEngine(db).leaderboard(limit)}


@router.post("/check")
async def check_achievements(
    user_id: UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Re-run the history rules (streaks, languages, weekends)."""
    awarded = raise_result(await AchievementEngine(db).check_all(user_id))
    await db.commit()
    if awarded:
        log.info("achievements_check_awarded", user_id=str(user_id), count=len(awarded))
    return {"new_achievements": [achievement_dict(a) for a in awarded]}
