"""Achievement Engine

Awards achievements at most once per learner and keeps the points total.

- ``award`` relies on the (user_id, achievement_type) unique index: the
  insert is ``ON CONFLICT DO NOTHING`` and an ignored insert means the
  achievement was already awarded, including under concurrent submissions.
- ``user_points.total_points`` is incremented atomically in the same upsert
  and the level columns are recomputed from the new total in SQL using the
  same thresholds as ``level_for``.
- Trigger rules are pure functions over a completion history and the facts
  of the submission that just happened.
"""
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy import case, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.clock import local_zone, to_local, utcnow, window_start
from core.config import settings
from core.database import dialect_insert
from core.errors import AppError, Ok, Result, configuration_error
from core.logging import achievements_logger
from models.achievement import AchievementType, UserAchievement, UserPoints
from models.course import Course
from models.progress import UserProgress
from models.user import User

log = achievements_logger()


# =============================================================================
# Levels
# =============================================================================

# (minimum points, level, title), highest first
LEVEL_THRESHOLDS: tuple[tuple[int, int, str], ...] = (
    (200, 4, "Code Master"),
    (100, 3, "Code Explorer"),
    (50, 2, "Code Adventurer"),
)
BASE_LEVEL = (1, "Beginner Coder")


def level_for(total_points: int) -> tuple[int, str]:
    """Level number and title for a points total."""
    for minimum, level, title in LEVEL_THRESHOLDS:
        if total_points >= minimum:
            return level, title
    return BASE_LEVEL


def _level_case(total, want_title: bool = False):
    """SQL CASE mirroring ``level_for`` over a points expression."""
    whens = [
        (total >= minimum, literal(title if want_title else level))
        for minimum, level, title in LEVEL_THRESHOLDS
    ]
    return case(*whens, else_=literal(BASE_LEVEL[1] if want_title else BASE_LEVEL[0]))


# =============================================================================
# Catalog
# =============================================================================

@dataclass(frozen=True, slots=True)
class AchievementSpec:
    key: str
    title: str
    description: str
    points: int
    category: str
    icon_url: str | None = None


ACHIEVEMENT_CATALOG: tuple[AchievementSpec, ...] = (
    AchievementSpec("first_lesson", "First Lesson Completed!", "You completed your first coding lesson!", 10, "progress", "/icons/first-lesson.svg"),
    AchievementSpec("perfect_score", "Perfect Score!", "You got 100% on a lesson!", 10, "skill", "/icons/perfect-score.svg"),
    AchievementSpec("speed_racer", "Speed Racer", "You finished a lesson in under 5 minutes!", 15, "skill", "/icons/speed-racer.svg"),
    AchievementSpec("early_bird", "Early Bird", "You finished a lesson before 9 AM!", 15, "consistency", "/icons/early-bird.svg"),
    AchievementSpec("weekend_warrior", "Weekend Warrior", "You coded on both Saturday and Sunday!", 20, "consistency", "/icons/weekend-warrior.svg"),
    AchievementSpec("fast_learner", "Fast Learner!", "You completed 5 lessons!", 25, "progress", "/icons/fast-learner.svg"),
    AchievementSpec("coding_streak", "Coding Streak!", "You coded on 3 different days this week!", 30, "consistency", "/icons/coding-streak.svg"),
    AchievementSpec("language_explorer", "Language Explorer", "You completed lessons in 3 different languages!", 50, "exploration", "/icons/language-explorer.svg"),
)

SPEED_RACER_SECONDS = 300
EARLY_BIRD_HOUR = 9
STREAK_MIN_DAYS = 3
LANGUAGE_EXPLORER_MIN = 3
FAST_LEARNER_COUNT = 5
SATURDAY, SUNDAY = 5, 6


async def seed_achievement_types(session: AsyncSession) -> int:
    """Insert missing catalog entries; existing rows are left untouched."""
    stmt = dialect_insert(session, AchievementType).values([
        {
            "key": spec.key,
            "title": spec.title,
            "description": spec.description,
            "icon_url": spec.icon_url,
            "points": spec.points,
            "category": spec.category,
        }
        for spec in ACHIEVEMENT_CATALOG
    ]).on_conflict_do_nothing(index_elements=["key"])
    result = await session.execute(stmt)
    await session.commit()
    inserted = max(result.rowcount or 0, 0)
    log.info("achievement_types_seeded", inserted=inserted, catalog_size=len(ACHIEVEMENT_CATALOG))
    return inserted


# =============================================================================
# Rules
# =============================================================================

@dataclass(frozen=True, slots=True)
class SubmissionFacts:
    """What the rules need to know about the submission just recorded."""
    score: int
    time_spent: int
    completed_at: datetime  # naive UTC


@dataclass(frozen=True, slots=True)
class CompletionHistory:
    total_completed: int
    completion_times: tuple[datetime, ...]  # naive UTC, one per completed lesson
    languages: frozenset[str]


def qualifying_achievements(
    history: CompletionHistory,
    facts: SubmissionFacts | None,
    now: datetime,
    zone: ZoneInfo | None = None,
    streak_days: int | None = None,
) -> list[str]:
    """Keys whose rule holds. Awarding is idempotent, so re-qualifying is harmless."""
    zone = zone or local_zone()
    window_days = streak_days or settings.STREAK_WINDOW_DAYS
    keys: list[str] = []

    if facts is not None:
        if history.total_completed == 1:
            keys.append("first_lesson")
        if history.total_completed == FAST_LEARNER_COUNT:
            keys.append("fast_learner")
        if facts.score == 100:
            keys.append("perfect_score")
        if facts.time_spent < SPEED_RACER_SECONDS:
            keys.append("speed_racer")
        if to_local(facts.completed_at, zone).hour < EARLY_BIRD_HOUR:
            keys.append("early_bird")

    since = window_start(now, window_days, zone)
    streak = {to_local(t, zone).date() for t in history.completion_times if t >= since}
    if len(streak) >= STREAK_MIN_DAYS:
        keys.append("coding_streak")

    if len(history.languages) >= LANGUAGE_EXPLORER_MIN:
        keys.append("language_explorer")

    # Any Saturday ever plus any Sunday ever, not necessarily the same weekend
    weekdays = {to_local(t, zone).weekday() for t in history.completion_times}
    if SATURDAY in weekdays and SUNDAY in weekdays:
        keys.append("weekend_warrior")

    return keys


def current_streak(completion_times: Sequence[datetime], now: datetime, zone: ZoneInfo | None = None) -> int:
    """Consecutive local days with a completion, ending today or yesterday."""
    zone = zone or local_zone()
    days = {to_local(t, zone).date() for t in completion_times}
    cursor = to_local(now, zone).date()
    if cursor not in days:
        cursor -= timedelta(days=1)
    streak = 0
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


# =============================================================================
# Engine
# =============================================================================

class AchievementEngine:
    """Awards achievements and answers achievement/points queries."""

    __slots__ = ("_db",)

    def __init__(self, db: AsyncSession):
        self._db = db

    async def award(self, user_id: UUID, key: str) -> Result[UserAchievement | None, AppError]:
        """Award ``key`` to the learner.

        Returns Ok(achievement) when newly awarded, Ok(None) when the learner
        already had it, and Err for a key missing from the catalog.
        """
        achievement_type = await self._db.get(AchievementType, key)
        if achievement_type is None:
            log.error("achievement_type_missing", achievement_type=key)
            return configuration_error(
                f"achievement type '{key}' is not in the catalog",
                origin="achievements.award",
                achievement_type=key,
            )

        now = utcnow()
        insert = dialect_insert(self._db, UserAchievement).values(
            id=uuid4(),
            user_id=user_id,
            achievement_type=key,
            title=achievement_type.title,
            description=achievement_type.description,
            icon_url=achievement_type.icon_url,
            points_earned=achievement_type.points,
            earned_at=now,
        ).on_conflict_do_nothing(index_elements=["user_id", "achievement_type"])
        result = await self._db.execute(insert)
        if not result.rowcount:
            log.debug("achievement_already_awarded", user_id=str(user_id), achievement_type=key)
            return Ok(None)

        await self._add_points(user_id, achievement_type.points, now)

        awarded = await self._db.execute(
            select(UserAchievement).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_type == key,
            )
        )
        achievement = awarded.scalar_one()
        log.info(
            "achievement_awarded",
            user_id=str(user_id),
            achievement_type=key,
            points=achievement_type.points,
        )
        return Ok(achievement)

    async def _add_points(self, user_id: UUID, points: int, now: datetime) -> None:
        level, title = level_for(points)
        stmt = dialect_insert(self._db, UserPoints).values(
            id=uuid4(),
            user_id=user_id,
            total_points=points,
            current_level=level,
            level_title=title,
            updated_at=now,
        )
        new_total = UserPoints.total_points + stmt.excluded.total_points
        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "total_points": new_total,
                "current_level": _level_case(new_total),
                "level_title": _level_case(new_total, want_title=True),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self._db.execute(stmt)

    async def completion_history(self, user_id: UUID) -> CompletionHistory:
        times = await self._db.execute(
            select(UserProgress.completed_at).where(
                UserProgress.user_id == user_id,
                UserProgress.completed.is_(True),
                UserProgress.completed_at.is_not(None),
            )
        )
        completion_times = tuple(times.scalars().all())

        total = await self._db.scalar(
            select(func.count(UserProgress.id)).where(
                UserProgress.user_id == user_id,
                UserProgress.completed.is_(True),
            )
        )

        languages = await self._db.execute(
            select(Course.language_target)
            .distinct()
            .join(UserProgress, UserProgress.course_id == Course.id)
            .where(UserProgress.user_id == user_id, UserProgress.completed.is_(True))
        )
        return CompletionHistory(
            total_completed=total or 0,
            completion_times=completion_times,
            languages=frozenset(languages.scalars().all()),
        )

    async def evaluate(
        self,
        user_id: UUID,
        facts: SubmissionFacts | None = None,
        now: datetime | None = None,
    ) -> Result[list[UserAchievement], AppError]:
        """Run every rule and award what qualifies. Returns newly awarded rows."""
        now = now or utcnow()
        history = await self.completion_history(user_id)
        awarded: list[UserAchievement] = []

        for key in qualifying_achievements(history, facts, now):
            match await self.award(user_id, key):
                case Ok(None):
                    pass
                case Ok(achievement):
                    awarded.append(achievement)
                case err:
                    return err

        if awarded:
            log.info("achievements_evaluated", user_id=str(user_id), new=[a.achievement_type for a in awarded])
        return Ok(awarded)

    async def check_all(self, user_id: UUID, now: datetime | None = None) -> Result[list[UserAchievement], AppError]:
        """History-based rules only (streak, languages, weekends)."""
        return await self.evaluate(user_id, facts=None, now=now)

    async def points(self, user_id: UUID) -> dict:
        row = await self._db.scalar(
            select(UserPoints)
            .where(UserPoints.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        if row is None:
            level, title = BASE_LEVEL
            return {"total_points": 0, "current_level": level, "level_title": title}
        return {
            "total_points": row.total_points,
            "current_level": row.current_level,
            "level_title": row.level_title,
        }

    async def user_achievements(self, user_id: UUID, limit: int | None = None) -> list[dict]:
        query = (
            select(UserAchievement, AchievementType.category)
            .join(AchievementType, AchievementType.key == UserAchievement.achievement_type)
            .where(UserAchievement.user_id == user_id)
            .order_by(UserAchievement.earned_at.desc())
        )
        if limit:
            query = query.limit(limit)
        rows = await self._db.execute(query)
        return [achievement_dict(a, category) for a, category in rows.all()]

    async def available(self, user_id: UUID) -> list[dict]:
        """Whole catalog with an ``earned`` flag."""
        rows = await self._db.execute(
            select(AchievementType, UserAchievement.earned_at)
            .outerjoin(
                UserAchievement,
                (UserAchievement.achievement_type == AchievementType.key)
                & (UserAchievement.user_id == user_id),
            )
            .order_by(AchievementType.category, AchievementType.points.desc())
        )
        return [
            {
                "type": t.key,
                "title": t.title,
                "description": t.description,
                "icon_url": t.icon_url,
                "points": t.points,
                "category": t.category,
                "earned": earned_at is not None,
                "earned_at": earned_at.isoformat() if earned_at else None,
            }
            for t, earned_at in rows.all()
        ]

    async def stats(self, user_id: UUID) -> dict:
        totals = await self._db.execute(
            select(func.count(UserAchievement.id), func.coalesce(func.sum(UserAchievement.points_earned), 0))
            .where(UserAchievement.user_id == user_id)
        )
        count, total_points = totals.one()

        categories = await self._db.execute(
            select(AchievementType.category, func.count(UserAchievement.id))
            .outerjoin(
                UserAchievement,
                (UserAchievement.achievement_type == AchievementType.key)
                & (UserAchievement.user_id == user_id),
            )
            .group_by(AchievementType.category)
            .order_by(AchievementType.category)
        )
        return {
            "points": await self.points(user_id),
            "achievements": {"total_achievements": count, "total_points": total_points},
            "categories": [{"category": c, "count": n} for c, n in categories.all()],
        }

    async def leaderboard(self, limit: int = 10) -> list[dict]:
        counts = (
            select(UserAchievement.user_id, func.count(UserAchievement.id).label("achievement_count"))
            .group_by(UserAchievement.user_id)
            .subquery()
        )
        rows = await self._db.execute(
            select(UserPoints, User.username, func.coalesce(counts.c.achievement_count, 0))
            .join(User, User.id == UserPoints.user_id)
            .outerjoin(counts, counts.c.user_id == UserPoints.user_id)
            .order_by(UserPoints.total_points.desc())
            .limit(limit)
        )
        return [
            {
                "user_id": str(p.user_id),
                "username": username,
                "total_points": p.total_points,
                "current_level": p.current_level,
                "level_title": p.level_title,
                "achievement_count": n,
            }
            for p, username, n in rows.all()
        ]


def achievement_dict(achievement: UserAchievement, category: str | None = None) -> dict:
    return {
        "id": str(achievement.id),
        "type": achievement.achievement_type,
        "title": achievement.title,
        "description": achievement.description,
        "icon_url": achievement.icon_url,
        "points_earned": achievement.points_earned,
        "category": category,
        "earned_at": achievement.earned_at.isoformat() if achievement.earned_at else None,
    }
