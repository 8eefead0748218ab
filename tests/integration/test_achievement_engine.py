"""
Integration tests for awarding achievements and keeping points.
"""

from sqlalchemy import func, select

from core.errors import ErrorCode
from engines.achievements import AchievementEngine, level_for
from models.achievement import UserAchievement, UserPoints


async def stored_points(db_session, user_id) -> UserPoints:
    return await db_session.scalar(
        select(UserPoints).where(UserPoints.user_id == user_id).execution_options(populate_existing=True)
    )


class TestAward:
    """Tests for AchievementEngine.award."""

    async def test_award_is_idempotent(self, db_session, make_user):
        """Awarding twice leaves one row and one points increment."""
        user = await make_user()
        engine = AchievementEngine(db_session)

        first = await engine.award(user.id, "first_lesson")
        second = await engine.award(user.id, "first_lesson")

        assert first.unwrap().achievement_type == "first_lesson"
        assert first.unwrap().points_earned == 10
        assert second.is_ok() and second.unwrap() is None
        rows = await db_session.scalar(
            select(func.count(UserAchievement.id)).where(UserAchievement.user_id == user.id)
        )
        assert rows == 1
        assert (await stored_points(db_session, user.id)).total_points == 10

    async def test_award_from_two_sessions(self, db_session, session_factory, make_user):
        """A second session awarding the same type hits the unique pair and adds no points."""
        user = await make_user()

        async with session_factory() as first_session, session_factory() as second_session:
            first = await AchievementEngine(first_session).award(user.id, "perfect_score")
            await first_session.commit()
            second = await AchievementEngine(second_session).award(user.id, "perfect_score")
            await second_session.commit()

        assert first.unwrap() is not None
        assert second.unwrap() is None
        rows = await db_session.scalar(
            select(func.count(UserAchievement.id)).where(
                UserAchievement.user_id == user.id,
                UserAchievement.achievement_type == "perfect_score",
            )
        )
        assert rows == 1
        assert (await stored_points(db_session, user.id)).total_points == 10

    async def test_points_monotonic_and_levels_match(self, db_session, make_user):
        """Totals only grow and the stored level always matches the thresholds."""
        user = await make_user()
        engine = AchievementEngine(db_session)
        seen = []

        for key in ("language_explorer", "coding_streak", "language_explorer", "fast_learner", "weekend_warrior", "first_lesson"):
            await engine.award(user.id, key)
            points = await stored_points(db_session, user.id)
            seen.append(points.total_points)
            assert (points.current_level, points.level_title) == level_for(points.total_points)

        assert seen == [50, 80, 80, 105, 125, 135]
        assert seen == sorted(seen)

    async def test_points_equal_sum_of_awards(self, db_session, make_user):
        """The running total equals the sum of earned points."""
        user = await make_user()
        engine = AchievementEngine(db_session)
        for key in ("first_lesson", "perfect_score", "speed_racer"):
            await engine.award(user.id, key)

        earned = await db_session.scalar(
            select(func.sum(UserAchievement.points_earned)).where(UserAchievement.user_id == user.id)
        )

        assert (await stored_points(db_session, user.id)).total_points == earned == 35

    async def test_unknown_type_is_configuration_error(self, db_session, make_user):
        """An achievement missing from the catalog is a fatal configuration error."""
        user = await make_user()

        result = await AchievementEngine(db_session).award(user.id, "moon_landing")

        assert result.is_err()
        assert result.unwrap_err().code == ErrorCode.E9004_CONFIGURATION_ERROR
        assert await stored_points(db_session, user.id) is None


class TestQueries:
    """Tests for achievement read operations."""

    async def test_points_default_for_new_learner(self, db_session, make_user):
        """A learner without awards is a level 1 Beginner Coder."""
        user = await make_user()

        points = await AchievementEngine(db_session).points(user.id)

        assert points == {"total_points": 0, "current_level": 1, "level_title": "Beginner Coder"}

    async def test_available_flags_earned(self, db_session, make_user):
        """The catalog listing marks what the learner owns."""
        user = await make_user()
        engine = AchievementEngine(db_session)
        await engine.award(user.id, "perfect_score")

        available = await engine.available(user.id)

        assert len(available) == 8
        earned = {a["type"] for a in available if a["earned"]}
        assert earned == {"perfect_score"}

    async def test_stats_and_leaderboard(self, db_session, make_user):
        """Stats count awards; the leaderboard orders by points."""
        leader = await make_user()
        other = await make_user()
        engine = AchievementEngine(db_session)
        await engine.award(leader.id, "language_explorer")
        await engine.award(other.id, "first_lesson")

        stats = await engine.stats(leader.id)
        board = await engine.leaderboard()

        assert stats["achievements"] == {"total_achievements": 1, "total_points": 50}
        assert stats["points"]["level_title"] == "Code Adventurer"
        assert [row["user_id"] for row in board] == [str(leader.id), str(other.id)]
