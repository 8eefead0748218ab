"""Achievements and points."""
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Integer, Index

from core.clock import utcnow
from core.database import Base, GUID


class AchievementType(Base):
    """Static catalog entry, seeded at startup."""
    __tablename__ = "achievement_types"

    key = Column(String(50), primary_key=True)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    icon_url = Column(String(500))
    points = Column(Integer, nullable=False, default=10)
    category = Column(String(30), nullable=False, default="general")  # progress, skill, consistency, exploration


class UserAchievement(Base):
    """Insert-only: at most one row per (user, achievement_type)."""
    __tablename__ = "user_achievements"
    __table_args__ = (
        Index("ix_user_achievements_user_type", "user_id", "achievement_type", unique=True),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    achievement_type = Column(String(50), ForeignKey("achievement_types.key"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    icon_url = Column(String(500))
    points_earned = Column(Integer, nullable=False, default=0)
    earned_at = Column(DateTime, default=utcnow)


class UserPoints(Base):
    """Running points total. Level columns are derived from total_points."""
    __tablename__ = "user_points"
    __table_args__ = (
        Index("ix_user_points_user", "user_id", unique=True),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    total_points = Column(Integer, nullable=False, default=0)
    current_level = Column(Integer, nullable=False, default=1)
    level_title = Column(String(50), nullable=False, default="Beginner Coder")
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
