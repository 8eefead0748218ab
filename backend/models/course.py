"""Course content and the prerequisite graph.

Course → Lesson, ordered by ``order_index``. ``Dependency`` rows are edges
from a lesson or course to what it requires: another lesson, another course,
or an achievement.
"""
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column, String, DateTime, Text, ForeignKey, Integer, Boolean, Index, CheckConstraint,
)
from sqlalchemy.orm import relationship

from core.clock import utcnow
from core.database import Base, GUID


class AgeGroup(str, Enum):
    YOUNG = "4-7"
    MIDDLE = "8-12"
    TEEN = "13+"


class CodingLanguage(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"


class SubjectType(str, Enum):
    LESSON = "lesson"
    COURSE = "course"


class DependencyType(str, Enum):
    LESSON = "lesson"
    COURSE = "course"
    ACHIEVEMENT = "achievement"


class Course(Base):
    __tablename__ = "courses"
    __table_args__ = (
        Index("ix_courses_age_group", "age_group"),
        CheckConstraint("difficulty_level BETWEEN 1 AND 5", name="ck_courses_difficulty"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    language_target = Column(String(50), nullable=False)  # Spoken language the course teaches in
    coding_language = Column(String(20), nullable=False, default=CodingLanguage.PYTHON.value)
    age_group = Column(String(10), nullable=False)
    difficulty_level = Column(Integer, nullable=False, default=1)
    thumbnail_url = Column(String(500))
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)

    lessons = relationship("Lesson", back_populates="course", cascade="all, delete-orphan", order_by="Lesson.order_index")


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        Index("ix_lessons_course_order", "course_id", "order_index", unique=True),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    course_id = Column(GUID, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    instructions = Column(Text)
    order_index = Column(Integer, nullable=False)
    coding_challenge = Column(Text)
    expected_output = Column(Text)  # None: any successful submission passes
    is_optional = Column(Boolean, nullable=False, default=False)
    estimated_duration = Column(Integer, default=10)  # minutes
    created_at = Column(DateTime, default=utcnow)

    course = relationship("Course", back_populates="lessons")


class Dependency(Base):
    """Prerequisite edge.

    Exactly one of ``required_id`` / ``required_achievement_type`` is set,
    matching ``dependency_type``. ``required_id`` has no foreign key because
    it points at either table; an id that no longer resolves is simply unmet.
    """
    __tablename__ = "dependencies"
    __table_args__ = (
        Index("ix_dependencies_subject", "subject_type", "subject_id"),
        CheckConstraint(
            "(dependency_type IN ('lesson', 'course') AND required_id IS NOT NULL "
            "AND required_achievement_type IS NULL) OR "
            "(dependency_type = 'achievement' AND required_achievement_type IS NOT NULL "
            "AND required_id IS NULL)",
            name="ck_dependencies_target",
        ),
        CheckConstraint("min_score BETWEEN 0 AND 100", name="ck_dependencies_min_score"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    subject_type = Column(String(10), nullable=False)
    subject_id = Column(GUID, nullable=False)
    dependency_type = Column(String(20), nullable=False)
    required_id = Column(GUID)
    required_achievement_type = Column(String(50))
    min_score = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow)
