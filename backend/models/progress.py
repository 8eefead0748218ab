"""Per-lesson learner progress and the code execution log."""
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Integer, Boolean, Index

from core.clock import utcnow
from core.database import Base, GUID


class UserProgress(Base):
    """Track user progress per lesson: NotStarted (no row) → in progress → completed."""
    __tablename__ = "user_progress"
    __table_args__ = (
        Index("ix_user_progress_user_lesson", "user_id", "lesson_id", unique=True),
        Index("ix_user_progress_user_course", "user_id", "course_id"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lesson_id = Column(GUID, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False)
    course_id = Column(GUID, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False)  # Denormalized for course aggregates
    code_submission = Column(Text)
    score = Column(Integer, nullable=False, default=0)  # 0-100, last passing attempt
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime)
    time_spent = Column(Integer, nullable=False, default=0)  # seconds, accumulated
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class CodeExecution(Base):
    """Append-only log of validated submissions."""
    __tablename__ = "code_executions"
    __table_args__ = (
        Index("ix_code_executions_user_lesson", "user_id", "lesson_id"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    user_id = Column(GUID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    lesson_id = Column(GUID, ForeignKey("lessons.id", ondelete="SET NULL"))
    language = Column(String(20), nullable=False)
    code = Column(Text, nullable=False)
    output = Column(Text)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    executed_at = Column(DateTime, default=utcnow)
