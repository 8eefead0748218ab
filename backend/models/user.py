"""User accounts.

Credentials live with the upstream identity provider; this table only
keeps what progression needs (role, age for recommendations, parent link).
"""
from enum import Enum
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Index

from core.clock import utcnow
from core.database import Base, GUID


class UserRole(str, Enum):
    STUDENT = "student"
    PARENT = "parent"
    TEACHER = "teacher"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_email", "email", unique=True),
        Index("ix_users_parent", "parent_id"),
    )

    id = Column(GUID, primary_key=True, default=uuid4)
    email = Column(String(255), nullable=False)
    username = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default=UserRole.STUDENT.value)
    age = Column(Integer)
    parent_id = Column(GUID, ForeignKey("users.id", ondelete="SET NULL"))  # Weak link, may dangle after deletes
    created_at = Column(DateTime, default=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    @property
    def can_author(self) -> bool:
        return self.role in (UserRole.TEACHER.value, UserRole.ADMIN.value)
