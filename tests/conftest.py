"""
Pytest fixtures for CodeSprout tests.

Every test gets a fresh in-memory SQLite database with the achievement
catalog seeded. Factories commit immediately so rows are visible to
request-scoped sessions opened by the API client.
"""

import os
import uuid
from datetime import datetime
from itertools import count

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOCAL_TIMEZONE", "UTC")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.database import Base, get_db
from core.errors import Ok, execution_failed
from engines.achievements import seed_achievement_types
from engines.execution import ExecutionResult
from models.course import Course, Dependency, Lesson
from models.user import User


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Wednesday, after the early-bird cutoff
WEDNESDAY_10AM = datetime(2024, 3, 13, 10, 0)


class FakeExecutor:
    """Execution collaborator returning canned output."""

    def __init__(self, output: str = "", error: str | None = None):
        self.output = output
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def execute(self, code: str, language: str):
        self.calls.append((code, language))
        if self.error is not None:
            return execution_failed(self.error, language, origin="tests")
        return Ok(ExecutionResult(success=True, output=self.output))


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    """Create a test database session with the achievement catalog seeded."""
    async with session_factory() as session:
        await seed_achievement_types(session)
        yield session
        await session.rollback()


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def make_executor():
    return FakeExecutor


@pytest_asyncio.fixture
async def client(session_factory, db_session, fake_executor):
    """HTTP client against the app with the test database and executor."""
    from api.lessons import get_code_executor
    from main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_code_executor] = lambda: fake_executor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Factories
# =============================================================================

_seq = count(1)


@pytest.fixture
def make_user(db_session):
    async def _make(**overrides) -> User:
        n = next(_seq)
        fields = {
            "id": uuid.uuid4(),
            "email": f"learner{n}@example.com",
            "username": f"learner{n}",
            "role": "student",
            "age": 9,
        }
        fields.update(overrides)
        user = User(**fields)
        db_session.add(user)
        await db_session.commit()
        return user
    return _make


@pytest.fixture
def make_course(db_session):
    async def _make(**overrides) -> Course:
        n = next(_seq)
        fields = {
            "id": uuid.uuid4(),
            "title": f"Course {n}",
            "language_target": "english",
            "coding_language": "python",
            "age_group": "8-12",
            "difficulty_level": 1,
            "order_index": n,
        }
        fields.update(overrides)
        course = Course(**fields)
        db_session.add(course)
        await db_session.commit()
        return course
    return _make


@pytest.fixture
def make_lesson(db_session):
    async def _make(course: Course, order_index: int, **overrides) -> Lesson:
        fields = {
            "id": uuid.uuid4(),
            "course_id": course.id,
            "title": f"{course.title} / Lesson {order_index}",
            "order_index": order_index,
            "is_optional": False,
        }
        fields.update(overrides)
        lesson = Lesson(**fields)
        db_session.add(lesson)
        await db_session.commit()
        return lesson
    return _make


@pytest.fixture
def make_dependency(db_session):
    async def _make(
        subject,
        *,
        lesson: Lesson | None = None,
        course: Course | None = None,
        achievement: str | None = None,
        min_score: int = 0,
    ) -> Dependency:
        if achievement is not None:
            dependency_type, required_id = "achievement", None
        elif lesson is not None:
            dependency_type, required_id = "lesson", lesson.id
        else:
            dependency_type, required_id = "course", course.id
        dependency = Dependency(
            id=uuid.uuid4(),
            subject_type="lesson" if isinstance(subject, Lesson) else "course",
            subject_id=subject.id,
            dependency_type=dependency_type,
            required_id=required_id,
            required_achievement_type=achievement,
            min_score=min_score,
        )
        db_session.add(dependency)
        await db_session.commit()
        return dependency
    return _make
