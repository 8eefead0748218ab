#!/usr/bin/env python3
"""Seed the demo catalogue.

Reads data/content/catalog.yaml and populates users, courses, lessons and
prerequisite edges, plus the achievement catalog. Existing courses,
lessons and dependencies are replaced; users are only added if missing.

Run with: python3 -m scripts.seed_curriculum
"""
import asyncio
from pathlib import Path
from uuid import uuid4

import yaml
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import get_db_session, engine, Base
from engines.achievements import seed_achievement_types
from models.course import Course, Dependency, DependencyType, Lesson, SubjectType
from models.user import User


CATALOG_FILE = Path(__file__).parent.parent.parent / "data" / "content" / "catalog.yaml"

COURSE_FIELDS = ("title", "description", "language_target", "coding_language", "age_group",
                 "difficulty_level", "thumbnail_url", "order_index")
LESSON_FIELDS = ("title", "description", "instructions", "order_index", "coding_challenge",
                 "expected_output", "is_optional", "estimated_duration")


def load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with open(path) as f:
        return yaml.safe_load(f) or {}


async def clear_catalog(session: AsyncSession):
    """Clear existing courses, lessons and dependencies."""
    await session.execute(delete(Dependency))
    await session.execute(delete(Lesson))
    await session.execute(delete(Course))
    await session.flush()
    print("Cleared existing catalogue")


async def create_users(session: AsyncSession, users: list[dict]):
    by_email = {}
    for data in users:
        existing = await session.scalar(select(User).where(User.email == data["email"]))
        if existing is None:
            parent = by_email.get(data.get("parent"))
            existing = User(
                id=uuid4(),
                email=data["email"],
                username=data["username"],
                role=data.get("role", "student"),
                age=data.get("age"),
                parent_id=parent.id if parent else None,
            )
            session.add(existing)
            await session.flush()
            print(f"User: {existing.username} ({existing.role})")
        by_email[existing.email] = existing


def _edge(subject_type: SubjectType, subject_id, requirement: dict, ids: dict) -> Dependency:
    if "achievement" in requirement:
        return Dependency(
            subject_type=subject_type.value,
            subject_id=subject_id,
            dependency_type=DependencyType.ACHIEVEMENT.value,
            required_achievement_type=requirement["achievement"],
            min_score=0,
        )
    kind = DependencyType.LESSON if "lesson" in requirement else DependencyType.COURSE
    return Dependency(
        subject_type=subject_type.value,
        subject_id=subject_id,
        dependency_type=kind.value,
        required_id=ids[(kind.value, requirement[kind.value])],
        min_score=requirement.get("min_score", 0),
    )


async def create_catalog(session: AsyncSession, courses: list[dict]):
    """Create courses and lessons, then wire prerequisites by key."""
    ids = {}
    pending: list[tuple[SubjectType, str, list[dict]]] = []

    for course_data in courses:
        course = Course(id=uuid4(), **{k: course_data[k] for k in COURSE_FIELDS if k in course_data})
        session.add(course)
        ids[("course", course_data["key"])] = course.id
        pending.append((SubjectType.COURSE, course_data["key"], course_data.get("requires", [])))
        print(f"Course: {course.title}")

        for lesson_data in course_data.get("lessons", []):
            lesson = Lesson(
                id=uuid4(),
                course_id=course.id,
                **{k: lesson_data[k] for k in LESSON_FIELDS if k in lesson_data},
            )
            session.add(lesson)
            ids[("lesson", lesson_data["key"])] = lesson.id
            pending.append((SubjectType.LESSON, lesson_data["key"], lesson_data.get("requires", [])))
            print(f"  Lesson: {lesson.title}")

    await session.flush()

    count = 0
    for subject_type, key, requirements in pending:
        subject_id = ids[(subject_type.value, key)]
        for requirement in requirements:
            session.add(_edge(subject_type, subject_id, requirement, ids))
            count += 1
    await session.flush()
    print(f"Dependencies: {count}")


async def main():
    """Run the catalogue seeder."""
    print("Creating tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    data = load_yaml(CATALOG_FILE)

    print("\nSeeding achievement catalog...")
    async with get_db_session() as session:
        await seed_achievement_types(session)

    print("\nSeeding catalogue from file system...")
    async with get_db_session() as session:
        await create_users(session, data.get("users", []))
        await clear_catalog(session)
        await create_catalog(session, data.get("courses", []))
        await session.commit()
        print("\n✓ Catalogue seeding complete!")


if __name__ == "__main__":
    asyncio.run(main())
