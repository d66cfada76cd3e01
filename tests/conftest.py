from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from lms.main import app
from lms.models.catalog import Course, Material, Student, Topic
from lms.repos.progress_store import (
    InMemoryProgressDatabase,
    ProgressDatabase,
)
from lms.services import token_service
from lms.services.cache import cache_service
from lms.services.progress_service import progress_db
from lms.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import lms` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture(autouse=True)
def reset_progress_db() -> None:
    """Clear the shared in-memory progress tables between tests."""
    if isinstance(progress_db, InMemoryProgressDatabase):
        progress_db.reset()


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def db() -> InMemoryProgressDatabase:
    """A private database, isolated from the app singleton."""
    return InMemoryProgressDatabase()


def mint_token(
    sub: str = "00000000-0000-0000-0000-0000000000ff",
    roles: list[str] | None = None,
) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=sub, roles=roles)


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class FakeClock:
    """Deterministic clock: returns ``now`` and advances by ``step`` per call."""

    def __init__(self, start: int = 1_700_000_000, step: int = 0) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value


# ---------------------------------------------------------------------------
# Catalog helpers
# ---------------------------------------------------------------------------


@dataclass
class SampleCourse:
    course: Course
    topics: list[Topic] = field(default_factory=list)
    materials: dict[UUID, list[Material]] = field(default_factory=dict)

    def materials_of(self, index: int) -> list[Material]:
        return self.materials[self.topics[index].id]


async def add_student(database: ProgressDatabase, email: str) -> Student:
    student = Student.new(email=email)
    async with database.transaction() as store:
        await store.add_student(student)
    return student


async def add_course(
    database: ProgressDatabase,
    materials_per_topic: list[int],
    title: str = "Sample Course",
) -> SampleCourse:
    """Create a course whose topic i holds materials_per_topic[i] materials."""
    sample = SampleCourse(course=Course.new(title=title))
    async with database.transaction() as store:
        await store.add_course(sample.course)
        for position, count in enumerate(materials_per_topic, start=1):
            topic = Topic.new(
                course_id=sample.course.id, position=position, title=f"Topic {position}"
            )
            await store.add_topic(topic)
            sample.topics.append(topic)
            sample.materials[topic.id] = []
            for m_position in range(1, count + 1):
                material = Material.new(
                    topic_id=topic.id, position=m_position, title=f"Material {m_position}"
                )
                await store.add_material(material)
                sample.materials[topic.id].append(material)
    return sample


def run(coro):
    return asyncio.run(coro)
