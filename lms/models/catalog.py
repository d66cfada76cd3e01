from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Student:
    id: UUID
    email: str
    name: str = ""
    courses_enrolled: int = 0  # denormalized: live enrollments for this student

    @staticmethod
    def new(*, email: str, name: str = "") -> Student:
        return Student(id=uuid4(), email=email.strip().lower(), name=name)


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    total_enrollments: int = 0  # denormalized: live enrollments for this course

    @staticmethod
    def new(*, title: str) -> Course:
        return Course(id=uuid4(), title=title)


@dataclass(frozen=True, slots=True)
class Topic:
    id: UUID
    course_id: UUID
    position: int
    title: str
    materials_count: int = 0  # denormalized: live materials under this topic

    @staticmethod
    def new(*, course_id: UUID, position: int, title: str) -> Topic:
        return Topic(id=uuid4(), course_id=course_id, position=position, title=title)


@dataclass(frozen=True, slots=True)
class Material:
    id: UUID
    topic_id: UUID
    position: int
    title: str
    type: str = "file"  # file|link
    url: str | None = None

    @staticmethod
    def new(
        *,
        topic_id: UUID,
        position: int,
        title: str,
        type: str = "file",
        url: str | None = None,
    ) -> Material:
        return Material(
            id=uuid4(),
            topic_id=topic_id,
            position=position,
            title=title,
            type=type,
            url=url,
        )
