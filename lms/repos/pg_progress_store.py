"""PostgreSQL implementation of ProgressStore / ProgressDatabase.

Concurrency primitives live in SQL rather than in Python:

- get-or-create is ``INSERT .. ON CONFLICT DO NOTHING`` followed by a
  read, so two transactions racing on the same key both end up with the
  one row instead of one of them failing.
- completion flags flip with ``UPDATE .. WHERE completed IS false``;
  only the transaction that actually flips the flag sees a row back.
- counters use ``SET n = GREATEST(n + delta, 0)``, a single atomic
  statement floored at zero.
- a transaction-scoped advisory lock serializes work on one
  (student, course) pair; different pairs never contend.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lms.db.tables import (
    CourseProgressRow,
    CourseRow,
    EnrollmentRow,
    MaterialProgressRow,
    MaterialRow,
    StudentRow,
    TopicProgressRow,
    TopicRow,
)
from lms.models.catalog import Course, Material, Student, Topic
from lms.models.enrollment import Enrollment
from lms.models.progress import CourseProgress, MaterialProgress, TopicProgress
from lms.repos.progress_store import GetOrCreate


class PgProgressDatabase:
    """Satisfies the ProgressDatabase Protocol: one AsyncSession per transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[PgProgressStore]:
        async with self._session_factory() as session:
            # session.begin() commits on normal exit and rolls back on error
            async with session.begin():
                yield PgProgressStore(session)


class PgProgressStore:
    """Satisfies the ProgressStore Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def _one_or_none(self, stmt):
        stmt = stmt.execution_options(populate_existing=True)
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def _update(self, stmt):
        stmt = stmt.execution_options(synchronize_session=False)
        return await self._session.execute(stmt)

    # --- catalog lookups ---

    async def get_student(self, student_id: UUID) -> Student | None:
        row = await self._one_or_none(select(StudentRow).where(StudentRow.id == student_id))
        return None if row is None else _row_to_student(row)

    async def get_student_by_email(self, email: str) -> Student | None:
        stmt = select(StudentRow).where(StudentRow.email == email.strip().lower())
        row = await self._one_or_none(stmt)
        return None if row is None else _row_to_student(row)

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._one_or_none(select(CourseRow).where(CourseRow.id == course_id))
        if row is None:
            return None
        return Course(id=row.id, title=row.title, total_enrollments=row.total_enrollments)

    async def get_topic(self, topic_id: UUID) -> Topic | None:
        row = await self._one_or_none(select(TopicRow).where(TopicRow.id == topic_id))
        if row is None:
            return None
        return Topic(
            id=row.id,
            course_id=row.course_id,
            position=row.position,
            title=row.title,
            materials_count=row.materials_count,
        )

    async def get_material(self, material_id: UUID) -> Material | None:
        stmt = select(MaterialRow).where(MaterialRow.id == material_id)
        row = await self._one_or_none(stmt)
        if row is None:
            return None
        return Material(
            id=row.id,
            topic_id=row.topic_id,
            position=row.position,
            title=row.title,
            type=row.type,
            url=row.url,
        )

    async def list_topic_ids(self, course_id: UUID) -> list[UUID]:
        stmt = (
            select(TopicRow.id)
            .where(TopicRow.course_id == course_id)
            .order_by(TopicRow.position, TopicRow.id)
        )
        return list((await self._session.execute(stmt)).scalars())

    async def list_material_ids(self, topic_id: UUID) -> list[UUID]:
        stmt = (
            select(MaterialRow.id)
            .where(MaterialRow.topic_id == topic_id)
            .order_by(MaterialRow.position, MaterialRow.id)
        )
        return list((await self._session.execute(stmt)).scalars())

    # --- catalog authoring ---

    async def add_student(self, student: Student) -> None:
        self._session.add(
            StudentRow(
                id=student.id,
                email=student.email,
                name=student.name,
                courses_enrolled=student.courses_enrolled,
            )
        )
        await self._session.flush()

    async def add_course(self, course: Course) -> None:
        self._session.add(
            CourseRow(
                id=course.id, title=course.title, total_enrollments=course.total_enrollments
            )
        )
        await self._session.flush()

    async def add_topic(self, topic: Topic) -> None:
        self._session.add(
            TopicRow(
                id=topic.id,
                course_id=topic.course_id,
                position=topic.position,
                title=topic.title,
                materials_count=0,
            )
        )
        await self._session.flush()

    async def add_material(self, material: Material) -> None:
        self._session.add(
            MaterialRow(
                id=material.id,
                topic_id=material.topic_id,
                position=material.position,
                title=material.title,
                type=material.type,
                url=material.url,
            )
        )
        await self._session.flush()
        await self._adjust_materials_count(material.topic_id, 1)

    async def remove_material(self, material_id: UUID) -> bool:
        stmt = (
            delete(MaterialRow)
            .where(MaterialRow.id == material_id)
            .returning(MaterialRow.topic_id)
        )
        topic_id = (await self._update(stmt)).scalar_one_or_none()
        if topic_id is None:
            return False
        await self._adjust_materials_count(topic_id, -1)
        return True

    async def _adjust_materials_count(self, topic_id: UUID, delta: int) -> None:
        stmt = (
            update(TopicRow)
            .where(TopicRow.id == topic_id)
            .values(materials_count=func.greatest(TopicRow.materials_count + delta, 0))
        )
        await self._update(stmt)

    # --- material progress ---

    async def get_or_create_material_progress(
        self, student_id: UUID, material_id: UUID
    ) -> GetOrCreate[MaterialProgress]:
        stmt = (
            pg_insert(MaterialProgressRow)
            .values(student_id=student_id, material_id=material_id, completed=False)
            .on_conflict_do_nothing(index_elements=["student_id", "material_id"])
            .returning(MaterialProgressRow.material_id)
        )
        created = (await self._session.execute(stmt)).first() is not None
        row = await self._one_or_none(
            select(MaterialProgressRow).where(
                MaterialProgressRow.student_id == student_id,
                MaterialProgressRow.material_id == material_id,
            )
        )
        return GetOrCreate(_row_to_material_progress(row), created=created)

    async def complete_material(
        self, student_id: UUID, material_id: UUID, completed_at: int
    ) -> MaterialProgress | None:
        stmt = (
            update(MaterialProgressRow)
            .where(
                MaterialProgressRow.student_id == student_id,
                MaterialProgressRow.material_id == material_id,
                MaterialProgressRow.completed.is_(False),
            )
            .values(completed=True, completed_at=completed_at)
            .returning(MaterialProgressRow.completed_at)
        )
        flipped = (await self._update(stmt)).first()
        if flipped is None:
            return None  # missing row, or another transaction completed it first
        return MaterialProgress(
            student_id=student_id,
            material_id=material_id,
            completed=True,
            completed_at=completed_at,
        )

    async def completed_material_ids(
        self, student_id: UUID, material_ids: list[UUID]
    ) -> set[UUID]:
        if not material_ids:
            return set()
        stmt = select(MaterialProgressRow.material_id).where(
            MaterialProgressRow.student_id == student_id,
            MaterialProgressRow.material_id.in_(material_ids),
            MaterialProgressRow.completed.is_(True),
        )
        return set((await self._session.execute(stmt)).scalars())

    async def list_material_progress(self, student_id: UUID) -> list[MaterialProgress]:
        stmt = select(MaterialProgressRow).where(
            MaterialProgressRow.student_id == student_id
        )
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_material_progress(r) for r in rows]

    # --- topic progress ---

    async def get_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> TopicProgress | None:
        row = await self._one_or_none(
            select(TopicProgressRow).where(
                TopicProgressRow.student_id == student_id,
                TopicProgressRow.topic_id == topic_id,
            )
        )
        return None if row is None else _row_to_topic_progress(row)

    async def get_or_create_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> GetOrCreate[TopicProgress]:
        stmt = (
            pg_insert(TopicProgressRow)
            .values(
                student_id=student_id,
                topic_id=topic_id,
                completed=False,
                time_spent_seconds=0,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "topic_id"])
            .returning(TopicProgressRow.topic_id)
        )
        created = (await self._session.execute(stmt)).first() is not None
        progress = await self.get_topic_progress(student_id, topic_id)
        if progress is None:
            raise KeyError("topic progress not found")
        return GetOrCreate(progress, created=created)

    async def complete_topic(
        self, student_id: UUID, topic_id: UUID, completed_at: int
    ) -> TopicProgress | None:
        stmt = (
            update(TopicProgressRow)
            .where(
                TopicProgressRow.student_id == student_id,
                TopicProgressRow.topic_id == topic_id,
                TopicProgressRow.completed.is_(False),
            )
            .values(completed=True, completed_at=completed_at, last_updated=completed_at)
            .returning(TopicProgressRow.topic_id)
        )
        if (await self._update(stmt)).first() is None:
            return None
        return await self.get_topic_progress(student_id, topic_id)

    async def add_topic_time(
        self, student_id: UUID, topic_id: UUID, seconds: int, now: int
    ) -> TopicProgress:
        stmt = (
            update(TopicProgressRow)
            .where(
                TopicProgressRow.student_id == student_id,
                TopicProgressRow.topic_id == topic_id,
            )
            .values(
                time_spent_seconds=TopicProgressRow.time_spent_seconds + seconds,
                last_updated=now,
            )
        )
        await self._update(stmt)
        progress = await self.get_topic_progress(student_id, topic_id)
        if progress is None:
            raise KeyError("topic progress not found")
        return progress

    async def completed_topic_ids(
        self, student_id: UUID, topic_ids: list[UUID]
    ) -> set[UUID]:
        if not topic_ids:
            return set()
        stmt = select(TopicProgressRow.topic_id).where(
            TopicProgressRow.student_id == student_id,
            TopicProgressRow.topic_id.in_(topic_ids),
            TopicProgressRow.completed.is_(True),
        )
        return set((await self._session.execute(stmt)).scalars())

    async def list_topic_progress(self, student_id: UUID) -> list[TopicProgress]:
        stmt = select(TopicProgressRow).where(TopicProgressRow.student_id == student_id)
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_topic_progress(r) for r in rows]

    # --- course progress ---

    async def get_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> CourseProgress | None:
        row = await self._one_or_none(
            select(CourseProgressRow).where(
                CourseProgressRow.student_id == student_id,
                CourseProgressRow.course_id == course_id,
            )
        )
        return None if row is None else _row_to_course_progress(row)

    async def get_or_create_course_progress(
        self, student_id: UUID, course_id: UUID, now: int
    ) -> GetOrCreate[CourseProgress]:
        stmt = (
            pg_insert(CourseProgressRow)
            .values(
                student_id=student_id,
                course_id=course_id,
                progress_percent=0,
                last_updated=now,
                skill_score=0,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
            .returning(CourseProgressRow.course_id)
        )
        created = (await self._session.execute(stmt)).first() is not None
        progress = await self.get_course_progress(student_id, course_id)
        if progress is None:
            raise KeyError("course progress not found")
        return GetOrCreate(progress, created=created)

    async def save_course_progress(self, progress: CourseProgress) -> None:
        values = {
            "progress_percent": progress.progress_percent,
            "last_updated": progress.last_updated,
            "last_topic_id": progress.last_topic_id,
            "skill_score": progress.skill_score,
        }
        stmt = (
            pg_insert(CourseProgressRow)
            .values(student_id=progress.student_id, course_id=progress.course_id, **values)
            .on_conflict_do_update(
                index_elements=["student_id", "course_id"], set_=values
            )
        )
        await self._session.execute(stmt)

    # --- enrollments ---

    async def get_enrollment(
        self, student_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        row = await self._one_or_none(
            select(EnrollmentRow).where(
                EnrollmentRow.student_id == student_id,
                EnrollmentRow.course_id == course_id,
            )
        )
        return None if row is None else _row_to_enrollment(row)

    async def add_enrollment(self, enrollment: Enrollment) -> bool:
        stmt = (
            pg_insert(EnrollmentRow)
            .values(
                id=enrollment.id,
                student_id=enrollment.student_id,
                course_id=enrollment.course_id,
                completion_percentage=enrollment.completion_percentage,
                is_completed=enrollment.is_completed,
                enrolled_at=enrollment.enrolled_at,
                last_accessed_at=enrollment.last_accessed_at,
                completed_at=enrollment.completed_at,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
            .returning(EnrollmentRow.id)
        )
        return (await self._session.execute(stmt)).first() is not None

    async def delete_enrollment(self, student_id: UUID, course_id: UUID) -> bool:
        stmt = (
            delete(EnrollmentRow)
            .where(
                EnrollmentRow.student_id == student_id,
                EnrollmentRow.course_id == course_id,
            )
            .returning(EnrollmentRow.id)
        )
        return (await self._update(stmt)).first() is not None

    async def save_enrollment(self, enrollment: Enrollment) -> None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.id == enrollment.id)
            .values(
                completion_percentage=enrollment.completion_percentage,
                is_completed=enrollment.is_completed,
                last_accessed_at=enrollment.last_accessed_at,
                completed_at=enrollment.completed_at,
            )
        )
        result = await self._update(stmt)
        if result.rowcount == 0:
            raise KeyError("enrollment not found")

    async def list_enrollments_for_student(self, student_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .order_by(EnrollmentRow.enrolled_at)
        )
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_enrollment(r) for r in rows]

    async def list_enrollments_for_course(self, course_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.course_id == course_id)
            .order_by(EnrollmentRow.enrolled_at)
        )
        rows = (await self._session.execute(stmt)).scalars()
        return [_row_to_enrollment(r) for r in rows]

    # --- counters ---

    async def adjust_course_enrollments(self, course_id: UUID, delta: int) -> int:
        stmt = (
            update(CourseRow)
            .where(CourseRow.id == course_id)
            .values(
                total_enrollments=func.greatest(CourseRow.total_enrollments + delta, 0)
            )
            .returning(CourseRow.total_enrollments)
        )
        value = (await self._update(stmt)).scalar_one_or_none()
        if value is None:
            raise KeyError("course not found")
        return value

    async def adjust_student_courses(self, student_id: UUID, delta: int) -> int:
        stmt = (
            update(StudentRow)
            .where(StudentRow.id == student_id)
            .values(
                courses_enrolled=func.greatest(StudentRow.courses_enrolled + delta, 0)
            )
            .returning(StudentRow.courses_enrolled)
        )
        value = (await self._update(stmt)).scalar_one_or_none()
        if value is None:
            raise KeyError("student not found")
        return value

    # --- locking ---

    async def lock_pair(self, student_id: UUID, course_id: UUID) -> None:
        # Released automatically at COMMIT / ROLLBACK.
        key = func.hashtextextended(f"{student_id}:{course_id}", 0)
        await self._session.execute(select(func.pg_advisory_xact_lock(key)))


def _row_to_student(row: StudentRow) -> Student:
    return Student(
        id=row.id,
        email=row.email,
        name=row.name or "",
        courses_enrolled=row.courses_enrolled,
    )


def _row_to_material_progress(row: MaterialProgressRow) -> MaterialProgress:
    return MaterialProgress(
        student_id=row.student_id,
        material_id=row.material_id,
        completed=row.completed,
        completed_at=row.completed_at,
    )


def _row_to_topic_progress(row: TopicProgressRow) -> TopicProgress:
    return TopicProgress(
        student_id=row.student_id,
        topic_id=row.topic_id,
        completed=row.completed,
        completed_at=row.completed_at,
        time_spent_seconds=row.time_spent_seconds,
        last_updated=row.last_updated,
    )


def _row_to_course_progress(row: CourseProgressRow) -> CourseProgress:
    return CourseProgress(
        student_id=row.student_id,
        course_id=row.course_id,
        progress_percent=row.progress_percent,
        last_updated=row.last_updated,
        last_topic_id=row.last_topic_id,
        skill_score=row.skill_score,
    )


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        enrolled_at=row.enrolled_at,
        last_accessed_at=row.last_accessed_at,
        completion_percentage=row.completion_percentage,
        is_completed=row.is_completed,
        completed_at=row.completed_at,
    )
