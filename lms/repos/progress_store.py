"""Progress store: persistence for enrollments and the three progress levels.

A ProgressDatabase hands out one ProgressStore per transaction:

    async with database.transaction() as store:
        ...

Everything done through ``store`` commits together when the block exits
normally and is rolled back when it raises.  The aggregators only ever
receive a store, never the database, so a whole cascade
(material -> topic -> course) always lives inside one transaction.

Entities are referenced by id and fetched explicitly; nothing is lazily
loaded through an object graph.
"""

from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, replace
from typing import Generic, Protocol, TypeVar
from uuid import UUID

from lms.models.catalog import Course, Material, Student, Topic
from lms.models.enrollment import Enrollment
from lms.models.progress import CourseProgress, MaterialProgress, TopicProgress

T = TypeVar("T")


@dataclass(frozen=True)
class GetOrCreate(Generic[T]):
    """Tagged result of a get-or-create: ``created`` is True on first touch."""

    value: T
    created: bool


class ProgressStore(Protocol):
    # --- catalog lookups ---
    async def get_student(self, student_id: UUID) -> Student | None: ...
    async def get_student_by_email(self, email: str) -> Student | None: ...
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_topic(self, topic_id: UUID) -> Topic | None: ...
    async def get_material(self, material_id: UUID) -> Material | None: ...
    async def list_topic_ids(self, course_id: UUID) -> list[UUID]: ...
    async def list_material_ids(self, topic_id: UUID) -> list[UUID]: ...

    # --- catalog authoring (counts only) ---
    async def add_student(self, student: Student) -> None: ...
    async def add_course(self, course: Course) -> None: ...
    async def add_topic(self, topic: Topic) -> None: ...
    async def add_material(self, material: Material) -> None: ...
    async def remove_material(self, material_id: UUID) -> bool: ...

    # --- material progress ---
    async def get_or_create_material_progress(
        self, student_id: UUID, material_id: UUID
    ) -> GetOrCreate[MaterialProgress]: ...
    async def complete_material(
        self, student_id: UUID, material_id: UUID, completed_at: int
    ) -> MaterialProgress | None: ...
    async def completed_material_ids(
        self, student_id: UUID, material_ids: list[UUID]
    ) -> set[UUID]: ...
    async def list_material_progress(
        self, student_id: UUID
    ) -> list[MaterialProgress]: ...

    # --- topic progress ---
    async def get_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> TopicProgress | None: ...
    async def get_or_create_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> GetOrCreate[TopicProgress]: ...
    async def complete_topic(
        self, student_id: UUID, topic_id: UUID, completed_at: int
    ) -> TopicProgress | None: ...
    async def add_topic_time(
        self, student_id: UUID, topic_id: UUID, seconds: int, now: int
    ) -> TopicProgress: ...
    async def completed_topic_ids(
        self, student_id: UUID, topic_ids: list[UUID]
    ) -> set[UUID]: ...
    async def list_topic_progress(self, student_id: UUID) -> list[TopicProgress]: ...

    # --- course progress ---
    async def get_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> CourseProgress | None: ...
    async def get_or_create_course_progress(
        self, student_id: UUID, course_id: UUID, now: int
    ) -> GetOrCreate[CourseProgress]: ...
    async def save_course_progress(self, progress: CourseProgress) -> None: ...

    # --- enrollments ---
    async def get_enrollment(
        self, student_id: UUID, course_id: UUID
    ) -> Enrollment | None: ...
    async def add_enrollment(self, enrollment: Enrollment) -> bool: ...
    async def delete_enrollment(self, student_id: UUID, course_id: UUID) -> bool: ...
    async def save_enrollment(self, enrollment: Enrollment) -> None: ...
    async def list_enrollments_for_student(
        self, student_id: UUID
    ) -> list[Enrollment]: ...
    async def list_enrollments_for_course(self, course_id: UUID) -> list[Enrollment]: ...

    # --- denormalized counters (atomic, floored at zero) ---
    async def adjust_course_enrollments(self, course_id: UUID, delta: int) -> int: ...
    async def adjust_student_courses(self, student_id: UUID, delta: int) -> int: ...

    # --- serialization of one (student, course) pair ---
    async def lock_pair(self, student_id: UUID, course_id: UUID) -> None: ...


class ProgressDatabase(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[ProgressStore]: ...


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

_MISSING = object()
_Pair = tuple[UUID, UUID]


class InMemoryProgressDatabase:
    """Dict-backed tables shared by every transaction in the process."""

    def __init__(self) -> None:
        self._students: dict[UUID, Student] = {}
        self._courses: dict[UUID, Course] = {}
        self._topics: dict[UUID, Topic] = {}
        self._materials: dict[UUID, Material] = {}
        self._material_progress: dict[_Pair, MaterialProgress] = {}
        self._topic_progress: dict[_Pair, TopicProgress] = {}
        self._course_progress: dict[_Pair, CourseProgress] = {}
        self._enrollments: dict[_Pair, Enrollment] = {}
        self._pair_locks: weakref.WeakValueDictionary[_Pair, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def reset(self) -> None:
        for table in (
            self._students,
            self._courses,
            self._topics,
            self._materials,
            self._material_progress,
            self._topic_progress,
            self._course_progress,
            self._enrollments,
        ):
            table.clear()

    def _pair_lock(self, key: _Pair) -> asyncio.Lock:
        lock = self._pair_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._pair_locks[key] = lock
        return lock

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[InMemoryProgressStore]:
        store = InMemoryProgressStore(self)
        try:
            yield store
        except BaseException:
            store._rollback()
            raise
        finally:
            store._release_locks()


class InMemoryProgressStore:
    """One transaction over an InMemoryProgressDatabase.

    Every write pushes an undo step; rollback replays them newest first.
    Counter undo steps apply the opposite of the delta actually applied,
    so a rollback never clobbers concurrent increments from other pairs.
    """

    def __init__(self, db: InMemoryProgressDatabase) -> None:
        self._db = db
        self._undo: list[Callable[[], None]] = []
        self._held: dict[_Pair, asyncio.Lock] = {}

    # --- transaction plumbing ---

    def _rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    def _release_locks(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()

    def _put(self, table: dict, key, value) -> None:
        prior = table.get(key, _MISSING)
        table[key] = value

        def undo() -> None:
            if prior is _MISSING:
                table.pop(key, None)
            else:
                table[key] = prior

        self._undo.append(undo)

    def _pop(self, table: dict, key) -> bool:
        prior = table.pop(key, _MISSING)
        if prior is _MISSING:
            return False
        self._undo.append(lambda: table.__setitem__(key, prior))
        return True

    def _adjust(self, table: dict, key: UUID, field: str, delta: int) -> int:
        row = table[key]
        old = getattr(row, field)
        new = max(0, old + delta)
        table[key] = replace(row, **{field: new})
        applied = new - old

        def undo() -> None:
            current = table.get(key)
            if current is not None:
                value = max(0, getattr(current, field) - applied)
                table[key] = replace(current, **{field: value})

        self._undo.append(undo)
        return new

    # --- catalog lookups ---

    async def get_student(self, student_id: UUID) -> Student | None:
        return self._db._students.get(student_id)

    async def get_student_by_email(self, email: str) -> Student | None:
        email = email.strip().lower()
        for s in self._db._students.values():
            if s.email == email:
                return s
        return None

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._db._courses.get(course_id)

    async def get_topic(self, topic_id: UUID) -> Topic | None:
        return self._db._topics.get(topic_id)

    async def get_material(self, material_id: UUID) -> Material | None:
        return self._db._materials.get(material_id)

    async def list_topic_ids(self, course_id: UUID) -> list[UUID]:
        topics = [t for t in self._db._topics.values() if t.course_id == course_id]
        topics.sort(key=lambda t: (t.position, str(t.id)))
        return [t.id for t in topics]

    async def list_material_ids(self, topic_id: UUID) -> list[UUID]:
        materials = [m for m in self._db._materials.values() if m.topic_id == topic_id]
        materials.sort(key=lambda m: (m.position, str(m.id)))
        return [m.id for m in materials]

    # --- catalog authoring ---

    async def add_student(self, student: Student) -> None:
        if student.id in self._db._students:
            raise ValueError("student already exists")
        if await self.get_student_by_email(student.email) is not None:
            raise ValueError("email already exists")
        self._put(self._db._students, student.id, student)

    async def add_course(self, course: Course) -> None:
        if course.id in self._db._courses:
            raise ValueError("course already exists")
        self._put(self._db._courses, course.id, course)

    async def add_topic(self, topic: Topic) -> None:
        if topic.course_id not in self._db._courses:
            raise KeyError("course not found")
        self._put(self._db._topics, topic.id, replace(topic, materials_count=0))

    async def add_material(self, material: Material) -> None:
        if material.topic_id not in self._db._topics:
            raise KeyError("topic not found")
        self._put(self._db._materials, material.id, material)
        self._adjust(self._db._topics, material.topic_id, "materials_count", 1)

    async def remove_material(self, material_id: UUID) -> bool:
        material = self._db._materials.get(material_id)
        if material is None:
            return False
        self._pop(self._db._materials, material_id)
        self._adjust(self._db._topics, material.topic_id, "materials_count", -1)
        return True

    # --- material progress ---

    async def get_or_create_material_progress(
        self, student_id: UUID, material_id: UUID
    ) -> GetOrCreate[MaterialProgress]:
        key = (student_id, material_id)
        existing = self._db._material_progress.get(key)
        if existing is not None:
            return GetOrCreate(existing, created=False)
        row = MaterialProgress(student_id=student_id, material_id=material_id)
        self._put(self._db._material_progress, key, row)
        return GetOrCreate(row, created=True)

    async def complete_material(
        self, student_id: UUID, material_id: UUID, completed_at: int
    ) -> MaterialProgress | None:
        key = (student_id, material_id)
        row = self._db._material_progress.get(key)
        if row is None or row.completed:
            return None
        updated = replace(row, completed=True, completed_at=completed_at)
        self._put(self._db._material_progress, key, updated)
        return updated

    async def completed_material_ids(
        self, student_id: UUID, material_ids: list[UUID]
    ) -> set[UUID]:
        done = set()
        for material_id in material_ids:
            row = self._db._material_progress.get((student_id, material_id))
            if row is not None and row.completed:
                done.add(material_id)
        return done

    async def list_material_progress(self, student_id: UUID) -> list[MaterialProgress]:
        return [
            p for p in self._db._material_progress.values() if p.student_id == student_id
        ]

    # --- topic progress ---

    async def get_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> TopicProgress | None:
        return self._db._topic_progress.get((student_id, topic_id))

    async def get_or_create_topic_progress(
        self, student_id: UUID, topic_id: UUID
    ) -> GetOrCreate[TopicProgress]:
        key = (student_id, topic_id)
        existing = self._db._topic_progress.get(key)
        if existing is not None:
            return GetOrCreate(existing, created=False)
        row = TopicProgress(student_id=student_id, topic_id=topic_id)
        self._put(self._db._topic_progress, key, row)
        return GetOrCreate(row, created=True)

    async def complete_topic(
        self, student_id: UUID, topic_id: UUID, completed_at: int
    ) -> TopicProgress | None:
        key = (student_id, topic_id)
        row = self._db._topic_progress.get(key)
        if row is None or row.completed:
            return None
        updated = replace(
            row, completed=True, completed_at=completed_at, last_updated=completed_at
        )
        self._put(self._db._topic_progress, key, updated)
        return updated

    async def add_topic_time(
        self, student_id: UUID, topic_id: UUID, seconds: int, now: int
    ) -> TopicProgress:
        key = (student_id, topic_id)
        row = self._db._topic_progress[key]
        updated = replace(
            row, time_spent_seconds=row.time_spent_seconds + seconds, last_updated=now
        )
        self._put(self._db._topic_progress, key, updated)
        return updated

    async def completed_topic_ids(
        self, student_id: UUID, topic_ids: list[UUID]
    ) -> set[UUID]:
        done = set()
        for topic_id in topic_ids:
            row = self._db._topic_progress.get((student_id, topic_id))
            if row is not None and row.completed:
                done.add(topic_id)
        return done

    async def list_topic_progress(self, student_id: UUID) -> list[TopicProgress]:
        return [p for p in self._db._topic_progress.values() if p.student_id == student_id]

    # --- course progress ---

    async def get_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> CourseProgress | None:
        return self._db._course_progress.get((student_id, course_id))

    async def get_or_create_course_progress(
        self, student_id: UUID, course_id: UUID, now: int
    ) -> GetOrCreate[CourseProgress]:
        key = (student_id, course_id)
        existing = self._db._course_progress.get(key)
        if existing is not None:
            return GetOrCreate(existing, created=False)
        row = CourseProgress(student_id=student_id, course_id=course_id, last_updated=now)
        self._put(self._db._course_progress, key, row)
        return GetOrCreate(row, created=True)

    async def save_course_progress(self, progress: CourseProgress) -> None:
        self._put(
            self._db._course_progress, (progress.student_id, progress.course_id), progress
        )

    # --- enrollments ---

    async def get_enrollment(
        self, student_id: UUID, course_id: UUID
    ) -> Enrollment | None:
        return self._db._enrollments.get((student_id, course_id))

    async def add_enrollment(self, enrollment: Enrollment) -> bool:
        key = (enrollment.student_id, enrollment.course_id)
        if key in self._db._enrollments:
            return False
        self._put(self._db._enrollments, key, enrollment)
        return True

    async def delete_enrollment(self, student_id: UUID, course_id: UUID) -> bool:
        return self._pop(self._db._enrollments, (student_id, course_id))

    async def save_enrollment(self, enrollment: Enrollment) -> None:
        key = (enrollment.student_id, enrollment.course_id)
        if key not in self._db._enrollments:
            raise KeyError("enrollment not found")
        self._put(self._db._enrollments, key, enrollment)

    async def list_enrollments_for_student(self, student_id: UUID) -> list[Enrollment]:
        rows = [e for e in self._db._enrollments.values() if e.student_id == student_id]
        return sorted(rows, key=lambda e: e.enrolled_at)

    async def list_enrollments_for_course(self, course_id: UUID) -> list[Enrollment]:
        rows = [e for e in self._db._enrollments.values() if e.course_id == course_id]
        return sorted(rows, key=lambda e: e.enrolled_at)

    # --- counters ---

    async def adjust_course_enrollments(self, course_id: UUID, delta: int) -> int:
        if course_id not in self._db._courses:
            raise KeyError("course not found")
        return self._adjust(self._db._courses, course_id, "total_enrollments", delta)

    async def adjust_student_courses(self, student_id: UUID, delta: int) -> int:
        if student_id not in self._db._students:
            raise KeyError("student not found")
        return self._adjust(self._db._students, student_id, "courses_enrolled", delta)

    # --- locking ---

    async def lock_pair(self, student_id: UUID, course_id: UUID) -> None:
        key = (student_id, course_id)
        if key in self._held:
            return
        lock = self._db._pair_lock(key)
        await lock.acquire()
        self._held[key] = lock
