"""In-memory progress store tests.

Covers the storage primitives the aggregators rely on:
1. get-or-create reports whether the row was found or created
2. counters move atomically and floor at zero
3. a failing transaction leaves no trace, including counter moves
4. materials_count follows material adds and removes
"""

from __future__ import annotations

import pytest

from lms.models.catalog import Course, Material, Student
from lms.models.enrollment import Enrollment
from lms.repos.progress_store import InMemoryProgressDatabase
from tests.conftest import add_course, add_student, run


def test_get_or_create_tags_created_then_found(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [1])
        material = sample.materials_of(0)[0]
        async with db.transaction() as store:
            first = await store.get_or_create_material_progress(student.id, material.id)
            second = await store.get_or_create_material_progress(student.id, material.id)
        return first, second

    first, second = run(scenario())
    assert first.created is True
    assert second.created is False
    assert second.value == first.value
    assert first.value.completed is False


def test_course_progress_get_or_create_starts_at_zero(
    db: InMemoryProgressDatabase,
) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [1])
        async with db.transaction() as store:
            return await store.get_or_create_course_progress(
                student.id, sample.course.id, 123
            )

    touched = run(scenario())
    assert touched.created is True
    assert touched.value.progress_percent == 0
    assert touched.value.last_updated == 123


def test_counters_floor_at_zero(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        course = Course.new(title="Counters")
        async with db.transaction() as store:
            await store.add_course(course)
            up = await store.adjust_course_enrollments(course.id, 1)
            down = await store.adjust_course_enrollments(course.id, -1)
            floored = await store.adjust_course_enrollments(course.id, -1)
        return up, down, floored

    assert run(scenario()) == (1, 0, 0)


def test_rollback_discards_rows_and_counter_moves(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [1])
        with pytest.raises(RuntimeError):
            async with db.transaction() as store:
                await store.add_enrollment(
                    Enrollment.new(student_id=student.id, course_id=sample.course.id, now=1)
                )
                await store.adjust_course_enrollments(sample.course.id, 1)
                await store.adjust_student_courses(student.id, 1)
                raise RuntimeError("boom")
        async with db.transaction() as store:
            return (
                await store.get_enrollment(student.id, sample.course.id),
                await store.get_course(sample.course.id),
                await store.get_student(student.id),
            )

    enrollment, course, student = run(scenario())
    assert enrollment is None
    assert course.total_enrollments == 0
    assert student.courses_enrolled == 0


def test_rollback_of_floored_decrement_restores_original(
    db: InMemoryProgressDatabase,
) -> None:
    async def scenario():
        student = Student.new(email="floor@example.com")
        async with db.transaction() as store:
            await store.add_student(student)
            await store.adjust_student_courses(student.id, 2)
        with pytest.raises(RuntimeError):
            async with db.transaction() as store:
                await store.adjust_student_courses(student.id, -5)
                raise RuntimeError("boom")
        async with db.transaction() as store:
            return await store.get_student(student.id)

    assert run(scenario()).courses_enrolled == 2


def test_duplicate_enrollment_is_rejected(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [1])
        async with db.transaction() as store:
            first = await store.add_enrollment(
                Enrollment.new(student_id=student.id, course_id=sample.course.id, now=1)
            )
            second = await store.add_enrollment(
                Enrollment.new(student_id=student.id, course_id=sample.course.id, now=2)
            )
        return first, second

    assert run(scenario()) == (True, False)


def test_materials_count_tracks_adds_and_removes(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        sample = await add_course(db, [2])
        topic = sample.topics[0]
        async with db.transaction() as store:
            after_seed = (await store.get_topic(topic.id)).materials_count
            extra = Material.new(topic_id=topic.id, position=3, title="Extra")
            await store.add_material(extra)
            after_add = (await store.get_topic(topic.id)).materials_count
            removed = await store.remove_material(sample.materials_of(0)[0].id)
            after_remove = (await store.get_topic(topic.id)).materials_count
            ids = await store.list_material_ids(topic.id)
        return after_seed, after_add, removed, after_remove, len(ids)

    assert run(scenario()) == (2, 3, True, 2, 2)


def test_completed_material_ids_returns_completed_subset(
    db: InMemoryProgressDatabase,
) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [3])
        materials = sample.materials_of(0)
        async with db.transaction() as store:
            await store.get_or_create_material_progress(student.id, materials[0].id)
            await store.complete_material(student.id, materials[0].id, 10)
            # Touched but not completed: must not count.
            await store.get_or_create_material_progress(student.id, materials[1].id)
            done = await store.completed_material_ids(
                student.id, [m.id for m in materials]
            )
        return done, materials

    done, materials = run(scenario())
    assert done == {materials[0].id}


def test_complete_material_is_conditional(db: InMemoryProgressDatabase) -> None:
    async def scenario():
        student = await add_student(db, "a@example.com")
        sample = await add_course(db, [1])
        material = sample.materials_of(0)[0]
        async with db.transaction() as store:
            await store.get_or_create_material_progress(student.id, material.id)
            first = await store.complete_material(student.id, material.id, 10)
            second = await store.complete_material(student.id, material.id, 20)
        return first, second

    first, second = run(scenario())
    assert first is not None and first.completed_at == 10
    assert second is None


def test_student_email_lookup_is_case_insensitive(
    db: InMemoryProgressDatabase,
) -> None:
    async def scenario():
        await add_student(db, "Mixed.Case@Example.com")
        async with db.transaction() as store:
            return await store.get_student_by_email("  MIXED.case@example.COM ")

    found = run(scenario())
    assert found is not None
    assert found.email == "mixed.case@example.com"
