"""Course-level rollup and the enrollment ledger.

Two write paths share this aggregator:

- recompute(): derives the course percentage from completed topics and
  writes it to both the CourseProgress row and the Enrollment, in the
  caller's transaction.  Driven by topic completions.
- on_enroll() / on_unenroll(): create or delete the Enrollment and move
  the two denormalized counters (Course.total_enrollments,
  Student.courses_enrolled) with the store's atomic adjust primitives.

Neither path ever touches topic or material progress, so a student who
unenrolls and re-enrolls resumes where they left off.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from uuid import UUID

from lms.models.enrollment import Enrollment
from lms.models.progress import CourseProgress
from lms.repos.progress_store import ProgressStore
from lms.services.clock import Clock, utc_now
from lms.services.errors import ConflictError, NotFoundError, check_percent

logger = logging.getLogger(__name__)


def progress_percent(completed: int, total: int) -> int:
    """Half-up integer percentage of completed topics; 0 when there are none."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


@dataclass(frozen=True, slots=True)
class CourseRollup:
    progress: CourseProgress
    enrollment: Enrollment | None
    completed_now: bool = False  # enrollment crossed to 100% in this recompute


class CourseProgressAggregator:
    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def recompute(
        self,
        store: ProgressStore,
        student_id: UUID,
        course_id: UUID,
        *,
        last_topic_id: UUID | None = None,
    ) -> CourseRollup:
        await store.lock_pair(student_id, course_id)

        topic_ids = await store.list_topic_ids(course_id)
        completed = await store.completed_topic_ids(student_id, topic_ids)
        percent = check_percent(progress_percent(len(completed), len(topic_ids)))
        now = self._clock()

        current = (
            await store.get_or_create_course_progress(student_id, course_id, now)
        ).value
        progress = replace(
            current,
            progress_percent=percent,
            last_updated=now,
            last_topic_id=last_topic_id or current.last_topic_id,
        )
        await store.save_course_progress(progress)

        enrollment = await store.get_enrollment(student_id, course_id)
        completed_now = False
        if enrollment is not None:
            enrollment = replace(
                enrollment, completion_percentage=percent, last_accessed_at=now
            )
            if percent >= 100 and not enrollment.is_completed:
                enrollment = replace(enrollment, is_completed=True, completed_at=now)
                completed_now = True
            await store.save_enrollment(enrollment)

        logger.info(
            "Recomputed course progress student=%s course=%s percent=%d (%d/%d topics)",
            student_id,
            course_id,
            percent,
            len(completed),
            len(topic_ids),
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
        return CourseRollup(
            progress=progress, enrollment=enrollment, completed_now=completed_now
        )

    async def on_enroll(
        self, store: ProgressStore, student_id: UUID, course_id: UUID
    ) -> Enrollment:
        await store.lock_pair(student_id, course_id)

        if await store.get_student(student_id) is None:
            raise NotFoundError("student", student_id)
        if await store.get_course(course_id) is None:
            raise NotFoundError("course", course_id)

        now = self._clock()
        enrollment = Enrollment.new(student_id=student_id, course_id=course_id, now=now)
        if not await store.add_enrollment(enrollment):
            logger.warning(
                "Rejected duplicate enrollment student=%s course=%s",
                student_id,
                course_id,
            )
            raise ConflictError("student is already enrolled in this course")

        await store.adjust_course_enrollments(course_id, 1)
        await store.adjust_student_courses(student_id, 1)

        touched = await store.get_or_create_course_progress(student_id, course_id, now)
        if not touched.created:
            # Re-enrollment: bring the fresh enrollment up to the surviving progress.
            rollup = await self.recompute(store, student_id, course_id)
            if rollup.enrollment is not None:
                enrollment = rollup.enrollment

        logger.info(
            "Enrolled student=%s course=%s",
            student_id,
            course_id,
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
        return enrollment

    async def on_unenroll(
        self, store: ProgressStore, student_id: UUID, course_id: UUID
    ) -> None:
        await store.lock_pair(student_id, course_id)

        if not await store.delete_enrollment(student_id, course_id):
            raise NotFoundError("enrollment", f"{student_id}:{course_id}")

        await store.adjust_course_enrollments(course_id, -1)
        await store.adjust_student_courses(student_id, -1)

        logger.info(
            "Unenrolled student=%s course=%s",
            student_id,
            course_id,
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
