"""Progress service: the public entry points of the progress subsystem.

Every operation opens exactly one transaction on the progress database
and hands the bound store to the aggregators.  Side effects that live
outside the database run only after that transaction has committed:

  1. domain metrics
  2. cache invalidation for the affected (student, course) pair
  3. notifications (enrollment, course completion)

A failing notifier or an unreachable cache is logged and counted, never
raised: neither may turn a committed write into an error response.  Cache
reads that fail fall through to the store.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from uuid import UUID

from lms.core.config import SETTINGS
from lms.core.metrics import (
    CACHE_OPERATIONS,
    COURSE_COMPLETIONS,
    COURSE_RECOMPUTES,
    ENROLLMENT_EVENTS,
    MATERIAL_COMPLETIONS,
    NOTIFICATION_FAILURES,
    TOPIC_COMPLETIONS,
)
from lms.db.engine import async_session_factory
from lms.models.enrollment import (
    BulkEnrollOutcome,
    BulkEnrollResult,
    Enrollment,
    EnrollmentView,
)
from lms.models.progress import CourseProgress, MaterialProgress, TopicProgress
from lms.repos.pg_progress_store import PgProgressDatabase
from lms.repos.progress_store import InMemoryProgressDatabase, ProgressDatabase
from lms.services.cache import CacheService, cache_service, course_progress_key
from lms.services.clock import Clock, utc_now
from lms.services.course_progress import CourseProgressAggregator, CourseRollup
from lms.services.errors import ConflictError, NotFoundError
from lms.services.material_progress import MaterialProgressTracker
from lms.services.notifications import (
    COMPLETION_QUEUE,
    ENROLLMENT_QUEUE,
    Notifier,
    QueueNotifier,
)
from lms.services.task_queue import task_queue
from lms.services.topic_progress import TopicProgressAggregator

logger = logging.getLogger(__name__)


class ProgressService:
    def __init__(
        self,
        database: ProgressDatabase,
        *,
        notifier: Notifier | None = None,
        cache: CacheService | None = None,
        cache_ttl: int = SETTINGS.progress_cache_ttl,
        clock: Clock = utc_now,
    ) -> None:
        self._db = database
        self._notifier = notifier
        self._cache = cache
        self._cache_ttl = cache_ttl
        self.courses = CourseProgressAggregator(clock)
        self.topics = TopicProgressAggregator(self.courses, clock)
        self.materials = MaterialProgressTracker(self.topics, clock)

    # ------------------------------------------------------------------
    # Progress cascade
    # ------------------------------------------------------------------

    async def mark_material_completed(
        self, student_id: UUID, material_id: UUID
    ) -> MaterialProgress:
        async with self._db.transaction() as store:
            result = await self.materials.mark_completed(
                store, student_id, material_id
            )

        MATERIAL_COMPLETIONS.labels(
            result="new" if result.newly_completed else "replay"
        ).inc()
        if result.topic is not None and result.topic.newly_completed:
            TOPIC_COMPLETIONS.inc()
            if result.topic.course is not None:
                await self._after_recompute(result.topic.course)
        return result.progress

    async def reevaluate_topic(
        self, student_id: UUID, topic_id: UUID
    ) -> TopicProgress | None:
        async with self._db.transaction() as store:
            if await store.get_student(student_id) is None:
                raise NotFoundError("student", student_id)
            rollup = await self.topics.reevaluate(store, student_id, topic_id)

        if rollup.newly_completed:
            TOPIC_COMPLETIONS.inc()
            if rollup.course is not None:
                await self._after_recompute(rollup.course)
        return rollup.progress

    async def recompute_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> CourseProgress:
        async with self._db.transaction() as store:
            if await store.get_student(student_id) is None:
                raise NotFoundError("student", student_id)
            if await store.get_course(course_id) is None:
                raise NotFoundError("course", course_id)
            rollup = await self.courses.recompute(store, student_id, course_id)

        await self._after_recompute(rollup)
        return rollup.progress

    async def record_time_spent(
        self, student_id: UUID, topic_id: UUID, seconds: int
    ) -> TopicProgress:
        async with self._db.transaction() as store:
            return await self.topics.record_time_spent(
                store, student_id, topic_id, seconds
            )

    async def _after_recompute(self, rollup: CourseRollup) -> None:
        COURSE_RECOMPUTES.inc()
        student_id = rollup.progress.student_id
        course_id = rollup.progress.course_id
        await self._invalidate(student_id, course_id)
        if rollup.completed_now:
            COURSE_COMPLETIONS.inc()
            if self._notifier is not None:
                await self._notify(
                    COMPLETION_QUEUE,
                    self._notifier.course_completed,
                    student_id,
                    course_id,
                )

    # ------------------------------------------------------------------
    # Enrollment ledger
    # ------------------------------------------------------------------

    async def enroll(self, student_id: UUID, course_id: UUID) -> Enrollment:
        try:
            async with self._db.transaction() as store:
                enrollment = await self.courses.on_enroll(
                    store, student_id, course_id
                )
        except ConflictError:
            ENROLLMENT_EVENTS.labels(kind="enroll", outcome="conflict").inc()
            raise
        except NotFoundError:
            ENROLLMENT_EVENTS.labels(kind="enroll", outcome="not_found").inc()
            raise

        ENROLLMENT_EVENTS.labels(kind="enroll", outcome="ok").inc()
        await self._after_enroll(enrollment)
        return enrollment

    async def unenroll(self, student_id: UUID, course_id: UUID) -> None:
        try:
            async with self._db.transaction() as store:
                await self.courses.on_unenroll(store, student_id, course_id)
        except NotFoundError:
            ENROLLMENT_EVENTS.labels(kind="unenroll", outcome="not_found").inc()
            raise

        ENROLLMENT_EVENTS.labels(kind="unenroll", outcome="ok").inc()
        await self._invalidate(student_id, course_id)

    async def bulk_enroll(
        self, course_id: UUID, emails: list[str]
    ) -> BulkEnrollResult:
        """Enroll each email independently; per-item failures are collected.

        Each item gets its own transaction, so one failure never undoes
        the enrollments before it.  Only an unknown course fails the call.
        """
        async with self._db.transaction() as store:
            if await store.get_course(course_id) is None:
                raise NotFoundError("course", course_id)

        outcomes: list[BulkEnrollOutcome] = []
        for raw in emails:
            email = raw.strip().lower()
            try:
                enrollment = await self._enroll_by_email(email, course_id)
            except ConflictError:
                outcomes.append(
                    BulkEnrollOutcome(email, "failed", "already enrolled")
                )
                ENROLLMENT_EVENTS.labels(kind="bulk_item", outcome="conflict").inc()
                continue
            except NotFoundError as e:
                outcomes.append(
                    BulkEnrollOutcome(email, "failed", f"{e.entity} not found")
                )
                ENROLLMENT_EVENTS.labels(kind="bulk_item", outcome="not_found").inc()
                continue
            except Exception:
                logger.exception(
                    "Bulk enroll failed for email=%s course=%s", email, course_id
                )
                outcomes.append(BulkEnrollOutcome(email, "failed", "internal error"))
                ENROLLMENT_EVENTS.labels(kind="bulk_item", outcome="error").inc()
                continue

            outcomes.append(BulkEnrollOutcome(email, "enrolled"))
            ENROLLMENT_EVENTS.labels(kind="bulk_item", outcome="ok").inc()
            await self._after_enroll(enrollment)

        result = BulkEnrollResult(course_id=course_id, outcomes=outcomes)
        logger.info(
            "Bulk enroll course=%s processed=%d succeeded=%d failed=%d",
            course_id,
            result.processed,
            len(result.succeeded),
            len(result.failed),
            extra={"course_id": str(course_id)},
        )
        return result

    async def _enroll_by_email(self, email: str, course_id: UUID) -> Enrollment:
        async with self._db.transaction() as store:
            student = await store.get_student_by_email(email)
            if student is None:
                raise NotFoundError("student", email)
            return await self.courses.on_enroll(store, student.id, course_id)

    async def _after_enroll(self, enrollment: Enrollment) -> None:
        await self._invalidate(enrollment.student_id, enrollment.course_id)
        if self._notifier is not None:
            await self._notify(
                ENROLLMENT_QUEUE,
                self._notifier.enrolled,
                enrollment.student_id,
                enrollment.course_id,
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_course_progress(
        self, student_id: UUID, course_id: UUID
    ) -> CourseProgress:
        """Read-through cached course progress for one student.

        A student with no progress row yet gets a zero-valued default.
        """
        key = course_progress_key(student_id, course_id)
        cached = await self._cache_get(key)
        if cached is not None:
            return _progress_from_json(cached)

        async with self._db.transaction() as store:
            if await store.get_student(student_id) is None:
                raise NotFoundError("student", student_id)
            if await store.get_course(course_id) is None:
                raise NotFoundError("course", course_id)
            progress = await store.get_course_progress(student_id, course_id)

        if progress is None:
            progress = CourseProgress(student_id=student_id, course_id=course_id)
        await self._cache_set(key, _progress_to_json(progress))
        return progress

    async def get_student_enrollments(
        self, student_id: UUID
    ) -> list[EnrollmentView]:
        async with self._db.transaction() as store:
            if await store.get_student(student_id) is None:
                raise NotFoundError("student", student_id)
            views = []
            for enrollment in await store.list_enrollments_for_student(student_id):
                course = await store.get_course(enrollment.course_id)
                views.append(_to_view(enrollment, course.title if course else ""))
            return views

    async def get_course_enrollments(self, course_id: UUID) -> list[EnrollmentView]:
        async with self._db.transaction() as store:
            course = await store.get_course(course_id)
            if course is None:
                raise NotFoundError("course", course_id)
            return [
                _to_view(e, course.title)
                for e in await store.list_enrollments_for_course(course_id)
            ]

    async def get_enrollment(
        self, student_id: UUID, course_id: UUID
    ) -> EnrollmentView:
        """One enrollment with its course title; NotFoundError if absent."""
        async with self._db.transaction() as store:
            enrollment = await store.get_enrollment(student_id, course_id)
            if enrollment is None:
                raise NotFoundError("enrollment", f"{student_id}/{course_id}")
            course = await store.get_course(course_id)
            return _to_view(enrollment, course.title if course else "")

    async def is_enrolled(self, student_id: UUID, course_id: UUID) -> bool:
        async with self._db.transaction() as store:
            return await store.get_enrollment(student_id, course_id) is not None

    async def list_topic_progress(self, student_id: UUID) -> list[TopicProgress]:
        async with self._db.transaction() as store:
            return await store.list_topic_progress(student_id)

    async def list_material_progress(
        self, student_id: UUID
    ) -> list[MaterialProgress]:
        async with self._db.transaction() as store:
            return await store.list_material_progress(student_id)

    # ------------------------------------------------------------------
    # Post-commit helpers
    # ------------------------------------------------------------------

    async def _cache_get(self, key: str) -> str | None:
        if self._cache is None:
            return None
        try:
            cached = await self._cache.get(key)
        except Exception:
            CACHE_OPERATIONS.labels(operation="error").inc()
            logger.warning("Cache read failed key=%s", key, exc_info=True)
            return None
        CACHE_OPERATIONS.labels(operation="miss" if cached is None else "hit").inc()
        return cached

    async def _cache_set(self, key: str, value: str) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, self._cache_ttl)
        except Exception:
            CACHE_OPERATIONS.labels(operation="error").inc()
            logger.warning("Cache write failed key=%s", key, exc_info=True)

    async def _invalidate(self, student_id: UUID, course_id: UUID) -> None:
        if self._cache is None:
            return
        key = course_progress_key(student_id, course_id)
        try:
            await self._cache.delete(key)
        except Exception:
            # The entry expires on its own within cache_ttl.
            CACHE_OPERATIONS.labels(operation="error").inc()
            logger.warning("Cache invalidation failed key=%s", key, exc_info=True)

    async def _notify(
        self,
        queue_name: str,
        send: Callable[[UUID, UUID], Awaitable[None]],
        student_id: UUID,
        course_id: UUID,
    ) -> None:
        try:
            await send(student_id, course_id)
        except Exception:
            NOTIFICATION_FAILURES.labels(queue_name=queue_name).inc()
            logger.exception(
                "Notification failed queue=%s student=%s course=%s",
                queue_name,
                student_id,
                course_id,
            )


def _to_view(enrollment: Enrollment, course_title: str) -> EnrollmentView:
    return EnrollmentView(
        id=enrollment.id,
        student_id=enrollment.student_id,
        course_id=enrollment.course_id,
        course_title=course_title,
        completion_percentage=enrollment.completion_percentage,
        is_completed=enrollment.is_completed,
        enrolled_at=enrollment.enrolled_at,
        last_accessed_at=enrollment.last_accessed_at,
        completed_at=enrollment.completed_at,
    )


def _progress_to_json(progress: CourseProgress) -> str:
    return json.dumps(
        {
            "student_id": str(progress.student_id),
            "course_id": str(progress.course_id),
            "progress_percent": progress.progress_percent,
            "last_updated": progress.last_updated,
            "last_topic_id": (
                str(progress.last_topic_id) if progress.last_topic_id else None
            ),
            "skill_score": progress.skill_score,
        }
    )


def _progress_from_json(raw: str) -> CourseProgress:
    data = json.loads(raw)
    last_topic_id = data.get("last_topic_id")
    return CourseProgress(
        student_id=UUID(data["student_id"]),
        course_id=UUID(data["course_id"]),
        progress_percent=data["progress_percent"],
        last_updated=data.get("last_updated"),
        last_topic_id=UUID(last_topic_id) if last_topic_id else None,
        skill_score=data.get("skill_score", 0),
    )


# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

if async_session_factory is not None:
    progress_db: ProgressDatabase = PgProgressDatabase(async_session_factory)
else:
    progress_db = InMemoryProgressDatabase()

progress_service = ProgressService(
    progress_db,
    notifier=QueueNotifier(task_queue),
    cache=cache_service,
)
