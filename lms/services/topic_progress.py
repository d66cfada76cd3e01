"""Topic-level rollup: a topic is complete once all of its materials are.

Completion only moves forward.  A topic marked complete stays complete
even if materials are added to it later; re-evaluation is driven by
completion events, never by authoring changes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from lms.models.progress import TopicProgress
from lms.repos.progress_store import ProgressStore
from lms.services.clock import Clock, utc_now
from lms.services.course_progress import CourseProgressAggregator, CourseRollup
from lms.services.errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

# A topic with no materials counts as complete as soon as it is evaluated.
# Material completions only re-evaluate their own topic, so an empty topic
# stays uncounted (capping the course below 100) until reevaluate_topic is
# called for it.
EMPTY_TOPIC_IS_COMPLETE = True


@dataclass(frozen=True, slots=True)
class TopicRollup:
    progress: TopicProgress | None
    newly_completed: bool = False
    course: CourseRollup | None = None


class TopicProgressAggregator:
    def __init__(
        self, courses: CourseProgressAggregator, clock: Clock = utc_now
    ) -> None:
        self._courses = courses
        self._clock = clock

    async def is_complete(
        self, store: ProgressStore, student_id: UUID, topic_id: UUID
    ) -> bool:
        material_ids = await store.list_material_ids(topic_id)
        if not material_ids:
            return EMPTY_TOPIC_IS_COMPLETE
        done = await store.completed_material_ids(student_id, material_ids)
        return done.issuperset(material_ids)

    async def reevaluate(
        self, store: ProgressStore, student_id: UUID, topic_id: UUID
    ) -> TopicRollup:
        topic = await store.get_topic(topic_id)
        if topic is None:
            raise NotFoundError("topic", topic_id)
        await store.lock_pair(student_id, topic.course_id)

        existing = await store.get_topic_progress(student_id, topic_id)
        if existing is not None and existing.completed:
            return TopicRollup(progress=existing)

        if not await self.is_complete(store, student_id, topic_id):
            return TopicRollup(progress=existing)

        await store.get_or_create_topic_progress(student_id, topic_id)
        completed = await store.complete_topic(student_id, topic_id, self._clock())
        if completed is None:
            progress = await store.get_topic_progress(student_id, topic_id)
            return TopicRollup(progress=progress)

        logger.info(
            "Topic completed student=%s topic=%s",
            student_id,
            topic_id,
            extra={"student_id": str(student_id), "topic_id": str(topic_id)},
        )
        course = await self._courses.recompute(
            store, student_id, topic.course_id, last_topic_id=topic_id
        )
        return TopicRollup(progress=completed, newly_completed=True, course=course)

    async def record_time_spent(
        self, store: ProgressStore, student_id: UUID, topic_id: UUID, seconds: int
    ) -> TopicProgress:
        """Add study time to a topic; zero is a read, negative is rejected."""
        if seconds < 0:
            raise InvalidStateError(f"seconds must be non-negative (got {seconds})")
        topic = await store.get_topic(topic_id)
        if topic is None:
            raise NotFoundError("topic", topic_id)
        if await store.get_student(student_id) is None:
            raise NotFoundError("student", student_id)
        await store.lock_pair(student_id, topic.course_id)

        row = (await store.get_or_create_topic_progress(student_id, topic_id)).value
        if seconds == 0:
            return row
        return await store.add_topic_time(student_id, topic_id, seconds, self._clock())
