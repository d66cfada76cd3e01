"""Material completion: the entry point of the progress cascade."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from lms.models.progress import MaterialProgress
from lms.repos.progress_store import ProgressStore
from lms.services.clock import Clock, utc_now
from lms.services.errors import NotFoundError
from lms.services.topic_progress import TopicProgressAggregator, TopicRollup

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MaterialCompletion:
    progress: MaterialProgress
    newly_completed: bool
    topic: TopicRollup | None = None


class MaterialProgressTracker:
    def __init__(self, topics: TopicProgressAggregator, clock: Clock = utc_now) -> None:
        self._topics = topics
        self._clock = clock

    async def mark_completed(
        self, store: ProgressStore, student_id: UUID, material_id: UUID
    ) -> MaterialCompletion:
        """Record that a student finished a material.

        Replays leave the row untouched (completed_at never moves forward)
        and do not re-run the cascade.  A first completion re-evaluates the
        owning topic inside the same transaction, which may in turn
        recompute the course.
        """
        material = await store.get_material(material_id)
        if material is None:
            raise NotFoundError("material", material_id)
        topic = await store.get_topic(material.topic_id)
        if topic is None:
            raise NotFoundError("topic", material.topic_id)
        if await store.get_student(student_id) is None:
            raise NotFoundError("student", student_id)

        await store.lock_pair(student_id, topic.course_id)

        touched = await store.get_or_create_material_progress(student_id, material_id)
        if touched.value.completed:
            logger.debug(
                "Material already completed student=%s material=%s",
                student_id,
                material_id,
            )
            return MaterialCompletion(progress=touched.value, newly_completed=False)

        completed = await store.complete_material(student_id, material_id, self._clock())
        if completed is None:
            current = (
                await store.get_or_create_material_progress(student_id, material_id)
            ).value
            return MaterialCompletion(progress=current, newly_completed=False)

        logger.info(
            "Material completed student=%s material=%s",
            student_id,
            material_id,
            extra={"student_id": str(student_id), "material_id": str(material_id)},
        )
        rollup = await self._topics.reevaluate(store, student_id, topic.id)
        return MaterialCompletion(progress=completed, newly_completed=True, topic=rollup)
