"""Post-commit notifications.

The progress service calls a Notifier only after its transaction has
committed.  Delivery (email, push) belongs to the worker; the notifier
just hands the event to the task queue.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from lms.services.task_queue import TaskQueue

ENROLLMENT_QUEUE = "enrollment_notifications"
COMPLETION_QUEUE = "course_completions"


class Notifier(Protocol):
    async def enrolled(self, student_id: UUID, course_id: UUID) -> None: ...
    async def course_completed(self, student_id: UUID, course_id: UUID) -> None: ...


class QueueNotifier:
    """Satisfies Notifier by enqueueing one task per event."""

    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def enrolled(self, student_id: UUID, course_id: UUID) -> None:
        await self._queue.enqueue(
            ENROLLMENT_QUEUE,
            {"student_id": str(student_id), "course_id": str(course_id)},
        )

    async def course_completed(self, student_id: UUID, course_id: UUID) -> None:
        await self._queue.enqueue(
            COMPLETION_QUEUE,
            {"student_id": str(student_id), "course_id": str(course_id)},
        )
