"""Background worker process.

RUN:  python -m lms.worker

The API enqueues notification tasks after a progress transaction has
committed (see services/notifications.py).  This process drains those
queues so that mail delivery latency and failures never reach the
request path.  Same image as the API, different command:

  api:    uvicorn lms.main:app --host 0.0.0.0 --port 8000
  worker: python -m lms.worker

THE WORKER LOOP
----------------
  1. Poll every registered queue (round-robin)
  2. Dequeue one task at a time
  3. Dispatch to the registered handler
  4. Log success or failure; a failing task is dropped, not retried
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any

from lms.core.config import SETTINGS
from lms.core.logging import setup_logging
from lms.core.metrics import QUEUE_DEPTH, QUEUE_WAIT
from lms.services.notifications import COMPLETION_QUEUE, ENROLLMENT_QUEUE
from lms.services.task_queue import TaskQueue, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------
# Mail delivery belongs to the notification provider; handlers log the
# dispatch with enough context to trace it back to the enrollment.


@register_handler(ENROLLMENT_QUEUE)
async def handle_enrollment_notification(payload: dict) -> None:
    """Send the "you're enrolled" email for a new enrollment."""
    logger.info(
        "Dispatching enrollment email student=%s course=%s",
        payload["student_id"],
        payload["course_id"],
        extra={"student_id": payload["student_id"], "course_id": payload["course_id"]},
    )


@register_handler(COMPLETION_QUEUE)
async def handle_course_completion(payload: dict) -> None:
    """Send the completion notice once an enrollment reaches 100%."""
    logger.info(
        "Dispatching course completion notice student=%s course=%s",
        payload["student_id"],
        payload["course_id"],
        extra={"student_id": payload["student_id"], "course_id": payload["course_id"]},
    )


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def process_one(queue: TaskQueue, queue_name: str, timeout: int = 1) -> bool:
    """Handle at most one task from ``queue_name``.  Returns True if one ran."""
    task = await queue.dequeue(queue_name, timeout=timeout)
    QUEUE_DEPTH.labels(queue_name=queue_name).set(await queue.queue_length(queue_name))
    if task is None:
        return False

    waited = max(time.time() - task.enqueued_at, 0)
    QUEUE_WAIT.labels(queue_name=queue_name).observe(waited)

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info(
            "Task %s on [%s] completed after %.1fs in queue", task.id, queue_name, waited
        )
    except Exception:
        # No dead-letter queue yet: log and move on.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        ran = False
        for queue_name in queues:
            ran = await process_one(task_queue, queue_name) or ran
        if not ran:
            # The in-memory queue returns immediately; don't spin.
            await asyncio.sleep(0.5)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
