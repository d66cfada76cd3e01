"""Worker loop tests: dispatch, empty queues, failing handlers."""

from __future__ import annotations

import logging

import pytest

from lms import worker
from lms.services.notifications import ENROLLMENT_QUEUE
from lms.services.task_queue import InMemoryTaskQueue
from tests.conftest import run


def test_process_one_returns_false_on_empty_queue() -> None:
    queue = InMemoryTaskQueue()
    assert run(worker.process_one(queue, ENROLLMENT_QUEUE, timeout=0)) is False


def test_process_one_dispatches_to_handler(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    queue = InMemoryTaskQueue()
    seen: list[dict] = []

    async def handler(payload: dict) -> None:
        seen.append(payload)

    monkeypatch.setitem(worker.HANDLERS, ENROLLMENT_QUEUE, handler)
    payload = {"student_id": "s-1", "course_id": "c-1"}

    async def scenario():
        await queue.enqueue(ENROLLMENT_QUEUE, payload)
        ran = await worker.process_one(queue, ENROLLMENT_QUEUE, timeout=0)
        return ran, await queue.queue_length(ENROLLMENT_QUEUE)

    ran, remaining = run(scenario())
    assert ran is True
    assert remaining == 0
    assert seen == [payload]


def test_failing_handler_is_logged_not_raised(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    queue = InMemoryTaskQueue()

    async def handler(payload: dict) -> None:
        raise RuntimeError("mail provider down")

    monkeypatch.setitem(worker.HANDLERS, ENROLLMENT_QUEUE, handler)

    async def scenario():
        await queue.enqueue(ENROLLMENT_QUEUE, {"student_id": "s", "course_id": "c"})
        return await worker.process_one(queue, ENROLLMENT_QUEUE, timeout=0)

    with caplog.at_level(logging.ERROR, logger="worker"):
        assert run(scenario()) is True
    assert "failed" in caplog.text


def test_builtin_handlers_cover_notification_queues() -> None:
    from lms.services.notifications import COMPLETION_QUEUE

    assert set(worker.HANDLERS) >= {ENROLLMENT_QUEUE, COMPLETION_QUEUE}
    run(
        worker.HANDLERS[COMPLETION_QUEUE]({"student_id": "s", "course_id": "c"})
    )
