"""In-memory cache expiry and queued task encoding."""

from __future__ import annotations

from lms.services.cache import InMemoryCacheService, course_progress_key
from lms.services.task_queue import InMemoryTaskQueue, Task
from tests.conftest import run


class _Tick:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    tick = _Tick()
    cache = InMemoryCacheService(clock=tick)

    async def scenario():
        await cache.set("k", "v", ttl_seconds=30)
        tick.now = 29.9
        before = await cache.get("k")
        tick.now = 30.0
        after = await cache.get("k")
        return before, after

    assert run(scenario()) == ("v", None)
    assert cache._store == {}


def test_delete_missing_key_is_noop() -> None:
    cache = InMemoryCacheService()
    run(cache.delete("never-set"))


def test_course_progress_key_format() -> None:
    assert course_progress_key("s", "c") == "progress:s:c"


def test_task_json_keeps_every_field() -> None:
    task = Task(queue="course_completions", payload={"student_id": "s"})
    assert Task.from_json(task.to_json()) == task


def test_in_memory_queue_is_fifo() -> None:
    queue = InMemoryTaskQueue()

    async def scenario():
        for n in range(3):
            await queue.enqueue("q", {"n": n})
        return [(await queue.dequeue("q")).payload["n"] for _ in range(3)]

    assert run(scenario()) == [0, 1, 2]
