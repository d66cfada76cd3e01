"""Notification hand-off queue.

Enrollment and completion notices are produced after a progress
transaction commits and consumed by ``lms.worker``.  A mail provider
outage therefore delays emails but never blocks or reverts a write.

Redis layout: one list per queue under ``tasks:<queue>``.  Producers
LPUSH, the worker BRPOPs, so each queue drains oldest-first.  Delivery is
at-most-once; a worker that dies mid-task drops that notice.
"""

from __future__ import annotations

import json
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Protocol, runtime_checkable

from lms.db.redis import redis_pool


@dataclass(frozen=True, slots=True)
class Task:
    """One queued notification.

    enqueued_at is an epoch second so the worker can report how long
    notices waited.
    """

    queue: str
    payload: dict
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    enqueued_at: int = field(default_factory=lambda: int(time.time()))

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> Task:
        return cls(**json.loads(raw))


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """Process-local FIFO per queue; never blocks on dequeue."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(queue=queue, payload=payload)
        self._queues.setdefault(queue, deque()).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        pending = self._queues.get(queue)
        return pending.popleft() if pending else None

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))


class RedisTaskQueue:
    def __init__(self, redis_client, prefix: str = "tasks:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    def _key(self, queue: str) -> str:
        return f"{self._prefix}{queue}"

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(queue=queue, payload=payload)
        await self._redis.lpush(self._key(queue), task.to_json())
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # BRPOP with timeout=0 would block forever; the worker always passes > 0.
        popped = await self._redis.brpop(self._key(queue), timeout=timeout)
        if popped is None:
            return None
        return Task.from_json(popped[1])

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
