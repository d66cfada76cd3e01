"""Read-through cache for course progress summaries.

GET /v1/progress/courses/{id} is the hottest read in the service, and
its answer only changes when the same student completes something.
Entries are keyed per (student, course) pair:

    progress:<student_id>:<course_id>  ->  JSON CourseProgress

Staleness is bounded twice over.  Every committed write touching a pair
deletes its key, and every entry carries a PROGRESS_CACHE_TTL expiry in
case a delete is lost (Redis down at the wrong moment, a concurrent
reader repopulating from a pre-commit snapshot).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from lms.db.redis import redis_pool


@runtime_checkable
class CacheService(Protocol):
    async def get(self, key: str) -> str | None:
        """Cached value, or None on a miss."""
        ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheService:
    """Single-process cache with lazy expiry, used when REDIS_URL is unset."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._store: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._store[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)


class RedisCacheService:
    """Shared across API replicas; expiry is enforced by Redis (SETEX)."""

    def __init__(self, redis_client, prefix: str = "cache:") -> None:
        self._redis = redis_client
        self._prefix = prefix

    async def get(self, key: str) -> str | None:
        return await self._redis.get(self._prefix + key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._redis.setex(self._prefix + key, ttl_seconds, value)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._prefix + key)


def course_progress_key(student_id: object, course_id: object) -> str:
    return f"progress:{student_id}:{course_id}"


if redis_pool is not None:
    cache_service: CacheService = RedisCacheService(redis_pool)
else:
    cache_service = InMemoryCacheService()
