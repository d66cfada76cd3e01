"""Optional Redis pool for the progress cache and notification queue.

Only ephemeral data goes here; progress state itself is in PostgreSQL
(or memory).  With REDIS_URL unset, ``redis_pool`` is None and both
consumers pick their in-memory implementations at import time.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from lms.core.config import SETTINGS

logger = logging.getLogger(__name__)

redis_pool: aioredis.Redis | None = None  # type: ignore[type-arg]

if SETTINGS.redis_url:
    redis_pool = aioredis.from_url(
        SETTINGS.redis_url,
        decode_responses=True,  # cached JSON and task payloads are text
        max_connections=20,
        health_check_interval=30,
    )


@asynccontextmanager
async def lifespan_redis():
    if redis_pool is None:
        logger.info("REDIS_URL not set, cache and task queue are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        # Writes never touch Redis; reads fall through to the store.
        logger.exception("Redis ping failed on startup, continuing without it")
    else:
        logger.info("Redis reachable")

    try:
        yield
    finally:
        await redis_pool.aclose()
        logger.info("Redis connection pool closed")
