"""Health and readiness endpoints.

LIVENESS vs READINESS
----------------------
  /health (liveness):
    "Is this process alive and not deadlocked?"
    Always 200 while the process can respond; the body reports per-
    dependency status so dashboards can show a degraded instance.

  /ready (readiness):
    "Can this instance handle traffic right now?"
    503 when PostgreSQL is configured but unreachable: every progress
    operation needs a transaction.  Redis is not critical for readiness
    since the cache and the notification queue are best-effort.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from lms.db.engine import engine
from lms.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
        return "ok"
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"


@router.get("/health")
async def health() -> dict:
    """Liveness probe + dependency status.

    Returns 200 even when degraded; the status field indicates the
    actual health.  Returning 503 here would cause the orchestrator to
    restart the container, which is too aggressive for a partial outage.
    """
    checks = {
        "database": await _check_database(),
        "redis": await _check_redis(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"
    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 removes this instance from the rotation."""
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
