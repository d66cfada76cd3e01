"""Prometheus metrics endpoint.

Scraped by Prometheus every N seconds.  Returns plain text in the
Prometheus exposition format, e.g.:

  # HELP material_completions_total Material completion requests
  # TYPE material_completions_total counter
  material_completions_total{result="new"} 412.0
  material_completions_total{result="replay"} 37.0

In production, restrict access to /metrics (internal port or the
Prometheus server's IP only).
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
