"""Prometheus metrics middleware: instruments every HTTP request.

For each request, this middleware:
  1. Increments the ACTIVE_REQUESTS gauge (decrement on completion)
  2. Times the request duration
  3. On completion: increments REQUEST_COUNT (by method/endpoint/status)
     and observes the duration in REQUEST_DURATION histogram

ENDPOINT LABEL
---------------
Progress URLs embed ids (/v1/progress/materials/<uuid>/complete).  Using
the raw path as a label would create one time series per material and
blow up Prometheus.  The label is the matched route template instead
(/v1/progress/materials/{material_id}/complete); unmatched paths are
collapsed into "unmatched".
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lms.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION


def endpoint_label(request: Request) -> str:
    """Route template for the request, set by the router once it matched."""
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path if path else "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Prometheus scrapes would otherwise inflate the request count.
        if request.url.path == "/metrics":
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code = "500"

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        finally:
            duration = time.monotonic() - start
            ACTIVE_REQUESTS.dec()
            endpoint = endpoint_label(request)
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code,
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
