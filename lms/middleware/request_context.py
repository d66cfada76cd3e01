"""Request context middleware: assigns a unique ID to every request.

A single material completion fans out into topic and course log lines
from three modules.  Tagging every record with the request ID lets you
pull the whole cascade for one request out of interleaved output:

  {"request_id": "abc", "message": "Material completed student=..."}
  {"request_id": "xyz", "message": "Enrolled student=... course=..."}
  {"request_id": "abc", "message": "Topic completed student=..."}
  {"request_id": "abc", "message": "Recomputed course progress ..."}

The ID lives in a ContextVar (lms.core.logging) rather than a
thread-local: concurrent requests share one event-loop thread, but each
task gets its own copy of the context.  The logging handler's filter
copies it onto every record.

Client-supplied X-Request-ID values are accepted only when short and
made of safe characters; anything else is replaced with a fresh UUID so
callers can't inject log lines or oversized labels.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from lms.core.logging import request_id_var

logger = logging.getLogger(__name__)

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def resolve_request_id(header_value: str | None) -> str:
    if header_value and _REQUEST_ID_RE.match(header_value):
        return header_value
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assign a request ID, time the request, and log one summary line."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = resolve_request_id(request.headers.get("x-request-id"))
        token = request_id_var.set(req_id)

        start = time.monotonic()
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        # Extra fields become top-level keys under LOG_JSON=true.
        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "request_id": req_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
