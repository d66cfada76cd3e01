"""Translate progress-service failures into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from lms.services.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ProgressError,
)

logger = logging.getLogger(__name__)


def http_error(exc: ProgressError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, InvalidStateError):
        code = status.HTTP_422_UNPROCESSABLE_CONTENT
    else:
        code = status.HTTP_400_BAD_REQUEST
    logger.warning("Request rejected status=%d: %s", code, exc)
    return HTTPException(status_code=code, detail=str(exc))
