"""Authentication dependencies shared by the course and progress routers.

    require_user         -> Principal   any valid bearer token
    require_student_id   -> UUID        token subject as a student id
    require_staff        -> Principal   instructor or admin role
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from lms.models.principal import Principal
from lms.services import token_service

logger = logging.getLogger(__name__)

# Tokens come from the identity service; tokenUrl only feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/oauth/token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
) -> Principal:
    try:
        claims = token_service.decode_access_token(raw_token)
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise _unauthorized("Token expired") from None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token rejected: %s", e)
        raise _unauthorized("Invalid token") from None

    principal = Principal(
        subject=claims["sub"],
        roles=frozenset(claims.get("roles", [])),
    )
    logger.debug(
        "Token accepted subject=%s roles=%s", principal.subject, principal.roles
    )
    return principal


def require_student_id(
    principal: Annotated[Principal, Depends(require_user)],
) -> UUID:
    """The caller's student id, parsed from the token subject."""
    try:
        return UUID(principal.subject)
    except ValueError:
        logger.warning("Rejected non-UUID subject=%s", principal.subject)
        raise _unauthorized("Invalid token subject") from None


def require_staff(
    principal: Annotated[Principal, Depends(require_user)],
) -> Principal:
    """Instructors and admins only: roster reads and bulk enrollment."""
    if not principal.is_staff:
        logger.warning(
            "Staff route denied: subject=%s roles=%s",
            principal.subject,
            sorted(principal.roles),
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )
    return principal
