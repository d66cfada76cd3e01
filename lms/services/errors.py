"""Typed failures raised by the progress services.

The API layer translates these into HTTP status codes; service code
never catches them inside a cascade, so a failure at any level unwinds
the enclosing transaction.
"""

from __future__ import annotations

from uuid import UUID


class ProgressError(Exception):
    pass


class NotFoundError(ProgressError):
    def __init__(self, entity: str, entity_id: UUID | str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ConflictError(ProgressError):
    pass


class InvalidStateError(ProgressError, ValueError):
    pass


def check_percent(value: int) -> int:
    if not 0 <= value <= 100:
        raise InvalidStateError(f"percent must be within 0..100 (got {value})")
    return value
