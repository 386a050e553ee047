"""Shared store errors and error translation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError


class PersistenceError(Exception):
    """Raised when a store read or write fails.

    Never retried automatically; the caller may re-invoke the operation,
    which re-validates against the last committed state.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Persistence failure during {operation}: {cause}")


class StaleStateError(Exception):
    """Raised when a compare-and-swap write finds the row already changed."""

    def __init__(self, entity_type: str, entity_id: UUID, expected: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected = expected
        super().__init__(
            f"{entity_type} {entity_id} changed concurrently (expected {expected}); "
            "reload and retry"
        )


class RecordNotFoundError(Exception):
    """Raised when a requested record does not exist in the caller's organization."""

    def __init__(self, entity_type: str, entity_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


@asynccontextmanager
async def translate_errors(operation: str) -> AsyncGenerator[None, None]:
    """Re-raise SQLAlchemy failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        raise PersistenceError(operation, exc) from exc
