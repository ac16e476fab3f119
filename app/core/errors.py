"""
Error taxonomy for the lending core.

  ValidationError      bad input, rejected before anything is persisted
  NotFoundError        unknown loan / application / offer / user id
  StateConflictError   operation invalid for the current status
  ExternalFailure      price feed or transfer collaborator failed

The API layer maps each class to an HTTP status in app/main.py.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional

import structlog

logger = structlog.get_logger()


class LendingError(Exception):
    """Base class for every error raised by the lending core."""

    error_code = "LENDING_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LendingError):
    error_code = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Validation error on field '{field}': {message}", {"field": field})


class NotFoundError(LendingError):
    error_code = "NOT_FOUND"

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(
            f"{entity} with id '{identifier}' not found",
            {"entity": entity, "id": identifier},
        )


class StateConflictError(LendingError):
    error_code = "STATE_CONFLICT"


class VersionConflictError(StateConflictError):
    """Optimistic concurrency check failed: the record changed underneath us."""

    error_code = "VERSION_CONFLICT"

    def __init__(self, entity: str, identifier: str, expected: int, actual: int):
        super().__init__(
            f"{entity} '{identifier}' was modified concurrently "
            f"(expected version {expected}, found {actual})",
            {"entity": entity, "id": identifier, "expected": expected, "actual": actual},
        )


class ExternalFailure(LendingError):
    error_code = "EXTERNAL_FAILURE"


class PriceFeedError(ExternalFailure):
    error_code = "PRICE_FEED_ERROR"


class TransferError(ExternalFailure):
    error_code = "TRANSFER_ERROR"


@contextmanager
def logged_operation(event: str, operation: str, **ids) -> Iterator[None]:
    """Log a LendingError with the operation name and entity ids, then re-raise it."""
    try:
        yield
    except LendingError as e:
        logger.warning(event, operation=operation, error_code=e.error_code, error=e.message, **ids)
        raise
