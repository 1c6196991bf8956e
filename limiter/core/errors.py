"""Limiter exception types.

This module defines the errors raised by the limiter and its store adapters,
enabling consistent error handling, logging, and API responses.

Write conflicts are deliberately absent: a failed conditional write is an
ordinary protocol outcome (see ``WriteStatus.CONFLICTED``), not an error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes consistent without forcing every
    error to fill every key.
    """

    code: str
    message: str
    hint: str
    field: str
    key_hash: str
    attempts: int
    operation: str
    http_status: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for limiter failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ConfigurationError(AppError):
    """Raised when a limiter is constructed with missing or invalid parameters."""


class StoreCommunicationError(AppError):
    """Raised when the counter store cannot be reached or misbehaves.

    The underlying client exception, when there is one, is chained as
    ``__cause__``.
    """


class CorruptEntryError(StoreCommunicationError):
    """Raised when a stored counter entry cannot be decoded."""


class ContentionExceededError(AppError):
    """Raised when conditional writes keep conflicting past the retry budget."""
