"""Application-level exception types.

This module defines the errors raised by the limiter engine and its guards,
enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional; each error fills the ones relevant to it.
    """

    hint: str
    requests: float
    period_in_seconds: float
    retry_after: float


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

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


class ConfigurationAppError(AppError):
    """Raised when a limiter is built with an unusable rate."""


class RateLimitExceededAppError(AppError):
    """Raised by guards when a caller is over budget and no handler is set."""
