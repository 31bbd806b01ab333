"""Application-level exception types.

This module defines domain errors used across adapters and the HTTP layer,
enabling consistent error handling, logging, and API responses.

Note that a rate limit denial is *not* an error inside the limiters: they
return ``allowed=False``. Only the HTTP layer raises
``RateLimitExceededAppError`` to turn a denial into a 429 response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep shapes flexible while encouraging
    consistent keys across the codebase.
    """

    code: str
    message: str
    hint: str
    field: str
    min_value: int
    actual_value: int
    http_status: int
    limiter: str
    backend: str
    error_type: str
    retry_after: int
    request_id: str
    context: NotRequired[dict[str, Any]]


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


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when authentication/authorization fails."""


class NotFoundAppError(AppError):
    """Raised when a named resource (e.g. a limiter preset) does not exist."""


class BackendUnavailableAppError(AppError):
    """Raised when the shared counter store cannot be reached in time."""


@dataclass
class RateLimitExceededAppError(AppError):
    """Raised by the HTTP layer when a limiter denies a request.

    Attributes:
        headers: Response headers (Retry-After, X-RateLimit-*) to send with 429.
    """

    headers: dict[str, str] | None = None
