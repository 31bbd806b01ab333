"""Global exception handlers for consistent error responses.

Every AppError is rendered as::

    {"error": {"code": ..., "message": ..., "request_id": ..., "details": ...}}

Status mapping:
- ValidationAppError → 400
- AuthenticationAppError → 403
- NotFoundAppError → 404
- RateLimitExceededAppError → 429 (with Retry-After / X-RateLimit-* headers)
- BackendUnavailableAppError → 503
- Unexpected Exception → generic 500 (no internals leaked)
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from ratekeeper.core.errors import (
    AppError,
    AuthenticationAppError,
    BackendUnavailableAppError,
    NotFoundAppError,
    RateLimitExceededAppError,
)
from ratekeeper.core.logging import get_request_id

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (RateLimitExceededAppError, 429),
    (AuthenticationAppError, 403),
    (NotFoundAppError, 404),
    (BackendUnavailableAppError, 503),
)


def status_for(exc: AppError) -> int:
    """HTTP status for a domain error (400 when nothing more specific applies)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Render a domain error with its mapped status code.

    Rate limit denials are expected traffic and logged at info level; the
    limiter has already logged the denial itself.
    """
    status_code = status_for(exc)
    log = logger.info if status_code == 429 else logger.warning
    log(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "request_path": request.url.path,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    headers = exc.headers if isinstance(exc, RateLimitExceededAppError) else None
    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs the error type for debugging while returning a generic message; no
    stack trace or exception text reaches the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
