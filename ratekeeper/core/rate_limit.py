"""Rate limiting dependencies for FastAPI routes.

This module wires the limiter registry into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``rate_limit("<preset>")`` only.
- Framework-agnostic limiters: the FastAPI request is converted into a
  ``RequestContext`` before reaching a limiter.
- Denial is a result, not an exception, inside the limiters; this layer is
  the one place that turns it into HTTP 429.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from fastapi import Request

from ratekeeper.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from ratekeeper.adapters.rate_limit.keys import RequestContext, fingerprint_key
from ratekeeper.core.config import Settings
from ratekeeper.core.errors import RateLimitExceededAppError
from ratekeeper.core.limiters import RateLimiterRegistry

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> RateLimiterRegistry:
    """FastAPI dependency returning the registry built at app creation."""
    return request.app.state.rate_limiters


def get_app_settings(request: Request) -> Settings:
    """FastAPI dependency returning the settings the app was created with."""
    return request.app.state.settings


def request_context_from(request: Request) -> RequestContext:
    """Convert a FastAPI request into the limiter's neutral context."""
    account_id = getattr(request.state, "account_id", None)
    return RequestContext(
        client_host=request.client.host if request.client else None,
        headers={name.lower(): value for name, value in request.headers.items()},
        account_id=account_id,
    )


def format_epoch_ms(value: int) -> str:
    """ISO-8601 UTC rendering of an epoch-ms timestamp."""
    return (
        datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def build_rate_limit_headers(result: RateLimitResult, limit: int) -> dict[str, str]:
    """Headers sent with a 429.

    Args:
        result: Denied check result.
        limit: Configured max requests of the limiter.
    """
    return {
        "Retry-After": str(result.retry_after_seconds or 0),
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": format_epoch_ms(result.reset_at),
    }


def raise_if_denied(
    limiter: AbstractRateLimiter,
    key: str,
    result: RateLimitResult,
    *,
    include_headers: bool = True,
) -> None:
    """Translate a denied result into ``RateLimitExceededAppError``.

    Args:
        limiter: Limiter that produced the result.
        key: Key that was checked (logged hashed only).
        result: Check result.
        include_headers: Attach Retry-After and X-RateLimit-* headers.

    Raises:
        RateLimitExceededAppError: When ``result.allowed`` is false.
    """
    if result.allowed:
        logger.debug(
            "rate_limit.allowed",
            extra={
                "limiter": limiter.name,
                "key_hash": fingerprint_key(key),
                "limit": result.limit,
                "remaining": result.remaining,
            },
        )
        return

    headers = None
    if include_headers:
        headers = build_rate_limit_headers(result, limiter.config.max_requests)

    raise RateLimitExceededAppError(
        code="rate_limit_exceeded",
        message="Rate limit exceeded. Try again later.",
        details={
            "limiter": limiter.name,
            "retry_after": result.retry_after_seconds or 0,
        },
        headers=headers,
    )


def rate_limit(preset: str) -> Callable[[Request], None]:
    """Build a dependency enforcing the named preset on a route.

    The dependency is synchronous so FastAPI runs it in its threadpool; a
    Redis round-trip then never blocks the event loop.

    Usage:
        @router.get("/search", dependencies=[Depends(rate_limit("search"))])
        async def search(...): ...
    """

    def enforce_rate_limit(request: Request) -> None:
        app_settings = get_app_settings(request).app
        if not app_settings.rate_limit_enabled:
            return
        limiter = get_registry(request).get(preset)
        context = request_context_from(request)
        key = limiter.config.key_of(context)
        result = limiter.check_limit(context)
        raise_if_denied(limiter, key, result, include_headers=app_settings.rate_limit_include_headers)

    enforce_rate_limit.__name__ = f"enforce_rate_limit_{preset}"
    return enforce_rate_limit
