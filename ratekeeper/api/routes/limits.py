from __future__ import annotations

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, Header, Request, Response, status

from ratekeeper.adapters.rate_limit.in_memory import RateLimitRecord
from ratekeeper.adapters.rate_limit.keys import fingerprint_key
from ratekeeper.core.auth import is_trusted_service, verify_admin_key
from ratekeeper.core.config import Settings
from ratekeeper.core.limiters import RateLimiterRegistry
from ratekeeper.core.rate_limit import (
    format_epoch_ms,
    get_app_settings,
    get_registry,
    raise_if_denied,
    rate_limit,
    request_context_from,
)
from ratekeeper.schemas.limits import (
    LimiterInfo,
    RateLimitCheckRequest,
    RateLimitCheckResponse,
    RateLimitStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Rate limits"])


@router.get(
    "/limits",
    response_model=List[LimiterInfo],
    dependencies=[Depends(rate_limit("api"))],
)
def list_limiters(registry: RateLimiterRegistry = Depends(get_registry)) -> List[LimiterInfo]:
    """List configured presets and their base configuration."""
    return [
        LimiterInfo(
            name=name,
            window_ms=limiter.config.window_ms,
            max_requests=limiter.config.max_requests,
            count_successes=limiter.config.count_successes,
            count_failures=limiter.config.count_failures,
        )
        for name, limiter in registry
    ]


@router.post("/limits/{preset}/check", response_model=RateLimitCheckResponse)
def check_limit(
    preset: str,
    body: RateLimitCheckRequest,
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
    registry: RateLimiterRegistry = Depends(get_registry),
    settings: Settings = Depends(get_app_settings),
) -> RateLimitCheckResponse:
    """Record one observation against a preset and return the decision.

    Used by services that only learn the outcome after the fact (e.g. a login
    handler reporting ``outcome=false`` for a failed attempt). Only a trusted
    service (``X-API-Key`` from ``APP_SERVICE_API_KEYS`` or an admin key) may
    choose ``key`` and report ``outcome``. For any other caller both are
    ignored: the key is derived from the request and every check counts.

    Raises:
        RateLimitExceededAppError: 429 with Retry-After/X-RateLimit-* headers
            when the check is denied.
    """
    limiter = registry.get(preset)
    context = request_context_from(request)
    key = limiter.config.key_of(context)
    outcome = None
    if is_trusted_service(x_api_key, settings.app):
        key = body.key or key
        outcome = body.outcome
    elif body.key is not None or body.outcome is not None:
        logger.info(
            "rate_limit.untrusted_override_ignored",
            extra={"limiter": limiter.name, "key_hash": fingerprint_key(key)},
        )
    result = limiter.check_limit(context, outcome, key=key)
    raise_if_denied(limiter, key, result, include_headers=settings.app.rate_limit_include_headers)
    return RateLimitCheckResponse(
        limiter=limiter.name,
        allowed=result.allowed,
        limit=result.limit,
        remaining=result.remaining,
        reset_at=format_epoch_ms(result.reset_at),
        retry_after_seconds=result.retry_after_seconds,
    )


@router.get(
    "/limits/{preset}/keys/{key}",
    response_model=RateLimitStatsResponse,
    dependencies=[Depends(verify_admin_key)],
)
def get_key_stats(
    preset: str,
    key: str,
    registry: RateLimiterRegistry = Depends(get_registry),
) -> RateLimitStatsResponse:
    """Inspect the state held for one key (admin)."""
    limiter = registry.get(preset)
    record = limiter.get_stats(key)
    if record is None:
        return RateLimitStatsResponse(limiter=limiter.name, key=key, count=0)

    if isinstance(record, RateLimitRecord):
        return RateLimitStatsResponse(
            limiter=limiter.name,
            key=key,
            count=record.count,
            failure_count=record.failure_count,
            window_start=format_epoch_ms(record.window_start),
            reset_at=format_epoch_ms(record.reset_at),
        )

    timestamps = list(record.timestamps)
    return RateLimitStatsResponse(
        limiter=limiter.name,
        key=key,
        count=len(timestamps),
        window_start=format_epoch_ms(timestamps[0]),
        reset_at=format_epoch_ms(timestamps[0] + limiter.config.window_ms),
        timestamps=[format_epoch_ms(ts) for ts in timestamps],
    )


@router.delete(
    "/limits/{preset}/keys/{key}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_admin_key)],
)
def reset_key(
    preset: str,
    key: str,
    registry: RateLimiterRegistry = Depends(get_registry),
) -> Response:
    """Forget all state for one key (admin), e.g. after a password reset."""
    registry.get(preset).reset(key)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
