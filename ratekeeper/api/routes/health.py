from __future__ import annotations

from fastapi import APIRouter, Depends

from ratekeeper.core.limiters import RateLimiterRegistry
from ratekeeper.core.rate_limit import get_registry

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check(registry: RateLimiterRegistry = Depends(get_registry)) -> dict:
    """Liveness check.

    Reports the configured counter backend and preset names. It does not
    ping Redis: the limiters fail open when it is down, so the service stays
    live either way.
    """

    return {
        "status": "ok",
        "backend": registry.backend,
        "limiters": registry.names(),
    }
