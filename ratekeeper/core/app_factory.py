"""Application factory for the FastAPI app.

Centralizes app construction (limiter registry, middleware, handlers,
routers, docs) so tests can build isolated apps with their own limiters.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from ratekeeper.api.routes import health_router, limits_router
from ratekeeper.core.config import Settings, settings as default_settings
from ratekeeper.core.exception_handlers import setup_exception_handlers
from ratekeeper.core.limiters import RateLimiterRegistry, build_rate_limiters
from ratekeeper.core.logging import configure_logging
from ratekeeper.core.middleware import request_id_middleware
from ratekeeper.core.openapi import apply_openapi_customizations

logger = logging.getLogger(__name__)


def create_app(
    *,
    settings: Settings | None = None,
    registry: RateLimiterRegistry | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        settings: Settings to build from (defaults to the environment).
        registry: Pre-built limiter registry; built from settings when omitted.

    Returns:
        Configured FastAPI app. The settings and registry are available on
        ``app.state.settings`` and ``app.state.rate_limiters``; the registry
        is closed on shutdown.
    """
    cfg = settings or default_settings

    # Logging first so subsequent init logs are formatted as desired
    configure_logging(cfg.log)

    rate_limiters = registry or build_rate_limiters(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "app.startup",
            extra={"backend": rate_limiters.backend, "limiters": rate_limiters.names()},
        )
        yield
        rate_limiters.close()
        logger.info("app.shutdown")

    app = FastAPI(
        title="Ratekeeper",
        description=(
            "Rate limiting and abuse control: fixed and sliding windows, a "
            "shared Redis backend that fails open, and load/geo adaptive limits. "
            "Denied checks return 429 with Retry-After and X-RateLimit-* headers."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.rate_limiters = rate_limiters

    # Middleware
    app.middleware("http")(request_id_middleware)

    # Exception handlers
    setup_exception_handlers(app)

    # Routers
    app.include_router(limits_router, prefix="/v1")
    app.include_router(health_router)

    apply_openapi_customizations(app)

    return app
