"""Named limiter presets and the registry built once at startup.

The registry replaces process-wide singleton limiters: ``create_app`` builds
one with :func:`build_rate_limiters`, stores it on ``app.state`` and request
handlers receive it through a dependency. Tests build their own registry
with fresh limiters and a fake clock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Literal

from ratekeeper.adapters.rate_limit.adaptive import (
    GeoAdaptiveRateLimiter,
    LoadAdaptiveRateLimiter,
    tracked_keys_load_source,
)
from ratekeeper.adapters.rate_limit.base import AbstractRateLimiter, Clock, RateLimitConfig, epoch_ms
from ratekeeper.adapters.rate_limit.in_memory import (
    InMemoryFixedWindowRateLimiter,
    InMemorySlidingWindowRateLimiter,
)
from ratekeeper.adapters.rate_limit.keys import default_key_of, make_geo_from_headers, peer_key_of
from ratekeeper.adapters.rate_limit.redis_store import RedisSlidingWindowRateLimiter, create_redis_client
from ratekeeper.core.config import Settings
from ratekeeper.core.errors import NotFoundAppError

logger = logging.getLogger(__name__)

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS


@dataclass(frozen=True)
class RateLimitPreset:
    """Window and counting policy for one intended use."""

    window_ms: int
    max_requests: int
    count_successes: bool = True
    count_failures: bool = True
    algorithm: Literal["fixed", "sliding"] = "fixed"
    description: str = ""


PRESETS: dict[str, RateLimitPreset] = {
    "auth": RateLimitPreset(
        window_ms=15 * MINUTE_MS,
        max_requests=5,
        count_successes=False,
        description="Login attempts; only failed attempts consume budget",
    ),
    "password_reset": RateLimitPreset(
        window_ms=HOUR_MS,
        max_requests=3,
        description="Password reset requests",
    ),
    "api": RateLimitPreset(
        window_ms=MINUTE_MS,
        max_requests=100,
        algorithm="sliding",
        description="Generic API traffic",
    ),
    "search": RateLimitPreset(
        window_ms=MINUTE_MS,
        max_requests=30,
        algorithm="sliding",
        description="Search endpoints",
    ),
    "upload": RateLimitPreset(
        window_ms=MINUTE_MS,
        max_requests=10,
        description="File uploads",
    ),
    "contact": RateLimitPreset(
        window_ms=HOUR_MS,
        max_requests=5,
        description="Contact and feedback form submissions",
    ),
}


@dataclass
class RateLimiterRegistry:
    """Limiters by preset name plus the resources they share."""

    limiters: dict[str, AbstractRateLimiter]
    backend: str = "memory"
    resources: list[Any] = field(default_factory=list)

    def get(self, name: str) -> AbstractRateLimiter:
        """Return the limiter for ``name``.

        Raises:
            NotFoundAppError: If no limiter is registered under that name.
        """
        try:
            return self.limiters[name]
        except KeyError:
            raise NotFoundAppError(
                code="unknown_limiter",
                message=f"No rate limiter named '{name}'",
                details={"limiter": name, "hint": f"Known: {', '.join(sorted(self.limiters))}"},
            ) from None

    def names(self) -> list[str]:
        return sorted(self.limiters)

    def __iter__(self) -> Iterator[tuple[str, AbstractRateLimiter]]:
        return iter(self.limiters.items())

    def close(self) -> None:
        """Stop background sweeps and close shared clients."""
        for limiter in self.limiters.values():
            limiter.close()
        for resource in self.resources:
            resource.close()
        self.resources.clear()


def parse_country_codes(codes: str | None) -> set[str]:
    """Parse a comma-separated list of country codes.

    Examples:
        >>> sorted(parse_country_codes("cn, RU ,,kp"))
        ['CN', 'KP', 'RU']
    """
    if not codes:
        return set()
    return {code.strip().upper() for code in codes.split(",") if code.strip()}


def build_rate_limiters(
    settings: Settings,
    *,
    presets: dict[str, RateLimitPreset] | None = None,
    clock: Clock = epoch_ms,
    redis_client: Any | None = None,
    on_limit_reached: Callable[[str, str], None] | None = None,
) -> RateLimiterRegistry:
    """Instantiate one limiter per preset according to settings.

    Args:
        settings: Application settings.
        presets: Preset table (defaults to :data:`PRESETS`).
        clock: Time source in epoch ms, shared by every limiter.
        redis_client: Pre-built Redis client (otherwise built from settings
            when the redis backend is selected).
        on_limit_reached: Optional hook called with (preset name, key).

    Returns:
        RateLimiterRegistry holding the configured limiters.
    """
    presets = PRESETS if presets is None else presets
    app_cfg = settings.app
    rl_cfg = settings.rate_limit
    key_of = default_key_of if rl_cfg.trust_forwarded_for else peer_key_of

    registry = RateLimiterRegistry(limiters={}, backend=app_cfg.rate_limit_backend)
    if app_cfg.rate_limit_backend == "redis" and redis_client is None:
        redis_client = create_redis_client(settings.redis.url, timeout_ms=settings.redis.timeout_ms)
        registry.resources.append(redis_client)

    geo_of = make_geo_from_headers(rl_cfg.geo_country_header, rl_cfg.geo_anonymized_header)
    # Redis limiters track no keys locally, so there is no load to measure
    load_adaptive = rl_cfg.load_adaptive_enabled and app_cfg.rate_limit_backend != "redis"
    if rl_cfg.load_adaptive_enabled and not load_adaptive:
        logger.warning(
            "rate_limit.load_adaptive_unsupported",
            extra={"backend": app_cfg.rate_limit_backend, "action": "disabled"},
        )

    for name, preset in presets.items():
        hook = (lambda key, _name=name: on_limit_reached(_name, key)) if on_limit_reached else None
        config = RateLimitConfig(
            window_ms=preset.window_ms,
            max_requests=preset.max_requests,
            count_successes=preset.count_successes,
            count_failures=preset.count_failures,
            key_of=key_of,
            on_limit_reached=hook,
        )

        limiter: AbstractRateLimiter
        if app_cfg.rate_limit_backend == "redis":
            limiter = RedisSlidingWindowRateLimiter(
                config,
                redis_client,
                name=name,
                key_prefix=settings.redis.key_prefix,
                clock=clock,
            )
        else:
            limiter_cls = (
                InMemorySlidingWindowRateLimiter
                if preset.algorithm == "sliding"
                else InMemoryFixedWindowRateLimiter
            )
            limiter = limiter_cls(
                config,
                name=name,
                clock=clock,
                sweep_interval_seconds=app_cfg.sweep_interval_seconds or None,
            )

        if load_adaptive:
            limiter = LoadAdaptiveRateLimiter(
                limiter,
                tracked_keys_load_source(limiter, rl_cfg.load_saturation_keys),
                damping_factor=rl_cfg.load_damping_factor,
                refresh_interval_ms=rl_cfg.load_refresh_interval_ms,
                clock=clock,
            )
        if rl_cfg.geo_enabled:
            limiter = GeoAdaptiveRateLimiter(
                limiter,
                geo_of=geo_of,
                high_risk_countries=parse_country_codes(rl_cfg.high_risk_countries),
                high_risk_factor=rl_cfg.high_risk_factor,
                anonymized_factor=rl_cfg.anonymized_factor,
            )

        registry.limiters[name] = limiter

    logger.info(
        "rate_limit.registry_built",
        extra={
            "backend": registry.backend,
            "limiters": registry.names(),
            "load_adaptive": load_adaptive,
            "geo": rl_cfg.geo_enabled,
        },
    )
    return registry
