"""Wrappers that shrink the effective limit of another limiter per check.

Both wrappers compute an effective ``max_requests`` and pass it to the inner
limiter's ``check_key`` for that single call. The inner limiter's
configuration is never modified, so concurrent checks against the same
instance cannot observe each other's adjustments.

The effective limit is never below 1: a key is slowed down, not locked out.
"""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, Callable, Iterable

from ratekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    Clock,
    RateLimitConfig,
    RateLimitResult,
    epoch_ms,
)
from ratekeeper.adapters.rate_limit.keys import GeoInfo, RequestContext
from ratekeeper.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

LoadSource = Callable[[], float]
GeoFunc = Callable[[Any], "GeoInfo | None"]


def scale_limit(max_requests: int, *factors: float) -> int:
    """Apply multiplicative factors to a limit, flooring at 1."""
    scaled = float(max_requests)
    for factor in factors:
        scaled *= factor
    return max(1, math.floor(scaled))


def _require_fraction(name: str, value: float, *, allow_zero: bool) -> None:
    low_ok = value >= 0 if allow_zero else value > 0
    if not (low_ok and value <= 1):
        raise ValidationAppError(
            code="invalid_rate_limit_config",
            message=f"{name} must be in {'[0, 1]' if allow_zero else '(0, 1]'}, got {value!r}",
            details={"field": name},
        )


def tracked_keys_load_source(limiter: AbstractRateLimiter, saturation: int = 1000) -> LoadSource:
    """Load estimate from the number of keys a limiter currently tracks.

    ``saturation`` tracked keys (or more) count as full load.
    """

    def estimate() -> float:
        return limiter.tracked_keys() / saturation

    return estimate


class _DelegatingRateLimiter(AbstractRateLimiter):
    def __init__(self, inner: AbstractRateLimiter) -> None:
        self._inner = inner
        self.name = inner.name

    @property
    def config(self) -> RateLimitConfig:
        return self._inner.config

    @property
    def inner(self) -> AbstractRateLimiter:
        return self._inner

    def reset(self, key: str) -> None:
        self._inner.reset(key)

    def get_stats(self, key: str) -> Any:
        return self._inner.get_stats(key)

    def tracked_keys(self) -> int:
        return self._inner.tracked_keys()

    def close(self) -> None:
        self._inner.close()


class LoadAdaptiveRateLimiter(_DelegatingRateLimiter):
    """Scale the limit down as system load rises.

    ``effective = max(1, floor(max_requests * (1 - load * damping_factor)))``

    The load estimate (clamped to ``[0, 1]``) is refreshed from ``load_source``
    at most once per ``refresh_interval_ms``; checks in between reuse the
    cached value. If the source raises, the previous estimate is kept.
    """

    def __init__(
        self,
        inner: AbstractRateLimiter,
        load_source: LoadSource,
        *,
        damping_factor: float = 0.5,
        refresh_interval_ms: int = 30_000,
        clock: Clock = epoch_ms,
    ) -> None:
        super().__init__(inner)
        _require_fraction("damping_factor", damping_factor, allow_zero=True)
        if refresh_interval_ms <= 0:
            raise ValidationAppError(
                code="invalid_rate_limit_config",
                message="refresh_interval_ms must be > 0",
                details={"field": "refresh_interval_ms", "min_value": 1},
            )
        self._load_source = load_source
        self._damping = damping_factor
        self._refresh_interval_ms = refresh_interval_ms
        self._clock = clock
        self._load = 0.0
        self._last_refresh: int | None = None
        self._load_lock = threading.Lock()

    @property
    def load(self) -> float:
        return self._load

    def current_load(self) -> float:
        """Return the load estimate, refreshing it when the interval elapsed."""
        now = self._clock()
        with self._load_lock:
            if self._last_refresh is not None and now - self._last_refresh <= self._refresh_interval_ms:
                return self._load
            self._last_refresh = now
            try:
                measured = float(self._load_source())
            except Exception:
                logger.warning(
                    "rate_limit.load_source_failed",
                    extra={"limiter": self.name, "kept_load": self._load},
                    exc_info=True,
                )
                return self._load
            self._load = min(1.0, max(0.0, measured))
            logger.debug("rate_limit.load_refreshed", extra={"limiter": self.name, "load": self._load})
            return self._load

    def effective_limit(self, base_limit: int | None = None) -> int:
        base = self.config.max_requests if base_limit is None else base_limit
        return scale_limit(base, 1 - self.current_load() * self._damping)

    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
    ) -> RateLimitResult:
        return self._inner.check_key(key, outcome, max_requests=self.effective_limit(max_requests))


class GeoAdaptiveRateLimiter(_DelegatingRateLimiter):
    """Scale the limit down for high-risk or anonymized origins.

    A request from a high-risk country gets ``high_risk_factor`` applied, a
    VPN/proxy origin gets ``anonymized_factor``; both apply multiplicatively
    when both hold.
    """

    def __init__(
        self,
        inner: AbstractRateLimiter,
        *,
        geo_of: GeoFunc | None = None,
        high_risk_countries: Iterable[str] = ("CN", "RU", "KP", "IR"),
        high_risk_factor: float = 0.5,
        anonymized_factor: float = 0.3,
    ) -> None:
        super().__init__(inner)
        _require_fraction("high_risk_factor", high_risk_factor, allow_zero=False)
        _require_fraction("anonymized_factor", anonymized_factor, allow_zero=False)
        self._geo_of = geo_of
        self._high_risk = frozenset(c.strip().upper() for c in high_risk_countries if c.strip())
        self._high_risk_factor = high_risk_factor
        self._anonymized_factor = anonymized_factor

    def effective_limit(self, geo: GeoInfo | None, base_limit: int | None = None) -> int:
        base = self.config.max_requests if base_limit is None else base_limit
        if geo is None:
            return base
        factors = []
        if geo.country and geo.country.upper() in self._high_risk:
            factors.append(self._high_risk_factor)
        if geo.is_anonymized:
            factors.append(self._anonymized_factor)
        return scale_limit(base, *factors) if factors else base

    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
        geo: GeoInfo | None = None,
    ) -> RateLimitResult:
        return self._inner.check_key(key, outcome, max_requests=self.effective_limit(geo, max_requests))

    def check_limit(
        self,
        context: RequestContext | Any,
        outcome: bool | None = None,
        *,
        key: str | None = None,
        geo: GeoInfo | None = None,
    ) -> RateLimitResult:
        """Check with geo data given explicitly or resolved by ``geo_of``."""
        if geo is None and self._geo_of is not None:
            geo = self._geo_of(context)
        return self.check_key(key or self.config.key_of(context), outcome, geo=geo)
