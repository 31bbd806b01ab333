"""Rate limiting adapters.

Fixed-window and sliding-window limiters in process memory, a Redis-backed
sliding window shared across processes, and wrappers that scale the
effective limit by load or request origin. All share
:class:`~ratekeeper.adapters.rate_limit.base.AbstractRateLimiter`.
"""

from ratekeeper.adapters.rate_limit.adaptive import GeoAdaptiveRateLimiter, LoadAdaptiveRateLimiter
from ratekeeper.adapters.rate_limit.base import AbstractRateLimiter, RateLimitConfig, RateLimitResult
from ratekeeper.adapters.rate_limit.in_memory import (
    InMemoryFixedWindowRateLimiter,
    InMemorySlidingWindowRateLimiter,
)
from ratekeeper.adapters.rate_limit.keys import GeoInfo, RequestContext
from ratekeeper.adapters.rate_limit.redis_store import RedisSlidingWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "GeoAdaptiveRateLimiter",
    "GeoInfo",
    "InMemoryFixedWindowRateLimiter",
    "InMemorySlidingWindowRateLimiter",
    "LoadAdaptiveRateLimiter",
    "RateLimitConfig",
    "RateLimitResult",
    "RedisSlidingWindowRateLimiter",
    "RequestContext",
]
