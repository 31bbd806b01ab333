"""Rate limiter interfaces.

Callers (the HTTP layer, presets, adaptive wrappers) depend on this
abstraction, not on a concrete store, so the in-memory limiters and the
Redis-backed one are interchangeable.

All timestamps are integer milliseconds since the UNIX epoch.
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable

from ratekeeper.adapters.rate_limit.keys import RequestContext, default_key_of, fingerprint_key
from ratekeeper.core.errors import ValidationAppError

logger = logging.getLogger(__name__)

Clock = Callable[[], int]
KeyFunc = Callable[[Any], str]


def epoch_ms() -> int:
    """Current UNIX time in milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limiter configuration.

    Attributes:
        window_ms: Length of the counting window in milliseconds.
        max_requests: Admission threshold per window.
        count_successes: Count checks reported with ``outcome=True``.
        count_failures: Count checks reported with ``outcome=False``.
        key_of: Maps an inbound request context to the limiter key.
        on_limit_reached: Optional callback fired with the key on each denial.

    Raises:
        ValidationAppError: If window_ms or max_requests is not positive.
    """

    window_ms: int
    max_requests: int
    count_successes: bool = True
    count_failures: bool = True
    key_of: KeyFunc = field(default=default_key_of, compare=False)
    on_limit_reached: Callable[[str], None] | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        for name in ("window_ms", "max_requests"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ValidationAppError(
                    code="invalid_rate_limit_config",
                    message=f"{name} must be a positive integer, got {value!r}",
                    details={"field": name, "min_value": 1},
                )

    def should_count(self, outcome: bool | None) -> bool:
        """Whether a check reported with ``outcome`` consumes budget.

        Unknown outcomes (``None``) are always counted.
        """
        if outcome is None:
            return True
        return self.count_successes if outcome else self.count_failures


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Effective max requests applied to this check.
        remaining: Remaining requests in the current window (never negative).
        reset_at: Epoch milliseconds when the window frees up.
        retry_after_seconds: Suggested wait in seconds, set only when blocked.
    """

    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None = None


def retry_after_seconds(reset_at: int, now: int) -> int:
    """Whole seconds until ``reset_at``, rounded up."""
    return max(0, math.ceil((reset_at - now) / 1000))


class AbstractRateLimiter(ABC):
    """Interface for rate limiters.

    Subclasses implement :meth:`check_key`; :meth:`check_limit` derives the
    key from a request context with the configured ``key_of``.
    """

    #: Name used in logs (preset name when built from settings).
    name: str = "default"

    @property
    @abstractmethod
    def config(self) -> RateLimitConfig:
        """The limiter's base configuration."""
        raise NotImplementedError

    @abstractmethod
    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
    ) -> RateLimitResult:
        """Record an observation for ``key`` and decide admission.

        Args:
            key: Identity under which requests are grouped.
            outcome: True for success, False for failure, None when unknown.
            max_requests: Effective limit for this single check; defaults to
                the configured one. The stored configuration is never changed.

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError

    def check_limit(
        self,
        context: RequestContext | Any,
        outcome: bool | None = None,
        *,
        key: str | None = None,
    ) -> RateLimitResult:
        """Derive the key from ``context`` (unless given) and run :meth:`check_key`."""
        return self.check_key(key or self.config.key_of(context), outcome)

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget all state for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def get_stats(self, key: str) -> Any:
        """Snapshot of the state held for ``key``, or None."""
        raise NotImplementedError

    def tracked_keys(self) -> int:
        """Number of keys currently holding state (0 when unknown)."""
        return 0

    def close(self) -> None:
        """Release background resources. Safe to call more than once."""

    def _effective_limit(self, max_requests: int | None) -> int:
        if max_requests is None:
            return self.config.max_requests
        if max_requests < 1:
            raise ValidationAppError(
                code="invalid_effective_limit",
                message="effective max_requests must be >= 1",
                details={"actual_value": max_requests, "min_value": 1},
            )
        return max_requests

    def _notify_denied(self, key: str, result: RateLimitResult) -> None:
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "limiter": self.name,
                "key_hash": fingerprint_key(key),
                "limit": result.limit,
                "retry_after_s": result.retry_after_seconds,
            },
        )
        if self.config.on_limit_reached is not None:
            self.config.on_limit_reached(key)
