"""Redis-backed sliding-window rate limiter.

Every process sharing the same Redis enforces one global limit per key.
Each key is a sorted set of request members scored by their epoch-ms
timestamp. One MULTI/EXEC pipeline per check performs, atomically:

1. ZREMRANGEBYSCORE  drop members scored ``<= now - window_ms``
2. ZADD              record the current request (when counted)
3. ZCARD             count requests in the window
4. ZRANGE 0 0        read the oldest member to compute ``reset_at``
5. PEXPIRE           let idle keys expire on their own

If Redis is unreachable or slow (socket timeout), the limiter fails open.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from typing import Any

import redis

from ratekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    Clock,
    RateLimitConfig,
    RateLimitResult,
    epoch_ms,
    retry_after_seconds,
)
from ratekeeper.adapters.rate_limit.in_memory import SlidingWindowRecord
from ratekeeper.adapters.rate_limit.keys import fingerprint_key
from ratekeeper.core.errors import BackendUnavailableAppError, ValidationAppError

logger = logging.getLogger(__name__)


def create_redis_client(url: str, *, timeout_ms: int = 200) -> redis.Redis:
    """Build a Redis client whose every round-trip is bounded by ``timeout_ms``.

    The connection is established lazily on first use.
    """
    timeout = timeout_ms / 1000
    return redis.Redis.from_url(
        url,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        retry_on_timeout=False,
    )


class RedisSlidingWindowRateLimiter(AbstractRateLimiter):
    """Sliding-window limiter sharing state through Redis sorted sets.

    Uses the same pruning convention as the in-memory sliding window
    (members scored ``<= now - window_ms`` are dropped) so both backends
    agree at the window edge.
    """

    backend = "redis"

    def __init__(
        self,
        config: RateLimitConfig,
        client: Any,
        *,
        name: str = "default",
        key_prefix: str = "rate_limit:",
        clock: Clock = epoch_ms,
    ) -> None:
        self._config = config
        self._redis = client
        self.name = name
        self._key_prefix = key_prefix
        self._clock = clock

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def _redis_key(self, key: str) -> str:
        return f"{self._key_prefix}{self.name}:{key}"

    def _unavailable(self, exc: redis.RedisError) -> BackendUnavailableAppError:
        return BackendUnavailableAppError(
            code="rate_limit_backend_unavailable",
            message="Rate limit store is unavailable",
            details={"backend": self.backend, "error_type": type(exc).__name__},
        )

    def _run_window_pipeline(self, redis_key: str, now: int, counted: bool) -> tuple[int, int | None]:
        """Execute the atomic prune/add/count/oldest/expire sequence.

        Returns:
            Tuple of (requests in window, oldest timestamp or None).

        Raises:
            BackendUnavailableAppError: On any Redis error or timeout.
        """
        window_ms = self._config.window_ms
        try:
            pipe = self._redis.pipeline(transaction=True)
            pipe.zremrangebyscore(redis_key, "-inf", now - window_ms)
            if counted:
                pipe.zadd(redis_key, {f"{now}-{uuid.uuid4().hex[:12]}": now})
            pipe.zcard(redis_key)
            pipe.zrange(redis_key, 0, 0, withscores=True)
            pipe.pexpire(redis_key, window_ms)
            results = pipe.execute()
        except redis.RedisError as exc:
            raise self._unavailable(exc) from exc

        offset = 1 if counted else 0
        count = int(results[1 + offset])
        oldest_entries = results[2 + offset]
        oldest = int(oldest_entries[0][1]) if oldest_entries else None
        return count, oldest

    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
    ) -> RateLimitResult:
        if not key:
            raise ValidationAppError(
                code="invalid_rate_limit_key",
                message="key must be a non-empty string",
            )
        limit = self._effective_limit(max_requests)
        now = self._clock()

        try:
            count, oldest = self._run_window_pipeline(
                self._redis_key(key),
                now,
                self._config.should_count(outcome),
            )
        except BackendUnavailableAppError as exc:
            return self._fail_open(key, limit, now, exc)

        reset_at = (oldest if oldest is not None else now) + self._config.window_ms
        allowed = count <= limit
        result = RateLimitResult(
            allowed=allowed,
            limit=limit,
            remaining=max(0, limit - count),
            reset_at=reset_at,
            retry_after_seconds=None if allowed else retry_after_seconds(reset_at, now),
        )
        if not allowed:
            self._notify_denied(key, result)
        return result

    def _fail_open(
        self,
        key: str,
        limit: int,
        now: int,
        exc: BackendUnavailableAppError,
    ) -> RateLimitResult:
        logger.warning(
            "rate_limit.backend_unavailable",
            extra={
                "limiter": self.name,
                "backend": self.backend,
                "key_hash": fingerprint_key(key),
                "error_type": (exc.details or {}).get("error_type"),
                "policy": "fail_open",
            },
        )
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - 1),
            reset_at=now + self._config.window_ms,
        )

    def reset(self, key: str) -> None:
        """Delete the key's window.

        Raises:
            BackendUnavailableAppError: When Redis cannot be reached.
        """
        try:
            self._redis.delete(self._redis_key(key))
        except redis.RedisError as exc:
            raise self._unavailable(exc) from exc

    def get_stats(self, key: str) -> SlidingWindowRecord | None:
        """Read the timestamps currently inside the key's window.

        Raises:
            BackendUnavailableAppError: When Redis cannot be reached.
        """
        cutoff = self._clock() - self._config.window_ms
        try:
            entries = self._redis.zrangebyscore(
                self._redis_key(key), f"({cutoff}", "+inf", withscores=True
            )
        except redis.RedisError as exc:
            raise self._unavailable(exc) from exc
        if not entries:
            return None
        return SlidingWindowRecord(key=key, timestamps=deque(int(score) for _, score in entries))
