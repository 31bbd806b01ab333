"""In-memory rate limiters (fixed window and sliding window).

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
  Use the Redis limiter when one global limit must hold across processes.
- Thread-safe: one lock guards each limiter's record map, so the
  read-modify-write of a record is atomic under a threaded server.
- Memory is bounded by a periodic sweep that drops expired records.
"""

from __future__ import annotations

import logging
import threading
from abc import abstractmethod
from collections import deque
from dataclasses import dataclass, field, replace

from ratekeeper.adapters.rate_limit.base import (
    AbstractRateLimiter,
    Clock,
    RateLimitConfig,
    RateLimitResult,
    epoch_ms,
    retry_after_seconds,
)
from ratekeeper.adapters.rate_limit.sweeper import PeriodicSweeper
from ratekeeper.core.errors import ValidationAppError

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    """Fixed-window state for one key."""

    key: str
    window_start: int
    reset_at: int
    count: int = 0
    failure_count: int = 0


@dataclass
class SlidingWindowRecord:
    """Sliding-window state for one key: observed request times, oldest first."""

    key: str
    timestamps: deque[int] = field(default_factory=deque)


class _InMemoryRateLimiter(AbstractRateLimiter):
    """Shared plumbing: config, clock, lock and background sweep."""

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        name: str = "default",
        clock: Clock = epoch_ms,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self._config = config
        self.name = name
        self._clock = clock
        self._lock = threading.RLock()
        self._sweeper: PeriodicSweeper | None = None
        if sweep_interval_seconds:
            self._sweeper = PeriodicSweeper(
                self.sweep,
                sweep_interval_seconds,
                name=f"rate-limit-sweeper:{name}",
            )
            self._sweeper.start()

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def sweep(self, now: int | None = None) -> int:
        """Delete expired records.

        Args:
            now: Reference time in epoch ms (defaults to the limiter clock).

        Returns:
            Number of keys removed.
        """
        now = self._clock() if now is None else now
        with self._lock:
            removed = self._sweep_locked(now)
            remaining = self.tracked_keys()
        logger.debug(
            "rate_limit.sweep",
            extra={"limiter": self.name, "removed": removed, "tracked_keys": remaining},
        )
        return removed

    @abstractmethod
    def _sweep_locked(self, now: int) -> int:
        """Remove expired records; caller holds the lock."""
        raise NotImplementedError

    def _validate_key(self, key: str) -> None:
        if not key:
            raise ValidationAppError(
                code="invalid_rate_limit_key",
                message="key must be a non-empty string",
            )


class InMemoryFixedWindowRateLimiter(_InMemoryRateLimiter):
    """Rate limiter counting requests per key in a fixed window.

    The window for a key opens lazily on its first observation and lasts
    ``window_ms``. A check at exactly ``reset_at`` still belongs to the
    expiring window; the first check strictly after ``reset_at`` opens a new
    one. Every counted check increments the counter, including denied ones, so
    a key that keeps hammering stays blocked until the window rolls over.

    Example:
        >>> limiter = InMemoryFixedWindowRateLimiter(RateLimitConfig(window_ms=60_000, max_requests=3))
        >>> limiter.check_key("ip:203.0.113.7").remaining
        2
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        name: str = "default",
        clock: Clock = epoch_ms,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self._records: dict[str, RateLimitRecord] = {}
        super().__init__(
            config,
            name=name,
            clock=clock,
            sweep_interval_seconds=sweep_interval_seconds,
        )

    def _get_or_reset_record(self, key: str, now: int) -> RateLimitRecord:
        record = self._records.get(key)
        if record is None or now > record.reset_at:
            record = RateLimitRecord(
                key=key,
                window_start=now,
                reset_at=now + self._config.window_ms,
            )
            self._records[key] = record
        return record

    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
    ) -> RateLimitResult:
        """Count the observation (per outcome policy) and decide admission.

        Raises:
            ValidationAppError: If key is empty or max_requests < 1.
        """
        self._validate_key(key)
        limit = self._effective_limit(max_requests)
        now = self._clock()

        with self._lock:
            record = self._get_or_reset_record(key, now)
            if self._config.should_count(outcome):
                record.count += 1
                if outcome is False:
                    record.failure_count += 1
            count = record.count
            reset_at = record.reset_at

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

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def get_stats(self, key: str) -> RateLimitRecord | None:
        """Return a snapshot of the current window for ``key``.

        A record whose window has ended but which the sweep has not removed
        yet is reported as absent, like a key never seen.
        """
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is None or now > record.reset_at:
                return None
            return replace(record)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._records)

    def _sweep_locked(self, now: int) -> int:
        expired = [key for key, record in self._records.items() if record.reset_at < now]
        for key in expired:
            del self._records[key]
        return len(expired)


class InMemorySlidingWindowRateLimiter(_InMemoryRateLimiter):
    """Rate limiter over a rolling window of request timestamps.

    On each check, timestamps ``<= now - window_ms`` are pruned and the
    current request is appended when counted (always, for ``outcome=None``).
    Denied requests are recorded too. ``reset_at`` is when the oldest
    recorded request leaves the window.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        name: str = "default",
        clock: Clock = epoch_ms,
        sweep_interval_seconds: float | None = None,
    ) -> None:
        self._records: dict[str, SlidingWindowRecord] = {}
        super().__init__(
            config,
            name=name,
            clock=clock,
            sweep_interval_seconds=sweep_interval_seconds,
        )

    @staticmethod
    def _prune(timestamps: deque[int], cutoff: int) -> None:
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()

    def check_key(
        self,
        key: str,
        outcome: bool | None = None,
        *,
        max_requests: int | None = None,
    ) -> RateLimitResult:
        self._validate_key(key)
        limit = self._effective_limit(max_requests)
        now = self._clock()
        window_ms = self._config.window_ms

        with self._lock:
            record = self._records.get(key)
            if record is None:
                record = SlidingWindowRecord(key=key)
                self._records[key] = record
            self._prune(record.timestamps, now - window_ms)
            if self._config.should_count(outcome):
                # Clocks may step backwards; keep the sequence ordered.
                record.timestamps.append(max(now, record.timestamps[-1]) if record.timestamps else now)
            count = len(record.timestamps)
            reset_at = record.timestamps[0] + window_ms if record.timestamps else now + window_ms
            if not record.timestamps:
                del self._records[key]

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

    def reset(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def get_stats(self, key: str) -> SlidingWindowRecord | None:
        """Return a snapshot of the timestamps recorded for ``key``, if any."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return SlidingWindowRecord(key=key, timestamps=deque(record.timestamps))

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._records)

    def _sweep_locked(self, now: int) -> int:
        cutoff = now - self._config.window_ms
        removed = 0
        for key in list(self._records):
            timestamps = self._records[key].timestamps
            self._prune(timestamps, cutoff)
            if not timestamps:
                del self._records[key]
                removed += 1
        return removed
