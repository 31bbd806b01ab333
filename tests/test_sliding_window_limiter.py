"""Unit tests for the in-memory sliding-window rate limiter."""

from unittest.mock import Mock

import pytest

from ratekeeper.adapters.rate_limit.base import RateLimitConfig
from ratekeeper.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter
from ratekeeper.core.errors import ValidationAppError


def _limiter(clock: Mock, **config_kwargs) -> InMemorySlidingWindowRateLimiter:
    config_kwargs.setdefault("window_ms", 1000)
    config_kwargs.setdefault("max_requests", 2)
    return InMemorySlidingWindowRateLimiter(RateLimitConfig(**config_kwargs), clock=clock)


def _at(limiter: InMemorySlidingWindowRateLimiter, clock: Mock, now: int, key: str = "k", outcome=None):
    clock.return_value = now
    return limiter.check_key(key, outcome)


def test_denied_requests_are_recorded_and_keep_window_full(clock: Mock) -> None:
    limiter = _limiter(clock)

    results = [_at(limiter, clock, now) for now in (0, 400, 900)]
    assert [r.allowed for r in results] == [True, True, False]

    later = _at(limiter, clock, 1001)

    assert later.allowed is False
    assert later.remaining == 0
    assert later.reset_at == 1400
    assert later.retry_after_seconds == 1
    assert list(limiter.get_stats("k").timestamps) == [400, 900, 1001]


def test_timestamp_exactly_window_old_is_pruned(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=1)

    assert _at(limiter, clock, 0).allowed is True
    assert _at(limiter, clock, 999).allowed is False

    fresh = InMemorySlidingWindowRateLimiter(RateLimitConfig(window_ms=1000, max_requests=1), clock=clock)
    assert _at(fresh, clock, 0).allowed is True
    assert _at(fresh, clock, 1000).allowed is True
    assert list(fresh.get_stats("k").timestamps) == [1000]


def test_reset_at_tracks_oldest_timestamp(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=5)

    assert _at(limiter, clock, 100).reset_at == 1100
    assert _at(limiter, clock, 700).reset_at == 1100
    assert _at(limiter, clock, 1150).reset_at == 1700


def test_admitted_requests_never_exceed_limit_in_any_window(clock: Mock) -> None:
    limiter = _limiter(clock, window_ms=1000, max_requests=3)
    admitted: list[int] = []

    for now in range(0, 5000, 70):
        if _at(limiter, clock, now).allowed:
            admitted.append(now)

    for t in admitted:
        in_window = [a for a in admitted if t - 1000 < a <= t]
        assert len(in_window) <= 3


def test_uncounted_outcome_does_not_record(clock: Mock) -> None:
    limiter = _limiter(clock, count_successes=False)

    for now in (0, 1, 2):
        result = _at(limiter, clock, now, outcome=True)
        assert result.allowed is True
        assert result.remaining == 2
        assert result.reset_at == now + 1000

    assert limiter.get_stats("k") is None
    assert limiter.tracked_keys() == 0

    assert _at(limiter, clock, 3, outcome=False).remaining == 1


def test_backwards_clock_keeps_timestamps_ordered(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=5)

    _at(limiter, clock, 500)
    _at(limiter, clock, 300)

    assert list(limiter.get_stats("k").timestamps) == [500, 500]


def test_on_limit_reached(clock: Mock) -> None:
    hook = Mock()
    limiter = _limiter(clock, max_requests=1, on_limit_reached=hook)

    _at(limiter, clock, 0)
    _at(limiter, clock, 1)

    hook.assert_called_once_with("k")


def test_effective_limit_override(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=10)

    clock.return_value = 0
    assert limiter.check_key("k", max_requests=1).allowed is True
    denied = limiter.check_key("k", max_requests=1)

    assert denied.allowed is False
    assert denied.limit == 1
    assert limiter.config.max_requests == 10


def test_reset_and_snapshot(clock: Mock) -> None:
    limiter = _limiter(clock)
    _at(limiter, clock, 0)

    snapshot = limiter.get_stats("k")
    snapshot.timestamps.append(42)
    assert list(limiter.get_stats("k").timestamps) == [0]

    limiter.reset("k")
    assert limiter.get_stats("k") is None


def test_sweep_prunes_and_drops_empty_keys(clock: Mock) -> None:
    limiter = _limiter(clock, max_requests=5)
    _at(limiter, clock, 0, key="old")
    _at(limiter, clock, 0, key="mixed")
    _at(limiter, clock, 800, key="mixed")

    removed = limiter.sweep(now=1000)

    assert removed == 1
    assert limiter.get_stats("old") is None
    assert list(limiter.get_stats("mixed").timestamps) == [800]
    assert limiter.tracked_keys() == 1


def test_empty_key_rejected(clock: Mock) -> None:
    limiter = _limiter(clock)

    with pytest.raises(ValidationAppError) as exc_info:
        limiter.check_key("")

    assert exc_info.value.code == "invalid_rate_limit_key"
