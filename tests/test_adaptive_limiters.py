"""Tests for the load- and geo-adaptive limiter wrappers."""

from unittest.mock import Mock

import pytest

from ratekeeper.adapters.rate_limit.adaptive import (
    GeoAdaptiveRateLimiter,
    LoadAdaptiveRateLimiter,
    scale_limit,
    tracked_keys_load_source,
)
from ratekeeper.adapters.rate_limit.base import RateLimitConfig
from ratekeeper.adapters.rate_limit.in_memory import InMemoryFixedWindowRateLimiter
from ratekeeper.adapters.rate_limit.keys import GeoInfo, RequestContext, make_geo_from_headers
from ratekeeper.core.errors import ValidationAppError


def _inner(clock: Mock, max_requests: int = 100) -> InMemoryFixedWindowRateLimiter:
    return InMemoryFixedWindowRateLimiter(
        RateLimitConfig(window_ms=60_000, max_requests=max_requests),
        name="api",
        clock=clock,
    )


class TestScaleLimit:
    def test_floors_product(self) -> None:
        assert scale_limit(100, 0.75) == 75
        assert scale_limit(10, 0.5, 0.3) == 1
        assert scale_limit(7, 0.5) == 3

    def test_never_below_one(self) -> None:
        assert scale_limit(1, 0.1) == 1
        assert scale_limit(5, 0.0) == 1

    def test_no_factors_keeps_limit(self) -> None:
        assert scale_limit(42) == 42


class TestLoadAdaptive:
    def test_half_load_with_default_damping(self, clock: Mock) -> None:
        limiter = LoadAdaptiveRateLimiter(_inner(clock), Mock(return_value=0.5), clock=clock)

        assert limiter.effective_limit() == 75
        assert limiter.check_key("k").limit == 75
        assert limiter.config.max_requests == 100

    def test_load_source_refreshed_at_most_once_per_interval(self, clock: Mock) -> None:
        load_source = Mock(return_value=0.0)
        limiter = LoadAdaptiveRateLimiter(_inner(clock), load_source, refresh_interval_ms=30_000, clock=clock)

        limiter.current_load()
        clock.return_value = 30_000
        limiter.current_load()
        assert load_source.call_count == 1

        load_source.return_value = 1.0
        clock.return_value = 30_001
        assert limiter.current_load() == 1.0
        assert load_source.call_count == 2
        assert limiter.effective_limit() == 50

    @pytest.mark.parametrize("measured, expected", [(-0.5, 0.0), (3.0, 1.0), (0.25, 0.25)])
    def test_load_is_clamped(self, clock: Mock, measured: float, expected: float) -> None:
        limiter = LoadAdaptiveRateLimiter(_inner(clock), Mock(return_value=measured), clock=clock)

        assert limiter.current_load() == expected

    def test_load_source_failure_keeps_previous_load(self, clock: Mock) -> None:
        load_source = Mock(return_value=0.4)
        limiter = LoadAdaptiveRateLimiter(_inner(clock), load_source, refresh_interval_ms=10, clock=clock)
        assert limiter.current_load() == 0.4

        load_source.side_effect = RuntimeError("metrics down")
        clock.return_value = 100

        assert limiter.current_load() == 0.4
        assert limiter.check_key("k").allowed is True

    def test_full_load_full_damping_floors_at_one(self, clock: Mock) -> None:
        limiter = LoadAdaptiveRateLimiter(
            _inner(clock, max_requests=3),
            Mock(return_value=1.0),
            damping_factor=1.0,
            clock=clock,
        )

        assert limiter.check_key("k").allowed is True
        denied = limiter.check_key("k")
        assert denied.allowed is False
        assert denied.limit == 1

    def test_delegates_state_operations(self, clock: Mock) -> None:
        inner = _inner(clock)
        limiter = LoadAdaptiveRateLimiter(inner, Mock(return_value=0.0), clock=clock)
        limiter.check_key("k")

        assert limiter.inner is inner
        assert limiter.name == "api"
        assert limiter.tracked_keys() == 1
        assert limiter.get_stats("k").count == 1
        limiter.reset("k")
        assert inner.get_stats("k") is None

    @pytest.mark.parametrize("kwargs", [{"damping_factor": 1.5}, {"damping_factor": -0.1}, {"refresh_interval_ms": 0}])
    def test_invalid_parameters(self, clock: Mock, kwargs: dict) -> None:
        with pytest.raises(ValidationAppError):
            LoadAdaptiveRateLimiter(_inner(clock), Mock(return_value=0.0), clock=clock, **kwargs)

    def test_tracked_keys_load_source(self, clock: Mock) -> None:
        inner = _inner(clock)
        load_source = tracked_keys_load_source(inner, saturation=4)
        for key in ("a", "b"):
            inner.check_key(key)

        assert load_source() == 0.5


class TestGeoAdaptive:
    @pytest.mark.parametrize(
        "geo, expected",
        [
            (None, 10),
            (GeoInfo(country="US"), 10),
            (GeoInfo(country="RU"), 5),
            (GeoInfo(country="cn"), 5),
            (GeoInfo(country="US", is_anonymized=True), 3),
            (GeoInfo(country="KP", is_anonymized=True), 1),
        ],
    )
    def test_effective_limit(self, clock: Mock, geo: GeoInfo | None, expected: int) -> None:
        limiter = GeoAdaptiveRateLimiter(_inner(clock, max_requests=10))

        assert limiter.effective_limit(geo) == expected

    def test_explicit_geo_applied_per_check(self, clock: Mock) -> None:
        limiter = GeoAdaptiveRateLimiter(_inner(clock, max_requests=10))

        result = limiter.check_key("k", geo=GeoInfo(country="IR"))

        assert result.limit == 5
        assert limiter.check_key("k").limit == 10

    def test_geo_resolved_from_headers(self, clock: Mock) -> None:
        limiter = GeoAdaptiveRateLimiter(
            _inner(clock, max_requests=10),
            geo_of=make_geo_from_headers(),
        )
        context = RequestContext(
            client_host="203.0.113.9",
            headers={"x-geo-country": "ru", "x-geo-anonymized": "true"},
        )

        result = limiter.check_limit(context)

        assert result.limit == 1
        assert limiter.get_stats("ip:203.0.113.9").count == 1

    def test_explicit_key_still_gets_geo_scaling(self, clock: Mock) -> None:
        limiter = GeoAdaptiveRateLimiter(
            _inner(clock, max_requests=10),
            geo_of=make_geo_from_headers(),
        )
        context = RequestContext(headers={"x-geo-country": "CN"})

        result = limiter.check_limit(context, key="login:alice")

        assert result.limit == 5
        assert limiter.get_stats("login:alice").count == 1

    def test_custom_country_list(self, clock: Mock) -> None:
        limiter = GeoAdaptiveRateLimiter(_inner(clock, max_requests=10), high_risk_countries=["BR"])

        assert limiter.effective_limit(GeoInfo(country="BR")) == 5
        assert limiter.effective_limit(GeoInfo(country="RU")) == 10

    @pytest.mark.parametrize("kwargs", [{"high_risk_factor": 0}, {"anonymized_factor": 1.2}])
    def test_invalid_factors(self, clock: Mock, kwargs: dict) -> None:
        with pytest.raises(ValidationAppError):
            GeoAdaptiveRateLimiter(_inner(clock), **kwargs)


def test_geo_over_load_multiplies_reductions(clock: Mock) -> None:
    load = LoadAdaptiveRateLimiter(_inner(clock), Mock(return_value=0.5), clock=clock)
    limiter = GeoAdaptiveRateLimiter(load)

    result = limiter.check_key("k", geo=GeoInfo(country="RU"))

    assert result.limit == 37
    assert limiter.config.max_requests == 100
