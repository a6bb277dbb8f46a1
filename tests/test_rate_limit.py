"""Tests for the sliding-window rate limiter."""

import pytest

from a11y_mcp.remediation.rate_limit import RateLimiter


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    """Test window accounting."""

    def test_allows_up_to_max_calls(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls=2, window=10.0, clock=clock)
        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()
        assert limiter.in_window == 2

    def test_window_slides(self):
        clock = FakeClock()
        limiter = RateLimiter(max_calls=1, window=10.0, clock=clock)
        assert limiter.try_acquire()
        clock.now += 4
        assert limiter.time_until_available() == pytest.approx(6.0)
        clock.now += 6
        assert limiter.time_until_available() == 0.0
        assert limiter.try_acquire()

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            RateLimiter(max_calls=0)
        with pytest.raises(ValueError):
            RateLimiter(window=0)
