"""Tests for fixed-interval pacing."""
import pytest

from dispatch_queue.rate_limiter import FixedIntervalRateLimiter, compute_delay_ms


class TestComputeDelay:
    @pytest.mark.parametrize("rate,expected", [
        (256, 258),
        (60, 1100),
        (1, 66000),
        (600, 110),
    ])
    def test_delay_with_default_margin(self, rate, expected):
        assert compute_delay_ms(rate) == expected

    def test_without_margin(self):
        assert compute_delay_ms(256, safety_margin=0.0) == 235

    @pytest.mark.parametrize("rate", [0, -5])
    def test_rejects_non_positive(self, rate):
        with pytest.raises(ValueError):
            compute_delay_ms(rate)


class TestFixedIntervalRateLimiter:
    @pytest.mark.asyncio
    async def test_first_wait_is_free(self, clock):
        limiter = FixedIntervalRateLimiter(256, clock=clock)
        assert await limiter.wait() == 0
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_waits_full_delay_after_mark(self, clock):
        limiter = FixedIntervalRateLimiter(256, clock=clock)
        limiter.mark()
        await limiter.wait()
        assert clock.sleeps == [pytest.approx(0.258)]

    @pytest.mark.asyncio
    async def test_waits_only_remainder(self, clock):
        limiter = FixedIntervalRateLimiter(60, clock=clock)
        limiter.mark()
        clock.advance(0.6)
        assert limiter.remaining() == pytest.approx(0.5)
        await limiter.wait()
        assert clock.sleeps == [pytest.approx(0.5)]

    @pytest.mark.asyncio
    async def test_no_wait_once_delay_elapsed(self, clock):
        limiter = FixedIntervalRateLimiter(60, clock=clock)
        limiter.mark()
        clock.advance(5)
        assert await limiter.wait() == 0
        assert clock.sleeps == []

    def test_estimate(self, clock):
        limiter = FixedIntervalRateLimiter(256, clock=clock)
        assert limiter.estimate_ms(0) == 0
        assert limiter.estimate_ms(10) == 2580
        assert limiter.delay_seconds == pytest.approx(0.258)
