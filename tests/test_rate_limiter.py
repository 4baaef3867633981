"""
Tests for leadsmith/utils/rate_limiter.py

Time is simulated with FakeClock; nothing sleeps for real.
"""

import asyncio

import pytest

from leadsmith.utils.rate_limiter import RateLimiter


def _limiter(clock):
    return RateLimiter(clock=clock, sleep=clock.sleep)


class TestSpacing:

    def test_first_admission_is_immediate(self, clock):
        limiter = _limiter(clock)
        admitted = asyncio.run(limiter.wait_if_needed())
        assert admitted == clock.now
        assert clock.sleeps == []

    @pytest.mark.parametrize("n", [2, 5, 12])
    def test_concurrent_admissions_respect_base_delay(self, clock, n):
        limiter = _limiter(clock)

        async def run():
            return await asyncio.gather(*(limiter.wait_if_needed() for _ in range(n)))

        stamps = asyncio.run(run())
        assert stamps == sorted(stamps)
        for earlier, later in zip(stamps, stamps[1:]):
            assert later - earlier >= limiter.base_delay - 1e-9

    def test_spacing_measured_from_last_admission(self, clock):
        limiter = _limiter(clock)

        async def run():
            await limiter.wait_if_needed()
            clock.now += 10  # long gap: next caller must not wait
            return await limiter.wait_if_needed()

        asyncio.run(run())
        assert clock.sleeps == []


class TestBackoff:

    @pytest.mark.parametrize("k, expected", [(0, 0.0), (1, 0.5), (3, 1.5), (4, 2.0), (9, 2.0)])
    def test_extra_delay_grows_and_caps(self, clock, k, expected):
        limiter = _limiter(clock)
        for _ in range(k):
            limiter.increment_429()
        assert limiter.extra_delay == pytest.approx(expected)
        assert limiter.required_delay == pytest.approx(0.25 + expected)

    def test_reset_clears_extra_delay_for_next_admission(self, clock):
        limiter = _limiter(clock)

        async def run():
            await limiter.wait_if_needed()
            limiter.increment_429()
            limiter.increment_429()
            throttled = await limiter.wait_if_needed()
            limiter.reset_429()
            normal = await limiter.wait_if_needed()
            return throttled, normal

        first = clock.now
        throttled, normal = asyncio.run(run())
        assert throttled - first == pytest.approx(1.25)
        assert normal - throttled == pytest.approx(0.25)
        assert limiter.consecutive_429 == 0

    @pytest.mark.parametrize("k, expected", [(0, 1.0), (1, 1.5), (2, 2.25), (10, 5.0)])
    def test_throttle_backoff(self, clock, k, expected):
        limiter = _limiter(clock)
        for _ in range(k):
            limiter.increment_429()
        assert limiter.throttle_backoff() == pytest.approx(expected)

    def test_state_is_per_instance(self, clock):
        a = _limiter(clock)
        b = _limiter(clock)
        a.increment_429()
        assert b.consecutive_429 == 0
