"""Tests for the per-tenant Xero rate limiter."""
from datetime import date
from unittest.mock import MagicMock

import pytest

from bookkeeper.xero.rate_limiter import DailyLimitExceeded, RateLimiterRegistry, XeroRateLimiter


class FakeTime:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class RateLimited(Exception):
    def __init__(self, retry_after="2"):
        super().__init__("Too Many Requests")
        self.status = 429
        self.reason = "Too Many Requests"
        self.headers = {"Retry-After": retry_after}


def make_limiter(fake_time, **kwargs):
    kwargs.setdefault("min_interval", 0)
    return XeroRateLimiter("tenant-1", clock=fake_time.clock, sleep=fake_time.sleep, **kwargs)


class TestXeroRateLimiter:
    """Quota enforcement and retries."""

    @pytest.mark.asyncio
    async def test_executes_call_with_arguments(self):
        limiter = make_limiter(FakeTime())

        result = await limiter.execute(lambda a, b=0: a + b, 2, b=3)

        assert result == 5
        assert limiter.status()["daily_used"] == 1

    @pytest.mark.asyncio
    async def test_waits_when_minute_window_full(self):
        fake_time = FakeTime()
        limiter = make_limiter(fake_time, calls_per_minute=2)

        for _ in range(3):
            await limiter.execute(lambda: None)

        assert fake_time.sleeps == [60.0]

    @pytest.mark.asyncio
    async def test_minimum_spacing(self):
        fake_time = FakeTime()
        limiter = make_limiter(fake_time, min_interval=0.5)

        await limiter.execute(lambda: None)
        await limiter.execute(lambda: None)

        assert fake_time.sleeps == [0.5]

    @pytest.mark.asyncio
    async def test_daily_limit(self):
        limiter = make_limiter(FakeTime(), daily_limit=1)
        await limiter.execute(lambda: None)

        with pytest.raises(DailyLimitExceeded):
            await limiter.execute(lambda: None)

    @pytest.mark.asyncio
    async def test_daily_counter_resets_next_day(self):
        day = {"value": date(2024, 6, 1)}
        limiter = make_limiter(FakeTime(), daily_limit=1, today=lambda: day["value"])
        await limiter.execute(lambda: None)

        day["value"] = date(2024, 6, 2)
        await limiter.execute(lambda: None)

        assert limiter.status()["daily_used"] == 1

    @pytest.mark.asyncio
    async def test_retries_429_after_retry_after(self):
        fake_time = FakeTime()
        limiter = make_limiter(fake_time)
        call = MagicMock(side_effect=[RateLimited("2"), "ok"])

        result = await limiter.execute(call)

        assert result == "ok"
        assert call.call_count == 2
        assert 2.0 in fake_time.sleeps
        assert limiter.status()["problem"] == "Too Many Requests"

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        limiter = make_limiter(FakeTime(), max_retries=1)
        call = MagicMock(side_effect=RateLimited())

        with pytest.raises(RateLimited):
            await limiter.execute(call)

        assert call.call_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        limiter = make_limiter(FakeTime())
        call = MagicMock(side_effect=ValueError("bad request"))

        with pytest.raises(ValueError):
            await limiter.execute(call)

        assert call.call_count == 1


class TestRateLimiterRegistry:
    """One limiter per tenant."""

    def test_reuses_limiter_per_tenant(self):
        settings = MagicMock()
        settings.XERO_API_CALLS_PER_MINUTE = 60
        settings.XERO_DAILY_CALL_LIMIT = 5000
        settings.XERO_MAX_CONCURRENT = 5
        settings.XERO_MIN_CALL_INTERVAL_MS = 100
        settings.XERO_MAX_RETRIES = 3
        registry = RateLimiterRegistry(settings)

        first = registry.get("tenant-a")

        assert registry.get("tenant-a") is first
        assert registry.get("tenant-b") is not first
        assert first.min_interval == 0.1
