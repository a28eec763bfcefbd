"""
Per-tenant Xero API rate limiting.

Xero allows 60 calls a minute, 5000 a day and 5 concurrent requests per
tenant. ``XeroRateLimiter.execute`` enforces all three in-process, keeps a
minimum spacing between calls and retries calls rejected with HTTP 429
after the server's ``Retry-After`` delay.

The SDK is synchronous, so each call runs in a worker thread.
"""
import asyncio
import logging
import time
from collections import deque
from datetime import date
from typing import Any, Callable, Deque, Dict, Optional, TypeVar

from bookkeeper.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_AFTER_SECONDS = 60.0
WINDOW_SECONDS = 60.0


class DailyLimitExceeded(RuntimeError):
    """The tenant has used its daily Xero API allowance."""

    def __init__(self, tenant_id: str, limit: int):
        super().__init__(f"Daily Xero API limit ({limit}) reached for tenant {tenant_id}")
        self.tenant_id = tenant_id
        self.limit = limit


def _status_code(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status", None) or getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(exc: BaseException) -> float:
    headers = getattr(exc, "headers", None) or {}
    value = None
    if hasattr(headers, "get"):
        value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        return float(value) if value is not None else DEFAULT_RETRY_AFTER_SECONDS
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


class XeroRateLimiter:
    """Rate limiter for one Xero tenant."""

    def __init__(
        self,
        tenant_id: str,
        calls_per_minute: int = 60,
        daily_limit: int = 5000,
        max_concurrent: int = 5,
        min_interval: float = 0.1,
        max_retries: int = 3,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
        today: Callable[[], date] = date.today,
    ):
        self.tenant_id = tenant_id
        self.calls_per_minute = calls_per_minute
        self.daily_limit = daily_limit
        self.max_concurrent = max_concurrent
        self.min_interval = min_interval
        self.max_retries = max_retries

        self._clock = clock
        self._sleep = sleep
        self._today = today

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._schedule_lock = asyncio.Lock()
        self._recent_calls: Deque[float] = deque()
        self._last_call: Optional[float] = None

        self._day = today()
        self._daily_used = 0
        self._last_problem: Optional[str] = None

    @classmethod
    def from_settings(cls, tenant_id: str, settings: Settings) -> "XeroRateLimiter":
        return cls(
            tenant_id,
            calls_per_minute=settings.XERO_API_CALLS_PER_MINUTE,
            daily_limit=settings.XERO_DAILY_CALL_LIMIT,
            max_concurrent=settings.XERO_MAX_CONCURRENT,
            min_interval=settings.XERO_MIN_CALL_INTERVAL_MS / 1000,
            max_retries=settings.XERO_MAX_RETRIES,
        )

    # =========================================================================
    # QUOTAS
    # =========================================================================

    def _roll_day(self) -> None:
        today = self._today()
        if today != self._day:
            self._day = today
            self._daily_used = 0

    def _reserve_daily_call(self) -> None:
        self._roll_day()
        if self._daily_used >= self.daily_limit:
            raise DailyLimitExceeded(self.tenant_id, self.daily_limit)
        self._daily_used += 1

    async def _wait_for_slot(self) -> None:
        """Block until a call fits both the minute window and the minimum spacing."""
        async with self._schedule_lock:
            while True:
                now = self._clock()
                while self._recent_calls and now - self._recent_calls[0] >= WINDOW_SECONDS:
                    self._recent_calls.popleft()

                wait = 0.0
                if len(self._recent_calls) >= self.calls_per_minute:
                    wait = WINDOW_SECONDS - (now - self._recent_calls[0])
                if self._last_call is not None:
                    wait = max(wait, self.min_interval - (now - self._last_call))

                if wait <= 0:
                    self._recent_calls.append(now)
                    self._last_call = now
                    return
                await self._sleep(wait)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def execute(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """
        Run a blocking Xero SDK call within the tenant's limits.

        Raises:
            DailyLimitExceeded: when the daily allowance is used up
            Exception: whatever the call raised, once retries are exhausted
        """
        attempt = 0
        while True:
            self._reserve_daily_call()
            async with self._semaphore:
                await self._wait_for_slot()
                try:
                    return await asyncio.to_thread(fn, *args, **kwargs)
                except Exception as e:
                    if _status_code(e) != 429 or attempt >= self.max_retries:
                        raise
                    retry_after = _retry_after(e)
                    self._last_problem = getattr(e, "reason", None) or "rate limited"

            attempt += 1
            logger.warning(
                f"Xero rate limit hit for tenant {self.tenant_id}, "
                f"retrying in {retry_after:.0f}s (attempt {attempt}/{self.max_retries})"
            )
            await self._sleep(retry_after)

    def status(self) -> Dict[str, Any]:
        """Current usage, for the sync status endpoint."""
        self._roll_day()
        now = self._clock()
        in_window = sum(1 for called in self._recent_calls if now - called < WINDOW_SECONDS)
        return {
            "tenant_id": self.tenant_id,
            "daily_used": self._daily_used,
            "daily_remaining": max(self.daily_limit - self._daily_used, 0),
            "minute_remaining": max(self.calls_per_minute - in_window, 0),
            "problem": self._last_problem,
        }


class RateLimiterRegistry:
    """One limiter per tenant, created on first use. Held on ``app.state``."""

    def __init__(self, settings: Settings):
        self._settings = settings
        self._limiters: Dict[str, XeroRateLimiter] = {}

    def get(self, tenant_id: str) -> XeroRateLimiter:
        if tenant_id not in self._limiters:
            self._limiters[tenant_id] = XeroRateLimiter.from_settings(tenant_id, self._settings)
        return self._limiters[tenant_id]

    def clear(self) -> None:
        self._limiters.clear()
