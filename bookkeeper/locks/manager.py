"""
In-process locking for sync operations.

Prevents two syncs (or a sync and a forecast regeneration) from writing the
same tables at once. Locks are best effort: they live in memory, expire after
a timeout and are only visible to this process.

The manager is an explicit object created at application start-up and kept
on ``app.state.lock_manager``; ``start()`` begins the periodic cleanup of
expired locks and ``stop()`` ends it.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, List, Optional

from fastapi import Request

logger = logging.getLogger(__name__)


class LockResource(str, Enum):
    """Well-known lock names."""
    XERO_SYNC = "xero-sync"
    XERO_TOKEN_REFRESH = "xero-token-refresh"
    INVOICE_SYNC = "invoice-sync"
    BILL_SYNC = "bill-sync"
    ACCOUNT_SYNC = "account-sync"
    TRANSACTION_SYNC = "transaction-sync"
    FULL_SYNC = "full-sync"
    CASHFLOW_SYNC = "cashflow-sync"
    CASHFLOW_FORECAST = "cashflow-forecast"


class LockUnavailable(RuntimeError):
    """A lock could not be acquired within the allowed retries."""

    def __init__(self, resource: str, holder: Optional[str] = None):
        message = f"Resource {resource} is locked"
        if holder:
            message += f" by {holder}"
        super().__init__(message)
        self.resource = resource
        self.holder = holder


@dataclass
class LockInfo:
    id: str
    resource: str
    holder: str
    acquired_at: datetime
    expires_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "resource": self.resource,
            "holder": self.holder,
            "acquired_at": self.acquired_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _key(resource) -> str:
    return resource.value if isinstance(resource, LockResource) else str(resource)


class SyncLockManager:
    """Named, expiring, holder-owned locks."""

    def __init__(
        self,
        default_timeout: float = 300,
        cleanup_interval: float = 60,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.default_timeout = default_timeout
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._locks: Dict[str, LockInfo] = {}
        self._cleanup_task: Optional[asyncio.Task] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Start the background task that drops expired locks."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop(self) -> None:
        """Stop the cleanup task and drop every lock."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self.clear()

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup()

    # =========================================================================
    # LOCK OPERATIONS
    # =========================================================================

    def _live_lock(self, resource: str) -> Optional[LockInfo]:
        lock = self._locks.get(resource)
        if lock is None:
            return None
        if lock.expires_at <= self._clock():
            del self._locks[resource]
            return None
        return lock

    async def acquire(self, resource, holder: str, timeout: Optional[float] = None) -> bool:
        """
        Take the lock on ``resource`` for ``holder``.

        Returns False while anyone (including ``holder``) holds an unexpired
        lock on the resource. An expired lock is replaced.
        """
        resource = _key(resource)
        now = self._clock()
        existing = self._locks.get(resource)

        if existing is not None:
            if existing.expires_at > now:
                logger.warning(
                    f"Failed to acquire lock {resource} for {holder}: held by {existing.holder} "
                    f"for another {(existing.expires_at - now).total_seconds():.0f}s"
                )
                return False
            logger.info(f"Removing expired lock {resource} held by {existing.holder}")

        lock = LockInfo(
            id=f"{resource}-{uuid.uuid4().hex[:12]}",
            resource=resource,
            holder=holder,
            acquired_at=now,
            expires_at=now + timedelta(seconds=timeout if timeout is not None else self.default_timeout),
        )
        self._locks[resource] = lock
        logger.info(f"Lock {resource} acquired by {holder} until {lock.expires_at.isoformat()}")
        return True

    async def release(self, resource, holder: str) -> bool:
        """Release a lock. Only its holder may release it."""
        resource = _key(resource)
        lock = self._locks.get(resource)

        if lock is None:
            logger.warning(f"{holder} attempted to release lock {resource} which is not held")
            return False
        if lock.holder != holder:
            logger.warning(f"{holder} attempted to release lock {resource} held by {lock.holder}")
            return False

        del self._locks[resource]
        held_for = (self._clock() - lock.acquired_at).total_seconds()
        logger.info(f"Lock {resource} released by {holder} after {held_for:.1f}s")
        return True

    async def extend(self, resource, holder: str, additional: Optional[float] = None) -> bool:
        """Push back the expiry of a live lock owned by ``holder``."""
        resource = _key(resource)
        lock = self._locks.get(resource)

        if lock is None or lock.holder != holder:
            logger.warning(f"{holder} attempted to extend lock {resource} it does not hold")
            return False
        if lock.expires_at <= self._clock():
            logger.warning(f"{holder} attempted to extend expired lock {resource}")
            return False

        seconds = additional if additional is not None else self.default_timeout
        lock.expires_at = lock.expires_at + timedelta(seconds=seconds)
        logger.info(f"Lock {resource} extended by {seconds}s to {lock.expires_at.isoformat()}")
        return True

    def is_locked(self, resource) -> bool:
        return self._live_lock(_key(resource)) is not None

    def get_lock_info(self, resource) -> Optional[LockInfo]:
        """A copy of the live lock on ``resource``, if any."""
        lock = self._live_lock(_key(resource))
        return replace(lock) if lock else None

    def active_locks(self) -> List[LockInfo]:
        self.cleanup()
        return [replace(lock) for lock in self._locks.values()]

    def clear(self) -> None:
        """Drop every lock. Used at shutdown and in tests."""
        self._locks.clear()

    def cleanup(self) -> int:
        """Remove expired locks; returns how many were removed."""
        now = self._clock()
        expired = [resource for resource, lock in self._locks.items() if lock.expires_at <= now]
        for resource in expired:
            logger.info(f"Cleaning up expired lock {resource} held by {self._locks[resource].holder}")
            del self._locks[resource]
        return len(expired)

    # =========================================================================
    # CONTEXT MANAGER
    # =========================================================================

    @asynccontextmanager
    async def with_lock(
        self,
        resource,
        holder: str,
        timeout: Optional[float] = None,
        retries: int = 0,
        retry_delay: float = 1.0,
    ) -> AsyncIterator[LockInfo]:
        """
        Hold ``resource`` for the duration of the block.

        Tries ``retries + 1`` times, sleeping ``retry_delay`` seconds between
        attempts, then raises ``LockUnavailable``. The lock is released when
        the block exits, including on error.
        """
        resource = _key(resource)
        for attempt in range(retries + 1):
            if await self.acquire(resource, holder, timeout):
                break
            if attempt < retries:
                await asyncio.sleep(retry_delay)
        else:
            current = self.get_lock_info(resource)
            raise LockUnavailable(resource, current.holder if current else None)

        try:
            yield self.get_lock_info(resource)
        finally:
            await self.release(resource, holder)


def get_lock_manager(request: Request) -> SyncLockManager:
    """FastAPI dependency returning the process-wide lock manager."""
    return request.app.state.lock_manager
