"""Application-level locks for sync and forecast operations."""
from bookkeeper.locks.manager import LockInfo, LockResource, LockUnavailable, SyncLockManager

__all__ = ["LockInfo", "LockResource", "LockUnavailable", "SyncLockManager"]
