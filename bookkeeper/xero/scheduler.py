"""
Scheduled cash flow jobs.

- Daily: delta sync from Xero, then regenerate the stored forecast
- Weekly: full reconciliation to catch records deleted in Xero

Jobs take the same locks as the API routes, so a scheduled sync never runs
alongside a user-triggered one.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bookkeeper.config import Settings
from bookkeeper.forecast.engine import CashFlowEngine
from bookkeeper.locks.manager import LockResource, LockUnavailable, SyncLockManager
from bookkeeper.models import XeroConnection
from bookkeeper.xero.client import XeroClient
from bookkeeper.xero.rate_limiter import RateLimiterRegistry
from bookkeeper.xero.sync import CashFlowDataSync

logger = logging.getLogger(__name__)


class CashFlowSyncScheduler:
    """Job bodies for APScheduler; each returns a summary dict."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_manager: SyncLockManager,
        rate_limiters: RateLimiterRegistry,
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager
        self.rate_limiters = rate_limiters
        self.settings = settings
        self._last_daily_run: Optional[datetime] = None
        self._last_reconciliation_run: Optional[datetime] = None

    async def _run_sync(self, full: bool) -> Dict[str, Any]:
        sync_type = "FULL_RECONCILIATION" if full else "DELTA"
        summary: Dict[str, Any] = {
            "sync_type": sync_type,
            "started_at": datetime.now(timezone.utc).isoformat(),
            "errors": [],
        }
        holder = f"scheduler-{uuid.uuid4().hex[:8]}"

        try:
            async with self.lock_manager.with_lock(LockResource.XERO_SYNC, holder):
                async with self.session_factory() as db:
                    result = await db.execute(
                        select(XeroConnection).where(XeroConnection.is_active == True)
                    )
                    connection = result.scalars().first()
                    if not connection or not connection.tenant_id:
                        logger.info(f"Skipping scheduled {sync_type} sync: Xero is not connected")
                        summary["skipped"] = True
                        return summary

                    sync = CashFlowDataSync(
                        db=db,
                        client=XeroClient(connection),
                        limiter=self.rate_limiters.get(connection.tenant_id),
                        settings=self.settings,
                    )
                    if full:
                        sync_result = await sync.perform_full_reconciliation()
                    else:
                        sync_result = await sync.perform_daily_sync()
                    summary.update(sync_result.to_dict())
        except LockUnavailable as e:
            logger.warning(f"Scheduled {sync_type} sync skipped: {e}")
            summary["skipped"] = True
            return summary
        except Exception as e:
            logger.error(f"Scheduled {sync_type} sync failed: {e}")
            summary["errors"].append(str(e))
            return summary

        summary["forecast"] = await self.refresh_forecast()
        summary["completed_at"] = datetime.now(timezone.utc).isoformat()
        return summary

    async def run_daily_sync(self) -> Dict[str, Any]:
        self._last_daily_run = datetime.now(timezone.utc)
        return await self._run_sync(full=False)

    async def run_weekly_reconciliation(self) -> Dict[str, Any]:
        self._last_reconciliation_run = datetime.now(timezone.utc)
        return await self._run_sync(full=True)

    async def refresh_forecast(self) -> Dict[str, Any]:
        """Regenerate and store the default-horizon forecast after a sync."""
        engine = CashFlowEngine.from_settings(self.session_factory, self.settings)
        holder = f"scheduler-{uuid.uuid4().hex[:8]}"
        try:
            async with self.lock_manager.with_lock(LockResource.CASHFLOW_FORECAST, holder):
                result = await engine.generate_forecast(self.settings.FORECAST_DEFAULT_DAYS)
        except Exception as e:
            logger.error(f"Scheduled forecast refresh failed: {e}")
            return {"error": str(e)}

        return {
            "days": result.summary.days,
            "persisted": result.persisted,
            "critical_alerts": result.summary.critical_alerts,
        }

    def get_status(self) -> Dict[str, Any]:
        return {
            "last_daily_run": self._last_daily_run.isoformat() if self._last_daily_run else None,
            "last_reconciliation_run": (
                self._last_reconciliation_run.isoformat() if self._last_reconciliation_run else None
            ),
        }


def setup_apscheduler(scheduler, jobs: CashFlowSyncScheduler, settings: Settings) -> None:
    """
    Register the cash flow jobs on an APScheduler instance.

    Usage:
        scheduler = AsyncIOScheduler()
        setup_apscheduler(scheduler, jobs, settings)
        scheduler.start()
    """
    scheduler.add_job(
        jobs.run_daily_sync,
        'cron',
        hour=settings.DAILY_SYNC_HOUR,
        minute=0,
        id='cashflow_daily_sync',
        name='Cash Flow Daily Sync',
        replace_existing=True,
    )

    scheduler.add_job(
        jobs.run_weekly_reconciliation,
        'cron',
        day_of_week=settings.RECONCILIATION_DAY_OF_WEEK,
        hour=settings.DAILY_SYNC_HOUR,
        minute=30,
        id='cashflow_full_reconciliation',
        name='Cash Flow Full Reconciliation',
        replace_existing=True,
    )

    logger.info("Cash flow scheduler jobs configured")
