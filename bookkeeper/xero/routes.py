"""Xero sync API routes.

Endpoints:
- POST /xero/sync - Sync cash flow data from Xero (delta or full reconciliation)
- GET /xero/sync/status - Last sync log and API usage
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookkeeper.database import get_db
from bookkeeper.locks.manager import LockResource, LockUnavailable, SyncLockManager, get_lock_manager
from bookkeeper.models import CashFlowSyncLog, XeroConnection
from bookkeeper.xero import schemas
from bookkeeper.xero.client import XeroClient
from bookkeeper.xero.rate_limiter import DailyLimitExceeded, RateLimiterRegistry
from bookkeeper.xero.sync import CashFlowDataSync

router = APIRouter()
logger = logging.getLogger(__name__)


def get_rate_limiters(request: Request) -> RateLimiterRegistry:
    """FastAPI dependency returning the per-tenant rate limiter registry."""
    return request.app.state.rate_limiters


async def get_active_connection(db: AsyncSession) -> Optional[XeroConnection]:
    result = await db.execute(
        select(XeroConnection).where(XeroConnection.is_active == True)
    )
    return result.scalars().first()


@router.post("/sync", response_model=schemas.XeroSyncResult)
async def sync_from_xero(
    request: schemas.XeroSyncRequest,
    db: AsyncSession = Depends(get_db),
    locks: SyncLockManager = Depends(get_lock_manager),
    rate_limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    """
    Sync cash flow data from Xero.

    - full=false: delta sync of everything changed since the last success
    - full=true: full reconciliation, retiring rows deleted in Xero

    Only one sync runs at a time; a second request gets 409.
    """
    connection = await get_active_connection(db)
    if not connection or not connection.tenant_id:
        raise HTTPException(status_code=400, detail="Xero is not connected")

    holder = f"xero-sync-api-{uuid.uuid4().hex[:8]}"
    sync_type = "FULL_RECONCILIATION" if request.full else "DELTA"

    try:
        async with locks.with_lock(LockResource.XERO_SYNC, holder):
            sync = CashFlowDataSync(
                db=db,
                client=XeroClient(connection),
                limiter=rate_limiters.get(connection.tenant_id),
            )
            if request.full:
                result = await sync.perform_full_reconciliation()
            else:
                result = await sync.perform_daily_sync()
    except LockUnavailable as e:
        raise HTTPException(status_code=409, detail=f"Sync already in progress: {str(e)}")
    except DailyLimitExceeded as e:
        raise HTTPException(status_code=429, detail=str(e))
    except Exception as e:
        logger.error(f"Xero {sync_type} sync failed: {e}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {str(e)}")

    return schemas.XeroSyncResult(success=True, sync_type=sync_type, **result.to_dict())


@router.get("/sync/status", response_model=schemas.XeroSyncStatus)
async def get_sync_status(
    db: AsyncSession = Depends(get_db),
    locks: SyncLockManager = Depends(get_lock_manager),
    rate_limiters: RateLimiterRegistry = Depends(get_rate_limiters),
):
    """Connection state, the most recent sync log and current API usage."""
    connection = await get_active_connection(db)

    result = await db.execute(
        select(CashFlowSyncLog).order_by(CashFlowSyncLog.started_at.desc()).limit(1)
    )
    last_log = result.scalar_one_or_none()

    return schemas.XeroSyncStatus(
        connected=connection is not None,
        tenant_name=connection.tenant_name if connection else None,
        base_currency=connection.base_currency if connection else None,
        sales_tax_period=connection.sales_tax_period if connection else None,
        last_sync_at=connection.last_sync_at if connection else None,
        last_error=connection.sync_error if connection else None,
        sync_in_progress=locks.is_locked(LockResource.XERO_SYNC),
        last_sync=schemas.SyncLogResponse.model_validate(last_log) if last_log else None,
        rate_limit=(
            rate_limiters.get(connection.tenant_id).status()
            if connection and connection.tenant_id else None
        ),
    )
