"""Xero sync request/response schemas."""
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class XeroSyncRequest(BaseModel):
    full: bool = Field(False, description="Run a full reconciliation instead of a delta sync")


class XeroSyncResult(BaseModel):
    success: bool
    sync_type: str
    items_synced: int = 0
    items_created: int = 0
    items_updated: int = 0
    items_deleted: int = 0
    tax_obligations_created: int = 0


class SyncLogResponse(BaseModel):
    id: str
    sync_type: str
    status: str
    items_synced: int
    items_created: int
    items_updated: int
    items_deleted: int
    error_message: Optional[str] = None
    started_at: datetime
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class XeroSyncStatus(BaseModel):
    connected: bool
    tenant_name: Optional[str] = None
    base_currency: Optional[str] = None
    sales_tax_period: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_error: Optional[str] = None
    sync_in_progress: bool = False
    last_sync: Optional[SyncLogResponse] = None
    rate_limit: Optional[Dict[str, Any]] = None
