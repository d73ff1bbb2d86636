from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class SyncTriggerRequest(BaseModel):
    """Request body for triggering a sign-in sync."""
    force: bool = Field(False, description="Ignore the recently-synced shortcut")
    backfill_hours: Optional[int] = Field(
        None, ge=1, le=168, description="Lookback for tenants without a cursor"
    )
    force_backfill: bool = Field(
        False, description="Start from the backfill window even if a cursor exists"
    )
    max_pages: Optional[int] = Field(None, ge=1, le=10, description="Page cap for this sync")
    page_size: Optional[int] = Field(None, ge=1, le=100, description="Records per page")
    background: bool = Field(False, description="Return immediately and sync in background")


class SyncTriggerResponse(BaseModel):
    """Response for an accepted background sync."""
    accepted: bool = True
    tenant_id: str
    message: str


class SyncResultResponse(BaseModel):
    """Outcome of an attended sync."""
    synced: bool = False
    skipped: bool = False
    reason: Optional[str] = None
    cancelled: bool = False
    timed_out: bool = False
    count: int = 0
    inserted: int = 0
    pages: int = 0
    cursor: Optional[str] = None
    last_sync: Optional[datetime] = None


class SyncErrorDetail(BaseModel):
    """Classified sync failure."""
    classification: str
    message: str
    hint: Optional[str] = None
    retryable: bool = False
    retry_after: Optional[float] = None


class SyncErrorResponse(BaseModel):
    """Error body for a failed attended sync."""
    detail: SyncErrorDetail


class SyncStatusResponse(BaseModel):
    """Live status of a tenant's sync plus its stored cursor."""
    tenant_id: str
    active: bool = False
    message: Optional[str] = None
    progress: int = 0
    started_at: Optional[datetime] = None
    last_update_at: Optional[datetime] = None
    cancel_requested: bool = False
    stale: bool = False
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    cursor: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    records_stored: int = 0


class SyncCancelResponse(BaseModel):
    """Response for a cancel request."""
    cancelled: bool
