"""
Sync API endpoints for triggering and monitoring tenant sign-in syncs.
"""

from typing import Union

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from signin_sync.api.deps import get_db, get_sync_worker
from signin_sync.config import settings
from signin_sync.schemas import (
    SyncCancelResponse,
    SyncErrorDetail,
    SyncErrorResponse,
    SyncResultResponse,
    SyncStatusResponse,
    SyncTriggerRequest,
    SyncTriggerResponse,
)
from signin_sync.services.errors import FORBIDDEN, THROTTLED, SyncError
from signin_sync.services.record_store import SignInRecordStore
from signin_sync.tasks.worker import SyncWorker

router = APIRouter(prefix="/tenants/{tenant_id}/sync", tags=["sync"])

ERROR_STATUS_CODES = {
    THROTTLED: 429,
    FORBIDDEN: 403,
}


@router.post(
    "",
    response_model=Union[SyncTriggerResponse, SyncResultResponse],
    responses={
        403: {"model": SyncErrorResponse},
        429: {"model": SyncErrorResponse},
        502: {"model": SyncErrorResponse},
    },
)
async def trigger_sync(
    tenant_id: str,
    request: SyncTriggerRequest = SyncTriggerRequest(),
    worker: SyncWorker = Depends(get_sync_worker),
):
    """
    Trigger a sign-in sync for a tenant.

    With background=true the sync is queued and the response returns at once;
    poll /status for progress. Otherwise the request waits up to the server
    deadline and returns the best-known result (timed_out=true if the sync is
    still running).

    Classified failures map to 429 (throttled), 403 (forbidden) and
    502 (transient) with {classification, message, hint} as detail.
    """
    try:
        outcome = await worker.trigger_sync(
            tenant_id,
            force=request.force,
            backfill_hours=request.backfill_hours,
            force_backfill=request.force_backfill,
            max_pages=request.max_pages,
            page_size=request.page_size,
            background=request.background,
        )
    except SyncError as e:
        raise HTTPException(
            status_code=ERROR_STATUS_CODES.get(e.classification, 502),
            detail=SyncErrorDetail(**e.to_dict()).model_dump(),
        )

    if outcome.get("accepted"):
        return SyncTriggerResponse(**outcome)
    return SyncResultResponse(**outcome)


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(
    tenant_id: str,
    db: AsyncSession = Depends(get_db),
    worker: SyncWorker = Depends(get_sync_worker),
):
    """
    Get the live sync status for a tenant.

    Returns the in-memory status entry (progress, message, terminal result
    or error) together with the stored cursor and record count.
    """
    entry = worker.get_sync_status(tenant_id)
    store = SignInRecordStore(db)
    state = await store.get_state(tenant_id)
    records_stored = await store.count_records(tenant_id)

    return SyncStatusResponse(
        tenant_id=tenant_id,
        active=entry.active,
        message=entry.message,
        progress=entry.progress,
        started_at=entry.started_at,
        last_update_at=entry.last_update_at,
        cancel_requested=entry.cancel_requested,
        stale=entry.is_stale(settings.SYNC_STALE_AFTER_SECONDS),
        result=entry.result,
        error=entry.error,
        cursor=state.signin_cursor if state else None,
        last_sync_at=state.signin_last_sync_at if state else None,
        records_stored=records_stored,
    )


@router.post("/cancel", response_model=SyncCancelResponse)
async def cancel_sync(
    tenant_id: str,
    worker: SyncWorker = Depends(get_sync_worker),
):
    """
    Request cancellation of a tenant's running sync.

    Cancellation is cooperative: the sync stops before its next page.
    """
    return SyncCancelResponse(**worker.request_cancel(tenant_id))
