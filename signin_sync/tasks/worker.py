"""
Sync worker for attended and background sign-in syncs.

Provides a SyncWorker class that API endpoints and the scheduler use to
start tenant syncs, poll their status and request cancellation. Each sync
runs as its own asyncio task with its own database session.
"""

import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from signin_sync.config import settings
from signin_sync.database import AsyncSessionLocal
from signin_sync.services.deadline import run_with_deadline, spawn
from signin_sync.services.graph import GraphSignInClient, get_graph_client
from signin_sync.services.record_store import SignInRecordStore
from signin_sync.services.status import (
    ActiveSyncEntry,
    SyncStatusTracker,
    sync_status_tracker,
)
from signin_sync.services.sync import SignInSyncService, SyncOptions, SyncResult

logger = logging.getLogger(__name__)


class SyncWorker:
    """
    Starts tenant syncs and answers status and cancel requests.

    Attended calls wait for the sync up to a fixed deadline; background
    calls return as soon as the task is scheduled. Either way the status
    tracker is the place to observe the final outcome.
    """

    def __init__(
        self,
        tracker: Optional[SyncStatusTracker] = None,
        session_factory: Callable = AsyncSessionLocal,
        client_factory: Callable[[], GraphSignInClient] = get_graph_client,
        deadline_seconds: Optional[float] = None,
    ):
        self.tracker = tracker if tracker is not None else sync_status_tracker
        self.session_factory = session_factory
        self.client_factory = client_factory
        self.deadline_seconds = (
            deadline_seconds
            if deadline_seconds is not None
            else settings.SYNC_REQUEST_DEADLINE_SECONDS
        )

    async def run_sync(
        self, tenant_id: str, options: SyncOptions, claimed: bool = False
    ) -> SyncResult:
        """
        Run one tenant sync to completion in a fresh session.

        Args:
            tenant_id: Directory tenant to sync
            options: Sync parameters
            claimed: The caller already holds the tenant's claim; it is
                     released when the sync ends

        Raises:
            SyncError: Classified failure from the sync
        """
        async with self.session_factory() as db:
            service = SignInSyncService(
                store=SignInRecordStore(db),
                graph_client=self.client_factory(),
                tracker=self.tracker,
            )
            if claimed:
                return await service.run_claimed(tenant_id, options)
            return await service.sync(tenant_id, options)

    async def trigger_sync(
        self,
        tenant_id: str,
        *,
        force: bool = False,
        backfill_hours: Optional[int] = None,
        force_backfill: bool = False,
        max_pages: Optional[int] = None,
        page_size: Optional[int] = None,
        background: bool = False,
        deadline_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Start a sign-in sync for a tenant.

        Args:
            tenant_id: Directory tenant to sync
            force: Ignore the recently-synced shortcut
            backfill_hours: Lookback for cursor-less tenants (1-168)
            force_backfill: Start from the backfill window even with a cursor
            max_pages: Page cap for this call (1-10)
            page_size: Records per page (1-100)
            background: Return immediately instead of waiting
            deadline_seconds: Override the attended wait deadline

        Returns:
            {"accepted": True, ...} in background mode, otherwise the
            SyncResult as a dict (timed_out=True if the deadline won)

        Raises:
            SyncError: Attended syncs that fail within the deadline
        """
        if not self.client_factory().is_configured:
            return SyncResult(skipped=True, reason="not-configured").to_dict()

        if not self.tracker.claim(tenant_id):
            logger.info(f"Sync already running for tenant {tenant_id}")
            return SyncResult(skipped=True, reason="already-active").to_dict()

        options = SyncOptions(force=force, force_backfill=force_backfill)
        if backfill_hours is not None:
            options.backfill_window = timedelta(hours=backfill_hours)
        if max_pages is not None:
            options.max_pages = max_pages
        if page_size is not None:
            options.page_size = page_size

        task = spawn(self.run_sync(tenant_id, options, claimed=True), name=f"signin-sync:{tenant_id}")

        if background:
            logger.info(f"Background sign-in sync queued for tenant {tenant_id}")
            return {
                "accepted": True,
                "tenant_id": tenant_id,
                "message": "Sign-in sync running in background",
            }

        result = await run_with_deadline(
            task,
            deadline_seconds if deadline_seconds is not None else self.deadline_seconds,
            self.tracker,
            tenant_id,
        )
        return result.to_dict()

    def get_sync_status(self, tenant_id: str) -> ActiveSyncEntry:
        """Current or most recent sync status for a tenant."""
        return self.tracker.get(tenant_id)

    def request_cancel(self, tenant_id: str) -> Dict[str, bool]:
        """Ask the tenant's running sync to stop at the next page boundary."""
        return {"cancelled": self.tracker.request_cancel(tenant_id)}


# Global worker instance (singleton)
sync_worker = SyncWorker()
