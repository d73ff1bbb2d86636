"""
Sync service for pulling directory sign-in logs into the database.

This module provides the SignInSyncService class that:
1. Enforces at most one running sync per tenant
2. Skips tenants that were synced recently unless forced
3. Fetches bounded pages of sign-ins since the tenant's cursor
4. Upserts each page idempotently and reports progress
5. Advances the cursor only after every fetched record is stored
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from signin_sync.config import settings
from signin_sync.services.errors import SyncError, TransientError
from signin_sync.services.graph import (
    GraphSignInClient,
    format_graph_timestamp,
    get_graph_client,
    parse_graph_timestamp,
)
from signin_sync.services.record_store import SignInRecordStore
from signin_sync.services.status import SyncStatusTracker, sync_status_tracker

logger = logging.getLogger(__name__)

MIN_BACKFILL = timedelta(hours=1)
MAX_BACKFILL = timedelta(days=7)
MAX_PAGES_LIMIT = 10
PAGE_SIZE_LIMIT = 100


@dataclass
class SyncProgress:
    """Reported to on_progress after each page."""
    page_number: int
    records_so_far: int
    message: str


@dataclass
class SyncOptions:
    """Per-invocation sync parameters. Out-of-range values are clamped."""
    force: bool = False
    backfill_window: timedelta = field(
        default_factory=lambda: timedelta(hours=settings.SIGNIN_BACKFILL_HOURS)
    )
    force_backfill: bool = False
    max_pages: int = field(default_factory=lambda: settings.SIGNIN_MAX_PAGES)
    page_size: int = field(default_factory=lambda: settings.SIGNIN_PAGE_SIZE)
    on_progress: Optional[Callable[[SyncProgress], None]] = None

    def clamped(self) -> "SyncOptions":
        return SyncOptions(
            force=self.force,
            backfill_window=min(MAX_BACKFILL, max(MIN_BACKFILL, self.backfill_window)),
            force_backfill=self.force_backfill,
            max_pages=max(1, min(MAX_PAGES_LIMIT, int(self.max_pages))),
            page_size=max(1, min(PAGE_SIZE_LIMIT, int(self.page_size))),
            on_progress=self.on_progress,
        )


@dataclass
class SyncResult:
    """Outcome of one sync call as seen by the caller."""
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

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _progress_for(page_number: int, max_pages: int) -> int:
    return min(90, int(10 + 80 * page_number / max_pages))


class SignInSyncService:
    """Handles syncing sign-in logs from the directory to the database."""

    def __init__(
        self,
        store: SignInRecordStore,
        graph_client: GraphSignInClient,
        tracker: Optional[SyncStatusTracker] = None,
        min_sync_interval: Optional[timedelta] = None,
    ):
        """
        Initialize sync service.

        Args:
            store: Record store bound to a database session
            graph_client: Sign-in log fetcher
            tracker: Status table (defaults to the process-wide tracker)
            min_sync_interval: Freshness window for non-forced syncs;
                               timedelta(0) re-checks on every call
        """
        self.store = store
        self.graph = graph_client
        self.tracker = tracker if tracker is not None else sync_status_tracker
        if min_sync_interval is None:
            min_sync_interval = timedelta(minutes=settings.SIGNIN_MIN_SYNC_INTERVAL_MINUTES)
        self.min_sync_interval = min_sync_interval

    async def sync(self, tenant_id: str, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Sync sign-in logs for one tenant.

        Args:
            tenant_id: Directory tenant to sync
            options: Sync parameters (defaults from settings)

        Returns:
            SyncResult. Skipped and cancelled runs are results, not errors.

        Raises:
            SyncError: Classified failure; the cursor was not advanced
        """
        if not self.tracker.claim(tenant_id):
            logger.info(f"Sync for tenant {tenant_id} skipped: already active")
            return SyncResult(skipped=True, reason="already-active")

        return await self.run_claimed(tenant_id, options)

    async def run_claimed(self, tenant_id: str, options: Optional[SyncOptions] = None) -> SyncResult:
        """
        Run a sync whose tenant claim the caller already holds.

        The claim is released when the run ends, whatever the outcome.
        """
        options = (options or SyncOptions()).clamped()
        try:
            return await self._run(tenant_id, options)
        finally:
            self.tracker.release(tenant_id)

    async def _run(self, tenant_id: str, options: SyncOptions) -> SyncResult:
        now = datetime.utcnow()
        try:
            state = await self.store.get_state(tenant_id)
        except asyncio.CancelledError:
            self._interrupted(tenant_id, 0, 0)
            raise
        except Exception as e:
            error = TransientError("Failed to read tenant sync state")
            self._fail(tenant_id, error, 0, 0)
            raise error from e

        last_sync = state.signin_last_sync_at if state else None
        previous_cursor = state.signin_cursor if state else None

        if (
            not options.force
            and last_sync is not None
            and self.min_sync_interval > timedelta(0)
            and now - last_sync < self.min_sync_interval
        ):
            logger.info(f"Sync for tenant {tenant_id} skipped: synced at {last_sync}")
            result = SyncResult(
                skipped=True,
                reason="recently-synced",
                last_sync=last_sync,
                cursor=previous_cursor,
            )
            self.tracker.finish(tenant_id, message="Sync skipped: synced recently", result=result.to_dict())
            return result

        if previous_cursor and not options.force_backfill:
            since = parse_graph_timestamp(previous_cursor)
            logger.info(f"Starting incremental sign-in sync for {tenant_id} from {since}")
        else:
            since = now - options.backfill_window
            logger.info(f"Starting backfill sign-in sync for {tenant_id} from {since}")

        self.tracker.begin(tenant_id)

        count = 0
        inserted = 0
        pages = 0
        latest: Optional[datetime] = None
        next_link: Optional[str] = None
        cancelled = False

        try:
            for page_number in range(1, options.max_pages + 1):
                if self.tracker.is_cancel_requested(tenant_id):
                    cancelled = True
                    break

                self.tracker.report(tenant_id, f"Fetching page {page_number}...")
                page = await self.graph.fetch_page(
                    tenant_id,
                    since=since,
                    page_size=options.page_size,
                    next_link=next_link,
                )
                pages = page_number

                inserted += await self.store.upsert_records(tenant_id, page.records)
                count += len(page.records)
                if page.latest_occurred_at and (latest is None or page.latest_occurred_at > latest):
                    latest = page.latest_occurred_at

                message = f"Fetched page {page_number} ({count} sign-ins so far)"
                self.tracker.report(
                    tenant_id,
                    message,
                    progress=_progress_for(page_number, options.max_pages),
                )
                if options.on_progress:
                    options.on_progress(SyncProgress(page_number, count, message))

                if not page.has_more:
                    break
                next_link = page.next_link

        except SyncError as e:
            self._fail(tenant_id, e, pages, count)
            raise
        except asyncio.CancelledError:
            # Task torn down (e.g. shutdown); cursor stays where it was
            self._interrupted(tenant_id, pages, count)
            raise
        except Exception as e:
            error = TransientError(f"Sign-in sync failed: {e}")
            self._fail(tenant_id, error, pages, count)
            raise error from e

        if cancelled:
            logger.info(
                f"Sync for tenant {tenant_id} cancelled after {pages} pages "
                f"({count} sign-ins kept, cursor unchanged)"
            )
            result = SyncResult(
                cancelled=True,
                reason="cancelled",
                count=count,
                inserted=inserted,
                pages=pages,
                cursor=previous_cursor,
                last_sync=last_sync,
            )
            self.tracker.finish(tenant_id, message="Sync cancelled", result=result.to_dict())
            return result

        new_cursor = self._advance_cursor(previous_cursor, latest or since)
        synced_at = datetime.utcnow()
        try:
            await self.store.set_cursor(tenant_id, new_cursor, synced_at, records_synced=count)
        except SyncError as e:
            self._fail(tenant_id, e, pages, count)
            raise

        result = SyncResult(
            synced=count > 0,
            count=count,
            inserted=inserted,
            pages=pages,
            cursor=new_cursor,
            last_sync=synced_at,
        )
        self.tracker.finish(
            tenant_id,
            message=f"Sync complete: {count} sign-ins",
            result=result.to_dict(),
        )
        logger.info(
            f"Sign-in sync complete for {tenant_id}: {count} fetched, "
            f"{inserted} new, {pages} pages, cursor={new_cursor}"
        )
        return result

    @staticmethod
    def _advance_cursor(previous: Optional[str], candidate: datetime) -> str:
        """The cursor only moves forward."""
        if previous:
            previous_dt = parse_graph_timestamp(previous)
            if previous_dt >= candidate:
                return previous
        return format_graph_timestamp(candidate)

    def _interrupted(self, tenant_id: str, pages: int, count: int) -> None:
        self.tracker.finish(
            tenant_id,
            message="Sync interrupted",
            result={"cancelled": True, "count": count, "pages": pages},
        )

    def _fail(self, tenant_id: str, error: SyncError, pages: int, count: int) -> None:
        logger.warning(
            f"Sign-in sync failed for {tenant_id} after {pages} pages "
            f"({count} sign-ins stored, cursor unchanged): "
            f"[{error.classification}] {error.message}"
        )
        self.tracker.finish(
            tenant_id,
            message=f"Sync failed: {error.message}",
            error=error.to_dict(),
        )


def get_sync_service(db: AsyncSession, tracker: Optional[SyncStatusTracker] = None) -> SignInSyncService:
    """
    Factory function to create SignInSyncService with dependencies.

    Args:
        db: Async database session
        tracker: Optional status tracker override

    Returns:
        Configured SignInSyncService instance

    Example:
        >>> async with AsyncSessionLocal() as db:
        ...     service = get_sync_service(db)
        ...     await service.sync("contoso-tenant-id", SyncOptions(force=True))
    """
    return SignInSyncService(
        store=SignInRecordStore(db),
        graph_client=get_graph_client(),
        tracker=tracker,
    )
