"""
Background job scheduler for automated sign-in sync.

Uses APScheduler to run periodic jobs:
- Background sign-in sync: every 30 minutes, all enabled tenants
- Status sweep: drop finished sync status entries past their retention
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from signin_sync.config import settings
from signin_sync.database import AsyncSessionLocal
from signin_sync.services.deadline import run_with_deadline
from signin_sync.services.errors import SyncError, ThrottledError
from signin_sync.services.record_store import SignInRecordStore
from signin_sync.services.status import sync_status_tracker
from signin_sync.services.sync import SyncOptions, SyncResult
from signin_sync.tasks.worker import SyncWorker, sync_worker

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()

INITIAL_BACKOFF = 1  # seconds
MAX_BACKOFF = 60  # seconds
BATCH_PAUSE = 1  # seconds between tenant batches


def background_sync_options() -> SyncOptions:
    """Unattended syncs: cadence comes from the scheduler, so bypass freshness."""
    return SyncOptions(
        force=True,
        max_pages=settings.BACKGROUND_SYNC_MAX_PAGES,
        backfill_window=timedelta(hours=settings.BACKGROUND_SYNC_BACKFILL_HOURS),
    )


async def sync_tenant_with_retry(
    tenant_id: str,
    worker: Optional[SyncWorker] = None,
    max_retries: Optional[int] = None,
    timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Sync one tenant, retrying throttled and transient failures.

    Backoff doubles from INITIAL_BACKOFF up to MAX_BACKOFF and honours the
    service's Retry-After. Forbidden failures and timeouts are not retried:
    the first needs an administrator, the second is still running.

    Returns:
        {"tenant_id", "success", "result" | "error", "attempts"}
    """
    worker = worker or sync_worker
    max_retries = settings.BACKGROUND_SYNC_MAX_RETRIES if max_retries is None else max_retries
    timeout = settings.BACKGROUND_SYNC_TIMEOUT_SECONDS if timeout is None else timeout

    attempt = 0
    backoff = INITIAL_BACKOFF
    while True:
        attempt += 1
        try:
            result: SyncResult = await run_with_deadline(
                worker.run_sync(tenant_id, background_sync_options()),
                timeout,
                worker.tracker,
                tenant_id,
            )
            return {
                "tenant_id": tenant_id,
                "success": True,
                "result": result.to_dict(),
                "attempts": attempt,
            }

        except SyncError as e:
            if not e.retryable or attempt > max_retries:
                logger.error(
                    f"Background sync for {tenant_id} failed after {attempt} attempt(s): "
                    f"[{e.classification}] {e.message}"
                )
                return {
                    "tenant_id": tenant_id,
                    "success": False,
                    "error": e.to_dict(),
                    "attempts": attempt,
                }

            delay = backoff
            if isinstance(e, ThrottledError) and e.retry_after:
                delay = min(e.retry_after, MAX_BACKOFF)
            logger.warning(
                f"Background sync for {tenant_id} hit {e.classification}; "
                f"retry {attempt}/{max_retries} in {delay}s"
            )
            await asyncio.sleep(delay)
            backoff = min(backoff * 2, MAX_BACKOFF)


async def background_signin_sync_job(worker: Optional[SyncWorker] = None) -> Dict[str, int]:
    """
    Sync every enabled tenant in small concurrent batches.

    One tenant's failure never stops the run. Returns summary counters.
    """
    started = datetime.utcnow()
    logger.info(f"[Background Sync] Starting at {started.isoformat()}")

    worker = worker or sync_worker
    async with worker.session_factory() as db:
        tenant_ids = await SignInRecordStore(db).list_sync_tenants()

    logger.info(f"[Background Sync] Found {len(tenant_ids)} tenants to sync")

    summary = {"success": 0, "failed": 0, "skipped": 0, "timed_out": 0, "signins": 0}
    batch_size = max(1, settings.BACKGROUND_SYNC_BATCH_SIZE)

    for i in range(0, len(tenant_ids), batch_size):
        batch = tenant_ids[i:i + batch_size]
        outcomes = await asyncio.gather(
            *(sync_tenant_with_retry(tenant_id, worker=worker) for tenant_id in batch),
            return_exceptions=True,
        )

        for tenant_id, outcome in zip(batch, outcomes):
            if isinstance(outcome, Exception):
                summary["failed"] += 1
                logger.error(
                    f"[Background Sync] {tenant_id} crashed: {outcome}",
                    exc_info=outcome,
                )
            elif not outcome["success"]:
                summary["failed"] += 1
            else:
                result = outcome["result"]
                if result["timed_out"]:
                    summary["timed_out"] += 1
                elif result["skipped"]:
                    summary["skipped"] += 1
                else:
                    summary["success"] += 1
                    summary["signins"] += result["count"]
                    logger.info(f"[Background Sync] {tenant_id}: {result['count']} sign-ins")

        if i + batch_size < len(tenant_ids):
            await asyncio.sleep(BATCH_PAUSE)

    duration = (datetime.utcnow() - started).total_seconds()
    logger.info(
        f"[Background Sync] Completed in {duration:.1f}s: "
        f"{summary['success']} success, {summary['failed']} failed, "
        f"{summary['skipped']} skipped, {summary['timed_out']} timed out, "
        f"{summary['signins']} sign-ins"
    )
    return summary


def sweep_status_job() -> int:
    """Drop finished sync status entries past their retention window."""
    return sync_status_tracker.sweep()


def setup_scheduler():
    """
    Configure and start the background scheduler.

    Jobs configured:
    1. Background sign-in sync every BACKGROUND_SYNC_INTERVAL_MINUTES
       (first run BACKGROUND_SYNC_INITIAL_DELAY_SECONDS after startup)
    2. Status sweep every SYNC_STATUS_RETENTION_SECONDS
    """
    if scheduler.running:
        logger.warning("Scheduler is already running")
        return

    if settings.BACKGROUND_SYNC_ENABLED:
        scheduler.add_job(
            background_signin_sync_job,
            IntervalTrigger(minutes=settings.BACKGROUND_SYNC_INTERVAL_MINUTES),
            id="background_signin_sync",
            name="Background Sign-In Sync",
            replace_existing=True,
            next_run_time=datetime.now() + timedelta(
                seconds=settings.BACKGROUND_SYNC_INITIAL_DELAY_SECONDS
            ),
            misfire_grace_time=600,
            coalesce=True,  # Combine missed runs into one
            max_instances=1,
        )
    else:
        logger.info("Background sign-in sync disabled via BACKGROUND_SYNC_ENABLED")

    scheduler.add_job(
        sweep_status_job,
        IntervalTrigger(seconds=max(1, int(settings.SYNC_STATUS_RETENTION_SECONDS))),
        id="status_sweep",
        name="Sync Status Sweep",
        replace_existing=True,
        coalesce=True,
    )

    scheduler.start()
    logger.info("Background scheduler started successfully")


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Background scheduler stopped")
    else:
        logger.info("Scheduler was not running")


def get_job_status() -> list:
    """
    Get status of all scheduled jobs.

    Returns:
        List of job status dictionaries containing:
        - id: Job identifier
        - name: Human-readable job name
        - next_run: ISO-formatted next run time (or None)
        - trigger: Trigger description
    """
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })
    return jobs
