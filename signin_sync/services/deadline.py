"""
Deadline racing for sync tasks.

A deadline produces an early observation of a sync, never its termination:
the task keeps running after the caller has been told "timeout" and writes
its real outcome to the status tracker when it finishes.
"""

import asyncio
import logging
from typing import Awaitable, Optional, Set, Union

from signin_sync.services.errors import SyncError
from signin_sync.services.status import SyncStatusTracker
from signin_sync.services.sync import SyncResult

logger = logging.getLogger(__name__)

# Strong references to running sync tasks so they are not garbage collected
# while nobody awaits them.
_running_tasks: Set[asyncio.Task] = set()


def _on_task_done(task: asyncio.Task) -> None:
    _running_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is None:
        return
    if isinstance(exc, SyncError):
        logger.warning(
            f"Background sync task {task.get_name()} failed: "
            f"[{exc.classification}] {exc.message}"
        )
    else:
        logger.error(
            f"Background sync task {task.get_name()} crashed: {exc}",
            exc_info=exc,
        )


def spawn(coro: Awaitable, name: Optional[str] = None) -> asyncio.Task:
    """
    Start a sync coroutine as a tracked task.

    The task is kept alive until it finishes and its failure, if nobody
    awaited it, is logged.
    """
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    _running_tasks.add(task)
    task.add_done_callback(_on_task_done)
    return task


def running_task_count() -> int:
    return len(_running_tasks)


async def run_with_deadline(
    sync: Union[Awaitable[SyncResult], asyncio.Task],
    seconds: float,
    tracker: SyncStatusTracker,
    tenant_id: str,
) -> SyncResult:
    """
    Race a sync against a deadline.

    Args:
        sync: Coroutine or task producing a SyncResult
        seconds: Deadline in seconds
        tracker: Status table updated when the deadline wins
        tenant_id: Tenant the sync belongs to

    Returns:
        The sync's own result if it settles first, otherwise
        SyncResult(timed_out=True)

    Raises:
        SyncError: If the sync settles first with a classified failure
    """
    task = sync if isinstance(sync, asyncio.Task) else spawn(sync, name=f"signin-sync:{tenant_id}")
    if task not in _running_tasks and not task.done():
        _running_tasks.add(task)
        task.add_done_callback(_on_task_done)

    done, _ = await asyncio.wait({task}, timeout=seconds)
    if task in done:
        return task.result()

    tracker.mark_timed_out(tenant_id, seconds)
    logger.warning(
        f"Sync for tenant {tenant_id} exceeded {seconds:g}s deadline; "
        f"continuing in background"
    )
    return SyncResult(timed_out=True, reason="timeout")
