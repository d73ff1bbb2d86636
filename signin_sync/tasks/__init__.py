"""
Background tasks and scheduling module.

Provides:
- Scheduler: Periodic sign-in sync for all tenants and status sweeping
- Worker: Attended and background sync execution for API requests
"""

from signin_sync.tasks.worker import (
    sync_worker,
    SyncWorker
)
from signin_sync.tasks.scheduler import (
    scheduler,
    setup_scheduler,
    shutdown_scheduler,
    get_job_status,
    background_signin_sync_job,
    sync_tenant_with_retry,
    sweep_status_job
)

__all__ = [
    # Scheduler
    "scheduler",
    "setup_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "background_signin_sync_job",
    "sync_tenant_with_retry",
    "sweep_status_job",
    # Worker
    "sync_worker",
    "SyncWorker"
]
