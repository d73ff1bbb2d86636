"""
Background tasks API endpoints.

Provides endpoints to:
- View scheduler status and upcoming jobs
- Run the all-tenant background sign-in sync on demand
"""

from typing import Optional
from fastapi import APIRouter
from pydantic import BaseModel

from signin_sync.services.deadline import spawn
from signin_sync.tasks import get_job_status, background_signin_sync_job

router = APIRouter()


class JobStatusResponse(BaseModel):
    """Status of a scheduled job."""
    id: str
    name: str
    next_run: Optional[str] = None
    trigger: str


class TaskTriggerResponse(BaseModel):
    """Response when triggering a task."""
    message: str
    task: str
    status: str


@router.get("/scheduler/status", response_model=list[JobStatusResponse])
async def get_scheduler_status():
    """
    Get status of all scheduled jobs.

    Example response:
    ```json
    [
        {
            "id": "background_signin_sync",
            "name": "Background Sign-In Sync",
            "next_run": "2024-01-15T02:30:00",
            "trigger": "interval[0:30:00]"
        }
    ]
    ```
    """
    return get_job_status()


@router.post("/background-sync", response_model=TaskTriggerResponse)
async def trigger_background_sync():
    """
    Run the all-tenant background sign-in sync now.

    Tenants whose sync is already running are skipped. Use the per-tenant
    status endpoint to follow progress.
    """
    spawn(background_signin_sync_job(), name="background-signin-sync")
    return TaskTriggerResponse(
        message="Background sign-in sync started",
        task="background_signin_sync",
        status="started"
    )
