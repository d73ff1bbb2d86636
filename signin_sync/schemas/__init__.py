from signin_sync.schemas.common import HealthResponse
from signin_sync.schemas.sync import (
    SyncTriggerRequest, SyncTriggerResponse, SyncResultResponse,
    SyncErrorDetail, SyncErrorResponse, SyncStatusResponse, SyncCancelResponse
)

__all__ = [
    # Common
    "HealthResponse",
    # Sync
    "SyncTriggerRequest",
    "SyncTriggerResponse",
    "SyncResultResponse",
    "SyncErrorDetail",
    "SyncErrorResponse",
    "SyncStatusResponse",
    "SyncCancelResponse",
]
