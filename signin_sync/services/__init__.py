"""
Services module for the directory client and sign-in sync logic.
"""

from signin_sync.services.errors import (
    SyncError,
    ThrottledError,
    ForbiddenError,
    SyncTimeoutError,
    TransientError
)
from signin_sync.services.graph import (
    GraphSignInClient,
    SignInPage,
    get_graph_client
)
from signin_sync.services.record_store import (
    SignInRecordStore,
    classify_sign_in_source
)
from signin_sync.services.status import (
    ActiveSyncEntry,
    SyncStatusTracker,
    sync_status_tracker
)
from signin_sync.services.sync import (
    SignInSyncService,
    SyncOptions,
    SyncProgress,
    SyncResult,
    get_sync_service
)
from signin_sync.services.deadline import (
    run_with_deadline,
    spawn
)

__all__ = [
    "SyncError",
    "ThrottledError",
    "ForbiddenError",
    "SyncTimeoutError",
    "TransientError",
    "GraphSignInClient",
    "SignInPage",
    "get_graph_client",
    "SignInRecordStore",
    "classify_sign_in_source",
    "ActiveSyncEntry",
    "SyncStatusTracker",
    "sync_status_tracker",
    "SignInSyncService",
    "SyncOptions",
    "SyncProgress",
    "SyncResult",
    "get_sync_service",
    "run_with_deadline",
    "spawn"
]
