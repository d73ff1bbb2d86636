"""
Database models for the sign-in sync engine.

This module exports all SQLAlchemy models and the sign-in source
channel constants used throughout the application.
"""

from signin_sync.models.tenant_sync_state import TenantSyncState
from signin_sync.models.signin_record import SignInRecord

# Source channels derived from the remote clientAppUsed field
SOURCE_CHANNELS = ["entra-web", "entra-desktop", "entra-other"]

# Export all models
__all__ = [
    "TenantSyncState",
    "SignInRecord",
    "SOURCE_CHANNELS",
]
