"""
TenantSyncState model for tracking per-tenant sign-in sync progress.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, func, true
from sqlalchemy.orm import Mapped, mapped_column

from signin_sync.database import Base


class TenantSyncState(Base):
    """
    Durable sync state for one directory tenant.

    The cursor is the ISO timestamp of the newest sign-in record that has
    been durably stored. It is only written after a sync invocation has
    committed every record it fetched.
    """

    __tablename__ = "tenant_sync_state"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))

    # Sync tracking
    signin_cursor: Mapped[Optional[str]] = mapped_column(String(64))
    signin_last_sync_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    signins_synced_total: Mapped[int] = mapped_column(
        Integer,
        default=0,
        server_default="0"
    )
    sync_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        server_default=true()
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        server_default=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<TenantSyncState(tenant_id={self.tenant_id}, "
            f"cursor={self.signin_cursor}, "
            f"last_sync={self.signin_last_sync_at})>"
        )
