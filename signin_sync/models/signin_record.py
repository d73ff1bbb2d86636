"""
SignInRecord model for directory sign-in events.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from signin_sync.database import Base


class SignInRecord(Base):
    """
    One sign-in event pulled from the directory audit log.

    Keyed by (tenant_id, id) where id is assigned by the remote service,
    so re-ingesting an event never produces a second row.
    """

    __tablename__ = "signin_records"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Actor
    user_display_name: Mapped[Optional[str]] = mapped_column(String(255))
    user_principal_name: Mapped[Optional[str]] = mapped_column(String(255))
    user_id: Mapped[Optional[str]] = mapped_column(String(64))

    # Application
    app_display_name: Mapped[Optional[str]] = mapped_column(String(255))
    resource_display_name: Mapped[Optional[str]] = mapped_column(String(255))
    client_app_used: Mapped[Optional[str]] = mapped_column(String(100))
    source_channel: Mapped[str] = mapped_column(String(32), default="entra-other")

    # Device / network
    device_display_name: Mapped[Optional[str]] = mapped_column(String(255))
    operating_system: Mapped[Optional[str]] = mapped_column(String(100))
    browser: Mapped[Optional[str]] = mapped_column(String(100))
    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    location_city: Mapped[Optional[str]] = mapped_column(String(100))
    location_country_or_region: Mapped[Optional[str]] = mapped_column(String(16))

    # Outcome and risk
    status_error_code: Mapped[Optional[int]] = mapped_column(Integer)
    status_failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    risk_state: Mapped[Optional[str]] = mapped_column(String(50))
    risk_detail: Mapped[Optional[str]] = mapped_column(String(100))
    conditional_access_status: Mapped[Optional[str]] = mapped_column(String(50))
    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))
    is_interactive: Mapped[Optional[bool]] = mapped_column(Boolean)

    raw: Mapped[Optional[dict]] = mapped_column(JSON)
    ingested_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_signin_records_tenant_occurred", "tenant_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<SignInRecord(tenant_id={self.tenant_id}, id={self.id}, "
            f"occurred_at={self.occurred_at})>"
        )
