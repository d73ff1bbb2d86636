"""
Record store for sign-in events and per-tenant sync cursors.

A thin wrapper over the async session. Inserts are insert-or-ignore keyed
by (tenant_id, id); the cursor is only written by set_cursor.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signin_sync.models import SignInRecord, TenantSyncState
from signin_sync.services.errors import TransientError
from signin_sync.services.graph import parse_graph_timestamp

logger = logging.getLogger(__name__)


def classify_sign_in_source(client_app_used: Optional[str]) -> str:
    """Map the remote clientAppUsed value to a source channel."""
    normalized = (client_app_used or "").lower()

    if not normalized:
        return "entra-other"
    if "browser" in normalized:
        return "entra-web"
    if "mobile" in normalized or "desktop" in normalized or "client" in normalized:
        return "entra-desktop"
    return "entra-other"


def sign_in_row(tenant_id: str, event: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Graph sign-in event into SignInRecord column values."""
    device = event.get("deviceDetail") or {}
    location = event.get("location") or {}
    status = event.get("status") or {}

    return {
        "tenant_id": tenant_id,
        "id": str(event["id"]),
        "occurred_at": parse_graph_timestamp(event["createdDateTime"]),
        "user_display_name": event.get("userDisplayName") or None,
        "user_principal_name": event.get("userPrincipalName") or None,
        "user_id": event.get("userId") or None,
        "app_display_name": event.get("appDisplayName") or None,
        "resource_display_name": event.get("resourceDisplayName") or None,
        "client_app_used": event.get("clientAppUsed") or None,
        "source_channel": classify_sign_in_source(event.get("clientAppUsed")),
        "device_display_name": device.get("displayName") or device.get("deviceDisplayName") or None,
        "operating_system": device.get("operatingSystem") or None,
        "browser": device.get("browser") or None,
        "ip_address": event.get("ipAddress") or None,
        "location_city": location.get("city") or None,
        "location_country_or_region": location.get("countryOrRegion") or None,
        "status_error_code": status.get("errorCode"),
        "status_failure_reason": status.get("failureReason") or None,
        "risk_state": event.get("riskState") or None,
        "risk_detail": event.get("riskDetail") or None,
        "conditional_access_status": event.get("conditionalAccessStatus") or None,
        "correlation_id": event.get("correlationId") or None,
        "is_interactive": event.get("isInteractive"),
        "raw": event,
        "ingested_at": datetime.utcnow(),
    }


class SignInRecordStore:
    """Persists sign-in events and tenant cursors through one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _insert(self):
        if self.db.get_bind().dialect.name == "sqlite":
            return sqlite.insert(SignInRecord)
        return postgresql.insert(SignInRecord)

    async def get_state(self, tenant_id: str) -> Optional[TenantSyncState]:
        result = await self.db.execute(
            select(TenantSyncState).where(TenantSyncState.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def get_cursor(self, tenant_id: str) -> Optional[str]:
        state = await self.get_state(tenant_id)
        return state.signin_cursor if state else None

    async def set_cursor(
        self,
        tenant_id: str,
        cursor: Optional[str],
        synced_at: datetime,
        records_synced: int = 0,
    ) -> TenantSyncState:
        """
        Record a successful sync for a tenant, creating its row if needed.

        Raises:
            TransientError: If the write fails (rolled back)
        """
        try:
            state = await self.get_state(tenant_id)
            if state is None:
                state = TenantSyncState(tenant_id=tenant_id, signins_synced_total=0)
                self.db.add(state)
            state.signin_cursor = cursor
            state.signin_last_sync_at = synced_at
            state.signins_synced_total = (state.signins_synced_total or 0) + records_synced
            await self.db.commit()
            return state
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to store cursor for tenant {tenant_id}: {e}")
            raise TransientError(
                "Failed to store sync cursor",
                hint="The database is unavailable. The next sync will retry from the previous cursor.",
            ) from e

    async def upsert_record(self, tenant_id: str, record: Dict[str, Any]) -> bool:
        """
        Insert one sign-in event unless (tenant_id, id) already exists.

        Does not commit. Returns True if a new row was written.
        """
        stmt = self._insert().values(**sign_in_row(tenant_id, record))
        stmt = stmt.on_conflict_do_nothing(index_elements=["tenant_id", "id"])
        result = await self.db.execute(stmt)
        return (result.rowcount or 0) > 0

    async def upsert_records(self, tenant_id: str, records: Iterable[Dict[str, Any]]) -> int:
        """
        Insert a page of events in order and commit them together.

        Returns:
            Number of rows that were newly inserted

        Raises:
            TransientError: If the write fails (rolled back)
        """
        inserted = 0
        try:
            for record in records:
                if await self.upsert_record(tenant_id, record):
                    inserted += 1
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to store sign-ins for tenant {tenant_id}: {e}")
            raise TransientError(
                "Failed to store sign-in records",
                hint="The database is unavailable. The next sync will retry this window.",
            ) from e
        return inserted

    async def list_sync_tenants(self) -> List[str]:
        """Tenant IDs that take part in background sync."""
        result = await self.db.execute(
            select(TenantSyncState.tenant_id)
            .where(TenantSyncState.sync_enabled.is_(True))
            .order_by(TenantSyncState.tenant_id)
        )
        return list(result.scalars().all())

    async def count_records(self, tenant_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(SignInRecord).where(SignInRecord.tenant_id == tenant_id)
        )
        return result.scalar_one()
