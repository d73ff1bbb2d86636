"""
In-memory sync status table, one entry per tenant.

The table is split into lock-guarded shards keyed by tenant so status
updates for unrelated tenants never contend on one lock. Entries are never
persisted: a restart loses in-flight status but not durable sync state.
"""

import logging
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set

from signin_sync.config import settings
from signin_sync.services.errors import SyncTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class ActiveSyncEntry:
    """Status of one tenant's in-progress or just-finished sync."""

    active: bool = False
    message: Optional[str] = None
    progress: int = 0
    started_at: Optional[datetime] = None
    last_update_at: Optional[datetime] = None
    cancel_requested: bool = False
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return not self.active and (self.result is not None or self.error is not None)

    def is_stale(self, threshold_seconds: float, now: Optional[datetime] = None) -> bool:
        """An active entry that has not been updated for threshold_seconds."""
        if not self.active or self.last_update_at is None:
            return False
        now = now or datetime.utcnow()
        return now - self.last_update_at > timedelta(seconds=threshold_seconds)

    def copy(self) -> "ActiveSyncEntry":
        return replace(
            self,
            result=dict(self.result) if self.result is not None else None,
            error=dict(self.error) if self.error is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _new_entry(message: str, progress: int = 5) -> ActiveSyncEntry:
    now = datetime.utcnow()
    return ActiveSyncEntry(
        active=True,
        message=message,
        progress=progress,
        started_at=now,
        last_update_at=now,
    )


class _Shard:
    __slots__ = ("lock", "entries", "running")

    def __init__(self):
        self.lock = threading.Lock()
        self.entries: Dict[str, ActiveSyncEntry] = {}
        self.running: Set[str] = set()


class SyncStatusTracker:
    """
    Process-wide table of sync status, partitioned by tenant.

    Besides the caller-visible entry, each shard keeps the set of tenants
    whose sync task is still executing. That claim is what enforces
    at-most-one sync per tenant; it outlives a deadline that has already
    marked the entry as timed out.
    """

    def __init__(self, retention_seconds: float = 30.0, shard_count: int = 16):
        self.retention_seconds = retention_seconds
        self._shards: List[_Shard] = [_Shard() for _ in range(max(1, shard_count))]

    def _shard(self, tenant_id: str) -> _Shard:
        return self._shards[hash(tenant_id) % len(self._shards)]

    # ─── Entries ──────────────────────────────────────────────────────────────

    def get(self, tenant_id: str) -> ActiveSyncEntry:
        """Return a copy of the tenant's entry, or an idle entry if none exists."""
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.get(tenant_id)
            return entry.copy() if entry else ActiveSyncEntry(message="idle")

    def set(self, tenant_id: str, entry: ActiveSyncEntry) -> None:
        shard = self._shard(tenant_id)
        with shard.lock:
            shard.entries[tenant_id] = entry.copy()

    def update(self, tenant_id: str, **fields: Any) -> ActiveSyncEntry:
        """Change selected fields of an entry and stamp last_update_at."""
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.setdefault(tenant_id, ActiveSyncEntry())
            for name, value in fields.items():
                setattr(entry, name, value)
            entry.last_update_at = datetime.utcnow()
            return entry.copy()

    def begin(self, tenant_id: str, message: str = "Connecting to directory...") -> ActiveSyncEntry:
        """
        Mark the tenant's run as connected.

        Within a claimed run the entry created by claim() is kept, including
        a cancel request or timeout report that arrived in the meantime. A
        missing or finished entry of an unclaimed tenant is replaced.
        """
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.get(tenant_id)
            if entry is None or (entry.is_terminal and tenant_id not in shard.running):
                entry = _new_entry(message)
                shard.entries[tenant_id] = entry
            elif entry.active and not entry.cancel_requested:
                entry.message = message
            entry.progress = max(entry.progress, 5)
            entry.last_update_at = datetime.utcnow()
            return entry.copy()

    def report(self, tenant_id: str, message: str, progress: Optional[int] = None) -> ActiveSyncEntry:
        """
        Per-page progress update.

        The message is only replaced while the entry is active, so a timeout
        report stays readable until the run writes its final outcome.
        """
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.setdefault(tenant_id, _new_entry(message))
            if entry.active:
                entry.message = message
            if progress is not None:
                entry.progress = progress
            entry.last_update_at = datetime.utcnow()
            return entry.copy()

    def finish(
        self,
        tenant_id: str,
        *,
        message: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None,
    ) -> ActiveSyncEntry:
        """Write the terminal outcome, replacing any earlier timeout report."""
        fields: Dict[str, Any] = {
            "active": False,
            "message": message,
            "result": result,
            "error": error,
        }
        if error is None:
            fields["progress"] = 100
        return self.update(tenant_id, **fields)

    def mark_timed_out(self, tenant_id: str, seconds: float) -> bool:
        """
        Report a deadline miss for a still-active entry.

        The sync task is left running and will overwrite this with its real
        outcome. Returns False if the entry had already finished.
        """
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.get(tenant_id)
            if entry is None or not entry.active:
                return False
            entry.active = False
            entry.message = f"Sync still running after {seconds:g}s; check status again"
            entry.error = SyncTimeoutError(
                f"Sync did not finish within {seconds:g} seconds",
                hint="The sync continues in the background. Poll the status for the final result.",
            ).to_dict()
            entry.last_update_at = datetime.utcnow()
            return True

    # ─── In-flight claims ─────────────────────────────────────────────────────

    def claim(self, tenant_id: str) -> bool:
        """
        Atomically mark a tenant's sync as in flight. False if already claimed.

        The run's entry is created here, so cancel and timeout requests made
        before the sync reaches the directory apply to this run.
        """
        shard = self._shard(tenant_id)
        with shard.lock:
            if tenant_id in shard.running:
                return False
            shard.running.add(tenant_id)
            shard.entries[tenant_id] = _new_entry("Connecting to directory...", progress=0)
            return True

    def release(self, tenant_id: str) -> None:
        """Drop the claim. An entry the run never finished is closed."""
        shard = self._shard(tenant_id)
        with shard.lock:
            shard.running.discard(tenant_id)
            entry = shard.entries.get(tenant_id)
            if entry is not None and entry.active:
                entry.active = False
                entry.message = "Sync ended"
                entry.last_update_at = datetime.utcnow()

    def is_running(self, tenant_id: str) -> bool:
        shard = self._shard(tenant_id)
        with shard.lock:
            return tenant_id in shard.running

    # ─── Cancellation ─────────────────────────────────────────────────────────

    def request_cancel(self, tenant_id: str) -> bool:
        """
        Ask a running sync to stop at its next page boundary.

        Returns:
            True if a sync was active and the flag was set
        """
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.get(tenant_id)
            if entry is None:
                return False
            if not entry.active and tenant_id not in shard.running:
                return False
            entry.cancel_requested = True
            entry.message = "Cancellation requested"
            entry.last_update_at = datetime.utcnow()
        logger.info(f"Cancellation requested for tenant {tenant_id}")
        return True

    def is_cancel_requested(self, tenant_id: str) -> bool:
        shard = self._shard(tenant_id)
        with shard.lock:
            entry = shard.entries.get(tenant_id)
            return bool(entry and entry.cancel_requested)

    # ─── Housekeeping ─────────────────────────────────────────────────────────

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Drop finished entries older than the retention window.

        Entries of tenants whose task is still in flight are kept.

        Returns:
            Number of entries removed
        """
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.retention_seconds)
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired = [
                    tenant_id
                    for tenant_id, entry in shard.entries.items()
                    if not entry.active
                    and tenant_id not in shard.running
                    and (entry.last_update_at is None or entry.last_update_at < cutoff)
                ]
                for tenant_id in expired:
                    del shard.entries[tenant_id]
                removed += len(expired)
        if removed:
            logger.debug(f"Swept {removed} finished sync entries")
        return removed

    def clear(self) -> None:
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()
                shard.running.clear()


# Global tracker instance (singleton)
sync_status_tracker = SyncStatusTracker(
    retention_seconds=settings.SYNC_STATUS_RETENTION_SECONDS
)
