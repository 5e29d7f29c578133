# =============================================================================
# census_core/offline/sync_coordinator.py
# Per-Date Record Synchronization
# =============================================================================
"""
SyncCoordinator - keeps the day's record consistent between the local cache
and the remote store.

Features:
- Load-on-mount: local snapshot served immediately, remote reconciliation
  in the background (bounded by a timeout)
- Live subscription with echo suppression
- Optimistic field-path patches, full saves with no local corruption on failure
- Sync status tracking and event callbacks

Lifecycle:
    coordinator = SyncCoordinator(local_cache, remote, settings)
    coordinator.load("2024-05-01")
    await coordinator.wait_until_loaded()
    await coordinator.patch_record({"beds.R1.patientName": "Juan"})
    await coordinator.close()
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from census_core.errors import (
    CensusSyncError,
    NetworkError,
    RemoteTimeoutError,
    RecordNotLoadedError,
    ValidationError,
    handle_error,
)
from census_core.models.records import Record, normalize_record
from census_core.offline.local_cache import LocalCache
from census_core.offline.patch_engine import (
    FieldPath,
    PatchLike,
    apply_patch,
    compile_patch,
    to_remote_update,
)
from census_core.remote.base import RemoteCollaborator, Snapshot, Subscription
from census_core.settings import CensusSettings
from census_core.utils.dates import Clock, is_newer, is_valid_record_date, next_timestamp, utc_now

logger = logging.getLogger(__name__)

LAST_UPDATED = FieldPath(("lastUpdated",))


class SyncStatus(Enum):
    """Coordinator status shown by the sync indicator."""
    IDLE = "idle"
    LOADING = "loading"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


class SnapshotOutcome(Enum):
    """What the coordinator did with a delivered snapshot."""
    APPLIED = "applied"
    ECHO = "echo"          # own unacknowledged write, discarded
    STALE = "stale"        # for a date that is no longer loaded
    CLEARED = "cleared"    # document deleted remotely
    ABSENT = "absent"      # document not created remotely yet


@dataclass
class SyncState:
    """Current sync state."""
    status: SyncStatus = SyncStatus.IDLE
    date: Optional[str] = None
    last_sync_time: Optional[datetime] = None
    last_error: Optional[CensusSyncError] = None
    snapshots_applied: int = 0
    echoes_discarded: int = 0


class SyncCoordinator:
    """
    Owner of the authoritative in-memory record for the current date.

    All mutations go through ``save_and_update`` or ``patch_record``; readers
    get copies via ``record``.
    """

    def __init__(
        self,
        local_cache: LocalCache,
        remote: RemoteCollaborator,
        settings: Optional[CensusSettings] = None,
        clock: Optional[Clock] = None,
    ):
        self.local_cache = local_cache
        self.remote = remote
        self.settings = settings or CensusSettings()
        self._clock = clock or utc_now

        self._state = SyncState()
        self._record: Optional[Record] = None
        self._subscription: Optional[Subscription] = None
        self._reconcile_task: Optional[asyncio.Task] = None
        self._remote_seen = False
        self._callbacks: List[Callable[[SyncState], None]] = []

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def status(self) -> SyncStatus:
        return self._state.status

    @property
    def current_date(self) -> Optional[str]:
        return self._state.date

    @property
    def record(self) -> Optional[Record]:
        """A copy of the authoritative record (None if nothing loaded)."""
        return copy.deepcopy(self._record)

    def _set_status(self, status: SyncStatus) -> None:
        self._state.status = status
        if status == SyncStatus.SAVED:
            self._state.last_sync_time = datetime.now()
            self._state.last_error = None
        self._notify_callbacks()

    def _fail(self, error: CensusSyncError) -> None:
        self._state.last_error = error
        handle_error(error)
        self._set_status(SyncStatus.ERROR)

    def _cache_record(self, record: Optional[Record]) -> None:
        try:
            if record is None:
                self.local_cache.delete_record(self._state.date)
            else:
                self.local_cache.save_record(record)
        except Exception as e:
            logger.error(f"Local cache write failed for {self._state.date}: {e}")

    # =========================================================================
    # LOAD / RECONCILE
    # =========================================================================

    def load(self, date: str) -> Optional[Record]:
        """
        Switch to ``date``: serve the cached record now, reconcile in background.

        The previous date's subscription and reconciliation are cancelled
        before anything else happens. Must be called with a running event loop.
        """
        if not is_valid_record_date(date):
            raise ValidationError(f"Invalid record date '{date}'", field="date", expected="YYYY-MM-DD")

        self._teardown()
        self._state.date = date
        self._state.last_error = None
        self._remote_seen = False

        try:
            self._record = normalize_record(self.local_cache.get_record(date), date)
        except Exception as e:
            logger.error(f"Local cache read failed for {date}: {e}")
            self._record = None

        logger.info(f"Loading {date} (cached={'yes' if self._record else 'no'})")
        self._set_status(SyncStatus.LOADING)
        self._reconcile_task = asyncio.get_running_loop().create_task(self._reconcile(date))
        return self.record

    async def wait_until_loaded(self) -> None:
        """Wait for the current reconciliation to finish (never raises)."""
        task = self._reconcile_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _reconcile(self, date: str) -> None:
        try:
            try:
                remote_record = await asyncio.wait_for(
                    self.remote.read(date), timeout=self.settings.reconcile_timeout
                )
            except asyncio.TimeoutError:
                self._fail(RemoteTimeoutError(
                    f"Timed out reconciling {date}",
                    timeout=self.settings.reconcile_timeout,
                    operation="read",
                    date=date,
                ))
                return
            except CensusSyncError as e:
                self._fail(e)
                return
            except Exception as e:
                self._fail(NetworkError(f"Reconciliation failed: {e}", operation="read", date=date))
                return

            if date != self._state.date:
                return

            local = self._record
            if remote_record is not None:
                self._remote_seen = True

            if remote_record is not None and (
                local is None or is_newer(remote_record.get("lastUpdated"), local.get("lastUpdated"))
            ):
                logger.info(f"Remote version of {date} is newer; adopting it")
                self._record = remote_record
                self._cache_record(remote_record)
                self._set_status(SyncStatus.SAVED)
            elif local is not None and (
                remote_record is None or is_newer(local.get("lastUpdated"), remote_record.get("lastUpdated"))
            ):
                logger.info(f"Local version of {date} is newer or unsynced; pushing it")
                await self._push_local(date, copy.deepcopy(local))
            elif local is not None:
                self._set_status(SyncStatus.SAVED)
            else:
                self._set_status(SyncStatus.IDLE)
        finally:
            if date == self._state.date and self._subscription is None:
                self.subscribe(date)

    async def _push_local(self, date: str, record: Record) -> None:
        self._set_status(SyncStatus.SAVING)
        try:
            await asyncio.wait_for(
                self.remote.write_full(date, record), timeout=self.settings.write_timeout
            )
        except asyncio.TimeoutError:
            self._fail(RemoteTimeoutError(
                f"Timed out pushing local {date}",
                timeout=self.settings.write_timeout,
                operation="write_full",
                date=date,
            ))
            return
        except CensusSyncError as e:
            self._fail(e)
            return
        except Exception as e:
            self._fail(NetworkError(f"Push of local record failed: {e}", operation="write_full", date=date))
            return
        self._remote_seen = True
        if date == self._state.date:
            self._set_status(SyncStatus.SAVED)

    async def fetch_remote(self) -> Optional[Record]:
        """
        Read the loaded date from the remote and adopt the result if present.

        Raises on remote failure; the in-memory record is left alone when the
        remote has nothing.
        """
        date = self._state.date
        if date is None:
            raise RecordNotLoadedError("No date loaded")
        remote_record = await self._remote_call(self.remote.read(date), "read", date)
        if remote_record is None or date != self._state.date:
            return None
        self._remote_seen = True
        self._record = normalize_record(remote_record, date)
        self._cache_record(self._record)
        self._set_status(SyncStatus.SAVED)
        return self.record

    def refresh(self) -> Optional[Record]:
        """Reload the in-memory record from the local cache."""
        if self._state.date is None:
            return None
        self._record = normalize_record(self.local_cache.get_record(self._state.date), self._state.date)
        self._notify_callbacks()
        return self.record

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, date: str) -> Subscription:
        """Open the live subscription for ``date``, replacing any previous one."""
        if self._subscription is not None:
            self._subscription.cancel()
        self._subscription = self.remote.subscribe(date, self._on_snapshot)
        logger.debug(f"Subscribed to {date}")
        return self._subscription

    def _on_snapshot(self, snapshot: Snapshot) -> SnapshotOutcome:
        if snapshot.date != self._state.date:
            logger.debug(f"Dropping snapshot for {snapshot.date} (showing {self._state.date})")
            return SnapshotOutcome.STALE

        if snapshot.is_local_echo:
            self._state.echoes_discarded += 1
            logger.debug(f"Discarding echo snapshot for {snapshot.date}")
            return SnapshotOutcome.ECHO

        if snapshot.record is None:
            if not self._remote_seen:
                return SnapshotOutcome.ABSENT
            logger.info(f"Record {snapshot.date} was deleted remotely")
            self._cache_record(None)
            self._record = None
            self._set_status(SyncStatus.IDLE)
            return SnapshotOutcome.CLEARED

        self._remote_seen = True
        self._record = normalize_record(snapshot.record, snapshot.date)
        self._cache_record(self._record)
        self._state.snapshots_applied += 1
        logger.debug(f"Applied remote snapshot for {snapshot.date} (lastUpdated={self._record.get('lastUpdated')})")
        self._set_status(SyncStatus.SAVED)
        return SnapshotOutcome.APPLIED

    # =========================================================================
    # WRITES
    # =========================================================================

    async def _remote_call(self, coro, operation: str, date: str) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.settings.write_timeout)
        except asyncio.TimeoutError:
            raise RemoteTimeoutError(
                f"Timed out during {operation} for {date}",
                timeout=self.settings.write_timeout,
                operation=operation,
                date=date,
            )
        except CensusSyncError:
            raise
        except Exception as e:
            raise NetworkError(f"{operation} failed: {e}", operation=operation, date=date) from e

    async def save_and_update(self, record: Record) -> None:
        """
        Replace the whole record; the local view changes before the remote ack.

        On failure the pre-save record is restored in memory and in the local
        cache, the status becomes ``error`` and the error is raised.
        """
        date = self._state.date
        if date is None:
            raise RecordNotLoadedError("No date loaded")
        if record.get("date") != date:
            raise ValidationError(
                "Record date does not match the loaded date",
                field="date",
                expected=date,
                actual=str(record.get("date")),
            )

        previous = self._record
        to_save = copy.deepcopy(record)
        self._record = to_save
        self._cache_record(to_save)
        self._set_status(SyncStatus.SAVING)
        try:
            await self._remote_call(self.remote.write_full(date, copy.deepcopy(to_save)), "write_full", date)
        except CensusSyncError as e:
            self._restore(date, previous)
            self._fail(e)
            raise

        if date == self._state.date:
            self._remote_seen = True
            self._set_status(SyncStatus.SAVED)

    def _restore(self, date: str, previous: Optional[Record]) -> None:
        """Put back the record a failed full save replaced."""
        if date == self._state.date:
            self._record = previous
            self._cache_record(previous)
            return
        try:
            if previous is None:
                self.local_cache.delete_record(date)
            else:
                self.local_cache.save_record(previous)
        except Exception as e:
            logger.error(f"Local cache restore failed for {date}: {e}")

    async def patch_record(self, path_map: PatchLike) -> None:
        """
        Apply a field-path patch optimistically, then push it remotely.

        The patch is validated as a whole first (InvalidPathError). On remote
        failure the status becomes ``error`` and the error is raised; the
        optimistic change is kept.
        """
        compiled = compile_patch(path_map)
        if self._record is None:
            raise RecordNotLoadedError("Cannot patch before a record is loaded", date=self._state.date)

        date = self._state.date
        compiled.pop(LAST_UPDATED, None)
        compiled[LAST_UPDATED] = next_timestamp(self._record.get("lastUpdated"), self._clock)

        apply_patch(self._record, compiled)
        self._cache_record(self._record)
        self._set_status(SyncStatus.SAVING)

        try:
            await self._remote_call(self.remote.write_partial(date, to_remote_update(compiled)), "write_partial", date)
        except CensusSyncError as e:
            if date == self._state.date:
                self._fail(e)
            raise

        if date == self._state.date:
            self._set_status(SyncStatus.SAVED)

    async def delete_current(self) -> None:
        """Delete the loaded day remotely and locally."""
        date = self._state.date
        if date is None:
            raise RecordNotLoadedError("No date loaded")
        self._set_status(SyncStatus.SAVING)
        try:
            await self._remote_call(self.remote.delete(date), "delete", date)
        except CensusSyncError as e:
            self._fail(e)
            raise
        self._cache_record(None)
        self._record = None
        self._set_status(SyncStatus.IDLE)

    # =========================================================================
    # TEARDOWN
    # =========================================================================

    def _teardown(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        if self._reconcile_task is not None and not self._reconcile_task.done():
            self._reconcile_task.cancel()
        self._reconcile_task = None

    async def close(self) -> None:
        """Cancel the subscription and any pending reconciliation."""
        task = self._reconcile_task
        self._teardown()
        if task is not None:
            await asyncio.wait({task})
        self._state.date = None
        self._record = None
        self._state.status = SyncStatus.IDLE
        logger.debug("Sync coordinator closed")

    async def __aenter__(self) -> SyncCoordinator:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.close()
        return False

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Register a callback for sync state changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[SyncState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in self._callbacks:
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in sync callback: {e}")

    def get_status_display(self) -> Dict[str, Any]:
        """Get sync status for UI display."""
        return {
            "status": self._state.status.value,
            "date": self._state.date,
            "last_sync": self._state.last_sync_time.isoformat() if self._state.last_sync_time else None,
            "last_error": str(self._state.last_error) if self._state.last_error else None,
            "has_record": self._record is not None,
            "echoes_discarded": self._state.echoes_discarded,
            "snapshots_applied": self._state.snapshots_applied,
        }
