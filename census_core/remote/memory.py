# =============================================================================
# census_core/remote/memory.py
# In-Process Realtime Store
# =============================================================================
"""
InMemoryRemoteStore - an in-process stand-in for the realtime document store.

Used for offline/demo mode and by the test-suite to run several clients
against one "server". It reproduces the behaviour the sync layer relies on:

- Each client keeps a queue of pending (unacknowledged) writes.
- A client's view of a document is the committed document plus its own
  pending writes; a snapshot carries ``is_local_echo=True`` while any of the
  client's writes for that date are pending.
- A write first produces an echo snapshot to the writer; on commit every
  client whose view changed receives a fresh snapshot.
- Commits happen after ``latency`` seconds (``auto_commit=True``) or when the
  test calls ``flush()``.
- ``set_offline`` and ``fail_next_writes`` simulate transport failures.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from census_core.errors import NetworkError, RecordNotFoundError
from census_core.models.audit import AuditLogEntry
from census_core.models.records import Record, normalize_record
from census_core.offline.patch_engine import apply_patch, from_remote_update
from .base import RemoteCollaborator, Snapshot, SnapshotCallback, Subscription

logger = logging.getLogger(__name__)

_write_ids = itertools.count(1)


@dataclass(eq=False)
class PendingWrite:
    """A write accepted by a client but not yet committed by the server."""
    date: str
    kind: str  # "full" | "partial" | "delete"
    payload: Any = None
    write_id: int = field(default_factory=lambda: next(_write_ids))
    done: Optional[asyncio.Future] = None


class InMemoryRemoteStore:
    """Shared server state for any number of InMemoryRemoteClient instances."""

    def __init__(self, auto_commit: bool = True, latency: float = 0.0, read_latency: float = 0.0):
        self.auto_commit = auto_commit
        self.latency = latency
        self.read_latency = read_latency
        self.documents: Dict[str, Record] = {}
        self.audit_archive: List[Dict[str, Any]] = []
        self.commit_log: List[Dict[str, Any]] = []
        self._clients: Dict[str, InMemoryRemoteClient] = {}
        self._offline = False
        self._write_failures = 0
        self._audit_failures = 0

    # =========================================================================
    # TEST / DEMO CONTROLS
    # =========================================================================

    def client(self, client_id: str) -> "InMemoryRemoteClient":
        """Get (or create) the connection for ``client_id``."""
        if client_id not in self._clients:
            self._clients[client_id] = InMemoryRemoteClient(self, client_id)
        return self._clients[client_id]

    def seed(self, date: str, record: Record) -> None:
        """Place a committed document without notifying anyone."""
        self.documents[date] = copy.deepcopy(record)

    def set_offline(self, offline: bool = True) -> None:
        self._offline = offline

    def fail_next_writes(self, count: int = 1) -> None:
        """Reject the next ``count`` record writes with NetworkError."""
        self._write_failures = count

    def fail_next_audit_writes(self, count: int = 1) -> None:
        self._audit_failures = count

    @property
    def pending_count(self) -> int:
        return sum(len(c.pending) for c in self._clients.values())

    async def flush(self) -> int:
        """Commit every pending write in submission order; returns the count."""
        writes = sorted(
            ((c, w) for c in self._clients.values() for w in c.pending),
            key=lambda item: item[1].write_id,
        )
        for client, write in writes:
            self._commit(client, write)
        await asyncio.sleep(0)
        return len(writes)

    # =========================================================================
    # SERVER SIDE
    # =========================================================================

    def _check_online(self, operation: str, date: Optional[str] = None) -> None:
        if self._offline:
            raise NetworkError("Remote store unreachable", operation=operation, date=date)

    def _take_write_failure(self, operation: str, date: str) -> None:
        self._check_online(operation, date)
        if self._write_failures > 0:
            self._write_failures -= 1
            raise NetworkError("Remote write rejected", operation=operation, date=date)

    def _take_audit_failure(self) -> None:
        self._check_online("write_audit")
        if self._audit_failures > 0:
            self._audit_failures -= 1
            raise NetworkError("Audit archive write rejected", operation="write_audit")

    async def _submit(self, client: "InMemoryRemoteClient", write: PendingWrite) -> None:
        if self.auto_commit:
            if self.latency:
                await asyncio.sleep(self.latency)
            self._commit(client, write)
            return
        write.done = asyncio.get_running_loop().create_future()
        await write.done

    def _commit(self, client: "InMemoryRemoteClient", write: PendingWrite) -> None:
        if write in client.pending:
            client.pending.remove(write)

        if write.kind == "full":
            self.documents[write.date] = copy.deepcopy(write.payload)
        elif write.kind == "partial":
            document = self.documents.setdefault(write.date, {"date": write.date})
            apply_patch(document, write.payload)
        elif write.kind == "delete":
            self.documents.pop(write.date, None)

        self.commit_log.append({"client": client.client_id, "date": write.date, "kind": write.kind})
        logger.debug(f"Committed {write.kind} write for {write.date} from {client.client_id}")

        for other in list(self._clients.values()):
            other._emit(write.date)

        if write.done is not None and not write.done.done():
            write.done.set_result(None)


class InMemoryRemoteClient(RemoteCollaborator):
    """One client's connection to an InMemoryRemoteStore."""

    def __init__(self, server: InMemoryRemoteStore, client_id: str):
        self.server = server
        self.client_id = client_id
        self.pending: List[PendingWrite] = []
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._last_delivered: Dict[int, Tuple[Optional[Record], bool]] = {}

    # =========================================================================
    # LOCAL VIEW
    # =========================================================================

    def _pending_for(self, date: str) -> List[PendingWrite]:
        return [w for w in self.pending if w.date == date]

    def _view(self, date: str) -> Optional[Record]:
        """Committed document overlaid with this client's pending writes."""
        view = copy.deepcopy(self.server.documents.get(date))
        for write in self._pending_for(date):
            if write.kind == "full":
                view = copy.deepcopy(write.payload)
            elif write.kind == "partial":
                if view is None:
                    view = {"date": date}
                apply_patch(view, write.payload)
            elif write.kind == "delete":
                view = None
        return view

    def _emit(self, date: str, only: Optional[Subscription] = None) -> None:
        """
        Deliver the current view to subscriptions whose last delivery differs.

        A change of the echo flag alone counts as a difference, so a writer
        whose echo was discarded still receives the acknowledged state.
        """
        if only is not None:
            subscriptions = [only]
        else:
            subscriptions = [s for s in self._subscriptions.get(date, []) if s.active]
        if not subscriptions:
            return
        view = self._view(date)
        is_echo = bool(self._pending_for(date))
        for subscription in subscriptions:
            key = id(subscription)
            if only is None and self._last_delivered.get(key) == (view, is_echo):
                continue
            self._last_delivered[key] = (copy.deepcopy(view), is_echo)
            subscription.deliver(
                Snapshot(date=date, record=normalize_record(view, date), is_local_echo=is_echo)
            )

    # =========================================================================
    # RECORD OPERATIONS
    # =========================================================================

    async def read(self, date: str) -> Optional[Record]:
        self.server._check_online("read", date)
        if self.server.read_latency:
            await asyncio.sleep(self.server.read_latency)
        self.server._check_online("read", date)
        return normalize_record(self.server.documents.get(date), date)

    async def _write(self, write: PendingWrite) -> None:
        self.pending.append(write)
        self._emit(write.date)
        await self.server._submit(self, write)

    async def write_full(self, date: str, record: Record) -> None:
        self.server._take_write_failure("write_full", date)
        await self._write(PendingWrite(date, "full", copy.deepcopy(record)))

    async def write_partial(self, date: str, update: List[Dict[str, Any]]) -> None:
        self.server._take_write_failure("write_partial", date)
        patch = from_remote_update(update)
        if self._view(date) is None:
            raise RecordNotFoundError(f"No remote record for {date}", date=date)
        await self._write(PendingWrite(date, "partial", patch))

    async def delete(self, date: str) -> None:
        self.server._take_write_failure("delete", date)
        await self._write(PendingWrite(date, "delete"))

    def subscribe(self, date: str, on_snapshot: SnapshotCallback) -> Subscription:
        subscription = Subscription(date, on_snapshot, on_cancel=self._remove_subscription)
        self._subscriptions.setdefault(date, []).append(subscription)
        self._emit(date, only=subscription)
        return subscription

    def _remove_subscription(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.date, [])
        if subscription in subs:
            subs.remove(subscription)
        self._last_delivered.pop(id(subscription), None)

    # =========================================================================
    # AUDIT ARCHIVE
    # =========================================================================

    async def write_audit(self, entry: AuditLogEntry) -> None:
        self.server._take_audit_failure()
        if self.server.latency:
            await asyncio.sleep(self.server.latency)
        self.server.audit_archive.append(entry.to_dict())

    async def fetch_audit_logs(self, limit: int = 100) -> List[AuditLogEntry]:
        self.server._check_online("fetch_audit_logs")
        rows = sorted(self.server.audit_archive, key=lambda r: r["id"], reverse=True)[:limit]
        return [AuditLogEntry.from_dict(r) for r in rows]

    async def fetch_audit_logs_for_date(self, record_date: str) -> List[AuditLogEntry]:
        self.server._check_online("fetch_audit_logs_for_date")
        rows = [r for r in self.server.audit_archive if r.get("recordDate") == record_date]
        rows.sort(key=lambda r: r["id"], reverse=True)
        return [AuditLogEntry.from_dict(r) for r in rows]
