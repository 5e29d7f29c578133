# =============================================================================
# census_core/remote/supabase_store.py
# Supabase Remote Store (PostgREST + Realtime)
# =============================================================================
"""
SupabaseRemoteStore - RemoteCollaborator backed by Supabase.

Tables (see scripts/setup_census_tables.py):
    daily_records(hospital_id, date, data jsonb, last_updated, writer_id, write_id)
    audit_logs(id, hospital_id, timestamp, user_id, action, ..., data jsonb)

Partial writes go through the ``apply_record_patch`` Postgres function, which
deep-sets each path inside the ``data`` document in one statement, so
concurrent writers touching different fields never overwrite each other.

Echo detection: every write carries this client's ``writer_id`` and a fresh
``write_id``. Realtime events produced by our own writes, or arriving while
our writes for that date are still in flight, are delivered with
``is_local_echo=True``. When the last in-flight write for a date is
acknowledged after such a suppressed event, the document is re-read and
delivered as a normal snapshot so foreign edits are not lost.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set

from census_core.errors import NetworkError, RecordNotFoundError
from census_core.models.audit import AuditLogEntry
from census_core.models.records import Record, normalize_record
from census_core.settings import CensusSettings
from .base import RemoteCollaborator, Snapshot, SnapshotCallback, Subscription

logger = logging.getLogger(__name__)

# Recently issued write ids remembered for echo detection
ISSUED_WRITE_MEMORY = 256


def extract_realtime_row(payload: Any) -> Dict[str, Any]:
    """
    Pull the changed row out of a realtime postgres_changes payload.

    Handles both the nested ``{"data": {"record": ..., "type": ...}}`` shape and
    the flat ``{"new": ..., "eventType": ...}`` shape. DELETE events yield
    ``{"__deleted__": True, **old_record}``.
    """
    if not isinstance(payload, dict):
        return {}
    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    event_type = (body.get("type") or body.get("eventType") or "").upper()
    if event_type == "DELETE":
        old = body.get("old_record") or body.get("old") or {}
        return {"__deleted__": True, **old}
    return dict(body.get("record") or body.get("new") or {})


class SupabaseRemoteStore(RemoteCollaborator):
    """Remote census store on Supabase."""

    def __init__(self, client, settings: CensusSettings, client_id: Optional[str] = None):
        """
        Args:
            client: supabase ``AsyncClient``
            settings: Table names and hospital id
            client_id: Identity stamped on writes (random if omitted)
        """
        self.client = client
        self.settings = settings
        self.client_id = client_id or f"client_{uuid.uuid4().hex[:12]}"
        self.records_table = settings.records_table
        self.audit_table = settings.audit_table
        self.hospital_id = settings.hospital_id

        self._in_flight: Dict[str, Set[str]] = {}
        self._issued: Deque[str] = deque(maxlen=ISSUED_WRITE_MEMORY)
        self._suppressed: Set[str] = set()
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._channels: Dict[int, Any] = {}

    @classmethod
    async def connect(cls, settings: CensusSettings, client_id: Optional[str] = None) -> SupabaseRemoteStore:
        """Create an AsyncClient from settings and wrap it."""
        from supabase import acreate_client

        settings.require_remote()
        client = await acreate_client(settings.supabase_url, settings.supabase_key)
        logger.info(f"Connected to Supabase for hospital {settings.hospital_id}")
        return cls(client, settings, client_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _records(self):
        return self.client.table(self.records_table)

    async def _execute(self, query, operation: str, date: Optional[str] = None):
        try:
            return await query.execute()
        except (NetworkError, RecordNotFoundError):
            raise
        except Exception as e:
            raise NetworkError(f"Supabase {operation} failed: {e}", operation=operation, date=date) from e

    def _begin_write(self, date: str) -> str:
        write_id = uuid.uuid4().hex
        self._in_flight.setdefault(date, set()).add(write_id)
        self._issued.append(write_id)
        return write_id

    async def _end_write(self, date: str, write_id: str) -> None:
        pending = self._in_flight.get(date, set())
        pending.discard(write_id)
        if pending or date not in self._suppressed:
            return
        self._suppressed.discard(date)
        if self._subscriptions.get(date):
            try:
                record = await self.read(date)
            except NetworkError as e:
                logger.warning(f"Could not refresh {date} after write: {e}")
                return
            self._deliver(date, record, is_local_echo=False)

    def _deliver(self, date: str, record: Optional[Record], is_local_echo: bool) -> None:
        for subscription in list(self._subscriptions.get(date, [])):
            subscription.deliver(Snapshot(date=date, record=record, is_local_echo=is_local_echo))

    # =========================================================================
    # RECORD OPERATIONS
    # =========================================================================

    async def read(self, date: str) -> Optional[Record]:
        query = (
            self._records()
            .select("data")
            .eq("hospital_id", self.hospital_id)
            .eq("date", date)
            .limit(1)
        )
        response = await self._execute(query, "read", date)
        rows = response.data or []
        if not rows:
            return None
        return normalize_record(rows[0].get("data") or {}, date)

    async def write_full(self, date: str, record: Record) -> None:
        write_id = self._begin_write(date)
        try:
            query = self._records().upsert({
                "hospital_id": self.hospital_id,
                "date": date,
                "data": record,
                "last_updated": record.get("lastUpdated"),
                "writer_id": self.client_id,
                "write_id": write_id,
            })
            await self._execute(query, "write_full", date)
        finally:
            await self._end_write(date, write_id)

    async def write_partial(self, date: str, update: List[Dict[str, Any]]) -> None:
        write_id = self._begin_write(date)
        try:
            query = self.client.rpc(
                self.settings.patch_function,
                {
                    "p_hospital_id": self.hospital_id,
                    "p_date": date,
                    "p_updates": update,
                    "p_writer_id": self.client_id,
                    "p_write_id": write_id,
                },
            )
            response = await self._execute(query, "write_partial", date)
            if response.data is False:
                raise RecordNotFoundError(f"No remote record for {date}", date=date)
        finally:
            await self._end_write(date, write_id)

    async def delete(self, date: str) -> None:
        write_id = self._begin_write(date)
        try:
            query = (
                self._records()
                .delete()
                .eq("hospital_id", self.hospital_id)
                .eq("date", date)
            )
            await self._execute(query, "delete", date)
        finally:
            await self._end_write(date, write_id)

    # =========================================================================
    # REALTIME
    # =========================================================================

    def handle_change(self, date: str, payload: Any) -> None:
        """Translate a realtime payload into a snapshot for ``date``."""
        row = extract_realtime_row(payload)
        if row.get("hospital_id") not in (None, self.hospital_id):
            return
        if row.get("date") not in (None, date):
            return

        own_write = row.get("write_id") in self._issued
        in_flight = bool(self._in_flight.get(date))
        is_echo = own_write or in_flight
        if in_flight and not own_write:
            self._suppressed.add(date)

        if row.get("__deleted__"):
            record = None
        else:
            record = normalize_record(row.get("data") or {}, date)
        self._deliver(date, record, is_local_echo=is_echo)

    def subscribe(self, date: str, on_snapshot: SnapshotCallback) -> Subscription:
        subscription = Subscription(date, on_snapshot, on_cancel=self._close_subscription)
        self._subscriptions.setdefault(date, []).append(subscription)
        asyncio.get_running_loop().create_task(self._open_channel(subscription))
        return subscription

    async def _open_channel(self, subscription: Subscription) -> None:
        date = subscription.date
        try:
            channel = self.client.channel(f"census-{self.hospital_id}-{date}-{uuid.uuid4().hex[:6]}")
            channel.on_postgres_changes(
                event="*",
                schema="public",
                table=self.records_table,
                filter=f"date=eq.{date}",
                callback=lambda payload: self.handle_change(date, payload),
            )
            await channel.subscribe()
            if not subscription.active:
                await self.client.remove_channel(channel)
                return
            self._channels[id(subscription)] = channel
            logger.debug(f"Realtime channel open for {date}")

            record = await self.read(date)
            subscription.deliver(
                Snapshot(date=date, record=record, is_local_echo=bool(self._in_flight.get(date)))
            )
        except Exception as e:
            logger.error(f"Realtime subscription for {date} failed: {e}")

    def _close_subscription(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.date, [])
        if subscription in subs:
            subs.remove(subscription)
        channel = self._channels.pop(id(subscription), None)
        if channel is not None:
            asyncio.get_running_loop().create_task(self.client.remove_channel(channel))

    # =========================================================================
    # AUDIT ARCHIVE
    # =========================================================================

    async def write_audit(self, entry: AuditLogEntry) -> None:
        query = self.client.table(self.audit_table).insert({
            "id": entry.id,
            "hospital_id": self.hospital_id,
            "timestamp": entry.timestamp,
            "user_id": entry.user_id,
            "action": entry.action.value,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "record_date": entry.record_date,
            "data": entry.to_dict(),
        })
        await self._execute(query, "write_audit")

    async def fetch_audit_logs(self, limit: int = 100) -> List[AuditLogEntry]:
        query = (
            self.client.table(self.audit_table)
            .select("data")
            .eq("hospital_id", self.hospital_id)
            .order("id", desc=True)
            .limit(limit)
        )
        response = await self._execute(query, "fetch_audit_logs")
        return [AuditLogEntry.from_dict(row["data"]) for row in response.data or []]

    async def fetch_audit_logs_for_date(self, record_date: str) -> List[AuditLogEntry]:
        query = (
            self.client.table(self.audit_table)
            .select("data")
            .eq("hospital_id", self.hospital_id)
            .eq("record_date", record_date)
            .order("id", desc=True)
        )
        response = await self._execute(query, "fetch_audit_logs_for_date", record_date)
        return [AuditLogEntry.from_dict(row["data"]) for row in response.data or []]

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for subscription in list(subs):
                subscription.cancel()
        try:
            await self.client.remove_all_channels()
        except Exception as e:
            logger.warning(f"Error closing realtime channels: {e}")
