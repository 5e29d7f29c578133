# =============================================================================
# census_core/audit/recorder.py
# Best-Effort Audit Trail
# =============================================================================
"""
AuditRecorder - builds audit entries and writes them to the local ring buffer
and the remote archive.

Features:
- Deterministic summaries and masked patient identifiers
- Shared-login attribution passed through on every entry
- View-event exclusion for configured identities (never applied to writes)
- View throttling (one entry per view type per 15 minutes per session)
- Session duration on logout from the login marker in session state
- Local write first, remote second; failures are logged, never raised
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import uuid
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional

from census_core.errors import AuditWriteError, handle_error
from census_core.models.audit import (
    VIEW_ACTIONS,
    AuditAction,
    AuditLogEntry,
    EntityType,
    mask_rut,
)
from census_core.offline.local_cache import LocalCache
from census_core.remote.base import RemoteCollaborator
from census_core.settings import CensusSettings
from census_core.state.session import (
    CURRENT_USER_KEY,
    SESSION_START_KEY,
    VIEW_THROTTLE_KEY,
    get_session_store,
)
from census_core.utils.dates import Clock, format_duration, parse_timestamp, to_iso, utc_now
from .summary import generate_summary

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "anonymous_user"

# Actions limited to one entry per throttle window; value picks the throttle key
THROTTLED_ACTIONS = {
    AuditAction.VIEW_CUDYR: "action",
    AuditAction.VIEW_NURSING_HANDOFF: "action",
    AuditAction.VIEW_MEDICAL_HANDOFF: "action",
    AuditAction.CUDYR_MODIFIED: "entity",
}

_sequence = itertools.count(1)


def new_audit_id(moment_ms: int) -> str:
    """Unique id that sorts by creation: ``audit_<ms>_<seq>_<rand>``."""
    return f"audit_{moment_ms:013d}_{next(_sequence) % 1_000_000:06d}_{uuid.uuid4().hex[:9]}"


class AuditRecorder:
    """
    Records audit entries without ever blocking or failing the caller.

    Usage:
        recorder = AuditRecorder(local_cache, remote, settings)
        await recorder.log_login("nurse.station@hospital.cl")
        await recorder.record(AuditAction.PATIENT_ADMITTED, "patient", "R1",
                              {"patientName": "Juan"}, record_date="2024-05-01")
    """

    def __init__(
        self,
        local_cache: LocalCache,
        remote: Optional[RemoteCollaborator],
        settings: Optional[CensusSettings] = None,
        session_state: Optional[MutableMapping[str, Any]] = None,
        clock: Optional[Clock] = None,
    ):
        self.local_cache = local_cache
        self.remote = remote
        self.settings = settings or CensusSettings()
        self.session = session_state if session_state is not None else get_session_store()
        self._clock = clock or utc_now

    # =========================================================================
    # POLICY
    # =========================================================================

    @property
    def current_user(self) -> str:
        return self.session.get(CURRENT_USER_KEY) or ANONYMOUS_USER

    def is_excluded(self, action: AuditAction, user_id: str) -> bool:
        """Excluded identities skip view-class events only."""
        return (
            action in VIEW_ACTIONS
            and user_id.strip().lower() in self.settings.excluded_view_identities
        )

    def _throttle_key(self, action: AuditAction, entity_id: str) -> Optional[str]:
        scope = THROTTLED_ACTIONS.get(action)
        if scope is None:
            return None
        return action.value if scope == "action" else f"{action.value}:{entity_id}"

    def _is_throttled(self, key: str) -> bool:
        last = parse_timestamp((self.session.get(VIEW_THROTTLE_KEY) or {}).get(key))
        if last is None:
            return False
        elapsed = (self._clock() - last).total_seconds()
        return elapsed < self.settings.view_throttle_seconds

    def _mark_throttle(self, key: str, timestamp: str) -> None:
        throttle = dict(self.session.get(VIEW_THROTTLE_KEY) or {})
        throttle[key] = timestamp
        self.session[VIEW_THROTTLE_KEY] = throttle

    # =========================================================================
    # RECORDING
    # =========================================================================

    async def record(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        details: Optional[Mapping[str, Any]] = None,
        user_id: Optional[str] = None,
        record_date: Optional[str] = None,
        attributed_authors: Optional[Iterable[str]] = None,
        patient_rut: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        """
        Build and persist an audit entry.

        Returns the entry, or None when the event was suppressed (excluded
        identity or throttled view).
        """
        action = AuditAction(action)
        user_id = user_id or self.current_user

        if self.is_excluded(action, user_id):
            logger.debug(f"View audit skipped for excluded identity ({action.value})")
            return None

        throttle_key = self._throttle_key(action, entity_id)
        if throttle_key and self._is_throttled(throttle_key):
            logger.debug(f"Audit throttled: {throttle_key}")
            return None

        moment = self._clock()
        timestamp = to_iso(moment)
        details = {k: v for k, v in dict(details or {}).items() if k != "rut" and v is not None}
        entry = AuditLogEntry(
            id=new_audit_id(int(moment.timestamp() * 1000)),
            timestamp=timestamp,
            user_id=user_id,
            action=action,
            entity_type=entity_type.value if isinstance(entity_type, EntityType) else entity_type,
            entity_id=entity_id,
            details=details,
            summary=generate_summary(action, details, entity_id),
            record_date=record_date,
            attributed_authors=tuple(attributed_authors or ()),
            patient_identifier=mask_rut(patient_rut) if patient_rut else None,
        )

        if throttle_key:
            self._mark_throttle(throttle_key, timestamp)

        self._write_local(entry)
        await self._write_remote(entry)
        return entry

    def _write_local(self, entry: AuditLogEntry) -> None:
        try:
            self.local_cache.append_audit_log(entry)
        except Exception as e:
            handle_error(AuditWriteError(
                f"Local audit write failed: {e}", action=entry.action.value, target="local"
            ))

    async def _write_remote(self, entry: AuditLogEntry) -> None:
        if self.remote is None:
            return
        try:
            await asyncio.wait_for(self.remote.write_audit(entry), timeout=self.settings.audit_timeout)
        except asyncio.TimeoutError:
            handle_error(
                AuditWriteError("Remote audit write timed out", action=entry.action.value, target="remote"),
                level="warning",
            )
        except Exception as e:
            handle_error(
                AuditWriteError(f"Remote audit write failed: {e}", action=entry.action.value, target="remote"),
                level="warning",
            )

    # =========================================================================
    # SESSION EVENTS
    # =========================================================================

    async def log_login(self, user_id: str) -> Optional[AuditLogEntry]:
        """Store the session-start marker and record USER_LOGIN."""
        self.session[CURRENT_USER_KEY] = user_id
        self.session[SESSION_START_KEY] = to_iso(self._clock())
        return await self.record(AuditAction.USER_LOGIN, EntityType.USER, user_id, {}, user_id=user_id)

    async def log_logout(self, user_id: Optional[str] = None, reason: str = "manual") -> Optional[AuditLogEntry]:
        """
        Record USER_LOGOUT with the session duration and clear the marker.

        Without a (valid) marker the duration fields are simply omitted.
        """
        user_id = user_id or self.current_user
        details: Dict[str, Any] = {"reason": reason}

        start = parse_timestamp(self.session.get(SESSION_START_KEY))
        if start is not None:
            elapsed = max(0.0, (self._clock() - start).total_seconds())
            details["durationSeconds"] = int(elapsed)
            details["durationFormatted"] = format_duration(elapsed)
        self.session[SESSION_START_KEY] = None

        entry = await self.record(AuditAction.USER_LOGOUT, EntityType.USER, user_id, details, user_id=user_id)
        self.session[CURRENT_USER_KEY] = None
        return entry

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def recent(self, limit: int = 100) -> List[AuditLogEntry]:
        """Newest entries from the archive, or the local buffer if unreachable."""
        if self.remote is not None:
            try:
                return await asyncio.wait_for(
                    self.remote.fetch_audit_logs(limit), timeout=self.settings.audit_timeout
                )
            except Exception as e:
                logger.warning(f"Audit archive unavailable, using local buffer: {e}")
        return self.local_cache.get_audit_logs(limit)

    async def for_date(self, record_date: str) -> List[AuditLogEntry]:
        if self.remote is not None:
            try:
                return await asyncio.wait_for(
                    self.remote.fetch_audit_logs_for_date(record_date), timeout=self.settings.audit_timeout
                )
            except Exception as e:
                logger.warning(f"Audit archive unavailable, using local buffer: {e}")
        return self.local_cache.get_audit_logs_for_date(record_date)
