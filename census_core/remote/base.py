"""
Remote Collaborator Interface
Abstract contract for the realtime multi-writer store that holds one document
per census date plus the unbounded audit archive.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from census_core.models.audit import AuditLogEntry
from census_core.models.records import Record

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """
    A document state delivered by a live subscription.

    ``is_local_echo`` is True exactly when the snapshot includes writes made
    by this client that the server has not yet acknowledged.
    """
    date: str
    record: Optional[Record]
    is_local_echo: bool = False


SnapshotCallback = Callable[[Snapshot], Any]


class Subscription:
    """
    Cancellable handle for a live subscription.

    Once ``cancel()`` returns, ``deliver`` drops every snapshot, so no
    callback runs after cancellation even if the transport still emits.
    """

    def __init__(
        self,
        date: str,
        callback: SnapshotCallback,
        on_cancel: Optional[Callable[["Subscription"], None]] = None,
    ):
        self.date = date
        self._callback = callback
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def deliver(self, snapshot: Snapshot) -> bool:
        """Hand a snapshot to the subscriber; False if already cancelled."""
        if not self._active:
            return False
        self._callback(snapshot)
        return True

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        if self._on_cancel is not None:
            try:
                self._on_cancel(self)
            except Exception as e:
                logger.warning(f"Error closing subscription for {self.date}: {e}")


class RemoteCollaborator(ABC):
    """Abstract base class for remote census stores"""

    client_id: str

    @abstractmethod
    async def read(self, date: str) -> Optional[Record]:
        """Point read of the record for ``date`` (None if absent)."""
        pass

    @abstractmethod
    async def write_full(self, date: str, record: Record) -> None:
        """Replace the whole document for ``date``."""
        pass

    @abstractmethod
    async def write_partial(self, date: str, update: List[Dict[str, Any]]) -> None:
        """
        Apply a field-path update to an existing document.

        Args:
            date: Record date
            update: Encoded patch from ``patch_engine.to_remote_update``

        Raises:
            RecordNotFoundError: the document does not exist
            NetworkError: the write was not committed
        """
        pass

    @abstractmethod
    async def delete(self, date: str) -> None:
        pass

    @abstractmethod
    def subscribe(self, date: str, on_snapshot: SnapshotCallback) -> Subscription:
        """Open a live subscription; the current state is delivered first."""
        pass

    @abstractmethod
    async def write_audit(self, entry: AuditLogEntry) -> None:
        pass

    @abstractmethod
    async def fetch_audit_logs(self, limit: int = 100) -> List[AuditLogEntry]:
        """Most recent archived audit entries, newest first."""
        pass

    @abstractmethod
    async def fetch_audit_logs_for_date(self, record_date: str) -> List[AuditLogEntry]:
        pass

    async def close(self) -> None:
        """Release transport resources."""
        return None
