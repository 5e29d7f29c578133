# =============================================================================
# census_core/remote/__init__.py
# Remote Census Stores
# =============================================================================

import logging
from typing import Optional

from census_core.settings import CensusSettings
from .base import RemoteCollaborator, Snapshot, Subscription, SnapshotCallback
from .memory import InMemoryRemoteStore, InMemoryRemoteClient
from .supabase_store import SupabaseRemoteStore, extract_realtime_row

logger = logging.getLogger(__name__)


async def create_remote(settings: CensusSettings, client_id: Optional[str] = None) -> RemoteCollaborator:
    """
    Build the remote store for ``settings``.

    Without Supabase credentials an in-process store is used, which keeps the
    app usable as a single-station offline census.
    """
    if settings.has_remote:
        return await SupabaseRemoteStore.connect(settings, client_id)
    logger.warning("Supabase not configured; using in-process store (single station mode)")
    return InMemoryRemoteStore().client(client_id or "local")


__all__ = [
    "RemoteCollaborator",
    "Snapshot",
    "Subscription",
    "SnapshotCallback",
    "InMemoryRemoteStore",
    "InMemoryRemoteClient",
    "SupabaseRemoteStore",
    "extract_realtime_row",
    "create_remote",
]
