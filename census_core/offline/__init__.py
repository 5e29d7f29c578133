# =============================================================================
# census_core/offline/__init__.py
# Offline-First Record Synchronization
# =============================================================================
"""
Offline-First Record Synchronization

The day's census is served from the local cache immediately and kept in step
with the shared remote document in the background.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                   OFFLINE-FIRST RECORD SYNC                      │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                   CensusService                           │  │
│   │        (validation gate + audit emission)                 │  │
│   └──────────────────────────────────────────────────────────┘  │
│                            │ patches / full saves               │
│                            ▼                                     │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                  SyncCoordinator                          │  │
│   │   load · reconcile · subscribe · echo suppression         │  │
│   └──────────────────────────────────────────────────────────┘  │
│          │                  │                    │               │
│          ▼                  ▼                    ▼               │
│   ┌────────────┐     ┌─────────────┐     ┌──────────────┐       │
│   │ LocalCache │     │ PatchEngine │     │ Remote store │       │
│   │  (SQLite)  │     │ (FieldPath) │     │  (Supabase)  │       │
│   └────────────┘     └─────────────┘     └──────────────┘       │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from census_core.offline import SyncCoordinator, get_local_cache

coordinator = SyncCoordinator(get_local_cache(), remote, settings)
coordinator.load("2024-05-01")
await coordinator.patch_record({"beds.R1.patientName": "Juan Pérez"})
"""

from census_core.offline.local_cache import (
    LocalCache,
    get_local_cache,
)

from census_core.offline.patch_engine import (
    FieldPath,
    RECORD_SCHEMA,
    compile_patch,
    apply_patch,
    to_remote_update,
    from_remote_update,
)

from census_core.offline.sync_coordinator import (
    SyncCoordinator,
    SyncStatus,
    SyncState,
    SnapshotOutcome,
)

__all__ = [
    # Local cache
    "LocalCache",
    "get_local_cache",
    # Patch engine
    "FieldPath",
    "RECORD_SCHEMA",
    "compile_patch",
    "apply_patch",
    "to_remote_update",
    "from_remote_update",
    # Sync coordinator
    "SyncCoordinator",
    "SyncStatus",
    "SyncState",
    "SnapshotOutcome",
]
