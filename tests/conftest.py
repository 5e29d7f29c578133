# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

SAMPLE_DATE = "2024-05-01"
PREVIOUS_DATE = "2024-04-30"
T0 = "2024-05-01T08:00:00.000Z"
T1 = "2024-05-01T09:00:00.000Z"


class FakeClock:
    """Deterministic clock; call it like ``utc_now``."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_record():
    """Empty census for SAMPLE_DATE stamped at T0"""
    from census_core.models.records import create_daily_record

    return create_daily_record(SAMPLE_DATE, last_updated=T0)


@pytest.fixture
def occupied_record(sample_record):
    """Census with one admitted patient in R1 and nurses on both shifts"""
    record = sample_record
    record["beds"]["R1"].update({
        "patientName": "Juan Pérez",
        "rut": "12.345.678-9",
        "age": "54",
        "pathology": "Neumonía",
        "admissionDate": "2024-04-28",
        "devices": ["VVP"],
        "cudyr": {"dependency": 2},
        "handoffNoteNightShift": "Stable overnight",
    })
    record["nursesDayShift"] = ["Ana Soto", "Luis Rojas"]
    record["nursesNightShift"] = ["Carla Díaz", ""]
    return record


# =============================================================================
# INFRASTRUCTURE FIXTURES
# =============================================================================

@pytest.fixture
def settings(tmp_path):
    """Settings with short timeouts for tests"""
    from census_core.settings import CensusSettings

    return CensusSettings(
        cache_path=tmp_path / "census_cache.db",
        reconcile_timeout=0.5,
        write_timeout=1.0,
        audit_timeout=0.5,
        excluded_view_identities=frozenset({"it-support@hospital.cl"}),
    )


@pytest.fixture
def make_cache(tmp_path):
    """Factory for independent LocalCache instances (one per simulated station)"""
    from census_core.offline.local_cache import LocalCache

    caches = []

    def _make(name: str = "station", audit_limit: int = 1000):
        cache = LocalCache(tmp_path / f"{name}.db", audit_limit=audit_limit).initialize()
        caches.append(cache)
        return cache

    yield _make

    for cache in caches:
        cache.close()


@pytest.fixture
def local_cache(make_cache):
    return make_cache("station")


@pytest.fixture
def server():
    """Shared in-process remote store"""
    from census_core.remote.memory import InMemoryRemoteStore

    return InMemoryRemoteStore()


@pytest.fixture
def session_state():
    from census_core.state.session import CURRENT_USER_KEY, init_state

    store = init_state({})
    store[CURRENT_USER_KEY] = "enfermeria@hospital.cl"
    return store


@pytest.fixture
def make_coordinator(server, make_cache, settings, clock):
    """Factory for a SyncCoordinator on its own cache and remote connection"""
    from census_core.offline.sync_coordinator import SyncCoordinator

    def _make(client_id: str = "station-a", store=None):
        remote = (store or server).client(client_id)
        return SyncCoordinator(make_cache(client_id), remote, settings, clock=clock)

    return _make


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit(monkeypatch):
    """Mock Streamlit UI calls used by the error handlers"""
    mock_st = MagicMock()
    mock_st.session_state = {}
    monkeypatch.setattr("census_core.errors.handlers.st", mock_st)
    return mock_st


@pytest.fixture
def mock_supabase():
    """
    Mock Supabase AsyncClient.

    Every query builder method returns the same query object, whose
    ``execute`` is an AsyncMock; set ``client.query.execute.return_value``
    to shape responses.
    """
    query = MagicMock()
    for name in ("select", "eq", "limit", "order", "upsert", "insert", "delete"):
        getattr(query, name).return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=[]))

    channel = MagicMock()
    channel.subscribe = AsyncMock(return_value=channel)

    client = MagicMock()
    client.table.return_value = query
    client.rpc.return_value = query
    client.channel.return_value = channel
    client.remove_channel = AsyncMock()
    client.remove_all_channels = AsyncMock()
    client.query = query
    client.realtime_channel = channel
    return client


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_entry(entry_id: str, record_date: Optional[str] = SAMPLE_DATE, action=None):
    """Build a minimal audit entry"""
    from census_core.models.audit import AuditAction, AuditLogEntry

    return AuditLogEntry(
        id=entry_id,
        timestamp=T0,
        user_id="enfermeria@hospital.cl",
        action=action or AuditAction.PATIENT_VIEW,
        entity_type="patient",
        entity_id="R1",
        details={"bedId": "R1"},
        summary="Chart viewed: Patient",
        record_date=record_date,
    )
