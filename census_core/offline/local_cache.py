# =============================================================================
# census_core/offline/local_cache.py
# Local SQLite Cache for Daily Records and Audit Logs
# =============================================================================
"""
LocalCache - durable per-date record snapshots plus a capped audit ring buffer.

Features:
- One row per record date (YYYY-MM-DD) holding the full record JSON
- Audit log ring buffer capped at the most recent N entries
- DataFrame integration (pandas) for audit review screens
- Transaction support
- Thread-safe connections
"""

from __future__ import annotations
import sqlite3
import threading
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from contextlib import contextmanager
import logging

import pandas as pd

from census_core.models.audit import AuditLogEntry
from census_core.models.records import Record
from census_core.settings import CensusSettings

logger = logging.getLogger(__name__)


class LocalCache:
    """
    Local SQLite store for the offline copy of each day's census.

    Records are read-your-writes: the last value saved here is what the
    coordinator serves until the remote converges.
    """

    DEFAULT_DB_PATH = Path(__file__).parent.parent.parent / "local_data" / "census_cache.db"
    DEFAULT_AUDIT_LIMIT = 1000

    SCHEMA = {
        "daily_records": """
            CREATE TABLE IF NOT EXISTS daily_records (
                date TEXT PRIMARY KEY,
                data_json TEXT NOT NULL,
                last_updated TEXT,
                cached_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
        "audit_logs": """
            CREATE TABLE IF NOT EXISTS audit_logs (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                timestamp TEXT NOT NULL,
                user_id TEXT,
                action TEXT NOT NULL,
                entity_id TEXT,
                record_date TEXT,
                data_json TEXT NOT NULL
            )
        """,
        "audit_logs_record_date_idx": """
            CREATE INDEX IF NOT EXISTS audit_logs_record_date_idx
            ON audit_logs (record_date)
        """,
    }

    _instance: Optional[LocalCache] = None
    _lock = threading.Lock()

    def __init__(self, db_path: Optional[Path] = None, audit_limit: int = DEFAULT_AUDIT_LIMIT):
        """
        Initialize local cache.

        Args:
            db_path: Path to SQLite database file
            audit_limit: Number of audit entries kept locally
        """
        if audit_limit < 1:
            raise ValueError("audit_limit must be at least 1")
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self.audit_limit = audit_limit
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: CensusSettings) -> LocalCache:
        """Open (and initialize) the cache at the configured path and audit cap."""
        return cls(settings.cache_path, settings.audit_cache_limit).initialize()

    @classmethod
    def get_instance(cls, db_path: Optional[Path] = None, audit_limit: int = DEFAULT_AUDIT_LIMIT) -> LocalCache:
        """Get or create singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = LocalCache(db_path, audit_limit)
        return cls._instance

    def _ensure_directory(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, 'connection') or self._local.connection is None:
            self._local.connection = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> LocalCache:
        """Initialize database schema."""
        if self._initialized:
            return self

        with self.transaction() as conn:
            for name, statement in self.SCHEMA.items():
                conn.execute(statement)
                logger.debug(f"Created/verified: {name}")

        self._initialized = True
        logger.info(f"Local cache initialized at: {self.db_path}")
        return self

    # =========================================================================
    # DAILY RECORDS
    # =========================================================================

    def get_record(self, date: str) -> Optional[Record]:
        """Return the cached record for ``date`` or None."""
        row = self._get_connection().execute(
            "SELECT data_json FROM daily_records WHERE date = ?", [date]
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["data_json"])

    def save_record(self, record: Record) -> None:
        """Insert or replace the snapshot for ``record['date']``."""
        date = record.get("date")
        if not date:
            raise ValueError("Cannot cache a record without a date")
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO daily_records (date, data_json, last_updated, cached_at)
                VALUES (?, ?, ?, ?)
                """,
                [date, json.dumps(record), record.get("lastUpdated"), datetime.now().isoformat()],
            )

    def delete_record(self, date: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM daily_records WHERE date = ?", [date])
        return cursor.rowcount > 0

    def get_all_dates(self) -> List[str]:
        """All cached dates, newest first."""
        rows = self._get_connection().execute(
            "SELECT date FROM daily_records ORDER BY date DESC"
        ).fetchall()
        return [row["date"] for row in rows]

    def get_previous_record(self, date: str) -> Optional[Record]:
        """Most recent cached record strictly before ``date``."""
        row = self._get_connection().execute(
            "SELECT data_json FROM daily_records WHERE date < ? ORDER BY date DESC LIMIT 1",
            [date],
        ).fetchone()
        return json.loads(row["data_json"]) if row else None

    # =========================================================================
    # AUDIT RING BUFFER
    # =========================================================================

    def append_audit_log(self, entry: AuditLogEntry) -> None:
        """Append an entry and evict the oldest rows beyond the cap."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO audit_logs
                    (id, timestamp, user_id, action, entity_id, record_date, data_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    entry.id,
                    entry.timestamp,
                    entry.user_id,
                    entry.action.value,
                    entry.entity_id,
                    entry.record_date,
                    json.dumps(entry.to_dict()),
                ],
            )
            conn.execute(
                "DELETE FROM audit_logs WHERE seq <= (SELECT MAX(seq) FROM audit_logs) - ?",
                [self.audit_limit],
            )

    def get_audit_logs(self, limit: Optional[int] = None) -> List[AuditLogEntry]:
        """Cached audit entries, newest first."""
        sql = "SELECT data_json FROM audit_logs ORDER BY seq DESC"
        params: List[Any] = []
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = self._get_connection().execute(sql, params).fetchall()
        return [AuditLogEntry.from_dict(json.loads(row["data_json"])) for row in rows]

    def get_audit_logs_for_date(self, record_date: str) -> List[AuditLogEntry]:
        rows = self._get_connection().execute(
            "SELECT data_json FROM audit_logs WHERE record_date = ? ORDER BY seq DESC",
            [record_date],
        ).fetchall()
        return [AuditLogEntry.from_dict(json.loads(row["data_json"])) for row in rows]

    def count_audit_logs(self) -> int:
        row = self._get_connection().execute("SELECT COUNT(*) AS n FROM audit_logs").fetchone()
        return row["n"]

    def audit_frame(self, record_date: Optional[str] = None) -> pd.DataFrame:
        """
        Load cached audit entries into a DataFrame (newest first).

        Columns: id, timestamp, user_id, action, entity_id, record_date.
        """
        query = "SELECT id, timestamp, user_id, action, entity_id, record_date FROM audit_logs"
        params: List[Any] = []
        if record_date:
            query += " WHERE record_date = ?"
            params.append(record_date)
        query += " ORDER BY seq DESC"
        return pd.read_sql_query(query, self._get_connection(), params=params)

    def close(self) -> None:
        """Close database connection."""
        if hasattr(self._local, 'connection') and self._local.connection:
            self._local.connection.close()
            self._local.connection = None


# Singleton accessor
_local_cache: Optional[LocalCache] = None


def get_local_cache(settings: Optional[CensusSettings] = None) -> LocalCache:
    """Get the global LocalCache instance, created from ``settings`` on first use."""
    global _local_cache
    if _local_cache is None:
        settings = settings or CensusSettings()
        _local_cache = LocalCache.get_instance(settings.cache_path, settings.audit_cache_limit)
        _local_cache.initialize()
    return _local_cache
