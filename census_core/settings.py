# =============================================================================
# census_core/settings.py
# Configuration for the Census Sync Core
# =============================================================================
"""
Settings are read from Streamlit secrets when the app runs under Streamlit,
then from environment variables, then from defaults.

Expected secrets.toml format:
    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [census]
    hospital_id = "hanga_roa"
    records_table = "daily_records"
    audit_table = "audit_logs"
    excluded_view_identities = ["it-support@hospital.cl"]
    reconcile_timeout = 8.0
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, FrozenSet, Optional

import streamlit as st

from census_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_PATH = Path(__file__).parent.parent / "local_data" / "census_cache.db"


@dataclass(frozen=True)
class CensusSettings:
    """Runtime configuration shared by the sync, audit and export layers."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    hospital_id: str = "default"
    records_table: str = "daily_records"
    audit_table: str = "audit_logs"
    patch_function: str = "apply_record_patch"
    cache_path: Path = DEFAULT_CACHE_PATH
    audit_cache_limit: int = 1000
    reconcile_timeout: float = 8.0
    write_timeout: float = 10.0
    audit_timeout: float = 5.0
    view_throttle_seconds: float = 15 * 60
    excluded_view_identities: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(
            self, "excluded_view_identities", _normalize_identities(self.excluded_view_identities)
        )

    @property
    def has_remote(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    def require_remote(self) -> None:
        """Raise if Supabase credentials are missing."""
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="supabase.url")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="supabase.key")

    def with_overrides(self, **overrides) -> "CensusSettings":
        return replace(self, **_coerce(overrides))


def _normalize_identities(values: Any) -> FrozenSet[str]:
    """Identities are compared lowercased; a string is a comma-separated list."""
    if isinstance(values, str):
        values = values.split(",")
    return frozenset(v.strip().lower() for v in values if v and v.strip())


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    """Convert raw secret/env values to the dataclass field types."""
    known = {f.name for f in fields(CensusSettings)}
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if key not in known or value is None:
            continue
        if key == "cache_path":
            value = Path(value)
        elif key == "audit_cache_limit":
            value = int(value)
        elif key in ("reconcile_timeout", "write_timeout", "audit_timeout", "view_throttle_seconds"):
            value = float(value)
        elif key == "excluded_view_identities":
            value = _normalize_identities(value)
        out[key] = value
    return out


def _read_secrets() -> Dict[str, Any]:
    values: Dict[str, Any] = {}
    try:
        if "supabase" in st.secrets:
            values["supabase_url"] = st.secrets["supabase"].get("url")
            values["supabase_key"] = st.secrets["supabase"].get("key")
        if "census" in st.secrets:
            values.update(dict(st.secrets["census"]))
    except Exception as e:
        # No secrets.toml outside a Streamlit deployment
        logger.debug(f"Streamlit secrets unavailable: {e}")
    return values


def _read_environment() -> Dict[str, Any]:
    values: Dict[str, Any] = {
        "supabase_url": os.environ.get("SUPABASE_URL"),
        "supabase_key": os.environ.get("SUPABASE_KEY"),
    }
    for f in fields(CensusSettings):
        env_value = os.environ.get(f"CENSUS_{f.name.upper()}")
        if env_value is not None:
            values[f.name] = env_value
    return values


def load_settings(**overrides) -> CensusSettings:
    """
    Build settings from secrets, environment and explicit overrides.

    Secrets win over the environment; explicit keyword overrides win over both.
    """
    merged: Dict[str, Any] = {}
    for source in (_read_environment(), _read_secrets(), overrides):
        merged.update({k: v for k, v in source.items() if v is not None})

    try:
        settings = CensusSettings().with_overrides(**merged)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid census configuration: {e}") from e

    logger.info(
        f"Settings loaded (hospital={settings.hospital_id}, "
        f"remote={'supabase' if settings.has_remote else 'none'})"
    )
    return settings
