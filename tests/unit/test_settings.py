# =============================================================================
# tests/unit/test_settings.py
# Unit Tests for Settings Loading
# =============================================================================

from pathlib import Path

import pytest


@pytest.fixture
def clean_env(monkeypatch):
    """No Streamlit secrets and no census/supabase environment variables"""
    import os

    for key in list(os.environ):
        if key.startswith("CENSUS_") or key.startswith("SUPABASE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("census_core.settings._read_secrets", lambda: {})
    return monkeypatch


class TestLoadSettings:

    def test_defaults(self, clean_env):
        from census_core.settings import load_settings

        settings = load_settings()

        assert settings.records_table == "daily_records"
        assert settings.view_throttle_seconds == 900
        assert not settings.has_remote

    def test_environment_values_coerced(self, clean_env):
        from census_core.settings import load_settings

        clean_env.setenv("SUPABASE_URL", "https://example.supabase.co")
        clean_env.setenv("SUPABASE_KEY", "anon-key")
        clean_env.setenv("CENSUS_RECONCILE_TIMEOUT", "3")
        clean_env.setenv("CENSUS_AUDIT_CACHE_LIMIT", "50")
        clean_env.setenv("CENSUS_CACHE_PATH", "/tmp/census.db")
        clean_env.setenv("CENSUS_EXCLUDED_VIEW_IDENTITIES", "IT@hospital.cl, audit@hospital.cl,")

        settings = load_settings()

        assert settings.has_remote
        assert settings.reconcile_timeout == 3.0
        assert settings.audit_cache_limit == 50
        assert settings.cache_path == Path("/tmp/census.db")
        assert settings.excluded_view_identities == frozenset({"it@hospital.cl", "audit@hospital.cl"})

    def test_precedence(self, clean_env):
        """Secrets win over environment, explicit overrides win over both"""
        from census_core.settings import load_settings

        clean_env.setenv("CENSUS_HOSPITAL_ID", "from_env")
        clean_env.setenv("CENSUS_AUDIT_TABLE", "env_audit")
        clean_env.setattr(
            "census_core.settings._read_secrets",
            lambda: {"hospital_id": "from_secrets", "records_table": "secret_records"},
        )

        settings = load_settings(records_table="override_records")

        assert settings.hospital_id == "from_secrets"
        assert settings.audit_table == "env_audit"
        assert settings.records_table == "override_records"

    def test_invalid_value_raises_configuration_error(self, clean_env):
        from census_core.errors import ConfigurationError
        from census_core.settings import load_settings

        clean_env.setenv("CENSUS_WRITE_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError):
            load_settings()


class TestCensusSettings:

    def test_require_remote(self):
        from census_core.errors import ConfigurationError
        from census_core.settings import CensusSettings

        with pytest.raises(ConfigurationError) as exc_info:
            CensusSettings().require_remote()

        assert not exc_info.value.recoverable
        CensusSettings(supabase_url="https://x", supabase_key="k").require_remote()

    def test_with_overrides_returns_copy(self):
        from census_core.settings import CensusSettings

        base = CensusSettings()
        changed = base.with_overrides(excluded_view_identities=["A@B.cl"], unknown="ignored")

        assert base.excluded_view_identities == frozenset()
        assert changed.excluded_view_identities == frozenset({"a@b.cl"})

    def test_identities_normalized_on_construction(self):
        from census_core.settings import CensusSettings

        settings = CensusSettings(excluded_view_identities=frozenset({" IT@Hospital.cl ", ""}))

        assert settings.excluded_view_identities == frozenset({"it@hospital.cl"})
