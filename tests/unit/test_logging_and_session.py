# =============================================================================
# tests/unit/test_logging_and_session.py
# Unit Tests for Logging Setup, Session State and Remote Selection
# =============================================================================

import logging

import pytest


class TestLogging:

    def test_setup_writes_dated_file_and_quiets_clients(self, tmp_path, monkeypatch):
        from census_core.logging import config

        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        monkeypatch.setattr(config, "LOG_DIR", tmp_path / "logs")
        try:
            config.setup_logging(level=logging.DEBUG, log_filename="test.log")

            assert (tmp_path / "logs" / "test.log").exists()
            assert logging.getLogger("httpx").level == logging.WARNING
            assert logging.getLogger("realtime").level == logging.WARNING
        finally:
            for handler in root.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root.handlers = saved_handlers
            root.setLevel(saved_level)

    def test_log_context_reports_failure(self, caplog):
        from census_core.logging import LogContext, get_logger

        logger = get_logger("census_core.tests")
        with caplog.at_level(logging.INFO, logger="census_core.tests"):
            with pytest.raises(RuntimeError):
                with LogContext(logger, "Reconciling 2024-05-01"):
                    raise RuntimeError("offline")

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "Reconciling 2024-05-01... started"
        assert messages[1].startswith("Reconciling 2024-05-01... failed")


class TestSessionState:

    def test_init_keeps_existing_values(self):
        from census_core.state.session import CURRENT_USER_KEY, VIEW_THROTTLE_KEY, init_state

        store = init_state({CURRENT_USER_KEY: "nurse"})

        assert store[CURRENT_USER_KEY] == "nurse"
        assert store[VIEW_THROTTLE_KEY] == {}

    def test_clear_resets_only_census_keys(self):
        from census_core.state.session import CURRENT_USER_KEY, clear_session, init_state

        store = init_state({"other_page_key": 1})
        store[CURRENT_USER_KEY] = "nurse"
        clear_session(store)

        assert store[CURRENT_USER_KEY] is None
        assert store["other_page_key"] == 1

    def test_outside_streamlit_uses_process_store(self):
        from census_core.state.session import get_session_store

        assert get_session_store() is get_session_store()
        assert isinstance(get_session_store(), dict)


class TestCreateRemote:

    @pytest.mark.asyncio
    async def test_without_credentials_uses_in_process_store(self):
        from census_core.remote import InMemoryRemoteClient, create_remote
        from census_core.settings import CensusSettings

        remote = await create_remote(CensusSettings(), client_id="kiosk")

        assert isinstance(remote, InMemoryRemoteClient)
        assert remote.client_id == "kiosk"
