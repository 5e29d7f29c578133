"""
Ephemeral per-session state.

Under ``streamlit run`` this is ``st.session_state`` (one per browser tab);
in scripts and tests a process-local dict stands in for it. Nothing stored
here survives the session: it holds the login marker and view throttling.
"""

import copy
from typing import Any, MutableMapping, Optional

import streamlit as st
from streamlit import runtime

# Central registry for session-state keys used by the census core.
SESSION_START_KEY = "census_session_start"
VIEW_THROTTLE_KEY = "census_view_throttle"
CURRENT_USER_KEY = "census_user_id"

SESSION_DEFAULTS = {
    SESSION_START_KEY: None,
    VIEW_THROTTLE_KEY: {},
    CURRENT_USER_KEY: None,
}

_process_session: dict = {}


def get_session_store() -> MutableMapping[str, Any]:
    """Return ``st.session_state`` inside a Streamlit session, else a dict."""
    if runtime.exists():
        return st.session_state
    return _process_session


def init_state(store: Optional[MutableMapping[str, Any]] = None) -> MutableMapping[str, Any]:
    """Initialize session state with defaults."""
    store = get_session_store() if store is None else store
    for k, v in SESSION_DEFAULTS.items():
        if k not in store:
            store[k] = copy.deepcopy(v)
    return store


def clear_session(store: Optional[MutableMapping[str, Any]] = None) -> None:
    """Reset census keys to their defaults (other app keys are untouched)."""
    store = get_session_store() if store is None else store
    for k, v in SESSION_DEFAULTS.items():
        store[k] = copy.deepcopy(v)
