from .session import (
    SESSION_DEFAULTS,
    SESSION_START_KEY,
    VIEW_THROTTLE_KEY,
    CURRENT_USER_KEY,
    get_session_store,
    init_state,
    clear_session,
)

__all__ = [
    "SESSION_DEFAULTS",
    "SESSION_START_KEY",
    "VIEW_THROTTLE_KEY",
    "CURRENT_USER_KEY",
    "get_session_store",
    "init_state",
    "clear_session",
]
