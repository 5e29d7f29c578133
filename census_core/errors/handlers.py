# =============================================================================
# census_core/errors/handlers.py
# Logging and User Notification for Census Errors
# =============================================================================

from __future__ import annotations
import traceback
from typing import Optional
import streamlit as st

from census_core.logging import get_logger
from .exceptions import CensusSyncError, NetworkError

logger = get_logger(__name__)

OFFLINE_NOTICE = "Sin conexión con el servidor: los cambios quedan guardados en esta estación."


def handle_error(
    error: Exception,
    show_user_message: bool = False,
    log_error: bool = True,
    user_message: Optional[str] = None,
    level: str = "error",
) -> None:
    """
    Log an error with its code and optionally tell the user.

    The sync and audit layers run outside any page, so the user message is
    opt-in; pages pass ``show_user_message=True``.

    Args:
        error: The exception to handle
        show_user_message: Display the error in the page
        log_error: Whether to log the error
        user_message: Text shown instead of the error message
        level: Logger method used ("error" or "warning")
    """
    if isinstance(error, CensusSyncError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        log = logger.warning if level == "warning" else logger.error
        log(f"[{code}] {message}", extra={"details": details}, exc_info=level != "warning")

    if not show_user_message:
        return
    if isinstance(error, NetworkError) and user_message is None:
        # Network trouble is expected on the ward; the edit is not lost
        st.warning(OFFLINE_NOTICE)
    elif recoverable:
        st.error(f"Error: {message}")
    else:
        st.error(f"Error crítico: {message}. Contacte a soporte.")
