# =============================================================================
# census_core/errors/__init__.py
# Centralized Error Handling for the Census Sync Core
# =============================================================================

from .exceptions import (
    CensusSyncError,
    NetworkError,
    RemoteTimeoutError,
    RecordNotFoundError,
    ValidationError,
    InvalidPathError,
    RecordNotLoadedError,
    AuditWriteError,
    ConfigurationError,
)

from .handlers import handle_error, OFFLINE_NOTICE

__all__ = [
    # Exceptions
    "CensusSyncError",
    "NetworkError",
    "RemoteTimeoutError",
    "RecordNotFoundError",
    "ValidationError",
    "InvalidPathError",
    "RecordNotLoadedError",
    "AuditWriteError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "OFFLINE_NOTICE",
]
