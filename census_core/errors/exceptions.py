# =============================================================================
# census_core/errors/exceptions.py
# Exception Hierarchy for the Census Sync Core
# =============================================================================

from typing import Optional, Dict, Any


class CensusSyncError(Exception):
    """
    Base exception for all census sync errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "REMOTE_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "CENSUS_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REMOTE STORE EXCEPTIONS
# =============================================================================

class NetworkError(CensusSyncError):
    """Raised when the remote store cannot be reached or rejects a write"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        date: Optional[str] = None,
        code: str = "REMOTE_001",
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if date:
            details["date"] = date

        super().__init__(
            message=message,
            code=code,
            details=details,
            **kwargs,
        )


class RemoteTimeoutError(NetworkError):
    """Raised when a remote call exceeds its deadline"""

    def __init__(
        self,
        message: str,
        timeout: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout is not None:
            details["timeout"] = timeout

        super().__init__(
            message=message,
            code="REMOTE_002",
            details=details,
            **kwargs,
        )


class RecordNotFoundError(CensusSyncError):
    """Raised when a partial write targets a document that does not exist"""

    def __init__(self, message: str, date: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if date:
            details["date"] = date

        super().__init__(
            message=message,
            code="REMOTE_404",
            details=details,
            **kwargs,
        )


# =============================================================================
# DATA / PATCH EXCEPTIONS
# =============================================================================

class ValidationError(CensusSyncError):
    """Raised by callers when an edit is semantically invalid"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected
        if actual:
            details["actual"] = actual

        super().__init__(
            message=message,
            code="DATA_001",
            details=details,
            **kwargs,
        )


class InvalidPathError(CensusSyncError):
    """Raised when a patch path does not match the record schema"""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if path is not None:
            details["path"] = path
        if reason:
            details["reason"] = reason

        super().__init__(
            message=message,
            code="PATCH_001",
            details=details,
            **kwargs,
        )


class RecordNotLoadedError(CensusSyncError):
    """Raised when an edit arrives before any record is loaded"""

    def __init__(self, message: str, date: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if date:
            details["date"] = date

        super().__init__(
            message=message,
            code="SYNC_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# AUDIT EXCEPTIONS
# =============================================================================

class AuditWriteError(CensusSyncError):
    """Raised when an audit entry cannot be persisted"""

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        target: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if action:
            details["action"] = action
        if target:
            details["target"] = target

        super().__init__(
            message=message,
            code="AUDIT_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(CensusSyncError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
