# =============================================================================
# census_core/services/base_service.py
# Shared Service Plumbing
# =============================================================================

from __future__ import annotations
from abc import ABC
from typing import Optional, Dict, Any, Callable
from dataclasses import dataclass

from census_core.logging import get_logger, LogContext
from census_core.errors import handle_error, CensusSyncError


@dataclass
class ServiceResult:
    """
    Outcome of a page-facing census call.

    ``recoverable`` tells the page whether offering a retry makes sense
    (network trouble) or not (bad configuration).
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    recoverable: bool = True
    metadata: Optional[Dict[str, Any]] = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, metadata: Optional[Dict[str, Any]] = None) -> ServiceResult:
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def from_exception(cls, e: Exception) -> ServiceResult:
        if isinstance(e, CensusSyncError):
            return cls(
                success=False,
                error=e.message,
                error_code=e.code,
                recoverable=e.recoverable,
                metadata=e.details,
            )
        return cls(success=False, error=str(e), error_code="EXCEPTION")


class BaseService(ABC):
    """Base for census services: a per-class logger and timed, wrapped calls."""

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str) -> LogContext:
        """
        Timing/logging context for one operation.

        Usage:
            with self.log_operation("Creating census 2024-05-01"):
                ...
        """
        return LogContext(self.logger, operation)

    def safe_execute(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """Run ``func`` and report the outcome as a ServiceResult instead of raising."""
        with self.log_operation(operation):
            try:
                return ServiceResult.ok(func(*args, **kwargs))
            except CensusSyncError as e:
                handle_error(e)
                return ServiceResult.from_exception(e)
            except Exception as e:
                self.logger.error(f"{operation} failed: {e}", exc_info=True)
                return ServiceResult.from_exception(e)
