# =============================================================================
# census_core/audit/__init__.py
# Audit Trail: recording, summaries and shared-login attribution
# =============================================================================

from .summary import generate_summary
from .attribution import get_attributed_authors
from .recorder import AuditRecorder, new_audit_id

__all__ = [
    "generate_summary",
    "get_attributed_authors",
    "AuditRecorder",
    "new_audit_id",
]
