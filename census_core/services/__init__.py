# =============================================================================
# census_core/services/__init__.py
# Service Layer - Census Operations and Export
# =============================================================================
"""
Services used by the Streamlit pages.

- CensusService: validated census edits with audit emission
- ExportService: read-only record snapshots and DataFrames for export
"""

from .base_service import BaseService, ServiceResult
from .census_service import CensusService, open_census
from .export_service import ExportService, freeze

__all__ = [
    # Base
    "BaseService",
    "ServiceResult",
    # Services
    "CensusService",
    "open_census",
    "ExportService",
    "freeze",
]
