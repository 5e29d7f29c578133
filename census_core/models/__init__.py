# =============================================================================
# census_core/models/__init__.py
# Census Record and Audit Models
# =============================================================================

from .records import (
    Record,
    PatientData,
    BedDefinition,
    DEFAULT_BEDS,
    PATIENT_DEFAULTS,
    PATIENT_FIELDS,
    DEMOGRAPHIC_FIELDS,
    create_empty_patient,
    clone_patient,
    is_occupied,
    is_blocked,
    bed_index,
    create_daily_record,
    create_record_from_previous,
    normalize_record,
)

from .audit import (
    AuditAction,
    VIEW_ACTIONS,
    EntityType,
    AuditLogEntry,
    mask_rut,
)

__all__ = [
    # Records
    "Record",
    "PatientData",
    "BedDefinition",
    "DEFAULT_BEDS",
    "PATIENT_DEFAULTS",
    "PATIENT_FIELDS",
    "DEMOGRAPHIC_FIELDS",
    "create_empty_patient",
    "clone_patient",
    "is_occupied",
    "is_blocked",
    "bed_index",
    "create_daily_record",
    "create_record_from_previous",
    "normalize_record",
    # Audit
    "AuditAction",
    "VIEW_ACTIONS",
    "EntityType",
    "AuditLogEntry",
    "mask_rut",
]
