# =============================================================================
# census_core/models/audit.py
# Audit Log Entry Model
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class AuditAction(str, Enum):
    """Closed set of auditable actions."""
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    PATIENT_VIEW = "PATIENT_VIEW"
    PATIENT_ADMITTED = "PATIENT_ADMITTED"
    PATIENT_CLEARED = "PATIENT_CLEARED"
    PATIENT_DISCHARGED = "PATIENT_DISCHARGED"
    PATIENT_TRANSFERRED = "PATIENT_TRANSFERRED"
    PATIENT_MODIFIED = "PATIENT_MODIFIED"
    DEVICES_MODIFIED = "DEVICES_MODIFIED"
    CUDYR_MODIFIED = "CUDYR_MODIFIED"
    NURSE_HANDOFF_MODIFIED = "NURSE_HANDOFF_MODIFIED"
    MEDICAL_HANDOFF_MODIFIED = "MEDICAL_HANDOFF_MODIFIED"
    HANDOFF_NOVEDADES_MODIFIED = "HANDOFF_NOVEDADES_MODIFIED"
    MEDICAL_HANDOFF_SIGNED = "MEDICAL_HANDOFF_SIGNED"
    BED_BLOCKED = "BED_BLOCKED"
    BED_UNBLOCKED = "BED_UNBLOCKED"
    EXTRA_BED_TOGGLED = "EXTRA_BED_TOGGLED"
    RECORD_CREATE = "RECORD_CREATE"
    RECORD_DELETE = "RECORD_DELETE"
    VIEW_MEDICAL_HANDOFF = "VIEW_MEDICAL_HANDOFF"
    VIEW_NURSING_HANDOFF = "VIEW_NURSING_HANDOFF"
    VIEW_CUDYR = "VIEW_CUDYR"

    @property
    def is_view(self) -> bool:
        return self in VIEW_ACTIONS


VIEW_ACTIONS = frozenset({
    AuditAction.PATIENT_VIEW,
    AuditAction.VIEW_MEDICAL_HANDOFF,
    AuditAction.VIEW_NURSING_HANDOFF,
    AuditAction.VIEW_CUDYR,
})


class EntityType(str, Enum):
    PATIENT = "patient"
    DISCHARGE = "discharge"
    TRANSFER = "transfer"
    DAILY_RECORD = "dailyRecord"
    USER = "user"


def mask_rut(rut: Optional[str]) -> str:
    """
    Mask a RUT for display in the audit trail.

    "12.345.678-9" -> "12.345.***-*"; unstructured ids keep all but the last
    four characters.
    """
    if not rut or len(rut) < 4:
        return "***"
    parts = rut.split("-")
    if len(parts) == 2:
        return parts[0][:-3] + "***-*"
    return rut[:-4] + "***"


@dataclass(frozen=True)
class AuditLogEntry:
    """
    Immutable audit entry. ``to_dict`` produces the stored (camelCase) shape.
    """
    id: str
    timestamp: str
    user_id: str
    action: AuditAction
    entity_type: str
    entity_id: str
    details: Dict[str, Any] = field(default_factory=dict)
    summary: str = ""
    record_date: Optional[str] = None
    attributed_authors: Tuple[str, ...] = ()
    patient_identifier: Optional[str] = None

    @property
    def authors(self) -> str:
        return ", ".join(self.attributed_authors)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "action": self.action.value,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "details": dict(self.details),
            "summary": self.summary,
            "recordDate": self.record_date,
            "attributedAuthors": list(self.attributed_authors),
        }
        if self.patient_identifier:
            data["patientIdentifier"] = self.patient_identifier
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditLogEntry":
        return cls(
            id=data["id"],
            timestamp=data["timestamp"],
            user_id=data.get("userId", ""),
            action=AuditAction(data["action"]),
            entity_type=data.get("entityType", ""),
            entity_id=data.get("entityId", ""),
            details=dict(data.get("details") or {}),
            summary=data.get("summary") or "",
            record_date=data.get("recordDate"),
            attributed_authors=tuple(data.get("attributedAuthors") or ()),
            patient_identifier=data.get("patientIdentifier"),
        )
