"""
Human-readable one-line summaries for audit entries.

The summary is a pure function of (action, details, entity id) so that the
same entry always renders the same way in the audit screen and exports.
"""

from typing import Any, Callable, Dict, Mapping

from census_core.models.audit import AuditAction


def _patient(details: Mapping[str, Any]) -> str:
    return str(details.get("patientName") or "Patient")


def _bed(details: Mapping[str, Any], entity_id: str) -> str:
    return str(details.get("bedId") or entity_id)


def _changed_fields(details: Mapping[str, Any]) -> str:
    changes = details.get("changes")
    if isinstance(changes, Mapping) and changes:
        return f" [{', '.join(sorted(changes))}]"
    return ""


def _admitted(details, entity_id):
    dx = f" [Dx: {details['pathology']}]" if details.get("pathology") else ""
    return f"Admission: {_patient(details)}{dx} -> Bed {_bed(details, entity_id)}"


def _record_created(details, entity_id):
    copied = f" (copied from {details['copiedFrom']})" if details.get("copiedFrom") else ""
    return f"Record created: {entity_id}{copied}"


def _logout(details, entity_id):
    duration = f" ({details['durationFormatted']})" if details.get("durationFormatted") else ""
    return f"Logout{duration}"


def _bed_blocked(details, entity_id):
    reason = f" ({details['reason']})" if details.get("reason") else ""
    return f"Bed blocked: {_bed(details, entity_id)}{reason}"


def _extra_bed(details, entity_id):
    state = "Activated" if details.get("active") else "Deactivated"
    return f"{state} extra bed: {_bed(details, entity_id)}"


def _nurse_note(details, entity_id):
    shift = "Day" if details.get("shift") == "day" else "Night"
    return f"Nursing note ({shift}): {_patient(details)}"


SummaryBuilder = Callable[[Mapping[str, Any], str], str]

SUMMARIES: Dict[AuditAction, SummaryBuilder] = {
    AuditAction.PATIENT_ADMITTED: _admitted,
    AuditAction.PATIENT_DISCHARGED: lambda d, e: f"Discharge: {_patient(d)} ({d.get('status') or 'Discharged'})",
    AuditAction.PATIENT_TRANSFERRED: lambda d, e: f"Transfer: {_patient(d)} -> {d.get('destination') or 'another center'}",
    AuditAction.PATIENT_MODIFIED: lambda d, e: f"Patient data updated: {_patient(d)}{_changed_fields(d)}",
    AuditAction.DEVICES_MODIFIED: lambda d, e: f"Devices updated: {_patient(d)}{_changed_fields(d)}",
    AuditAction.PATIENT_CLEARED: lambda d, e: f"Bed cleared: {_bed(d, e)}",
    AuditAction.PATIENT_VIEW: lambda d, e: f"Chart viewed: {_patient(d)}",
    AuditAction.RECORD_CREATE: _record_created,
    AuditAction.RECORD_DELETE: lambda d, e: f"Record deleted: {e}",
    AuditAction.CUDYR_MODIFIED: lambda d, e: f"CUDYR updated: {_patient(d)}",
    AuditAction.NURSE_HANDOFF_MODIFIED: _nurse_note,
    AuditAction.MEDICAL_HANDOFF_MODIFIED: lambda d, e: f"Medical progress note updated: {_patient(d)}",
    AuditAction.HANDOFF_NOVEDADES_MODIFIED: lambda d, e: f"Shift news updated ({d.get('shift') or 'shift'})",
    AuditAction.MEDICAL_HANDOFF_SIGNED: lambda d, e: f"Medical handoff signed: {d.get('doctorName') or 'Physician'}",
    AuditAction.BED_BLOCKED: _bed_blocked,
    AuditAction.BED_UNBLOCKED: lambda d, e: f"Bed unblocked: {_bed(d, e)}",
    AuditAction.EXTRA_BED_TOGGLED: _extra_bed,
    AuditAction.VIEW_CUDYR: lambda d, e: "View: CUDYR sheet",
    AuditAction.VIEW_NURSING_HANDOFF: lambda d, e: "View: Nursing handoff",
    AuditAction.VIEW_MEDICAL_HANDOFF: lambda d, e: "View: Medical handoff",
    AuditAction.USER_LOGIN: lambda d, e: "Login",
    AuditAction.USER_LOGOUT: _logout,
}


def generate_summary(action: AuditAction, details: Mapping[str, Any], entity_id: str) -> str:
    """Deterministic summary for an audit entry; falls back to the action name."""
    builder = SUMMARIES.get(AuditAction(action))
    if builder is None:
        return AuditAction(action).value
    return builder(details or {}, entity_id)
