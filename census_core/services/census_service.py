# =============================================================================
# census_core/services/census_service.py
# Census Operations: validation gate and audit emission
# =============================================================================
"""
CensusService - the caller side of the sync coordinator.

Every edit made from the census, CUDYR and handoff screens goes through here:

1. validate the edit (known bed, no future admission date, crib depth, ...)
2. build a field-path patch and hand it to the SyncCoordinator
3. record the matching audit entry, whether or not the remote write succeeded

Authorization (RBAC) is checked by the pages before calling these methods.
"""

from __future__ import annotations

import uuid
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from census_core.audit.attribution import SHIFTS, get_attributed_authors
from census_core.audit.recorder import AuditRecorder
from census_core.errors import NetworkError, RecordNotLoadedError, ValidationError
from census_core.models.audit import AuditAction, AuditLogEntry, EntityType, mask_rut
from census_core.models.records import (
    DEFAULT_BEDS,
    DEMOGRAPHIC_FIELDS,
    PATIENT_FIELDS,
    BedDefinition,
    PatientData,
    Record,
    bed_index,
    clone_patient,
    create_daily_record,
    create_empty_patient,
    create_record_from_previous,
    is_occupied,
    normalize_record,
)
from census_core.offline.local_cache import LocalCache
from census_core.offline.patch_engine import compile_patch
from census_core.offline.sync_coordinator import SyncCoordinator, SyncStatus
from census_core.remote import create_remote
from census_core.settings import CensusSettings, load_settings
from census_core.utils.dates import Clock, is_future_date, next_timestamp, to_iso, utc_now
from .base_service import BaseService

# Fields with a dedicated operation
RESERVED_PATIENT_FIELDS = frozenset({"bedId", "clinicalCrib", "cudyr", "devices", "deviceDetails"})

STAFF_ROLES = ("delivers", "receives")
NOVEDADES_FIELDS = {
    "day": "handoffNovedadesDayShift",
    "night": "handoffNovedadesNightShift",
    "medical": "medicalHandoffNovedades",
}


def _shift_prefix(shift: str) -> str:
    if shift not in SHIFTS:
        raise ValidationError(f"Unknown shift '{shift}'", field="shift", expected="day|night", actual=str(shift))
    return "Day" if shift == "day" else "Night"


def _clean_text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _change(field: str, old: Any, new: Any) -> Dict[str, Any]:
    if field == "rut":
        # Identifiers only ever reach the audit trail masked
        return {"old": mask_rut(old) if old else None, "new": mask_rut(new) if new else None}
    return {"old": old, "new": new}


class CensusService(BaseService):
    """
    Census editing operations for the loaded day.

    Usage:
        service = CensusService(coordinator, recorder)
        await service.update_patient("R1", "patientName", "Juan Pérez")
        await service.toggle_extra_bed("E1")
    """

    def __init__(
        self,
        coordinator: SyncCoordinator,
        recorder: AuditRecorder,
        beds: Iterable[BedDefinition] = DEFAULT_BEDS,
        user_id: Optional[str] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__()
        self.coordinator = coordinator
        self.recorder = recorder
        self.beds = tuple(beds)
        self._beds_by_id = bed_index(self.beds)
        self._user_id = user_id
        self._clock = clock or utc_now

    @property
    def user_id(self) -> str:
        return self._user_id or self.recorder.current_user

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_record(self) -> Record:
        record = self.coordinator.record
        if record is None:
            raise RecordNotLoadedError("No census loaded", date=self.coordinator.current_date)
        return record

    def _require_patient(self, record: Record, bed_id: str) -> PatientData:
        if bed_id not in self._beds_by_id:
            raise ValidationError(f"Unknown bed '{bed_id}'", field="bedId", actual=str(bed_id))
        return record["beds"].get(bed_id) or create_empty_patient(bed_id)

    def _require_crib(self, patient: PatientData, bed_id: str) -> PatientData:
        crib = patient.get("clinicalCrib")
        if not isinstance(crib, dict):
            raise ValidationError(f"Bed {bed_id} has no clinical crib", field="clinicalCrib")
        return crib

    def _check_patient_value(self, field: str, value: Any) -> None:
        if field not in PATIENT_FIELDS:
            raise ValidationError(f"Unknown patient field '{field}'", field=field)
        if field in RESERVED_PATIENT_FIELDS:
            raise ValidationError(f"Field '{field}' has its own operation", field=field)
        if field == "admissionDate" and is_future_date(value, today=self._clock().date()):
            raise ValidationError(
                "Admission date cannot be in the future",
                field="admissionDate",
                actual=str(value),
            )

    async def _audit(
        self,
        action: AuditAction,
        entity_type: EntityType,
        entity_id: str,
        details: Optional[Mapping[str, Any]] = None,
        patient_rut: Optional[str] = None,
        shift: Optional[str] = None,
    ) -> Optional[AuditLogEntry]:
        record = self.coordinator.record
        authors = get_attributed_authors(self.user_id, record, shift)
        return await self.recorder.record(
            action,
            entity_type,
            entity_id,
            details,
            user_id=self.user_id,
            record_date=self.coordinator.current_date,
            attributed_authors=authors,
            patient_rut=patient_rut,
        )

    async def _apply(self, patch: Mapping[str, Any], audits: Sequence[Dict[str, Any]] = ()) -> None:
        """
        Push ``patch`` and record ``audits`` regardless of the remote outcome.

        The patch is validated first so that a rejected patch audits nothing.
        """
        compiled = compile_patch(patch)
        try:
            await self.coordinator.patch_record(compiled)
        finally:
            for audit in audits:
                await self._audit(**audit)

    # =========================================================================
    # DAY LIFECYCLE
    # =========================================================================

    async def create_day(self, copy_from: Optional[str] = None, copy_previous: bool = False) -> Record:
        """
        Create the loaded day's record, optionally carrying over another day.

        ``copy_from`` names the source date; ``copy_previous`` uses the most
        recent cached day before this one. An existing record (local or
        remote) is returned unchanged, and nothing is created while the
        remote copy is unknown.
        """
        await self.coordinator.wait_until_loaded()
        existing = self.coordinator.record
        if existing is not None:
            return existing

        date = self.coordinator.current_date
        if date is None:
            raise RecordNotLoadedError("No date loaded")
        if self.coordinator.status == SyncStatus.ERROR:
            raise NetworkError(
                f"Cannot create {date}: the remote copy could not be checked",
                operation="create_day",
                date=date,
            )

        remote_record = await self.coordinator.fetch_remote()
        if remote_record is not None:
            self.logger.info(f"{date} already exists remotely; using it")
            return remote_record

        stamp = next_timestamp(None, self._clock)
        cache = self.coordinator.local_cache
        previous = None
        if copy_from:
            previous = normalize_record(cache.get_record(copy_from), copy_from)
            if previous is None:
                self.logger.warning(f"No cached record for {copy_from}; creating an empty day")
        elif copy_previous:
            previous = cache.get_previous_record(date)
            if previous is not None:
                copy_from = previous["date"]
                previous = normalize_record(previous, copy_from)

        if previous is not None:
            record = create_record_from_previous(date, previous, self.beds, stamp)
        else:
            record = create_daily_record(date, self.beds, stamp)

        details = {"copiedFrom": copy_from} if previous is not None else {}
        try:
            with self.log_operation(f"Creating census {date}"):
                await self.coordinator.save_and_update(record)
        finally:
            await self._audit(AuditAction.RECORD_CREATE, EntityType.DAILY_RECORD, date, details)
        return self.coordinator.record

    async def reset_day(self) -> None:
        """Delete the loaded day everywhere."""
        date = self.coordinator.current_date
        if date is None:
            raise RecordNotLoadedError("No date loaded")
        try:
            await self.coordinator.delete_current()
        finally:
            await self._audit(AuditAction.RECORD_DELETE, EntityType.DAILY_RECORD, date)

    # =========================================================================
    # PATIENT EDITS
    # =========================================================================

    def _patient_audits(
        self,
        bed_id: str,
        patient: PatientData,
        updates: Mapping[str, Any],
        crib: bool = False,
    ) -> List[Dict[str, Any]]:
        old_name = _clean_text(patient.get("patientName"))
        new_name = _clean_text(updates.get("patientName", patient.get("patientName")))
        rut = updates.get("rut", patient.get("rut")) or None

        if not old_name and new_name:
            details = {
                "patientName": new_name,
                "bedId": bed_id,
                "pathology": updates.get("pathology", patient.get("pathology")) or None,
            }
            if crib:
                details["clinicalCrib"] = True
            return [dict(
                action=AuditAction.PATIENT_ADMITTED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details=details,
                patient_rut=rut,
            )]

        changes = {
            field: _change(field, patient.get(field), value)
            for field, value in updates.items()
            if field in DEMOGRAPHIC_FIELDS and patient.get(field) != value
        }
        if not changes or not old_name:
            return []
        details = {"patientName": new_name or old_name, "bedId": bed_id, "changes": changes}
        if crib:
            details["clinicalCrib"] = True
        return [dict(
            action=AuditAction.PATIENT_MODIFIED,
            entity_type=EntityType.PATIENT,
            entity_id=bed_id,
            details=details,
            patient_rut=rut,
        )]

    async def update_patient(self, bed_id: str, field: str, value: Any) -> None:
        """Set one patient field; admissions and demographic edits are audited."""
        await self.update_patient_fields(bed_id, {field: value})

    async def update_patient_fields(self, bed_id: str, fields: Mapping[str, Any]) -> None:
        """Set several fields of one patient in a single patch."""
        if not fields:
            return
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        for field, value in fields.items():
            self._check_patient_value(field, value)

        patch = {f"beds.{bed_id}.{field}": value for field, value in fields.items()}
        await self._apply(patch, self._patient_audits(bed_id, patient, fields))

    async def update_devices(
        self,
        bed_id: str,
        devices: Iterable[str],
        device_details: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Replace the device list (set semantics, order kept) and details."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)

        new_devices: List[str] = []
        for device in devices:
            name = _clean_text(device)
            if name and name not in new_devices:
                new_devices.append(name)
        old_devices = list(patient.get("devices") or [])

        patch: Dict[str, Any] = {f"beds.{bed_id}.devices": new_devices}
        if device_details is not None:
            patch[f"beds.{bed_id}.deviceDetails"] = dict(device_details)

        audits = []
        if is_occupied(patient) and set(old_devices) != set(new_devices):
            audits.append(dict(
                action=AuditAction.DEVICES_MODIFIED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details={
                    "patientName": patient.get("patientName"),
                    "bedId": bed_id,
                    "added": [d for d in new_devices if d not in old_devices],
                    "removed": [d for d in old_devices if d not in new_devices],
                    "changes": {"devices": {"old": old_devices, "new": new_devices}},
                },
                patient_rut=patient.get("rut") or None,
            ))
        await self._apply(patch, audits)

    async def update_cudyr(self, bed_id: str, category: str, value: int) -> None:
        """Set one CUDYR category score (audited at most every 15 min per bed)."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        if not is_occupied(patient):
            raise ValidationError(f"Bed {bed_id} has no patient to score", field="cudyr")
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError("CUDYR score must be a non-negative integer", field=category, actual=str(value))

        old_value = (patient.get("cudyr") or {}).get(category)
        await self._apply(
            {f"beds.{bed_id}.cudyr.{category}": value},
            [dict(
                action=AuditAction.CUDYR_MODIFIED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details={
                    "patientName": patient.get("patientName"),
                    "bedId": bed_id,
                    "field": category,
                    "value": value,
                    "oldValue": old_value,
                },
                patient_rut=patient.get("rut") or None,
            )],
        )

    # =========================================================================
    # CLINICAL CRIB
    # =========================================================================

    async def create_clinical_crib(self, bed_id: str) -> None:
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        if not is_occupied(patient):
            raise ValidationError(f"Bed {bed_id} needs a patient before adding a crib", field="clinicalCrib")
        if isinstance(patient.get("clinicalCrib"), dict):
            return
        crib = create_empty_patient(bed_id)
        crib.pop("clinicalCrib")
        crib["bedMode"] = "Cuna"
        await self._apply({f"beds.{bed_id}.clinicalCrib": crib})

    async def remove_clinical_crib(self, bed_id: str) -> None:
        record = self._require_record()
        self._require_patient(record, bed_id)
        await self._apply({f"beds.{bed_id}.clinicalCrib": None})

    async def update_clinical_crib(self, bed_id: str, field: str, value: Any) -> None:
        """Set a field on the companion crib patient (one level deep only)."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        crib = self._require_crib(patient, bed_id)
        self._check_patient_value(field, value)
        await self._apply(
            {f"beds.{bed_id}.clinicalCrib.{field}": value},
            self._patient_audits(bed_id, crib, {field: value}, crib=True),
        )

    # =========================================================================
    # BED OPERATIONS
    # =========================================================================

    async def clear_patient(self, bed_id: str) -> None:
        """Empty a bed, keeping the location of extra beds."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        location = patient.get("location", "") if self._beds_by_id[bed_id].is_extra else ""

        audits = []
        if is_occupied(patient):
            audits.append(dict(
                action=AuditAction.PATIENT_CLEARED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details={"patientName": patient.get("patientName"), "bedId": bed_id},
                patient_rut=patient.get("rut") or None,
            ))
        await self._apply({f"beds.{bed_id}": create_empty_patient(bed_id, location)}, audits)

    async def move_or_copy_patient(self, mode: str, source_bed_id: str, target_bed_id: str) -> None:
        """Move (source is emptied) or copy a patient to an empty bed."""
        if mode not in ("move", "copy"):
            raise ValidationError(f"Unknown mode '{mode}'", field="mode", expected="move|copy")
        record = self._require_record()
        source = self._require_patient(record, source_bed_id)
        target = self._require_patient(record, target_bed_id)
        if source_bed_id == target_bed_id:
            raise ValidationError("Source and target bed are the same", field="bedId")
        if not is_occupied(source):
            raise ValidationError(f"Cannot move empty patient from {source_bed_id}", field="patientName")
        if is_occupied(target):
            raise ValidationError(f"Target bed {target_bed_id} is occupied", field="bedId")

        moved = clone_patient(source, target_bed_id)
        moved["location"] = target.get("location", "")
        patch: Dict[str, Any] = {f"beds.{target_bed_id}": moved}
        if mode == "move":
            patch[f"beds.{source_bed_id}"] = create_empty_patient(source_bed_id)

        await self._apply(patch, [dict(
            action=AuditAction.PATIENT_MODIFIED,
            entity_type=EntityType.PATIENT,
            entity_id=target_bed_id,
            details={
                "patientName": source.get("patientName"),
                "bedId": target_bed_id,
                "mode": mode,
                "changes": {"bedId": {"old": source_bed_id, "new": target_bed_id}},
            },
            patient_rut=source.get("rut") or None,
        )])

    async def toggle_block_bed(self, bed_id: str, reason: str = "") -> None:
        record = self._require_record()
        patient = self._require_patient(record, bed_id)

        if patient.get("isBlocked"):
            patch = {f"beds.{bed_id}.isBlocked": False, f"beds.{bed_id}.blockedReason": ""}
            audit = dict(
                action=AuditAction.BED_UNBLOCKED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details={"bedId": bed_id},
            )
        else:
            if is_occupied(patient):
                raise ValidationError(f"Bed {bed_id} is occupied and cannot be blocked", field="isBlocked")
            reason = _clean_text(reason)
            patch = {f"beds.{bed_id}.isBlocked": True, f"beds.{bed_id}.blockedReason": reason}
            audit = dict(
                action=AuditAction.BED_BLOCKED,
                entity_type=EntityType.PATIENT,
                entity_id=bed_id,
                details={"bedId": bed_id, "reason": reason},
            )
        await self._apply(patch, [audit])

    async def toggle_extra_bed(self, bed_id: str) -> None:
        """Activate or deactivate an extra bed; applying it twice is a no-op."""
        bed = self._beds_by_id.get(bed_id)
        if bed is None or not bed.is_extra:
            raise ValidationError(f"'{bed_id}' is not an extra bed", field="activeExtraBeds", actual=str(bed_id))
        record = self._require_record()

        active = list(record.get("activeExtraBeds") or [])
        now_active = bed_id not in active
        if now_active:
            active.append(bed_id)
        else:
            active = [b for b in active if b != bed_id]

        await self._apply({"activeExtraBeds": active}, [dict(
            action=AuditAction.EXTRA_BED_TOGGLED,
            entity_type=EntityType.PATIENT,
            entity_id=bed_id,
            details={"bedId": bed_id, "active": now_active},
        )])

    def _movement(self, bed_id: str, patient: PatientData, **extra) -> Dict[str, Any]:
        bed = self._beds_by_id[bed_id]
        movement = {
            "id": uuid.uuid4().hex,
            "bedId": bed_id,
            "bedName": bed.name,
            "bedType": bed.bed_type,
            "patientName": patient.get("patientName"),
            "rut": patient.get("rut"),
            "diagnosis": patient.get("pathology"),
            "age": patient.get("age"),
            "time": to_iso(self._clock()),
            "originalData": clone_patient(patient),
        }
        movement.update(extra)
        return movement

    async def add_discharge(
        self,
        bed_id: str,
        status: str = "Vivo",
        discharge_type: Optional[str] = None,
    ) -> None:
        """Discharge the bed's patient: append to discharges and free the bed in one patch."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        if not is_occupied(patient):
            raise ValidationError(f"Bed {bed_id} has no patient to discharge", field="patientName")
        if not _clean_text(status):
            raise ValidationError("Discharge status is required", field="status")

        discharge = self._movement(bed_id, patient, status=status, dischargeType=discharge_type)
        await self._apply(
            {
                "discharges": list(record.get("discharges") or []) + [discharge],
                f"beds.{bed_id}": create_empty_patient(bed_id),
            },
            [dict(
                action=AuditAction.PATIENT_DISCHARGED,
                entity_type=EntityType.DISCHARGE,
                entity_id=bed_id,
                details={"patientName": patient.get("patientName"), "status": status, "bedId": bed_id},
                patient_rut=patient.get("rut") or None,
            )],
        )

    async def add_transfer(
        self,
        bed_id: str,
        destination: str,
        evacuation_method: str = "",
    ) -> None:
        """Transfer the bed's patient out: append to transfers and free the bed in one patch."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        if not is_occupied(patient):
            raise ValidationError(f"Bed {bed_id} has no patient to transfer", field="patientName")
        destination = _clean_text(destination)
        if not destination:
            raise ValidationError("Transfer destination is required", field="receivingCenter")

        transfer = self._movement(
            bed_id, patient, receivingCenter=destination, evacuationMethod=evacuation_method
        )
        await self._apply(
            {
                "transfers": list(record.get("transfers") or []) + [transfer],
                f"beds.{bed_id}": create_empty_patient(bed_id),
            },
            [dict(
                action=AuditAction.PATIENT_TRANSFERRED,
                entity_type=EntityType.TRANSFER,
                entity_id=bed_id,
                details={"patientName": patient.get("patientName"), "destination": destination, "bedId": bed_id},
                patient_rut=patient.get("rut") or None,
            )],
        )

    # =========================================================================
    # HANDOFF
    # =========================================================================

    async def update_handoff_staff(self, shift: str, role: str, names: Iterable[str]) -> None:
        """Set who delivers or receives the given shift's handoff."""
        prefix = _shift_prefix(shift)
        if role not in STAFF_ROLES:
            raise ValidationError(f"Unknown handoff role '{role}'", field="role", expected="delivers|receives")
        self._require_record()
        cleaned = [n for n in (_clean_text(name) for name in names) if n]
        await self._apply({f"handoff{prefix}{role.capitalize()}": cleaned})

    async def update_handoff_checklist(self, shift: str, item: str, value: Any) -> None:
        prefix = _shift_prefix(shift)
        self._require_record()
        if not isinstance(value, (bool, str)):
            raise ValidationError("Checklist values are booleans or text", field=item)
        await self._apply({f"handoff{prefix}Checklist.{item}": value})

    async def update_handoff_novedades(self, shift: str, content: str) -> None:
        """Set the free-text shift news ("novedades") for day, night or medical."""
        field = NOVEDADES_FIELDS.get(shift)
        if field is None:
            raise ValidationError(f"Unknown shift '{shift}'", field="shift", expected="day|night|medical")
        record = self._require_record()
        old = record.get(field) or ""

        audits = []
        if old != content:
            audits.append(dict(
                action=AuditAction.HANDOFF_NOVEDADES_MODIFIED,
                entity_type=EntityType.DAILY_RECORD,
                entity_id=self.coordinator.current_date,
                details={"shift": shift, "changes": {field: {"old": old, "new": content}}},
                shift=shift if shift in SHIFTS else None,
            ))
        await self._apply({field: content}, audits)

    async def update_handoff_note(
        self,
        bed_id: str,
        note: str,
        shift: Optional[str] = None,
        nested: bool = False,
    ) -> None:
        """
        Write a per-patient handoff note.

        ``shift=None`` is the medical note. A day-shift nursing note seeds the
        night note too; a night note only touches the night note.
        """
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        target = self._require_crib(patient, bed_id) if nested else patient
        base = f"beds.{bed_id}.clinicalCrib" if nested else f"beds.{bed_id}"

        if shift is None:
            patch = {f"{base}.medicalHandoffNote": note}
            action = AuditAction.MEDICAL_HANDOFF_MODIFIED
        else:
            _shift_prefix(shift)
            patch = {f"{base}.handoffNoteNightShift": note}
            if shift == "day":
                patch[f"{base}.handoffNoteDayShift"] = note
            action = AuditAction.NURSE_HANDOFF_MODIFIED

        details = {"bedId": bed_id, "patientName": target.get("patientName") or None}
        if shift is not None:
            details["shift"] = shift
        await self._apply(patch, [dict(
            action=action,
            entity_type=EntityType.PATIENT,
            entity_id=bed_id,
            details=details,
            patient_rut=target.get("rut") or None,
            shift=shift,
        )])

    async def sign_medical_handoff(self, doctor_name: str) -> None:
        doctor_name = _clean_text(doctor_name)
        if not doctor_name:
            raise ValidationError("Doctor name is required to sign", field="doctorName")
        self._require_record()
        signed_at = to_iso(self._clock())
        await self._apply(
            {
                "medicalHandoffDoctor": doctor_name,
                "medicalSignature": {"doctorName": doctor_name, "signedAt": signed_at},
            },
            [dict(
                action=AuditAction.MEDICAL_HANDOFF_SIGNED,
                entity_type=EntityType.DAILY_RECORD,
                entity_id=self.coordinator.current_date,
                details={"doctorName": doctor_name, "signedAt": signed_at},
            )],
        )

    # =========================================================================
    # VIEWS
    # =========================================================================

    async def view_patient(self, bed_id: str) -> Optional[AuditLogEntry]:
        """Record that a patient chart was opened (occupied beds only)."""
        record = self._require_record()
        patient = self._require_patient(record, bed_id)
        if not is_occupied(patient):
            return None
        return await self._audit(
            AuditAction.PATIENT_VIEW,
            EntityType.PATIENT,
            bed_id,
            {"patientName": patient.get("patientName"), "bedId": bed_id},
            patient_rut=patient.get("rut") or None,
        )

    async def view_handoff(self, kind: str, shift: Optional[str] = None) -> Optional[AuditLogEntry]:
        """Record a visit to the nursing (``shift`` required) or medical handoff."""
        self._require_record()
        if kind == "nursing":
            _shift_prefix(shift)
            action = AuditAction.VIEW_NURSING_HANDOFF
            details = {"shift": shift}
        elif kind == "medical":
            action = AuditAction.VIEW_MEDICAL_HANDOFF
            details = {}
            shift = None
        else:
            raise ValidationError(f"Unknown handoff '{kind}'", field="kind", expected="nursing|medical")
        return await self._audit(
            action, EntityType.DAILY_RECORD, self.coordinator.current_date, details, shift=shift
        )

    async def view_cudyr(self) -> Optional[AuditLogEntry]:
        self._require_record()
        return await self._audit(AuditAction.VIEW_CUDYR, EntityType.DAILY_RECORD, self.coordinator.current_date)


async def open_census(
    settings: Optional[CensusSettings] = None,
    session_state: Optional[MutableMapping[str, Any]] = None,
    client_id: Optional[str] = None,
    beds: Iterable[BedDefinition] = DEFAULT_BEDS,
) -> CensusService:
    """
    Wire a CensusService from configuration.

    Usage:
        service = await open_census(load_settings())
        service.coordinator.load("2024-05-01")
    """
    settings = settings or load_settings()
    cache = LocalCache.from_settings(settings)
    remote = await create_remote(settings, client_id)
    coordinator = SyncCoordinator(cache, remote, settings)
    recorder = AuditRecorder(cache, remote, settings, session_state)
    return CensusService(coordinator, recorder, beds=beds)
