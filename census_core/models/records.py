# =============================================================================
# census_core/models/records.py
# Daily Record and Patient Document Model
# =============================================================================
"""
Census records are JSON documents (plain dicts) so that the same value can be
stored in SQLite, sent to Supabase and patched by field path without a
mapping layer.

DailyRecord keys:
    date, lastUpdated, beds{bedId: PatientData}, discharges[], transfers[],
    cma[], activeExtraBeds[], staff lists, handoff notes/checklists,
    medical handoff fields and signature.

PatientData is a flat dict of clinical/demographic fields plus ``devices``
(set-like list), ``deviceDetails`` and ``cudyr`` maps and an optional
``clinicalCrib`` (a nested PatientData, one level deep).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

Record = Dict[str, Any]
PatientData = Dict[str, Any]


# =============================================================================
# BED CATALOG
# =============================================================================

@dataclass(frozen=True)
class BedDefinition:
    """A physical (or extra) bed in the ward."""
    id: str
    name: str
    bed_type: str = "MEDIA"
    is_extra: bool = False


DEFAULT_BEDS: Tuple[BedDefinition, ...] = (
    BedDefinition("R1", "R1", "UTI"),
    BedDefinition("R2", "R2", "UTI"),
    BedDefinition("R3", "R3", "UTI"),
    BedDefinition("R4", "R4", "UTI"),
    BedDefinition("NEO1", "NEO 1", "MEDIA"),
    BedDefinition("NEO2", "NEO 2", "MEDIA"),
    BedDefinition("H1C1", "H1C1", "MEDIA"),
    BedDefinition("H1C2", "H1C2", "MEDIA"),
    BedDefinition("H2C1", "H2C1", "MEDIA"),
    BedDefinition("H2C2", "H2C2", "MEDIA"),
    BedDefinition("H3C1", "H3C1", "MEDIA"),
    BedDefinition("H3C2", "H3C2", "MEDIA"),
    BedDefinition("E1", "Extra 1", "MEDIA", is_extra=True),
    BedDefinition("E2", "Extra 2", "MEDIA", is_extra=True),
    BedDefinition("E3", "Extra 3", "MEDIA", is_extra=True),
)


# =============================================================================
# FIELD DEFINITIONS
# =============================================================================

# Patient fields and their empty values. Order follows the census sheet.
PATIENT_DEFAULTS: Dict[str, Any] = {
    "bedId": "",
    "isBlocked": False,
    "blockedReason": "",
    "bedMode": "Cama",
    "hasCompanionCrib": False,
    "patientName": "",
    "rut": "",
    "documentType": "RUT",
    "age": "",
    "pathology": "",
    "specialty": "",
    "status": "",
    "admissionDate": "",
    "admissionTime": "",
    "hasWristband": True,
    "devices": [],
    "deviceDetails": {},
    "surgicalComplication": False,
    "isUPC": False,
    "location": "",
    "cudyr": None,
    "handoffNoteDayShift": "",
    "handoffNoteNightShift": "",
    "medicalHandoffNote": "",
    "clinicalCrib": None,
}

PATIENT_FIELDS = frozenset(PATIENT_DEFAULTS)

# Fields that identify who occupies the bed; edits here are demographic changes.
DEMOGRAPHIC_FIELDS = frozenset({
    "patientName", "rut", "documentType", "age", "pathology", "specialty",
    "status", "admissionDate", "admissionTime", "location", "isUPC",
    "hasWristband", "surgicalComplication",
})

NURSE_SLOTS = 2
TENS_SLOTS = 3

# Staff lists padded to fixed slot counts
STAFF_SLOTS: Dict[str, int] = {
    "nursesDayShift": NURSE_SLOTS,
    "nursesNightShift": NURSE_SLOTS,
    "tensDayShift": TENS_SLOTS,
    "tensNightShift": TENS_SLOTS,
}

LIST_FIELDS = ("discharges", "transfers", "cma", "activeExtraBeds")


# =============================================================================
# PATIENT HELPERS
# =============================================================================

def create_empty_patient(bed_id: str, location: str = "") -> PatientData:
    """Return an unoccupied patient slot for ``bed_id``."""
    patient = copy.deepcopy(PATIENT_DEFAULTS)
    patient["bedId"] = bed_id
    patient["location"] = location
    return patient


def clone_patient(patient: PatientData, bed_id: Optional[str] = None) -> PatientData:
    """Deep copy a patient, optionally re-homing it to another bed."""
    clone = copy.deepcopy(patient)
    if bed_id is not None:
        clone["bedId"] = bed_id
    return clone


def is_occupied(patient: Optional[PatientData]) -> bool:
    return bool(patient and str(patient.get("patientName") or "").strip())


def is_blocked(patient: Optional[PatientData]) -> bool:
    return bool(patient and patient.get("isBlocked"))


def bed_index(beds: Iterable[BedDefinition]) -> Dict[str, BedDefinition]:
    return {bed.id: bed for bed in beds}


# =============================================================================
# RECORD HELPERS
# =============================================================================

def _pad(values: Optional[List[str]], size: int) -> List[str]:
    values = list(values or [])[:size]
    return values + [""] * (size - len(values))


def create_daily_record(
    date: str,
    beds: Iterable[BedDefinition] = DEFAULT_BEDS,
    last_updated: Optional[str] = None,
) -> Record:
    """Build an empty record for ``date`` with one slot per catalog bed."""
    return {
        "date": date,
        "lastUpdated": last_updated,
        "beds": {bed.id: create_empty_patient(bed.id) for bed in beds},
        "discharges": [],
        "transfers": [],
        "cma": [],
        "activeExtraBeds": [],
        "nurses": ["", ""],
        "nursesDayShift": [""] * NURSE_SLOTS,
        "nursesNightShift": [""] * NURSE_SLOTS,
        "tensDayShift": [""] * TENS_SLOTS,
        "tensNightShift": [""] * TENS_SLOTS,
        "handoffNovedadesDayShift": "",
        "handoffNovedadesNightShift": "",
    }


def create_record_from_previous(
    date: str,
    previous: Record,
    beds: Iterable[BedDefinition] = DEFAULT_BEDS,
    last_updated: Optional[str] = None,
) -> Record:
    """
    Start a new day carrying over the previous day's census.

    Occupied and blocked beds are cloned with their CUDYR scores cleared and
    both shift notes seeded from the previous night's note. Day staff comes
    from the previous night shift, as do the day novedades.
    """
    beds = tuple(beds)
    record = create_daily_record(date, beds, last_updated)
    prev_beds = previous.get("beds") or {}

    record["nursesDayShift"] = _pad(previous.get("nursesNightShift"), NURSE_SLOTS)
    record["tensDayShift"] = _pad(previous.get("tensNightShift"), TENS_SLOTS)
    record["activeExtraBeds"] = list(previous.get("activeExtraBeds") or [])
    record["handoffNovedadesDayShift"] = (
        previous.get("handoffNovedadesNightShift")
        or previous.get("handoffNovedadesDayShift")
        or ""
    )

    for bed in beds:
        prev = prev_beds.get(bed.id)
        if not prev:
            continue
        slot = record["beds"][bed.id]
        if is_occupied(prev) or is_blocked(prev):
            slot = clone_patient(prev, bed.id)
            slot["cudyr"] = None
            night_note = prev.get("handoffNoteNightShift") or ""
            slot["handoffNoteDayShift"] = night_note
            slot["handoffNoteNightShift"] = night_note
            crib = slot.get("clinicalCrib")
            if crib:
                crib_note = crib.get("handoffNoteNightShift") or ""
                crib["handoffNoteDayShift"] = crib_note
                crib["handoffNoteNightShift"] = crib_note
                crib["cudyr"] = None
        else:
            slot["bedMode"] = prev.get("bedMode") or slot["bedMode"]
            slot["hasCompanionCrib"] = bool(prev.get("hasCompanionCrib"))
        if bed.is_extra and prev.get("location"):
            slot["location"] = prev["location"]
        record["beds"][bed.id] = slot

    return record


def normalize_record(doc: Optional[Record], date: Optional[str] = None) -> Optional[Record]:
    """
    Fill defaults on a record read from storage.

    Missing lists become empty lists, staff lists are padded/truncated to
    their slot counts and a null ``clinicalCrib`` is dropped. The document
    key wins over any ``date`` stored inside the body.
    """
    if doc is None:
        return None
    record = copy.deepcopy(dict(doc))
    if date is not None:
        record["date"] = date
    record.setdefault("lastUpdated", None)

    beds = record.get("beds")
    record["beds"] = dict(beds) if isinstance(beds, dict) else {}
    for bed_id, patient in record["beds"].items():
        if isinstance(patient, dict) and "clinicalCrib" in patient and patient["clinicalCrib"] is None:
            del patient["clinicalCrib"]

    for key in LIST_FIELDS:
        if not isinstance(record.get(key), list):
            record[key] = []

    for key, size in STAFF_SLOTS.items():
        record[key] = _pad(record.get(key), size)

    return record
