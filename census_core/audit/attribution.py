"""
Attribution of actions performed under shared station logins.

Wards share one login per workstation, so ``userId`` alone does not say who
acted. The record itself names the staff on duty; this module picks, in a
fixed order, the people most likely responsible for a given shift.
"""

from typing import Any, Iterable, List, Mapping, Optional

from census_core.errors import ValidationError

SHIFTS = ("day", "night")


def _clean_names(groups: Iterable[Any]) -> List[str]:
    """Flatten, trim and de-duplicate (case-insensitive) keeping first order."""
    names: List[str] = []
    seen = set()
    for group in groups:
        if group is None:
            continue
        values = [group] if isinstance(group, str) else list(group)
        for value in values:
            if not isinstance(value, str):
                continue
            name = " ".join(value.split())
            if name and name.lower() not in seen:
                seen.add(name.lower())
                names.append(name)
    return names


def get_attributed_authors(
    user_id: str,
    record: Optional[Mapping[str, Any]],
    shift: Optional[str] = None,
) -> List[str]:
    """
    Names likely responsible for an action on ``record``.

    - ``shift="day"|"night"``: the handoff's delivering then receiving staff
      for that shift; if neither is filled in, the shift's nurses.
    - no shift (medical context): the handoff doctor, then the signing
      doctor; if neither is set, the day then night nurses.

    Falls back to ``[user_id]`` when the record names nobody. Pure and
    deterministic: the same inputs always give the same list.
    """
    if shift is not None and shift not in SHIFTS:
        raise ValidationError(f"Unknown shift '{shift}'", field="shift", expected="day|night", actual=str(shift))

    record = record or {}
    if shift is not None:
        prefix = "Day" if shift == "day" else "Night"
        names = _clean_names([
            record.get(f"handoff{prefix}Delivers"),
            record.get(f"handoff{prefix}Receives"),
        ])
        if not names:
            names = _clean_names([record.get(f"nurses{prefix}Shift")])
    else:
        signature = record.get("medicalSignature")
        signer = signature.get("doctorName") if isinstance(signature, Mapping) else None
        names = _clean_names([record.get("medicalHandoffDoctor"), signer])
        if not names:
            names = _clean_names([record.get("nursesDayShift"), record.get("nursesNightShift")])

    return names or [user_id]
