# =============================================================================
# census_core/offline/patch_engine.py
# Field-Path Patches for Daily Records
# =============================================================================
"""
Field-path patching of daily records.

A patch is a flat mapping of dotted paths to values::

    {"beds.R1.patientName": "Juan", "beds.R1.cudyr.mobility": 2,
     "activeExtraBeds": ["E1"]}

Every path is parsed into a FieldPath and validated against RECORD_SCHEMA
before anything is applied, so a patch is accepted or rejected as a whole.
The same compiled patch drives both the in-memory deep merge
(``apply_patch``) and the remote partial write (``to_remote_update``): each
path replaces exactly the named node, intermediate maps are created when
missing and arrays are always replaced wholesale.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Tuple, Union

from census_core.errors import InvalidPathError
from census_core.models.records import PATIENT_FIELDS, Record

logger = logging.getLogger(__name__)


# =============================================================================
# RECORD SCHEMA
# =============================================================================

class Leaf:
    """Terminal field; the whole value is replaced."""

    def child(self, segment: str):
        return None


class Open:
    """Free-form map (checklists, CUDYR scores, device details)."""

    def child(self, segment: str):
        return self


class Struct:
    """Map with a fixed set of keys."""

    def __init__(self, fields: Mapping[str, Any]):
        self.fields = dict(fields)

    def child(self, segment: str):
        return self.fields.get(segment)


class MapOf:
    """Map keyed by arbitrary identifiers (bed ids) with a uniform value schema."""

    def __init__(self, value_schema):
        self.value_schema = value_schema

    def child(self, segment: str):
        return self.value_schema


LEAF = Leaf()
OPEN = Open()

_PATIENT_NESTED = {"cudyr": OPEN, "deviceDetails": OPEN}

CRIB_SCHEMA = Struct({
    name: _PATIENT_NESTED.get(name, LEAF)
    for name in PATIENT_FIELDS if name != "clinicalCrib"
})

PATIENT_SCHEMA = Struct({
    **{name: _PATIENT_NESTED.get(name, LEAF) for name in PATIENT_FIELDS},
    "clinicalCrib": CRIB_SCHEMA,
})

RECORD_LEAF_FIELDS = (
    "lastUpdated",
    "nurses",
    "nurseName",
    "nursesDayShift",
    "nursesNightShift",
    "tensDayShift",
    "tensNightShift",
    "activeExtraBeds",
    "discharges",
    "transfers",
    "cma",
    "handoffNovedadesDayShift",
    "handoffNovedadesNightShift",
    "medicalHandoffNovedades",
    "medicalHandoffDoctor",
    "medicalHandoffSentAt",
    "handoffDayDelivers",
    "handoffDayReceives",
    "handoffNightDelivers",
    "handoffNightReceives",
)

RECORD_SCHEMA = Struct({
    **{name: LEAF for name in RECORD_LEAF_FIELDS},
    "beds": MapOf(PATIENT_SCHEMA),
    "handoffDayChecklist": OPEN,
    "handoffNightChecklist": OPEN,
    "medicalSignature": OPEN,
})

# Set once at creation, never patched
IMMUTABLE_FIELDS = frozenset({"date"})

_JSON_SCALARS = (str, int, float, bool, type(None))


# =============================================================================
# FIELD PATH
# =============================================================================

@dataclass(frozen=True)
class FieldPath:
    """A validated path into a daily record."""
    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, path: str, schema: Struct = RECORD_SCHEMA) -> "FieldPath":
        """
        Parse and validate a dotted path.

        Raises:
            InvalidPathError: empty segments, unknown fields, or descent into
                a leaf (including array indexes).
        """
        if not isinstance(path, str) or not path:
            raise InvalidPathError("Patch path must be a non-empty string", path=str(path))

        segments = tuple(path.split("."))
        if any(not s or s.strip() != s for s in segments):
            raise InvalidPathError(f"Malformed patch path '{path}'", path=path, reason="empty segment")

        if segments[0] in IMMUTABLE_FIELDS:
            raise InvalidPathError(
                f"Field '{segments[0]}' cannot be patched", path=path, reason="immutable field"
            )

        node = schema
        for depth, segment in enumerate(segments):
            next_node = node.child(segment)
            if next_node is None:
                if isinstance(node, Leaf):
                    reason = f"'{'.'.join(segments[:depth])}' is a leaf field"
                else:
                    reason = f"unknown field '{segment}'"
                raise InvalidPathError(f"Invalid patch path '{path}': {reason}", path=path, reason=reason)
            node = next_node

        return cls(segments)

    @property
    def dotted(self) -> str:
        return ".".join(self.segments)

    def overlaps(self, other: "FieldPath") -> bool:
        """True if one path is a prefix of (or equal to) the other."""
        shortest = min(len(self.segments), len(other.segments))
        return self.segments[:shortest] == other.segments[:shortest]

    def __str__(self) -> str:
        return self.dotted


CompiledPatch = Dict[FieldPath, Any]
PatchLike = Union[Mapping[str, Any], CompiledPatch]


def _check_value(path: str, value: Any) -> None:
    if isinstance(value, _JSON_SCALARS):
        return
    if isinstance(value, (list, tuple)):
        for item in value:
            _check_value(path, item)
        return
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidPathError(
                    f"Non-string key in value for '{path}'", path=path, reason="non-string key"
                )
            _check_value(path, item)
        return
    raise InvalidPathError(
        f"Unsupported value type {type(value).__name__} for '{path}'",
        path=path,
        reason="value is not JSON-compatible",
    )


def _to_json(value: Any) -> Any:
    if isinstance(value, tuple):
        value = list(value)
    if isinstance(value, list):
        return [_to_json(v) for v in value]
    if isinstance(value, Mapping):
        return {k: _to_json(v) for k, v in value.items()}
    return value


def compile_patch(path_map: PatchLike) -> CompiledPatch:
    """
    Validate every path of a patch and return an ordered FieldPath map.

    The whole patch is rejected if any path is invalid or if two paths
    overlap. Values are deep-copied so later caller mutations cannot leak
    into the record.
    """
    if not isinstance(path_map, Mapping):
        raise InvalidPathError("Patch must be a mapping of paths to values")

    compiled: CompiledPatch = {}
    for raw_path, value in path_map.items():
        path = raw_path if isinstance(raw_path, FieldPath) else FieldPath.parse(raw_path)
        for existing in compiled:
            if existing.overlaps(path):
                raise InvalidPathError(
                    f"Patch paths '{existing}' and '{path}' overlap",
                    path=path.dotted,
                    reason="overlapping paths",
                )
        _check_value(path.dotted, value)
        compiled[path] = copy.deepcopy(_to_json(value))
    return compiled


def apply_patch(record: Record, path_map: PatchLike) -> Record:
    """
    Deep-merge a patch into ``record`` in place and return it.

    Only the named leaves are replaced; missing or non-map intermediates
    become empty maps.
    """
    compiled = compile_patch(path_map)
    for path, value in compiled.items():
        target = record
        for segment in path.segments[:-1]:
            child = target.get(segment)
            if not isinstance(child, dict):
                child = {}
                target[segment] = child
            target = child
        target[path.segments[-1]] = copy.deepcopy(value)
    return record


def to_remote_update(path_map: PatchLike) -> List[Dict[str, Any]]:
    """
    Encode a patch as the ordered ``[{"path": [...], "value": ...}]`` list
    consumed by the remote patch function.
    """
    return [
        {"path": list(path.segments), "value": value}
        for path, value in compile_patch(path_map).items()
    ]


def from_remote_update(update: List[Mapping[str, Any]]) -> CompiledPatch:
    """Decode a ``to_remote_update`` payload back into a validated patch."""
    path_map: Dict[str, Any] = {}
    for item in update:
        segments = item.get("path") if isinstance(item, Mapping) else None
        if not isinstance(segments, (list, tuple)) or not segments:
            raise InvalidPathError("Remote update item without a path", reason="missing path")
        path_map[".".join(segments)] = item.get("value")
    return compile_patch(path_map)
