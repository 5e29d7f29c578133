# =============================================================================
# census_core/services/export_service.py
# Read-Only Snapshots for Exporters
# =============================================================================
"""
ExportService - hands cached records to the Excel/CSV exporters.

Records are taken from the local cache (never from the live coordinator) and
returned deeply read-only, so an exporter cannot mutate what the census
screens are editing.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from census_core.models.records import DEFAULT_BEDS, BedDefinition, Record, bed_index, is_occupied, normalize_record
from census_core.offline.local_cache import LocalCache
from census_core.utils.dates import is_valid_record_date
from .base_service import BaseService, ServiceResult

CENSUS_COLUMNS = [
    "date", "bedId", "bedName", "bedType", "isCrib", "patientName", "rut",
    "age", "pathology", "specialty", "status", "admissionDate", "isUPC", "devices",
]


def freeze(value: Any) -> Any:
    """Recursively turn dicts into MappingProxyType and lists into tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


class ExportService(BaseService):
    """Collect frozen record snapshots and flatten them for export."""

    def __init__(self, local_cache: LocalCache, beds: Iterable[BedDefinition] = DEFAULT_BEDS):
        super().__init__()
        self.local_cache = local_cache
        self.beds = tuple(beds)
        self._beds_by_id = bed_index(self.beds)

    def collect_snapshots(self, dates: Iterable[str]) -> Tuple[Mapping[str, Any], ...]:
        """
        Read-only copies of the cached records for ``dates``, sorted by date.

        Dates without a cached record (or malformed dates) are skipped.
        """
        records = []
        for date in sorted(set(dates)):
            if not is_valid_record_date(date):
                self.logger.warning(f"Skipping invalid export date: {date!r}")
                continue
            record = normalize_record(self.local_cache.get_record(date), date)
            if record is not None:
                records.append(freeze(record))
        self.logger.info(f"Collected {len(records)} record(s) for export")
        return tuple(records)

    def _row(self, date: str, bed_id: str, patient: Mapping[str, Any], is_crib: bool) -> dict:
        bed = self._beds_by_id.get(bed_id)
        return {
            "date": date,
            "bedId": bed_id,
            "bedName": bed.name if bed else bed_id,
            "bedType": bed.bed_type if bed else "",
            "isCrib": is_crib,
            "patientName": patient.get("patientName", ""),
            "rut": patient.get("rut", ""),
            "age": patient.get("age", ""),
            "pathology": patient.get("pathology", ""),
            "specialty": patient.get("specialty", ""),
            "status": patient.get("status", ""),
            "admissionDate": patient.get("admissionDate", ""),
            "isUPC": bool(patient.get("isUPC")),
            "devices": ", ".join(patient.get("devices") or ()),
        }

    def census_frame(self, records: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
        """One row per occupied bed (and occupied companion crib), in catalog order."""
        order = {bed.id: i for i, bed in enumerate(self.beds)}
        rows: List[dict] = []
        for record in records:
            beds = record.get("beds") or {}
            for bed_id in sorted(beds, key=lambda b: (order.get(b, len(order)), b)):
                patient = beds[bed_id]
                if is_occupied(patient):
                    rows.append(self._row(record["date"], bed_id, patient, False))
                crib = patient.get("clinicalCrib")
                if crib and is_occupied(crib):
                    rows.append(self._row(record["date"], bed_id, crib, True))
        return pd.DataFrame(rows, columns=CENSUS_COLUMNS)

    def export_census(self, dates: Iterable[str]) -> ServiceResult:
        """Snapshots plus flattened frame, wrapped for the export page."""
        def _build():
            snapshots = self.collect_snapshots(dates)
            return self.census_frame(snapshots)

        result = self.safe_execute("Building census export", _build)
        if result.success:
            result.metadata = {"rows": len(result.data)}
        return result
