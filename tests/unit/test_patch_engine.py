# =============================================================================
# tests/unit/test_patch_engine.py
# Unit Tests for Field-Path Patches
# =============================================================================

import pytest


class TestFieldPathParsing:
    """Test path validation against the record schema"""

    def test_parse_nested_patient_field(self):
        """Bed paths accept any bed id and known patient fields"""
        from census_core.offline.patch_engine import FieldPath

        path = FieldPath.parse("beds.H2C1.patientName")

        assert path.segments == ("beds", "H2C1", "patientName")
        assert path.dotted == "beds.H2C1.patientName"

    def test_open_maps_accept_free_keys(self):
        """CUDYR scores and checklists are free-form maps"""
        from census_core.offline.patch_engine import FieldPath

        assert FieldPath.parse("beds.R1.cudyr.mobility").segments[-1] == "mobility"
        assert FieldPath.parse("handoffDayChecklist.medsChecked").dotted == "handoffDayChecklist.medsChecked"

    @pytest.mark.parametrize("path", [
        "",
        "beds..patientName",
        "beds.R1.unknownField",
        "beds.R1.patientName.first",
        "discharges.0",
        "beds.R1.clinicalCrib.clinicalCrib.patientName",
        "notAField",
    ])
    def test_invalid_paths_rejected(self, path):
        """Malformed, unknown, leaf-descending and too-deep paths fail"""
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import FieldPath

        with pytest.raises(InvalidPathError):
            FieldPath.parse(path)

    def test_date_is_immutable(self):
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import FieldPath

        with pytest.raises(InvalidPathError) as exc_info:
            FieldPath.parse("date")

        assert exc_info.value.code == "PATCH_001"
        assert exc_info.value.details["reason"] == "immutable field"

    def test_overlap_detection(self):
        from census_core.offline.patch_engine import FieldPath

        bed = FieldPath.parse("beds.R1")
        name = FieldPath.parse("beds.R1.patientName")
        other = FieldPath.parse("beds.R2.patientName")

        assert bed.overlaps(name)
        assert name.overlaps(bed)
        assert not name.overlaps(other)


class TestCompilePatch:
    """Test whole-patch validation"""

    def test_overlapping_paths_rejected(self):
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import compile_patch

        with pytest.raises(InvalidPathError):
            compile_patch({"beds.R1": {"patientName": "A"}, "beds.R1.patientName": "B"})

    @pytest.mark.parametrize("value", [object(), {1, 2}, {"nested": {"k": object()}}])
    def test_non_json_values_rejected(self, value):
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import compile_patch

        with pytest.raises(InvalidPathError):
            compile_patch({"beds.R1.deviceDetails": value})

    def test_values_are_copied(self):
        """Mutating the caller's value after compiling does not leak"""
        from census_core.offline.patch_engine import compile_patch

        devices = ["VVP"]
        compiled = compile_patch({"beds.R1.devices": devices})
        devices.append("CUP")

        assert list(compiled.values()) == [["VVP"]]

    def test_non_mapping_rejected(self):
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import compile_patch

        with pytest.raises(InvalidPathError):
            compile_patch([("beds.R1.patientName", "A")])


class TestApplyPatch:
    """Test the in-memory deep merge"""

    def test_only_named_leaf_replaced(self, occupied_record):
        from census_core.offline.patch_engine import apply_patch

        apply_patch(occupied_record, {"beds.R1.age": "55"})

        patient = occupied_record["beds"]["R1"]
        assert patient["age"] == "55"
        assert patient["patientName"] == "Juan Pérez"
        assert patient["devices"] == ["VVP"]

    def test_missing_intermediates_created(self):
        from census_core.offline.patch_engine import apply_patch

        record = {"date": "2024-05-01", "beds": {}}
        apply_patch(record, {"beds.R3.cudyr.mobility": 2})

        assert record["beds"]["R3"] == {"cudyr": {"mobility": 2}}

    def test_null_intermediate_becomes_map(self, sample_record):
        """A null CUDYR map is replaced by a map holding the new score"""
        from census_core.offline.patch_engine import apply_patch

        assert sample_record["beds"]["R2"]["cudyr"] is None
        apply_patch(sample_record, {"beds.R2.cudyr.risk": 1})

        assert sample_record["beds"]["R2"]["cudyr"] == {"risk": 1}

    def test_arrays_replaced_wholesale(self, occupied_record):
        from census_core.offline.patch_engine import apply_patch

        apply_patch(occupied_record, {"beds.R1.devices": ["CUP"]})

        assert occupied_record["beds"]["R1"]["devices"] == ["CUP"]

    def test_invalid_patch_leaves_record_untouched(self, occupied_record):
        """A single bad path rejects the whole patch before any write"""
        import copy
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import apply_patch

        before = copy.deepcopy(occupied_record)
        with pytest.raises(InvalidPathError):
            apply_patch(occupied_record, {"beds.R1.age": "60", "beds.R1.bogus": 1})

        assert occupied_record == before


class TestRemoteUpdateEncoding:
    """Test the encoding sent to the remote patch function"""

    def test_encoding_keeps_order_and_segments(self):
        from census_core.offline.patch_engine import from_remote_update, to_remote_update

        update = to_remote_update({
            "beds.R1.patientName": "Ana",
            "activeExtraBeds": ("E1",),
        })

        assert update == [
            {"path": ["beds", "R1", "patientName"], "value": "Ana"},
            {"path": ["activeExtraBeds"], "value": ["E1"]},
        ]
        decoded = from_remote_update(update)
        assert [p.dotted for p in decoded] == ["beds.R1.patientName", "activeExtraBeds"]

    def test_decoding_rejects_missing_path(self):
        from census_core.errors import InvalidPathError
        from census_core.offline.patch_engine import from_remote_update

        with pytest.raises(InvalidPathError):
            from_remote_update([{"value": 1}])
