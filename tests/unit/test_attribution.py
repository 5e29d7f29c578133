# =============================================================================
# tests/unit/test_attribution.py
# Unit Tests for Shared-Login Attribution
# =============================================================================

import pytest


class TestShiftAttribution:
    """Nursing actions are attributed to the shift's handoff staff"""

    def test_delivers_then_receives_deduplicated(self):
        from census_core.audit.attribution import get_attributed_authors

        record = {
            "handoffDayDelivers": ["Ana Soto", " luis  rojas "],
            "handoffDayReceives": ["ANA SOTO", "Carla Díaz"],
            "nursesDayShift": ["Someone Else", ""],
        }

        authors = get_attributed_authors("station@hospital.cl", record, "day")

        assert authors == ["Ana Soto", "luis rojas", "Carla Díaz"]

    def test_falls_back_to_shift_nurses(self):
        from census_core.audit.attribution import get_attributed_authors

        record = {"handoffNightDelivers": ["", "  "], "nursesNightShift": ["Carla Díaz", ""]}

        assert get_attributed_authors("station", record, "night") == ["Carla Díaz"]

    def test_invalid_shift_rejected(self):
        from census_core.audit.attribution import get_attributed_authors
        from census_core.errors import ValidationError

        with pytest.raises(ValidationError):
            get_attributed_authors("station", {}, "evening")


class TestMedicalAttribution:
    """Without a shift the doctor is preferred, then the nurses on duty"""

    def test_handoff_doctor_then_signature(self):
        from census_core.audit.attribution import get_attributed_authors

        record = {
            "medicalHandoffDoctor": "Dr. Vera",
            "medicalSignature": {"doctorName": "Dr. Pino", "signedAt": "2024-05-01T12:00:00.000Z"},
            "nursesDayShift": ["Ana Soto"],
        }

        assert get_attributed_authors("station", record) == ["Dr. Vera", "Dr. Pino"]

    def test_nurses_when_no_doctor(self, occupied_record):
        from census_core.audit.attribution import get_attributed_authors

        authors = get_attributed_authors("station", occupied_record)

        assert authors == ["Ana Soto", "Luis Rojas", "Carla Díaz"]

    @pytest.mark.parametrize("record", [None, {}, {"nursesDayShift": ["", ""]}])
    def test_falls_back_to_user(self, record):
        from census_core.audit.attribution import get_attributed_authors

        assert get_attributed_authors("station@hospital.cl", record) == ["station@hospital.cl"]

    def test_deterministic(self, occupied_record):
        from census_core.audit.attribution import get_attributed_authors

        first = get_attributed_authors("station", occupied_record, "day")
        second = get_attributed_authors("station", occupied_record, "day")

        assert first == second == ["Ana Soto", "Luis Rojas"]
