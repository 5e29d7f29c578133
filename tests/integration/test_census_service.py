# =============================================================================
# tests/integration/test_census_service.py
# Integration Tests: census operations with audit emission
# =============================================================================

import pytest

from conftest import PREVIOUS_DATE, SAMPLE_DATE


@pytest.fixture
def make_service(make_coordinator, server, settings, session_state, clock):
    """Loaded CensusService on its own station"""
    from census_core.audit.recorder import AuditRecorder
    from census_core.services import CensusService

    async def _make(record=None, date=SAMPLE_DATE, client_id="station-a", session=None):
        if record is not None:
            server.seed(date, record)
        coordinator = make_coordinator(client_id)
        recorder = AuditRecorder(
            coordinator.local_cache,
            coordinator.remote,
            settings,
            session if session is not None else session_state,
            clock,
        )
        coordinator.load(date)
        await coordinator.wait_until_loaded()
        return CensusService(coordinator, recorder, clock=clock)

    return _make


def build_service(store, make_cache, settings, session_state, clock, client_id="station-a"):
    """CensusService on a dedicated store, not yet loaded"""
    from census_core.audit.recorder import AuditRecorder
    from census_core.offline.sync_coordinator import SyncCoordinator
    from census_core.services import CensusService

    remote = store.client(client_id)
    coordinator = SyncCoordinator(make_cache(client_id), remote, settings, clock=clock)
    recorder = AuditRecorder(coordinator.local_cache, remote, settings, session_state, clock)
    return CensusService(coordinator, recorder, clock=clock)


def audit_actions(service, date=SAMPLE_DATE):
    return [e.action.value for e in reversed(service.recorder.local_cache.get_audit_logs_for_date(date))]


class TestAdmissionAndEdits:
    """Test patient edits and their audit entries"""

    @pytest.mark.asyncio
    async def test_admission_audited_once(self, make_service, sample_record, server):
        service = await make_service(sample_record)

        await service.update_patient("R1", "patientName", "New Admission")

        entries = service.recorder.local_cache.get_audit_logs_for_date(SAMPLE_DATE)
        assert len(entries) == 1
        entry = entries[0]
        assert entry.action.value == "PATIENT_ADMITTED"
        assert entry.details["bedId"] == "R1"
        assert entry.details["patientName"] == "New Admission"
        assert entry.record_date == SAMPLE_DATE
        assert service.coordinator.record["beds"]["R1"]["patientName"] == "New Admission"
        assert server.documents[SAMPLE_DATE]["beds"]["R1"]["patientName"] == "New Admission"

    @pytest.mark.asyncio
    async def test_demographic_change_recorded_with_old_and_new(self, make_service, occupied_record):
        service = await make_service(occupied_record)

        await service.update_patient_fields("R1", {"age": "55", "bedMode": "Cuna"})

        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.action.value == "PATIENT_MODIFIED"
        assert entry.details["changes"] == {"age": {"old": "54", "new": "55"}}
        assert entry.patient_identifier == "12.345.***-*"
        assert entry.attributed_authors == ("Ana Soto", "Luis Rojas", "Carla Díaz")

    @pytest.mark.asyncio
    async def test_rut_change_recorded_masked(self, make_service, occupied_record, server):
        service = await make_service(occupied_record)

        await service.update_patient("R1", "rut", "9.876.543-2")

        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.details["changes"] == {"rut": {"old": "12.345.***-*", "new": "9.876.***-*"}}
        assert entry.patient_identifier == "9.876.***-*"
        assert "12.345.678-9" not in str(server.audit_archive)
        assert "9.876.543-2" not in str(server.audit_archive)

    @pytest.mark.asyncio
    async def test_future_admission_date_rejected(self, make_service, sample_record):
        from census_core.errors import ValidationError

        service = await make_service(sample_record)

        with pytest.raises(ValidationError):
            await service.update_patient("R1", "admissionDate", "2024-05-02")

        assert service.coordinator.record["beds"]["R1"]["admissionDate"] == ""
        assert audit_actions(service) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bed_id,field", [("Z9", "patientName"), ("R1", "cudyr"), ("R1", "madeUp")])
    async def test_invalid_targets_rejected(self, make_service, sample_record, bed_id, field):
        from census_core.errors import ValidationError

        service = await make_service(sample_record)

        with pytest.raises(ValidationError):
            await service.update_patient(bed_id, field, "x")

    @pytest.mark.asyncio
    async def test_audit_recorded_even_when_remote_write_fails(self, make_service, sample_record, server):
        from census_core.errors import NetworkError

        service = await make_service(sample_record)
        server.fail_next_writes(1)

        with pytest.raises(NetworkError):
            await service.update_patient("R2", "patientName", "Offline Admission")

        assert audit_actions(service) == ["PATIENT_ADMITTED"]
        assert service.coordinator.record["beds"]["R2"]["patientName"] == "Offline Admission"

    @pytest.mark.asyncio
    async def test_remote_audit_failure_does_not_block_edit(self, make_service, sample_record, server):
        service = await make_service(sample_record)
        server.fail_next_audit_writes(1)

        await service.update_patient("R1", "patientName", "Ana")

        assert server.documents[SAMPLE_DATE]["beds"]["R1"]["patientName"] == "Ana"
        assert audit_actions(service) == ["PATIENT_ADMITTED"]
        assert server.audit_archive == []

    @pytest.mark.asyncio
    async def test_devices_and_cudyr(self, make_service, occupied_record):
        service = await make_service(occupied_record)

        await service.update_devices("R1", ["VVP", "CUP", "CUP", " "])
        await service.update_cudyr("R1", "mobility", 3)
        await service.update_cudyr("R1", "risk", 1)

        patient = service.coordinator.record["beds"]["R1"]
        assert patient["devices"] == ["VVP", "CUP"]
        assert patient["cudyr"] == {"dependency": 2, "mobility": 3, "risk": 1}
        assert audit_actions(service) == ["DEVICES_MODIFIED", "CUDYR_MODIFIED"]
        devices_entry = service.recorder.local_cache.get_audit_logs()[1]
        assert devices_entry.details["added"] == ["CUP"]

    @pytest.mark.asyncio
    async def test_clinical_crib(self, make_service, occupied_record):
        from census_core.errors import ValidationError

        service = await make_service(occupied_record)

        with pytest.raises(ValidationError):
            await service.update_clinical_crib("R1", "patientName", "RN Pérez")

        await service.create_clinical_crib("R1")
        await service.update_clinical_crib("R1", "patientName", "RN Pérez")

        crib = service.coordinator.record["beds"]["R1"]["clinicalCrib"]
        assert crib["patientName"] == "RN Pérez"
        assert crib["bedMode"] == "Cuna"
        assert "clinicalCrib" not in crib
        assert audit_actions(service) == ["PATIENT_ADMITTED"]

        await service.remove_clinical_crib("R1")
        assert service.coordinator.record["beds"]["R1"].get("clinicalCrib") is None


class TestBedOperations:

    @pytest.mark.asyncio
    async def test_toggle_extra_bed_twice_is_identity(self, make_service, sample_record):
        service = await make_service(sample_record)
        before = service.coordinator.record

        await service.toggle_extra_bed("E2")
        assert service.coordinator.record["activeExtraBeds"] == ["E2"]
        await service.toggle_extra_bed("E2")

        after = service.coordinator.record
        assert after["activeExtraBeds"] == before["activeExtraBeds"] == []
        assert after["beds"] == before["beds"]
        assert audit_actions(service) == ["EXTRA_BED_TOGGLED", "EXTRA_BED_TOGGLED"]

    @pytest.mark.asyncio
    async def test_only_extra_beds_toggle(self, make_service, sample_record):
        from census_core.errors import ValidationError

        service = await make_service(sample_record)

        with pytest.raises(ValidationError):
            await service.toggle_extra_bed("R1")

    @pytest.mark.asyncio
    async def test_block_and_unblock(self, make_service, occupied_record):
        from census_core.errors import ValidationError

        service = await make_service(occupied_record)

        with pytest.raises(ValidationError):
            await service.toggle_block_bed("R1", "Maintenance")

        await service.toggle_block_bed("R4", "  Maintenance ")
        assert service.coordinator.record["beds"]["R4"]["blockedReason"] == "Maintenance"
        await service.toggle_block_bed("R4")

        assert service.coordinator.record["beds"]["R4"]["isBlocked"] is False
        assert audit_actions(service) == ["BED_BLOCKED", "BED_UNBLOCKED"]

    @pytest.mark.asyncio
    async def test_move_and_copy(self, make_service, occupied_record):
        from census_core.errors import ValidationError

        service = await make_service(occupied_record)

        await service.move_or_copy_patient("move", "R1", "R2")
        beds = service.coordinator.record["beds"]
        assert beds["R2"]["patientName"] == "Juan Pérez"
        assert beds["R2"]["bedId"] == "R2"
        assert beds["R1"]["patientName"] == ""

        await service.move_or_copy_patient("copy", "R2", "R3")
        beds = service.coordinator.record["beds"]
        assert beds["R2"]["patientName"] == beds["R3"]["patientName"] == "Juan Pérez"

        with pytest.raises(ValidationError):
            await service.move_or_copy_patient("move", "R1", "R4")
        with pytest.raises(ValidationError):
            await service.move_or_copy_patient("move", "R2", "R3")

    @pytest.mark.asyncio
    async def test_discharge_frees_bed(self, make_service, occupied_record, server):
        service = await make_service(occupied_record)

        await service.add_discharge("R1", status="Vivo")

        record = service.coordinator.record
        assert record["beds"]["R1"]["patientName"] == ""
        assert record["discharges"][0]["patientName"] == "Juan Pérez"
        assert record["discharges"][0]["originalData"]["rut"] == "12.345.678-9"
        assert server.documents[SAMPLE_DATE]["discharges"][0]["status"] == "Vivo"
        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.action.value == "PATIENT_DISCHARGED"
        assert entry.entity_type == "discharge"
        assert entry.patient_identifier == "12.345.***-*"

    @pytest.mark.asyncio
    async def test_transfer_and_clear(self, make_service, occupied_record):
        from census_core.errors import ValidationError

        occupied_record["beds"]["R2"]["patientName"] = "María Soto"
        service = await make_service(occupied_record)

        with pytest.raises(ValidationError):
            await service.add_transfer("R1", "   ")
        await service.add_transfer("R1", "Hospital del Salvador")
        await service.clear_patient("R2")
        await service.clear_patient("R3")

        record = service.coordinator.record
        assert record["transfers"][0]["receivingCenter"] == "Hospital del Salvador"
        assert record["beds"]["R2"]["patientName"] == ""
        assert audit_actions(service) == ["PATIENT_TRANSFERRED", "PATIENT_CLEARED"]


class TestHandoff:

    @pytest.mark.asyncio
    async def test_day_note_seeds_night_note(self, make_service, occupied_record):
        service = await make_service(occupied_record)

        await service.update_handoff_staff("day", "delivers", ["Ana Soto", " "])
        await service.update_handoff_note("R1", "Afebrile", shift="day")
        await service.update_handoff_note("R1", "Slept well", shift="night")

        record = service.coordinator.record
        assert record["handoffDayDelivers"] == ["Ana Soto"]
        assert record["beds"]["R1"]["handoffNoteDayShift"] == "Afebrile"
        assert record["beds"]["R1"]["handoffNoteNightShift"] == "Slept well"
        entry = service.recorder.local_cache.get_audit_logs()[1]
        assert entry.action.value == "NURSE_HANDOFF_MODIFIED"
        assert entry.attributed_authors == ("Ana Soto",)

    @pytest.mark.asyncio
    async def test_checklist_and_novedades(self, make_service, sample_record):
        service = await make_service(sample_record)

        await service.update_handoff_checklist("night", "medsChecked", True)
        await service.update_handoff_novedades("medical", "Lab results pending")
        await service.update_handoff_novedades("medical", "Lab results pending")

        record = service.coordinator.record
        assert record["handoffNightChecklist"] == {"medsChecked": True}
        assert record["medicalHandoffNovedades"] == "Lab results pending"
        assert audit_actions(service) == ["HANDOFF_NOVEDADES_MODIFIED"]

    @pytest.mark.asyncio
    async def test_medical_signature(self, make_service, occupied_record):
        service = await make_service(occupied_record)

        await service.sign_medical_handoff("Dr. Vera")

        record = service.coordinator.record
        assert record["medicalHandoffDoctor"] == "Dr. Vera"
        assert record["medicalSignature"]["signedAt"] == "2024-05-01T10:00:00.000Z"
        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.action.value == "MEDICAL_HANDOFF_SIGNED"
        assert entry.attributed_authors == ("Dr. Vera",)


class TestViews:

    @pytest.mark.asyncio
    async def test_excluded_identity_views_not_recorded(self, make_service, occupied_record, server):
        from census_core.state.session import CURRENT_USER_KEY, init_state

        session = init_state({})
        session[CURRENT_USER_KEY] = "it-support@hospital.cl"
        service = await make_service(occupied_record, session=session)

        assert await service.view_patient("R1") is None
        assert await service.view_cudyr() is None
        await service.update_patient("R1", "age", "60")

        assert audit_actions(service) == ["PATIENT_MODIFIED"]
        assert [r["action"] for r in server.audit_archive] == ["PATIENT_MODIFIED"]

    @pytest.mark.asyncio
    async def test_views_recorded_and_throttled(self, make_service, occupied_record, server):
        service = await make_service(occupied_record)

        patient_view = await service.view_patient("R1")
        empty_bed = await service.view_patient("R2")
        first = await service.view_handoff("nursing", "day")
        second = await service.view_handoff("nursing", "night")
        medical = await service.view_handoff("medical")

        assert patient_view.patient_identifier == "12.345.***-*"
        assert empty_bed is None
        assert first.entity_type == "dailyRecord"
        assert second is None
        assert medical.action.value == "VIEW_MEDICAL_HANDOFF"
        archived = [r["id"] for r in server.audit_archive]
        assert archived == [patient_view.id, first.id, medical.id]
        assert [e.id for e in reversed(service.recorder.local_cache.get_audit_logs())] == archived


class TestDayLifecycle:

    @pytest.mark.asyncio
    async def test_create_day_from_previous(self, make_service, occupied_record, server):
        service = await make_service(date=SAMPLE_DATE)
        previous = dict(occupied_record, date=PREVIOUS_DATE)
        service.coordinator.local_cache.save_record(previous)

        record = await service.create_day(copy_from=PREVIOUS_DATE)

        assert record["date"] == SAMPLE_DATE
        assert record["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert record["beds"]["R1"]["cudyr"] is None
        assert server.documents[SAMPLE_DATE]["beds"]["R1"]["patientName"] == "Juan Pérez"
        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.action.value == "RECORD_CREATE"
        assert entry.details == {"copiedFrom": PREVIOUS_DATE}


    @pytest.mark.asyncio
    async def test_create_day_during_load_keeps_remote_record(
        self, make_cache, settings, session_state, clock, occupied_record
    ):
        """Creating while the first read is in flight adopts the remote day"""
        from census_core.remote.memory import InMemoryRemoteStore

        store = InMemoryRemoteStore(read_latency=0.1)
        store.seed(SAMPLE_DATE, occupied_record)
        service = build_service(store, make_cache, settings, session_state, clock)
        service.coordinator.load(SAMPLE_DATE)

        record = await service.create_day()

        assert record["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert store.documents[SAMPLE_DATE]["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert store.commit_log == []
        assert audit_actions(service) == []
        await service.coordinator.close()

    @pytest.mark.asyncio
    async def test_create_day_refused_while_remote_unknown(self, make_cache, settings, session_state, clock):
        """A timed-out first read must not turn into a blind full write"""
        from census_core.errors import NetworkError
        from census_core.remote.memory import InMemoryRemoteStore

        store = InMemoryRemoteStore(read_latency=0.3)
        service = build_service(
            store, make_cache, settings.with_overrides(reconcile_timeout=0.05), session_state, clock
        )
        service.coordinator.load(SAMPLE_DATE)

        with pytest.raises(NetworkError):
            await service.create_day()

        assert service.coordinator.record is None
        assert SAMPLE_DATE not in store.documents
        assert store.commit_log == []
        await service.coordinator.close()

    @pytest.mark.asyncio
    async def test_create_day_adopts_record_created_elsewhere(self, make_service, occupied_record, server):
        """Another station created the day after this one finished loading"""
        service = await make_service()
        assert service.coordinator.record is None
        server.seed(SAMPLE_DATE, occupied_record)

        record = await service.create_day()

        assert record["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert service.coordinator.local_cache.get_record(SAMPLE_DATE)["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert server.commit_log == []

    @pytest.mark.asyncio
    async def test_create_day_copies_latest_previous_day(self, make_service, occupied_record):
        service = await make_service()
        cache = service.coordinator.local_cache
        cache.save_record(dict(occupied_record, date="2024-04-20"))
        cache.save_record(dict(occupied_record, date=PREVIOUS_DATE, nursesNightShift=["Marta Vera", ""]))

        record = await service.create_day(copy_previous=True)

        assert record["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert record["nursesDayShift"] == ["Marta Vera", ""]
        entry = service.recorder.local_cache.get_audit_logs()[0]
        assert entry.details == {"copiedFrom": PREVIOUS_DATE}
    @pytest.mark.asyncio
    async def test_create_day_is_idempotent(self, make_service, occupied_record):
        service = await make_service(occupied_record)

        record = await service.create_day()

        assert record["beds"]["R1"]["patientName"] == "Juan Pérez"
        assert audit_actions(service) == []

    @pytest.mark.asyncio
    async def test_reset_day(self, make_service, sample_record, server):
        service = await make_service(sample_record)

        await service.reset_day()

        assert service.coordinator.record is None
        assert SAMPLE_DATE not in server.documents
        assert audit_actions(service) == ["RECORD_DELETE"]

    @pytest.mark.asyncio
    async def test_edit_before_load_rejected(self, make_service):
        from census_core.errors import RecordNotLoadedError

        service = await make_service(date="2024-06-01")

        with pytest.raises(RecordNotLoadedError):
            await service.update_patient("R1", "patientName", "Ana")


class TestOpenCensus:
    """Test wiring a service from settings"""

    @pytest.mark.asyncio
    async def test_open_census_from_settings(self, settings, session_state):
        from census_core.remote.memory import InMemoryRemoteClient
        from census_core.services import open_census

        service = await open_census(settings.with_overrides(audit_cache_limit=2), session_state, client_id="ward-pc")

        assert service.coordinator.local_cache.db_path == settings.cache_path
        assert isinstance(service.coordinator.remote, InMemoryRemoteClient)

        service.coordinator.load(SAMPLE_DATE)
        await service.create_day()
        for bed_id in ("R1", "R2", "R3"):
            await service.update_patient(bed_id, "patientName", f"Paciente {bed_id}")

        assert service.coordinator.local_cache.count_audit_logs() == 2
        await service.coordinator.close()
        service.coordinator.local_cache.close()
