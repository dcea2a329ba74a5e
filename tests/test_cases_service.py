"""Tests for case ingestion, entity helpers and discharge call scheduling."""

from datetime import timedelta
from unittest.mock import Mock, patch
from uuid import UUID, uuid4

import pytest

from vetdesk.core.clock import as_utc, utcnow
from vetdesk.core.config import settings
from vetdesk.core.exceptions import NotFoundError
from vetdesk.models import CallStatus, Case, Patient, ScheduledDischargeCall, SoapNote
from vetdesk.services.call_executor import execute_scheduled_call
from vetdesk.services.cases_service import (
    CasesService,
    build_dynamic_variables,
    determine_scheduled_time,
    enrich_entities_with_patient,
    extract_first_name,
    is_entities_incomplete,
    map_idexx_to_entities,
)


class TestEntityHelpers:

    def test_map_idexx(self):
        entities = map_idexx_to_entities({
            "pet_name": "Milo",
            "species": "Cat",
            "client_first_name": "Ana",
            "client_last_name": "Lopez",
            "mobile_number": "3105550199",
        })
        assert entities["patient"] == {"name": "Milo", "species": "cat", "breed": None}
        assert entities["owner"]["name"] == "Ana Lopez"
        assert entities["owner"]["phone"] == "3105550199"
        assert entities["confidence"] == {"overall": 0.5}

    def test_map_idexx_unknown_species(self):
        entities = map_idexx_to_entities({"species": "iguana", "owner_name": "Sam"})
        assert entities["patient"]["species"] == "unknown"
        assert entities["patient"]["name"] == "Unknown"
        assert entities["owner"]["name"] == "Sam"

    def test_database_patient_wins(self):
        entities = {"patient": {"name": "bella", "species": "canine"}, "owner": {"phone": None}}
        patient = Patient(name="Bella", species="dog", owner_phone="2135550123")
        enrich_entities_with_patient(entities, patient)
        assert entities["patient"]["name"] == "Bella"
        assert entities["patient"]["species"] == "dog"
        assert entities["owner"]["phone"] == "2135550123"

    @pytest.mark.parametrize("entities,expected", [
        (None, True),
        ({"patient": {"name": "unknown"}, "owner": {"phone": "1"}}, True),
        ({"patient": {"name": "Bella"}, "owner": {}}, True),
        ({"patient": {"name": "Bella"}, "owner": {"phone": "2135550123"}}, False),
    ])
    def test_incomplete_entities(self, entities, expected):
        assert is_entities_incomplete(entities) is expected

    def test_first_name(self):
        assert extract_first_name("  Bella Rose ") == "Bella"
        assert extract_first_name(None) == ""

    def test_dynamic_variables(self):
        entities = {
            "patient": {"name": "Bella Rose", "species": "rabbit", "age": "4 years", "weight": "3.2kg"},
            "owner": {"name": "Jordan Miles"},
            "clinical": {
                "diagnoses": ["otitis"],
                "medications": [{"name": "Otomax", "frequency": "daily"}],
            },
        }
        variables = build_dynamic_variables(
            entities, "Happy Paws", "+12135550100", "+12135550100", "Sarah", None
        )
        assert variables["pet_name"] == "Bella"
        assert variables["pet_species"] == "other"
        assert variables["pet_age"] == 4.0
        assert variables["pet_weight"] == 3.2
        assert variables["medications"] == "Otomax daily"
        assert variables["discharge_summary"].startswith("Diagnoses: otitis.")
        assert "next_steps" not in variables


class TestScheduledTime:

    def test_explicit_future_time(self):
        now = utcnow()
        requested = now + timedelta(hours=3)
        assert determine_scheduled_time(requested, 5, True, now) == requested

    def test_explicit_past_time(self):
        now = utcnow()
        with pytest.raises(ValueError, match="must be in the future"):
            determine_scheduled_time(now - timedelta(minutes=1), None, False, now)

    def test_user_delay_wins(self):
        now = utcnow()
        assert determine_scheduled_time(None, 30, True, now) == now + timedelta(minutes=30)

    def test_test_mode_default(self):
        now = utcnow()
        assert determine_scheduled_time(None, None, True, now) == now + timedelta(minutes=1)

    def test_deployment_default(self):
        now = utcnow()
        assert determine_scheduled_time(None, None, False, now) == now + timedelta(hours=24)


class TestIngest:

    def test_text_ingest(self, db_session, vet_user):
        llm = Mock()
        llm.extract_entities.return_value = {
            "patient": {"name": "Milo", "species": "cat"},
            "owner": {"name": "Ana Lopez", "phone": "3105550199"},
            "caseType": "dental",
        }
        result = CasesService(db_session, llm).ingest(
            vet_user, {"mode": "text", "source": "manual", "text": "Milo dental cleaning"}
        )

        case = db_session.get(Case, UUID(result["caseId"]))
        assert case.type == "dental"
        assert case.patients[0].owner_phone == "3105550199"

    def test_structured_idexx_ingest(self, db_session, vet_user):
        llm = Mock()
        data = {"pet_name": "Milo", "species": "cat", "owner_name": "Ana Lopez", "consultation_notes": "<p>ok</p>"}
        service = CasesService(db_session, llm)
        result = service.ingest(vet_user, {"mode": "structured", "source": "idexx_neo", "data": data})

        info = service.get_case_with_entities(result["caseId"])
        assert info.case.meta == {"idexx": data}
        assert info.patient.name == "Milo"
        assert info.transcriptions == []
        llm.extract_entities.assert_not_called()

    def test_empty_extraction_rejected(self, db_session, vet_user):
        llm = Mock()
        llm.extract_entities.return_value = {}
        with pytest.raises(ValueError):
            CasesService(db_session, llm).ingest(vet_user, {"mode": "text", "source": "manual", "text": "x"})


@pytest.fixture
def call_task():
    with patch("vetdesk.tasks.discharge_tasks.execute_scheduled_call") as task:
        task.apply_async.side_effect = [Mock(id="task-1"), Mock(id="task-2"), Mock(id="task-3")]
        yield task


class TestScheduleDischargeCall:

    def test_creates_and_queues_call(self, db_session, vet_user, case_with_patient, call_task):
        db_session.add(SoapNote(case_id=case_with_patient.id, client_instructions="Recheck in 10 days"))
        db_session.commit()

        call = CasesService(db_session, Mock()).schedule_discharge_call(
            vet_user, case_with_patient.id, clinic_name="Happy Paws", clinic_phone="+12135550100"
        )

        assert call.status == CallStatus.QUEUED
        assert call.customer_phone == "+12135550123"
        assert call.task_id == "task-1"
        assert call.dynamic_variables["next_steps"] == "Recheck in 10 days"
        assert call.dynamic_variables["owner_name"] == "Jordan Miles"
        eta = call_task.apply_async.call_args.kwargs["eta"]
        assert timedelta(hours=23, minutes=59) < eta - utcnow() <= timedelta(hours=24)

    def test_unknown_case(self, db_session, vet_user, call_task):
        with pytest.raises(NotFoundError):
            CasesService(db_session, Mock()).schedule_discharge_call(vet_user, uuid4())

    def test_phone_override(self, db_session, vet_user, case_with_patient, call_task):
        call = CasesService(db_session, Mock()).schedule_discharge_call(
            vet_user, case_with_patient.id, phone_number="(310) 555-0199"
        )
        assert call.customer_phone == "+13105550199"

    def test_missing_phone(self, db_session, vet_user, case_with_patient, call_task):
        case_with_patient.entity_extraction = {"patient": {"name": "Bella"}, "owner": {}, "confidence": {}}
        case_with_patient.patients[0].owner_phone = None
        db_session.commit()

        with pytest.raises(ValueError, match="phone number is required"):
            CasesService(db_session, Mock()).schedule_discharge_call(vet_user, case_with_patient.id)

    def test_stagger_against_other_queued_calls(self, db_session, vet_user, case_with_patient, call_task):
        target = utcnow() + timedelta(hours=2)
        other_case = Case(user_id=vet_user.id, source="manual", meta={})
        db_session.add(other_case)
        db_session.flush()
        db_session.add(ScheduledDischargeCall(
            user_id=vet_user.id,
            case_id=other_case.id,
            customer_phone="+13105550199",
            scheduled_for=target + timedelta(minutes=1),
            status=CallStatus.QUEUED,
            meta={},
        ))
        db_session.commit()

        call = CasesService(db_session, Mock()).schedule_discharge_call(
            vet_user, case_with_patient.id, scheduled_at=target
        )
        assert as_utc(call.scheduled_for) == target + timedelta(minutes=2)

    def test_reschedule_updates_existing_call(self, db_session, vet_user, case_with_patient, call_task):
        service = CasesService(db_session, Mock())
        first = service.schedule_discharge_call(vet_user, case_with_patient.id)
        later = utcnow() + timedelta(hours=48)
        second = service.schedule_discharge_call(vet_user, case_with_patient.id, scheduled_at=later)

        assert second.id == first.id
        assert db_session.query(ScheduledDischargeCall).count() == 1
        assert second.task_id == "task-2"
        assert call_task.apply_async.call_count == 2

    def test_reschedule_keeps_active_call(self, db_session, vet_user, case_with_patient, call_task):
        service = CasesService(db_session, Mock())
        call = service.schedule_discharge_call(vet_user, case_with_patient.id)
        call.status = CallStatus.IN_PROGRESS
        db_session.commit()

        service.schedule_discharge_call(vet_user, case_with_patient.id, scheduled_at=utcnow() + timedelta(hours=5))

        assert call.status == CallStatus.IN_PROGRESS
        assert call_task.apply_async.call_count == 1

    @pytest.mark.parametrize("previous", [CallStatus.FAILED, CallStatus.CANCELLED])
    def test_reschedule_finished_call_is_placed_again(
        self, monkeypatch, db_session, vet_user, case_with_patient, call_task, previous
    ):
        monkeypatch.setattr(settings, "vapi_outbound_assistant_id", "asst-outbound")
        monkeypatch.setattr(settings, "vapi_phone_number_id", "pn-1")
        service = CasesService(db_session, Mock())
        call = service.schedule_discharge_call(vet_user, case_with_patient.id)
        call.status = previous
        call.vapi_call_id = "vapi-old"
        call.ended_reason = "customer-did-not-answer"
        call.ended_at = utcnow()
        call.dispatched_at = utcnow()
        db_session.commit()

        service.schedule_discharge_call(vet_user, case_with_patient.id)

        assert call.status == CallStatus.QUEUED
        assert call.vapi_call_id is None
        assert call.ended_reason is None
        assert call.ended_at is None
        assert call.dispatched_at is None
        assert call_task.apply_async.call_count == 2

        client = Mock()
        client.create_phone_call.return_value = {"id": "vapi-new", "status": "queued"}
        result = execute_scheduled_call(db_session, call.id, client=client)

        assert result["vapiCallId"] == "vapi-new"
        client.create_phone_call.assert_called_once()
        assert call.vapi_call_id == "vapi-new"

    def test_test_mode_places_call_immediately(self, db_session, vet_user, case_with_patient, call_task):
        vet_user.test_mode_enabled = True
        vet_user.test_contact_phone = "310-555-0100"
        db_session.commit()

        with patch("vetdesk.services.call_executor.execute_scheduled_call") as execute:
            execute.return_value = {"success": True}
            call = CasesService(db_session, Mock()).schedule_discharge_call(vet_user, case_with_patient.id)

        assert call.customer_phone == "+13105550100"
        execute.assert_called_once_with(db_session, call.id)
        call_task.apply_async.assert_not_called()
        assert as_utc(call.scheduled_for) - utcnow() <= timedelta(minutes=1)

    def test_test_mode_requires_phone(self, db_session, vet_user, case_with_patient, call_task):
        vet_user.test_mode_enabled = True
        db_session.commit()
        with pytest.raises(ValueError, match="test contact phone"):
            CasesService(db_session, Mock()).schedule_discharge_call(vet_user, case_with_patient.id)
