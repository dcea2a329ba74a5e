"""Tests for Vapi webhook mapping utilities and the /api/webhooks/vapi route."""

import json
from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi import Depends

from vetdesk.api.vapi_webhooks import get_vapi_webhook_service
from vetdesk.core.clock import utcnow
from vetdesk.core.config import settings
from vetdesk.core.database import get_db
from vetdesk.core.security import compute_signature
from vetdesk.main import app
from vetdesk.models import AssistantMapping, CallStatus, Case, InboundCall, ScheduledDischargeCall
from vetdesk.services.vapi_webhooks import (
    VapiWebhookService,
    build_call_outcome,
    calculate_duration,
    calculate_total_cost,
    enrich_call_from_message,
    extract_sentiment,
    get_call_table_name,
    is_inbound_call,
    map_ended_reason_to_status,
    map_vapi_status,
    should_mark_as_failed,
)


URL = "/api/webhooks/vapi"


class TestStatusMapping:

    @pytest.mark.parametrize("vapi_status,expected", [
        ("queued", CallStatus.QUEUED),
        ("ringing", CallStatus.RINGING),
        ("in-progress", CallStatus.IN_PROGRESS),
        ("forwarding", CallStatus.IN_PROGRESS),
        ("ended", CallStatus.COMPLETED),
        ("something-new", CallStatus.QUEUED),
        (None, CallStatus.QUEUED),
    ])
    def test_map_vapi_status(self, vapi_status, expected):
        assert map_vapi_status(vapi_status) == expected

    @pytest.mark.parametrize("reason,expected", [
        (None, CallStatus.COMPLETED),
        ("assistant-ended-call", CallStatus.COMPLETED),
        ("customer-ended-call", CallStatus.COMPLETED),
        ("call-cancelled", CallStatus.CANCELLED),
        ("dial-no-answer", CallStatus.FAILED),
        ("customer-busy-dial-busy", CallStatus.FAILED),
        ("silence-timed-out", CallStatus.COMPLETED),
    ])
    def test_map_ended_reason(self, reason, expected):
        assert map_ended_reason_to_status(reason) == expected

    def test_voicemail_with_detection_left_message(self):
        metadata = {"voicemail_detection_enabled": True, "voicemail_hangup_on_detection": False}
        assert map_ended_reason_to_status("voicemail", metadata) == CallStatus.COMPLETED
        assert not should_mark_as_failed("voicemail", metadata)

    def test_voicemail_with_detection_hung_up(self):
        metadata = {"voicemail_detection_enabled": True, "voicemail_hangup_on_detection": True}
        assert map_ended_reason_to_status("voicemail", metadata) == CallStatus.FAILED
        assert should_mark_as_failed("voicemail", metadata)

    def test_voicemail_without_detection_fails(self):
        assert map_ended_reason_to_status("voicemail") == CallStatus.FAILED


class TestCallFields:

    def test_total_cost(self):
        assert calculate_total_cost([{"amount": 0.1}, {"amount": 0.25}, {}]) == pytest.approx(0.35)
        assert calculate_total_cost(None) == 0

    def test_duration(self):
        assert calculate_duration("2026-01-01T10:00:00Z", "2026-01-01T10:02:30.900Z") == 150
        assert calculate_duration("2026-01-01T10:00:00Z", None) is None
        assert calculate_duration("garbage", "2026-01-01T10:00:00Z") is None
        assert calculate_duration("2026-01-01T10:05:00Z", "2026-01-01T10:00:00Z") is None

    @pytest.mark.parametrize("evaluation,expected", [
        ("true - call was a success", "positive"),
        ("Positive outcome", "positive"),
        ("failed to reach owner", "negative"),
        ("", "neutral"),
        (None, "neutral"),
    ])
    def test_sentiment(self, evaluation, expected):
        assert extract_sentiment({"successEvaluation": evaluation}) == expected

    def test_direction(self):
        assert is_inbound_call({"type": "inboundPhoneCall"})
        assert not is_inbound_call({"type": "outboundPhoneCall"})
        assert get_call_table_name({"type": "inboundPhoneCall"}) == "inbound_vapi_calls"
        assert get_call_table_name(None) == "scheduled_discharge_calls"

    def test_message_fields_win(self):
        call = {"id": "c1", "transcript": "old", "costs": [{"amount": 0.2}]}
        message = {"transcript": "new", "endedReason": "customer-ended-call", "cost": 9}
        enriched = enrich_call_from_message(call, message)

        assert enriched["transcript"] == "new"
        assert enriched["endedReason"] == "customer-ended-call"
        assert enriched["costs"] == [{"amount": 0.2}]

    def test_message_cost_used_when_call_has_none(self):
        enriched = enrich_call_from_message({"id": "c1"}, {"cost": 0.42})
        assert enriched["costs"] == [{"amount": 0.42, "description": "total"}]

    def test_outcome_prefers_analysis_structured_data(self):
        call = {
            "endedReason": "assistant-ended-call",
            "startedAt": "2026-01-01T10:00:00Z",
            "endedAt": "2026-01-01T10:01:00Z",
            "analysis": {"summary": "Owner confirmed", "successEvaluation": True, "structuredData": {"a": 1}},
        }
        message = {"artifact": {"structuredOutputs": {"b": 2}, "stereoRecordingUrl": "https://r/stereo.wav"}}
        outcome = build_call_outcome(call, message)

        assert outcome["structured_data"] == {"a": 1}
        assert outcome["duration_seconds"] == 60
        assert outcome["success_evaluation"] == "True"
        assert outcome["stereo_recording_url"] == "https://r/stereo.wav"
        assert outcome["summary"] == "Owner confirmed"


class TestServiceDispatch:

    def test_unknown_type_ignored(self, db_session):
        service = VapiWebhookService(db_session, llm=Mock(), notifier=Mock())
        assert service.handle({"message": {"type": "transcript"}}) is None
        assert service.handle({}) is None


@pytest.fixture
def outbound_call(db_session, case_with_patient):
    call = ScheduledDischargeCall(
        user_id=case_with_patient.user_id,
        case_id=case_with_patient.id,
        customer_phone="+12135550123",
        scheduled_for=utcnow() - timedelta(minutes=5),
        vapi_call_id="call-out-1",
        status=CallStatus.QUEUED,
        meta={},
    )
    db_session.add(call)
    db_session.commit()
    return call


@pytest.fixture
def llm():
    mock = Mock()
    mock.summarize_urgent_reason.return_value = "Owner reports vomiting blood"
    return mock


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def webhook_client(client, llm, notifier):
    def override_service(db=Depends(get_db)):
        return VapiWebhookService(db, llm=llm, notifier=notifier)

    app.dependency_overrides[get_vapi_webhook_service] = override_service
    return client


class TestWebhookEndpoint:

    def test_get_reports_active(self, client):
        response = client.get(URL)
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_status_update(self, webhook_client, db_session, outbound_call):
        payload = {"message": {
            "type": "status-update",
            "status": "in-progress",
            "call": {"id": "call-out-1", "type": "outboundPhoneCall"},
        }}
        response = webhook_client.post(URL, json=payload)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Webhook processed"}
        db_session.refresh(outbound_call)
        assert outbound_call.status == CallStatus.IN_PROGRESS
        assert outbound_call.started_at is not None

    def test_hang(self, webhook_client, db_session, outbound_call):
        payload = {"message": {"type": "hang", "call": {"id": "call-out-1"}}}
        webhook_client.post(URL, json=payload)

        db_session.refresh(outbound_call)
        assert outbound_call.ended_reason == "user-hangup"
        assert outbound_call.ended_at is not None

    def test_outbound_end_of_call_flags_urgent_case(self, webhook_client, db_session, outbound_call, llm):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "transcript": "AI: How is Bella? User: She is vomiting blood.",
            "call": {
                "id": "call-out-1",
                "type": "outboundPhoneCall",
                "startedAt": "2026-01-01T10:00:00Z",
                "endedAt": "2026-01-01T10:03:00Z",
                "costs": [{"amount": 0.11}, {"amount": 0.04}],
                "analysis": {
                    "summary": "Bella is unwell",
                    "successEvaluation": "success",
                    "structuredData": {"urgent_case": True},
                },
            },
        }}
        response = webhook_client.post(URL, json=payload)
        assert response.status_code == 200

        db_session.refresh(outbound_call)
        assert outbound_call.status == CallStatus.COMPLETED
        assert outbound_call.duration_seconds == 180
        assert outbound_call.cost == pytest.approx(0.15)
        assert outbound_call.user_sentiment == "positive"

        case = db_session.get(Case, outbound_call.case_id)
        db_session.refresh(case)
        assert case.is_urgent is True
        assert case.urgent_reason_summary == "Owner reports vomiting blood"
        assert outbound_call.urgent_reason_summary == "Owner reports vomiting blood"
        llm.summarize_urgent_reason.assert_called_once()

    def test_outbound_failure_reason(self, webhook_client, db_session, outbound_call):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "dial-no-answer",
            "call": {"id": "call-out-1", "type": "outboundPhoneCall"},
        }}
        webhook_client.post(URL, json=payload)

        db_session.refresh(outbound_call)
        assert outbound_call.status == CallStatus.FAILED

    def test_urgent_summary_failure_still_flags(self, webhook_client, db_session, outbound_call, llm):
        llm.summarize_urgent_reason.side_effect = RuntimeError("LLM down")
        payload = {"message": {
            "type": "end-of-call-report",
            "transcript": "Bella collapsed",
            "call": {
                "id": "call-out-1",
                "analysis": {"structuredData": {"urgent_case": True}},
            },
        }}
        webhook_client.post(URL, json=payload)

        case = db_session.get(Case, outbound_call.case_id)
        db_session.refresh(case)
        assert case.is_urgent is True
        assert case.urgent_reason_summary is None
        db_session.refresh(outbound_call)
        assert outbound_call.urgent_reason_summary is None

    def test_inbound_end_of_call_creates_row_and_notifies(self, webhook_client, db_session, clinic, admin_user, notifier):
        db_session.add(AssistantMapping(assistant_id="asst-inbound", clinic_id=clinic.id, user_id=admin_user.id))
        db_session.commit()

        structured = {"appointment_booked": True, "appointment_data": {"date": "2026-03-02", "time": "09:00"}}
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "call": {
                "id": "call-in-1",
                "type": "inboundPhoneCall",
                "assistantId": "asst-inbound",
                "status": "ended",
                "customer": {"number": "+12137774445"},
                "analysis": {"structuredData": structured},
            },
        }}
        response = webhook_client.post(URL, json=payload)
        assert response.status_code == 200

        row = db_session.query(InboundCall).filter(InboundCall.vapi_call_id == "call-in-1").one()
        assert row.clinic_id == clinic.id
        assert row.clinic_name == "Happy Paws Veterinary"
        assert row.customer_phone == "+12137774445"
        assert row.status == CallStatus.COMPLETED

        notifier.notify_appointment_booked.assert_called_once()
        kwargs = notifier.notify_appointment_booked.call_args.kwargs
        assert kwargs["clinic_name"] == "Happy Paws Veterinary"
        assert kwargs["call_id"] == "call-in-1"

    def test_inbound_without_booking_does_not_notify(self, webhook_client, db_session, notifier):
        payload = {"message": {
            "type": "end-of-call-report",
            "endedReason": "dial-failed",
            "call": {"id": "call-in-2", "type": "inboundPhoneCall", "assistantId": "asst-unknown"},
        }}
        webhook_client.post(URL, json=payload)

        row = db_session.query(InboundCall).filter(InboundCall.vapi_call_id == "call-in-2").one()
        assert row.status == CallStatus.FAILED
        assert row.clinic_id is None
        notifier.notify_appointment_booked.assert_not_called()

    def test_unknown_call_still_acknowledged(self, webhook_client):
        payload = {"message": {"type": "status-update", "status": "ringing", "call": {"id": "nope"}}}
        response = webhook_client.post(URL, json=payload)
        assert response.status_code == 200

    def test_processing_error_still_acknowledged(self, client):
        broken = Mock()
        broken.handle.side_effect = RuntimeError("db exploded")
        app.dependency_overrides[get_vapi_webhook_service] = lambda: broken

        response = client.post(URL, json={"message": {"type": "hang"}})
        assert response.status_code == 200

    def test_unparseable_body(self, webhook_client):
        response = webhook_client.post(URL, content=b"{not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_non_object_body(self, webhook_client):
        response = webhook_client.post(URL, json=[1, 2, 3])
        assert response.status_code == 500


class TestWebhookSignature:

    @pytest.fixture(autouse=True)
    def webhook_secret(self, monkeypatch):
        monkeypatch.setattr(settings, "vapi_webhook_secret", "whsec_test")

    def test_missing_signature_rejected(self, webhook_client):
        response = webhook_client.post(URL, json={"message": {"type": "hang"}})
        assert response.status_code == 401

    def test_valid_signature_accepted(self, webhook_client):
        body = json.dumps({"message": {"type": "transcript"}}).encode()
        response = webhook_client.post(
            URL,
            content=body,
            headers={"Content-Type": "application/json", "x-vapi-signature": compute_signature(body, "whsec_test")},
        )
        assert response.status_code == 200
