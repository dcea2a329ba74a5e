"""
Vapi webhook processing.

Vapi pushes call lifecycle events (status-update, end-of-call-report, hang)
for both outbound discharge follow-up calls and inbound calls answered by a
clinic's assistant. Each event is mapped onto the matching call row:

    outbound -> scheduled_discharge_calls
    inbound  -> inbound_vapi_calls

Missing rows are logged and skipped; the route still acknowledges the
webhook so Vapi does not retry.
"""

import logging
import math
from typing import Any, Optional, Type, Union

from sqlalchemy.orm import Session

from ..core.clock import parse_iso, utcnow
from ..core.transactions import transaction
from ..models.call import CallStatus, InboundCall, ScheduledDischargeCall
from ..models.case import Case
from ..models.clinic import AssistantMapping
from .llm_client import LLMClient, llm_client
from .slack_notifier import SlackNotifier, is_appointment_booked, slack_notifier


logger = logging.getLogger(__name__)

CallRow = Union[ScheduledDischargeCall, InboundCall]

OUTBOUND_TABLE = "scheduled_discharge_calls"
INBOUND_TABLE = "inbound_vapi_calls"

_VAPI_STATUS_MAP = {
    "queued": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.IN_PROGRESS,
    "ended": CallStatus.COMPLETED,
}

_NORMAL_HANGUPS = ("assistant-ended-call", "customer-ended-call")

FAILED_ENDED_REASONS = (
    "dial-busy",
    "dial-failed",
    "dial-no-answer",
    "assistant-error",
    "exceeded-max-duration",
    "voicemail",
    "assistant-not-found",
    "assistant-not-invalid",
    "assistant-not-provided",
    "assistant-request-failed",
    "assistant-request-returned-error",
    "assistant-request-returned-unspeakable-error",
    "assistant-request-returned-invalid-json",
    "assistant-request-returned-no-content",
    "twilio-failed-to-connect-call",
    "vonage-rejected",
)


# =============================================================================
# Mapping Utilities
# =============================================================================

def map_vapi_status(status: Optional[str]) -> CallStatus:
    """Map a Vapi call status onto CallStatus (unknown -> queued)."""
    if not status:
        return CallStatus.QUEUED
    mapped = _VAPI_STATUS_MAP.get(status)
    if mapped is None:
        logger.warning(f"Unknown VAPI status '{status}', defaulting to queued")
        return CallStatus.QUEUED
    return mapped


def _matches_failed_reason(ended_reason: str) -> bool:
    lowered = ended_reason.lower()
    return any(reason in lowered for reason in FAILED_ENDED_REASONS)


def should_mark_as_failed(ended_reason: Optional[str], metadata: Optional[dict[str, Any]] = None) -> bool:
    """
    Whether an outbound call's ended reason counts as a failure.

    Voicemail is special: with detection enabled the call only failed if we
    hung up instead of leaving a message.
    """
    if not ended_reason:
        return False
    metadata = metadata or {}
    if "voicemail" in ended_reason.lower() and metadata.get("voicemail_detection_enabled") is True:
        return metadata.get("voicemail_hangup_on_detection") is True
    return _matches_failed_reason(ended_reason)


def should_mark_inbound_call_as_failed(ended_reason: Optional[str]) -> bool:
    if not ended_reason:
        return False
    return _matches_failed_reason(ended_reason)


def map_ended_reason_to_status(
    ended_reason: Optional[str],
    metadata: Optional[dict[str, Any]] = None,
) -> CallStatus:
    """Final status of an outbound call from its ended reason."""
    if not ended_reason:
        return CallStatus.COMPLETED
    if ended_reason in _NORMAL_HANGUPS:
        return CallStatus.COMPLETED
    if "cancelled" in ended_reason:
        return CallStatus.CANCELLED

    metadata = metadata or {}
    if "voicemail" in ended_reason.lower() and metadata.get("voicemail_detection_enabled") is True:
        if metadata.get("voicemail_hangup_on_detection") is True:
            return CallStatus.FAILED
        return CallStatus.COMPLETED

    if should_mark_as_failed(ended_reason, metadata):
        return CallStatus.FAILED
    return CallStatus.COMPLETED


def calculate_total_cost(costs: Optional[list[dict[str, Any]]]) -> float:
    if not costs:
        return 0
    return sum(float(c.get("amount") or 0) for c in costs)


def calculate_duration(started_at: Any, ended_at: Any) -> Optional[int]:
    """Whole seconds between two timestamps, None if either is missing or invalid."""
    start = parse_iso(started_at)
    end = parse_iso(ended_at)
    if start is None or end is None or end < start:
        return None
    return math.floor((end - start).total_seconds())


def extract_sentiment(analysis: Optional[dict[str, Any]]) -> str:
    """Rough sentiment from Vapi's success evaluation."""
    evaluation = str((analysis or {}).get("successEvaluation") or "").lower()
    if "success" in evaluation or "positive" in evaluation:
        return "positive"
    if "fail" in evaluation or "negative" in evaluation:
        return "negative"
    return "neutral"


def is_inbound_call(call: Optional[dict[str, Any]]) -> bool:
    return (call or {}).get("type") == "inboundPhoneCall"


def get_call_table_name(call: Optional[dict[str, Any]]) -> str:
    return INBOUND_TABLE if is_inbound_call(call) else OUTBOUND_TABLE


def get_call_model(call: Optional[dict[str, Any]]) -> Type[CallRow]:
    return InboundCall if is_inbound_call(call) else ScheduledDischargeCall


def enrich_call_from_message(call: dict[str, Any], message: dict[str, Any]) -> dict[str, Any]:
    """
    Merge end-of-call-report message fields into the call object.

    The report often carries fresher data than the embedded call snapshot,
    so message values win.
    """
    enriched = dict(call or {})
    for key in ("startedAt", "endedAt", "transcript", "recordingUrl", "endedReason", "analysis"):
        if message.get(key) is not None:
            enriched[key] = message[key]

    if call.get("costs"):
        enriched["costs"] = call["costs"]
    elif message.get("cost") is not None:
        enriched["costs"] = [{"amount": message["cost"], "description": "total"}]
    return enriched


def build_call_outcome(call: dict[str, Any], message: dict[str, Any]) -> dict[str, Any]:
    """Column values shared by outbound and inbound end-of-call updates."""
    artifact = message.get("artifact") or call.get("artifact") or {}
    analysis = call.get("analysis") or {}
    structured_data = analysis.get("structuredData") or artifact.get("structuredOutputs")

    return {
        "ended_reason": call.get("endedReason"),
        "started_at": parse_iso(call.get("startedAt")),
        "ended_at": parse_iso(call.get("endedAt")),
        "duration_seconds": calculate_duration(call.get("startedAt"), call.get("endedAt")),
        "recording_url": call.get("recordingUrl") or artifact.get("recordingUrl"),
        "stereo_recording_url": artifact.get("stereoRecordingUrl"),
        "transcript": call.get("transcript"),
        "transcript_messages": call.get("messages") or artifact.get("messages"),
        "call_analysis": analysis or None,
        "summary": analysis.get("summary"),
        "success_evaluation": (
            str(analysis["successEvaluation"]) if analysis.get("successEvaluation") is not None else None
        ),
        "structured_data": structured_data,
        "user_sentiment": extract_sentiment(analysis),
        "cost": calculate_total_cost(call.get("costs")),
    }


# =============================================================================
# Event Handlers
# =============================================================================

class VapiWebhookService:
    """
    Applies Vapi webhook events to call rows.

    Example:
        VapiWebhookService(db).handle(payload)
    """

    def __init__(
        self,
        db: Session,
        llm: Optional[LLMClient] = None,
        notifier: Optional[SlackNotifier] = None,
    ):
        self.db = db
        self.llm = llm or llm_client
        self.notifier = notifier or slack_notifier

    def handle(self, payload: dict[str, Any]) -> Optional[str]:
        """
        Dispatch one webhook payload.

        Returns:
            The event type that was handled, or None if it was ignored
        """
        message = payload.get("message") or {}
        event_type = message.get("type")

        if event_type == "status-update":
            self.handle_status_update(message)
        elif event_type == "end-of-call-report":
            self.handle_end_of_call_report(message)
        elif event_type == "hang":
            self.handle_hang(message)
        else:
            logger.info(f"Unhandled VAPI webhook type: {event_type}")
            return None
        return event_type

    def _find_call(self, call: dict[str, Any]) -> Optional[CallRow]:
        call_id = call.get("id")
        if not call_id:
            return None
        model = get_call_model(call)
        return self.db.query(model).filter(model.vapi_call_id == call_id).first()

    # ------------------------------------------------------------------
    # status-update
    # ------------------------------------------------------------------

    def handle_status_update(self, message: dict[str, Any]) -> None:
        call = message.get("call") or {}
        row = self._find_call(call)
        if row is None:
            logger.warning(
                f"status-update for unknown call {call.get('id')} in {get_call_table_name(call)}"
            )
            return

        status = map_vapi_status(message.get("status") or call.get("status"))
        with transaction(self.db):
            row.status = status
            if status == CallStatus.IN_PROGRESS and row.started_at is None:
                row.started_at = parse_iso(call.get("startedAt")) or utcnow()
        logger.info(f"Call {row.vapi_call_id} status -> {status.value}")

    # ------------------------------------------------------------------
    # hang
    # ------------------------------------------------------------------

    def handle_hang(self, message: dict[str, Any]) -> None:
        call = message.get("call") or {}
        row = self._find_call(call)
        if row is None:
            logger.warning(f"hang event for unknown call {call.get('id')}")
            return

        with transaction(self.db):
            row.ended_reason = message.get("endedReason") or call.get("endedReason") or "user-hangup"
            row.ended_at = parse_iso(call.get("endedAt")) or utcnow()
        logger.info(f"Call {row.vapi_call_id} hung up ({row.ended_reason})")

    # ------------------------------------------------------------------
    # end-of-call-report
    # ------------------------------------------------------------------

    def handle_end_of_call_report(self, message: dict[str, Any]) -> None:
        call = enrich_call_from_message(message.get("call") or {}, message)
        if not call.get("id"):
            logger.warning("end-of-call-report without call id")
            return

        if is_inbound_call(call):
            self._handle_inbound_end_of_call(call, message)
        else:
            self._handle_outbound_end_of_call(call, message)

    def _handle_outbound_end_of_call(self, call: dict[str, Any], message: dict[str, Any]) -> None:
        row = self._find_call(call)
        if row is None:
            logger.warning(f"end-of-call-report for unknown outbound call {call['id']}")
            return

        outcome = build_call_outcome(call, message)
        status = map_ended_reason_to_status(outcome["ended_reason"], row.meta)

        with transaction(self.db):
            row.status = status
            for field, value in outcome.items():
                setattr(row, field, value)

            structured_data = outcome["structured_data"]
            if isinstance(structured_data, dict) and structured_data.get("urgent_case") is True:
                self._flag_urgent_case(row, outcome["transcript"])

        logger.info(
            f"Outbound call {row.vapi_call_id} ended: {outcome['ended_reason']} -> {status.value}"
        )

    def _flag_urgent_case(self, row: ScheduledDischargeCall, transcript: Optional[str]) -> None:
        reason_summary = None
        if transcript and transcript.strip():
            try:
                reason_summary = self.llm.summarize_urgent_reason(transcript)
            except Exception as e:
                logger.error(f"Failed to generate urgent reason summary for call {row.vapi_call_id}: {e}")

        row.urgent_reason_summary = reason_summary

        if not row.case_id:
            logger.warning(f"Urgent call {row.vapi_call_id} has no case to flag")
            return

        case = self.db.get(Case, row.case_id)
        if case is None:
            logger.warning(f"Urgent call {row.vapi_call_id} references missing case {row.case_id}")
            return
        case.is_urgent = True
        if reason_summary:
            case.urgent_reason_summary = reason_summary
        logger.info(f"Case {case.id} flagged urgent from call {row.vapi_call_id}")

    def _handle_inbound_end_of_call(self, call: dict[str, Any], message: dict[str, Any]) -> None:
        row = self._find_call(call)
        created = row is None
        if created:
            row = InboundCall(vapi_call_id=call["id"])
            self.db.add(row)

        assistant_id = call.get("assistantId")
        if assistant_id and (created or row.clinic_id is None):
            mapping = (
                self.db.query(AssistantMapping)
                .filter(AssistantMapping.assistant_id == assistant_id, AssistantMapping.is_active.is_(True))
                .first()
            )
            if mapping is not None:
                row.clinic_id = mapping.clinic_id
                row.user_id = mapping.user_id
                row.clinic_name = mapping.clinic.name if mapping.clinic else None
            else:
                logger.warning(f"No assistant mapping for inbound assistant {assistant_id}")

        outcome = build_call_outcome(call, message)
        status = map_vapi_status(call.get("status"))
        ended_reason = outcome["ended_reason"]
        if should_mark_inbound_call_as_failed(ended_reason):
            status = CallStatus.FAILED
        elif ended_reason in _NORMAL_HANGUPS:
            status = CallStatus.COMPLETED
        elif ended_reason and "cancelled" in ended_reason:
            status = CallStatus.CANCELLED

        with transaction(self.db):
            row.assistant_id = assistant_id
            row.customer_phone = (call.get("customer") or {}).get("number")
            row.status = status
            for field, value in outcome.items():
                setattr(row, field, value)

        logger.info(
            f"Inbound call {row.vapi_call_id} {'created' if created else 'updated'}: {status.value}"
        )

        if is_appointment_booked(outcome["structured_data"]):
            self.notifier.notify_appointment_booked(
                clinic_name=row.clinic_name,
                caller_phone=row.customer_phone,
                structured_data=outcome["structured_data"],
                call_id=row.vapi_call_id,
            )
