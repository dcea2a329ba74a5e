"""
Inbound voice assistant tools.

The clinic's inbound assistant calls these tools mid-conversation to leave a
message, request a prescription refill or log an emergency triage. Each
result carries a `message` the assistant reads back to the caller, so error
messages are phrased for speech.
"""

import json
import logging
import random
import string
from typing import Any, Optional, TypedDict
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..core.transactions import transaction
from ..models.clinic import AssistantMapping, Clinic
from ..models.inbound import ClinicMessage, RefillRequest
from ..schemas.vapi_tools import EmergencyTriageInput, LeaveMessageInput, RefillRequestInput
from .phone import normalize_to_e164


logger = logging.getLogger(__name__)

INBOUND_SOURCE = "vapi_inbound_squad"

CLINIC_NOT_FOUND_MESSAGE = "I couldn't identify the clinic. Please try again later."
UNEXPECTED_ERROR_MESSAGE = "Something went wrong. Please try again."

VALIDATION_MESSAGES = {
    "leave-message": "I need your name, phone number, and message to leave a callback request.",
    "refill-request": (
        "I need more information for the refill request. Please provide your name, "
        "phone number, pet's name, and the medication name."
    ),
    "log-emergency": (
        "I need more information to log this emergency. Please provide the caller's name, "
        "phone, pet name, symptoms, and urgency level."
    ),
}


class ToolArguments(TypedDict):
    arguments: dict[str, Any]
    tool_call_id: Optional[str]
    call_id: Optional[str]
    assistant_id: Optional[str]


class ToolResult(TypedDict):
    body: dict[str, Any]
    status_code: int


# =============================================================================
# Envelope Handling
# =============================================================================

def _arguments_from_tool_call(tool_call: dict[str, Any]) -> dict[str, Any]:
    parameters = tool_call.get("parameters")
    if isinstance(parameters, dict) and parameters:
        return parameters

    raw = (tool_call.get("function") or {}).get("arguments")
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Tool call arguments were not valid JSON")
        else:
            if isinstance(parsed, dict):
                return parsed

    return parameters if isinstance(parameters, dict) else {}


def extract_tool_arguments(body: dict[str, Any]) -> ToolArguments:
    """
    Pull tool arguments out of a Vapi tool-call envelope.

    Vapi sends either message.toolCallList or message.toolWithToolCallList;
    direct calls (tests, curl) post the arguments as the body itself.
    """
    message = body.get("message")
    if isinstance(message, dict):
        call = message.get("call") or {}
        call_id = call.get("id")
        assistant_id = call.get("assistantId")

        tool_call = None
        tool_call_list = message.get("toolCallList") or []
        if tool_call_list:
            tool_call = tool_call_list[0] or {}
        else:
            with_list = message.get("toolWithToolCallList") or []
            if with_list:
                tool_call = (with_list[0] or {}).get("toolCall") or {}

        if tool_call is not None:
            return {
                "arguments": _arguments_from_tool_call(tool_call),
                "tool_call_id": tool_call.get("id"),
                "call_id": call_id,
                "assistant_id": assistant_id,
            }

    return {"arguments": body, "tool_call_id": None, "call_id": None, "assistant_id": None}


def merge_call_context(extracted: ToolArguments) -> dict[str, Any]:
    """Fill assistant_id / vapi_call_id from the call when the assistant omitted them."""
    args = dict(extracted["arguments"])
    args["assistant_id"] = (
        args.get("assistant_id")
        or extracted["assistant_id"]
        or settings.vapi_default_inbound_assistant_id
        or None
    )
    args["vapi_call_id"] = args.get("vapi_call_id") or extracted["call_id"]
    return args


def build_vapi_response(
    result: dict[str, Any],
    tool_call_id: Optional[str] = None,
    status_code: int = 200,
) -> ToolResult:
    """
    Shape a tool result for Vapi.

    With a tool call id Vapi expects 200 and a `results` list whose `result`
    is a JSON string; otherwise the plain result is returned with its status.
    """
    if tool_call_id:
        return {
            "body": {"results": [{"toolCallId": tool_call_id, "result": json.dumps(result, default=str)}]},
            "status_code": 200,
        }
    return {"body": result, "status_code": status_code}


def success_result(data: dict[str, Any], message: str) -> dict[str, Any]:
    return {"success": True, **data, "message": message}


def error_result(error: str, message: str) -> dict[str, Any]:
    return {"success": False, "error": error, "message": message}


def generate_reference_id() -> str:
    """Human-friendly refill reference such as RX-20260114-7QK2."""
    date_part = utcnow().strftime("%Y%m%d")
    random_part = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"RX-{date_part}-{random_part}"


# =============================================================================
# Clinic Lookup
# =============================================================================

def find_clinic(db: Session, clinic_id: Optional[UUID], assistant_id: Optional[str]) -> Optional[Clinic]:
    """
    Resolve the clinic a tool call belongs to.

    Order: explicit clinic id, active assistant mapping, then the legacy
    clinics.inbound_assistant_id column.
    """
    if clinic_id:
        clinic = db.get(Clinic, clinic_id)
        if clinic is not None:
            logger.info(f"Using direct clinic_id lookup: {clinic.name}")
            return clinic

    if not assistant_id:
        return None

    mapping = (
        db.query(AssistantMapping)
        .filter(AssistantMapping.assistant_id == assistant_id, AssistantMapping.is_active.is_(True))
        .first()
    )
    if mapping is not None and mapping.clinic is not None:
        return mapping.clinic

    clinic = db.query(Clinic).filter(Clinic.inbound_assistant_id == assistant_id).first()
    if clinic is None:
        logger.warning(f"Clinic not found for assistant_id {assistant_id}")
    return clinic


def _stored_phone(phone: str) -> str:
    return normalize_to_e164(phone) or phone


# =============================================================================
# Tools
# =============================================================================

class InboundToolService:
    """
    Executes inbound assistant tools against the database.

    Every method returns a plain result dict (success or error envelope)
    plus the HTTP status to use when no tool call id is present.
    """

    def __init__(self, db: Session):
        self.db = db

    def leave_message(self, data: LeaveMessageInput) -> tuple[dict[str, Any], int]:
        clinic = find_clinic(self.db, data.clinic_id, data.assistant_id)
        if clinic is None:
            return error_result("Clinic not found", CLINIC_NOT_FOUND_MESSAGE), 404

        content = data.message
        if data.notes:
            content = f"{data.message}\n\nAdditional notes: {data.notes}"
        priority = "urgent" if data.is_urgent else "normal"

        message = ClinicMessage(
            clinic_id=clinic.id,
            caller_name=data.client_name,
            caller_phone=_stored_phone(data.client_phone),
            pet_name=data.pet_name,
            message_content=content,
            message_type=data.message_type,
            priority=priority,
            status="unread",
            vapi_call_id=data.vapi_call_id,
            meta={
                "source": INBOUND_SOURCE,
                "agent": "admin",
                "is_urgent": data.is_urgent,
                "best_callback_time": data.best_callback_time,
            },
        )
        try:
            with transaction(self.db):
                self.db.add(message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert message for clinic {clinic.id}: {e}")
            return error_result(
                "Database error", "I'm having trouble saving your message. Please try again."
            ), 500

        logger.info(
            f"Message {message.id} logged for {clinic.name} "
            f"(type={data.message_type}, urgent={data.is_urgent})"
        )

        reply = f"Your message has been recorded and {clinic.name} will call you back as soon as possible."
        if data.is_urgent:
            reply += " This has been marked as urgent and will be prioritized."
        if data.best_callback_time:
            reply += f" They'll try to reach you {data.best_callback_time}."

        return success_result(
            {
                "message_id": str(message.id),
                "clinic_name": clinic.name,
                "message_type": data.message_type,
                "priority": priority,
            },
            reply,
        ), 200

    def create_refill_request(self, data: RefillRequestInput) -> tuple[dict[str, Any], int]:
        clinic = find_clinic(self.db, data.clinic_id, data.assistant_id)
        if clinic is None:
            return error_result("Clinic not found", CLINIC_NOT_FOUND_MESSAGE), 404

        reference_id = generate_reference_id()
        refill = RefillRequest(
            clinic_id=clinic.id,
            client_name=data.client_name,
            client_phone=_stored_phone(data.client_phone),
            pet_name=data.pet_name,
            species=data.species,
            medication_name=data.medication_name,
            pharmacy_preference="external" if data.pharmacy_preference == "external_pharmacy" else "pickup",
            pharmacy_name=data.pharmacy_name,
            status="pending",
            vapi_call_id=data.vapi_call_id,
            meta={
                "source": INBOUND_SOURCE,
                "agent": "clinical",
                "reference_id": reference_id,
                "medication_strength": data.medication_strength,
                "last_refill_date": data.last_refill_date,
                "notes": data.notes,
            },
        )
        try:
            with transaction(self.db):
                self.db.add(refill)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create refill request for clinic {clinic.id}: {e}")
            return error_result(
                "Database error", "I'm having trouble submitting your refill request. Please try again."
            ), 500

        logger.info(f"Refill request {refill.id} ({reference_id}) created for {clinic.name}")

        if data.pharmacy_preference == "external_pharmacy" and data.pharmacy_name:
            reply = (
                f"I've submitted your refill request for {data.medication_name} for {data.pet_name}. "
                f"Your reference number is {reference_id}. Once approved, the prescription will be sent "
                f"to {data.pharmacy_name}. Staff will call you if they have any questions."
            )
        else:
            reply = (
                f"I've submitted your refill request for {data.medication_name} for {data.pet_name}. "
                f"Your reference number is {reference_id}. Once approved, you can pick it up at the "
                f"clinic. Staff will call you when it's ready."
            )

        return success_result(
            {
                "request_id": str(refill.id),
                "reference_id": reference_id,
                "medication": data.medication_name,
                "pet_name": data.pet_name,
                "status": "pending",
                "pharmacy_preference": data.pharmacy_preference,
            },
            reply,
        ), 200

    def log_emergency_triage(self, data: EmergencyTriageInput) -> tuple[dict[str, Any], int]:
        clinic = find_clinic(self.db, data.clinic_id, data.assistant_id)
        if clinic is None:
            return error_result("Clinic not found", CLINIC_NOT_FOUND_MESSAGE), 404

        content = f"Emergency triage: {data.symptoms}. Action: {data.action_taken}. {data.notes or ''}".strip()
        message = ClinicMessage(
            clinic_id=clinic.id,
            caller_name=data.caller_name,
            caller_phone=_stored_phone(data.caller_phone),
            pet_name=data.pet_name,
            message_content=content,
            message_type="emergency_triage",
            priority="urgent" if data.urgency == "critical" else "normal",
            status="unread",
            vapi_call_id=data.vapi_call_id,
            triage_data={
                "urgency": data.urgency,
                "symptoms": data.symptoms,
                "action_taken": data.action_taken,
                "er_referred": data.er_referred,
                "species": data.species,
            },
            meta={"source": INBOUND_SOURCE, "agent": "emergency"},
        )
        try:
            with transaction(self.db):
                self.db.add(message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to insert emergency triage for clinic {clinic.id}: {e}")
            return error_result(
                "Database error", "I'm having trouble logging this emergency. Please try again."
            ), 500

        logger.info(
            f"Emergency triage {message.id} logged for {clinic.name} "
            f"(urgency={data.urgency}, action={data.action_taken})"
        )

        if data.action_taken == "sent_to_er":
            reply = (
                f"I've logged this emergency for {data.pet_name}. The staff will be notified that "
                f"you're heading to the emergency clinic. Please drive safely."
            )
        elif data.action_taken == "scheduled_appointment":
            reply = (
                f"I've logged this for {data.pet_name}. The staff will follow up about scheduling "
                f"an urgent appointment."
            )
        else:
            reply = (
                f"I've logged the information about {data.pet_name}. The staff will review this "
                f"and may follow up if needed."
            )

        return {
            "success": True,
            "reference_id": str(message.id),
            "urgency": data.urgency,
            "action_taken": data.action_taken,
            "er_referred": data.er_referred,
            "message": reply,
        }, 200
