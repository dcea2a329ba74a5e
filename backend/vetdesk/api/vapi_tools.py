"""
Inbound voice assistant tool endpoints.

POST endpoints are called by Vapi during a live call; GET endpoints are
health probes used when wiring tools up in the Vapi dashboard.
"""

import json
import logging
from typing import Any, Callable, Type

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from ..core.auth import verify_vapi_signature
from ..core.database import get_db
from ..core.transactions import safe_rollback
from ..schemas.vapi_tools import EmergencyTriageInput, LeaveMessageInput, RefillRequestInput
from ..services.inbound_tools import (
    UNEXPECTED_ERROR_MESSAGE,
    VALIDATION_MESSAGES,
    InboundToolService,
    build_vapi_response,
    error_result,
    extract_tool_arguments,
    merge_call_context,
)


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/vapi/inbound/tools", tags=["Vapi Tools"])
signed = [Depends(verify_vapi_signature)]


async def _run_tool(
    request: Request,
    db: Session,
    tool_name: str,
    schema: Type[BaseModel],
    handler: Callable[[InboundToolService, Any], tuple[dict[str, Any], int]],
) -> JSONResponse:
    try:
        body = json.loads(await request.body())
        if not isinstance(body, dict):
            raise ValueError("Tool body must be a JSON object")

        extracted = extract_tool_arguments(body)
        tool_call_id = extracted["tool_call_id"]
        args = merge_call_context(extracted)

        try:
            data = schema.model_validate(args)
        except ValidationError as e:
            logger.warning(f"{tool_name} validation failed: {e.errors()}")
            response = build_vapi_response(
                error_result("Invalid request", VALIDATION_MESSAGES[tool_name]), tool_call_id, 400
            )
            return JSONResponse(status_code=response["status_code"], content=response["body"])

        result, status_code = handler(InboundToolService(db), data)
        response = build_vapi_response(result, tool_call_id, status_code)
        return JSONResponse(status_code=response["status_code"], content=response["body"])

    except Exception as e:
        logger.error(f"Unexpected error in {tool_name}: {e}", exc_info=True)
        safe_rollback(db)
        return JSONResponse(
            status_code=500,
            content=error_result("Internal server error", UNEXPECTED_ERROR_MESSAGE),
        )


# =============================================================================
# Leave Message
# =============================================================================

@router.post("/leave-message", summary="Leave a callback message", dependencies=signed)
async def leave_message(request: Request, db: Session = Depends(get_db)):
    return await _run_tool(
        request, db, "leave-message", LeaveMessageInput,
        lambda service, data: service.leave_message(data),
    )


@router.get("/leave-message", summary="Leave-message tool health")
async def leave_message_health():
    return {
        "status": "ok",
        "message": "VAPI leave-message endpoint is active",
        "endpoint": "/api/vapi/inbound/tools/leave-message",
        "method": "POST",
        "required_fields": ["client_name", "client_phone", "message"],
        "message_types": ["general", "billing", "records", "refill", "clinical", "other"],
    }


# =============================================================================
# Refill Request
# =============================================================================

@router.post("/refill-request", summary="Create a prescription refill request", dependencies=signed)
async def create_refill_request(request: Request, db: Session = Depends(get_db)):
    return await _run_tool(
        request, db, "refill-request", RefillRequestInput,
        lambda service, data: service.create_refill_request(data),
    )


@router.get("/refill-request", summary="Refill tool health")
async def refill_request_health():
    return {
        "status": "ok",
        "message": "VAPI refill-request endpoint is active",
        "endpoint": "/api/vapi/inbound/tools/refill-request",
        "method": "POST",
        "required_fields": ["client_name", "client_phone", "pet_name", "medication_name"],
        "pharmacy_preferences": ["pickup", "external_pharmacy"],
    }


# =============================================================================
# Emergency Triage
# =============================================================================

@router.post("/log-emergency", summary="Log an emergency triage outcome", dependencies=signed)
async def log_emergency_triage(request: Request, db: Session = Depends(get_db)):
    return await _run_tool(
        request, db, "log-emergency", EmergencyTriageInput,
        lambda service, data: service.log_emergency_triage(data),
    )


@router.get("/log-emergency", summary="Emergency triage tool health")
async def log_emergency_health():
    return {
        "status": "ok",
        "message": "VAPI log-emergency endpoint is active",
        "endpoint": "/api/vapi/inbound/tools/log-emergency",
        "method": "POST",
        "required_fields": ["caller_name", "caller_phone", "pet_name", "symptoms", "urgency", "action_taken"],
        "urgency_levels": ["critical", "urgent", "monitor"],
        "action_types": ["sent_to_er", "scheduled_appointment", "home_care_advised"],
    }
