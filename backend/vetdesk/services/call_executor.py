"""
Places a scheduled discharge call through Vapi and records the outcome.

Invoked by the execute_scheduled_call Celery task at the scheduled time,
or directly when the owning user is in test mode.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..core.clock import parse_iso, to_iso, utcnow
from ..core.config import settings
from ..core.exceptions import ExternalServiceError
from ..core.transactions import transaction
from ..models import CallStatus, ScheduledDischargeCall
from .vapi_client import VapiClient, vapi_client
from .vapi_webhooks import map_vapi_status


logger = logging.getLogger(__name__)


def _claim(db: Session, call_id: UUID) -> bool:
    """Stamp dispatched_at on a queued row; False when another worker got there first."""
    with transaction(db):
        result = db.execute(
            update(ScheduledDischargeCall)
            .where(
                ScheduledDischargeCall.id == call_id,
                ScheduledDischargeCall.status == CallStatus.QUEUED,
                ScheduledDischargeCall.dispatched_at.is_(None),
            )
            .values(dispatched_at=utcnow())
        )
    return result.rowcount == 1


def execute_scheduled_call(
    db: Session,
    call_id: UUID,
    client: Optional[VapiClient] = None,
) -> Dict[str, Any]:
    """
    Returns:
        {"success": bool, "callId": str, ...} with ``vapiCallId`` on success,
        ``alreadyProcessed`` when the call left the queue earlier, or ``error``.
    """
    client = client or vapi_client
    call = db.get(ScheduledDischargeCall, call_id)
    if call is None:
        logger.error(f"Scheduled call not found: {call_id}")
        return {"success": False, "callId": str(call_id), "error": "Scheduled call not found"}

    if call.status != CallStatus.QUEUED or call.vapi_call_id:
        logger.warning(f"Call {call_id} already processed (status={call.status.value})")
        return {
            "success": True,
            "callId": str(call_id),
            "alreadyProcessed": True,
            "status": call.status.value,
        }

    assistant_id = call.assistant_id or settings.vapi_outbound_assistant_id
    phone_number_id = (call.meta or {}).get("phone_number_id") or settings.vapi_phone_number_id
    if not assistant_id:
        return {"success": False, "callId": str(call_id), "error": "Missing assistant_id configuration"}
    if not phone_number_id:
        return {"success": False, "callId": str(call_id), "error": "Missing phone_number_id configuration"}
    if not call.customer_phone:
        return {"success": False, "callId": str(call_id), "error": "Missing customer phone number"}

    # a redelivered ETA task can run alongside the original
    if not _claim(db, call_id):
        logger.warning(f"Call {call_id} already claimed by another worker")
        return {
            "success": True,
            "callId": str(call_id),
            "alreadyProcessed": True,
            "status": call.status.value,
        }

    metadata = dict(call.meta or {})
    try:
        response = client.create_phone_call(
            phone_number=call.customer_phone,
            assistant_id=assistant_id,
            phone_number_id=phone_number_id,
            variable_values=call.dynamic_variables or None,
            metadata={"scheduled_call_id": str(call.id), "case_id": str(call.case_id) if call.case_id else None},
        )
    except ExternalServiceError as e:
        logger.error(f"Vapi call failed for scheduled call {call_id}: {e}")
        with transaction(db):
            call.status = CallStatus.FAILED
            call.meta = {**metadata, "executed_at": to_iso(utcnow()), "failed_at": to_iso(utcnow()), "error": str(e)}
        return {"success": False, "callId": str(call_id), "error": str(e)}

    with transaction(db):
        call.vapi_call_id = response["id"]
        call.status = map_vapi_status(response.get("status"))
        call.started_at = parse_iso(response.get("startedAt"))
        call.meta = {**metadata, "executed_at": to_iso(utcnow())}

    logger.info(f"Scheduled call {call_id} placed as Vapi call {response['id']}")
    return {
        "success": True,
        "callId": str(call_id),
        "vapiCallId": response["id"],
        "status": response.get("status"),
    }
