"""
Vapi call lifecycle webhook.

Receives status-update, end-of-call-report and hang events for outbound
discharge calls and inbound clinic calls. Processing failures are logged and
still acknowledged with 200 so Vapi does not retry storm the endpoint; only
an unreadable body is answered with 500.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..core.auth import verify_vapi_signature
from ..core.database import get_db
from ..core.transactions import safe_rollback
from ..services.vapi_webhooks import VapiWebhookService


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


def get_vapi_webhook_service(db: Session = Depends(get_db)) -> VapiWebhookService:
    return VapiWebhookService(db)


@router.post(
    "/vapi",
    summary="Vapi Call Webhook",
    dependencies=[Depends(verify_vapi_signature)],
)
async def vapi_webhook(
    request: Request,
    service: VapiWebhookService = Depends(get_vapi_webhook_service),
):
    """
    Apply a Vapi webhook event to the matching call record.

    Returns:
        {"success": true, "message": "Webhook processed"}
    """
    try:
        payload = json.loads(await request.body())
        if not isinstance(payload, dict):
            raise ValueError("Webhook body must be a JSON object")
    except ValueError as e:
        logger.error(f"Invalid VAPI webhook body: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    try:
        event_type = service.handle(payload)
        if event_type:
            logger.debug(f"Processed VAPI {event_type} event")
    except Exception as e:
        logger.error(f"VAPI webhook processing error: {e}", exc_info=True)
        safe_rollback(service.db)

    return {"success": True, "message": "Webhook processed"}


@router.get("/vapi", summary="Test Vapi Webhook")
async def test_vapi_webhook():
    """Verify the webhook is reachable."""
    return {"status": "ok", "message": "VAPI webhook endpoint is active"}
