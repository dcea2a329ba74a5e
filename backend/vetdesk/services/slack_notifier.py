"""
Slack notifications for events the front desk should see right away.

Notifications are fire-and-forget: the message is handed to Celery and the
caller moves on. Broker outages are logged, never raised, so a webhook that
detected a booking still acknowledges the vendor.
"""

import logging
from typing import Any, Optional

import httpx

from ..core.config import settings
from .phone import format_phone_number


logger = logging.getLogger(__name__)


def is_appointment_booked(structured_data: Optional[dict[str, Any]]) -> bool:
    """
    Whether an inbound call's structured output reports a booking.

    The assistant writes either an explicit appointment_booked flag or an
    appointment_data object carrying at least a date.
    """
    if not isinstance(structured_data, dict):
        return False
    if structured_data.get("appointment_booked") is True:
        return True
    appointment = structured_data.get("appointment_data")
    return isinstance(appointment, dict) and bool(appointment.get("date"))


def build_appointment_message(
    clinic_name: Optional[str],
    caller_phone: Optional[str],
    structured_data: dict[str, Any],
    call_id: Optional[str] = None,
) -> dict[str, Any]:
    """Block Kit payload for a booked appointment."""
    appointment = structured_data.get("appointment_data") or {}
    client_name = appointment.get("client_name") or structured_data.get("caller_name") or "Unknown caller"
    pet_name = appointment.get("patient_name") or structured_data.get("pet_name") or "Unknown pet"
    when = " ".join(str(v) for v in (appointment.get("date"), appointment.get("time")) if v) or "time not captured"
    reason = appointment.get("reason") or structured_data.get("reason_for_visit")

    fields = [
        {"type": "mrkdwn", "text": f"*Client:*\n{client_name}"},
        {"type": "mrkdwn", "text": f"*Pet:*\n{pet_name}"},
        {"type": "mrkdwn", "text": f"*When:*\n{when}"},
        {"type": "mrkdwn", "text": f"*Phone:*\n{format_phone_number(caller_phone)}"},
    ]
    blocks: list[dict[str, Any]] = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": f"New appointment booked - {clinic_name or 'Clinic'}"},
        },
        {"type": "section", "fields": fields},
    ]
    if reason:
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": f"*Reason:* {reason}"}})
    if call_id:
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"Call `{call_id}`"}]})

    return {
        "text": f"New appointment booked for {pet_name} ({client_name}) at {when}",
        "blocks": blocks,
    }


def post_to_slack(payload: dict[str, Any], webhook_url: Optional[str] = None) -> dict[str, Any]:
    """
    POST a payload to a Slack incoming webhook.

    Returns:
        {"success": True} or {"success": False, "error": "..."}
    """
    url = webhook_url or settings.slack_webhook_url
    if not url:
        return {"success": False, "error": "Slack webhook URL not configured"}

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(url, json=payload)
        if response.status_code >= 400:
            logger.error(f"Slack webhook returned {response.status_code}: {response.text}")
            return {"success": False, "error": f"HTTP {response.status_code}"}
        return {"success": True}
    except httpx.TimeoutException:
        logger.error("Slack webhook timed out")
        return {"success": False, "error": "Request timed out"}
    except httpx.RequestError as e:
        logger.error(f"Slack webhook request failed: {e}")
        return {"success": False, "error": str(e)}


class SlackNotifier:
    """Dispatches Slack messages through the notifications queue."""

    def __init__(self, enabled: Optional[bool] = None):
        self.enabled = settings.slack_enabled if enabled is None else enabled

    def _dispatch(self, payload: dict[str, Any]) -> bool:
        if not self.enabled:
            logger.debug("Slack notifications disabled; skipping")
            return False
        from ..tasks.notification_tasks import post_slack_message

        try:
            post_slack_message.delay(payload)
            return True
        except Exception as e:
            logger.error(f"Failed to queue Slack notification: {e}")
            return False

    def notify_appointment_booked(
        self,
        clinic_name: Optional[str],
        caller_phone: Optional[str],
        structured_data: dict[str, Any],
        call_id: Optional[str] = None,
    ) -> bool:
        """
        Queue a booking notification.

        Returns:
            True if the message was handed to the queue
        """
        payload = build_appointment_message(clinic_name, caller_phone, structured_data, call_id)
        queued = self._dispatch(payload)
        if queued:
            logger.info(f"Queued Slack booking notification for call {call_id}")
        return queued


# Global service instance
slack_notifier = SlackNotifier()
