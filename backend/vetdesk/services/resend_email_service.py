"""
Resend email delivery (EMAIL_MODE=resend).

API Documentation: https://resend.com/docs/api-reference/emails/send-email
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.config import settings


logger = logging.getLogger(__name__)


class ResendEmailService:
    """Service for sending transactional emails through the Resend API."""

    def __init__(self):
        self.api_key = settings.resend_api_key
        self.api_base_url = settings.resend_api_base_url.rstrip("/")
        self.from_email = settings.from_email
        self.from_name = settings.from_name

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.api_base_url and self.from_email)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
        }

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send an email via Resend.

        Returns:
            Dict with success status, message_id, and any error details
        """
        if not self.is_configured:
            logger.error("Resend is not configured. Cannot send email.")
            return {"success": False, "error": "Resend email service is not configured"}

        payload: Dict[str, Any] = {
            "from": f"{from_name or self.from_name} <{self.from_email}>",
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }
        if text_content:
            payload["text"] = text_content

        try:
            logger.info(f"Sending email via Resend to {to_email}, subject: {subject[:50]}...")
            with httpx.Client(timeout=30.0) as client:
                response = client.post(
                    f"{self.api_base_url}/emails",
                    headers=self._get_headers(),
                    json=payload,
                )

            if response.status_code in (200, 201):
                message_id = response.json().get("id", "")
                logger.info(f"Email sent via Resend. To: {to_email}, id: {message_id}")
                return {"success": True, "message_id": message_id, "provider": "resend"}

            logger.error(f"Resend API error: {response.status_code} - {response.text}")
            return {
                "success": False,
                "error": f"Resend API returned {response.status_code}",
                "detail": response.text,
            }

        except httpx.TimeoutException as e:
            logger.error(f"Resend API timeout: {e}")
            return {"success": False, "error": "Resend API request timed out"}
        except httpx.RequestError as e:
            logger.error(f"Resend API request error: {e}")
            return {"success": False, "error": f"Failed to connect to Resend API: {e}"}


resend_email_service = ResendEmailService()
