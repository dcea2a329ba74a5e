"""
Sends a stored scheduled discharge email and records the outcome.
"""

import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..core.clock import utcnow
from ..core.config import settings
from ..core.transactions import transaction
from ..models import EmailStatus, ScheduledDischargeEmail, User


logger = logging.getLogger(__name__)


def get_email_sender(mode: Optional[str] = None):
    """SMTP sender locally, Resend in production (EMAIL_MODE)."""
    mode = (mode or settings.email_mode).lower()
    if mode == "resend":
        from .resend_email_service import resend_email_service
        return resend_email_service
    from .email_service import email_service
    return email_service


def _claim(db: Session, email_id: UUID) -> bool:
    """Stamp dispatched_at on a queued row; False when another worker got there first."""
    with transaction(db):
        result = db.execute(
            update(ScheduledDischargeEmail)
            .where(
                ScheduledDischargeEmail.id == email_id,
                ScheduledDischargeEmail.status == EmailStatus.QUEUED,
                ScheduledDischargeEmail.dispatched_at.is_(None),
            )
            .values(dispatched_at=utcnow())
        )
    return result.rowcount == 1


def execute_scheduled_email(db: Session, email_id: UUID, sender=None) -> Dict[str, Any]:
    """
    Deliver one queued email.

    Emails that are no longer queued (sent, cancelled) are reported as
    already processed and not re-sent.
    """
    email = db.get(ScheduledDischargeEmail, email_id)
    if email is None:
        logger.error(f"Scheduled email not found: {email_id}")
        return {"success": False, "emailId": str(email_id), "error": "Scheduled email not found"}

    if email.status != EmailStatus.QUEUED:
        logger.warning(f"Email {email_id} already processed (status={email.status.value})")
        return {
            "success": True,
            "emailId": str(email_id),
            "alreadyProcessed": True,
            "status": email.status.value,
        }

    if not _claim(db, email_id):
        logger.warning(f"Email {email_id} already claimed by another worker")
        return {
            "success": True,
            "emailId": str(email_id),
            "alreadyProcessed": True,
            "status": email.status.value,
        }

    user = db.get(User, email.user_id)
    from_name = (user.clinic.name if user and user.clinic else None) or (user.clinic_name if user else None)

    sender = sender or get_email_sender()
    result = sender.send_email(
        to_email=email.recipient_email,
        subject=email.subject,
        html_content=email.html_content,
        text_content=email.text_content,
        from_name=from_name,
    )

    with transaction(db):
        if result.get("success"):
            email.status = EmailStatus.SENT
            email.sent_at = utcnow()
            email.provider_message_id = result.get("message_id")
            email.error_message = None
        else:
            email.status = EmailStatus.FAILED
            email.error_message = result.get("error") or "Unknown error"

    if not result.get("success"):
        logger.error(f"Scheduled email {email_id} failed: {email.error_message}")
        return {"success": False, "emailId": str(email_id), "error": email.error_message}

    logger.info(f"Scheduled email {email_id} sent to {email.recipient_email}")
    return {"success": True, "emailId": str(email_id), "messageId": email.provider_message_id}
