"""
Celery tasks for deferred discharge work.

Emails and follow-up calls are written to the database first, then queued
here with an ETA of their scheduled time.
"""

import logging
from typing import Any, Dict
from uuid import UUID

from celery import shared_task
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..core.database import SessionLocal
from ..core.exceptions import ExternalServiceError
from ..services.call_executor import execute_scheduled_call as place_scheduled_call
from ..services.email_executor import execute_scheduled_email


logger = logging.getLogger(__name__)


# =============================================================================
# Database Session Context Manager
# =============================================================================

def get_db_session() -> Session:
    """Create a new database session for task execution."""
    return SessionLocal()


# =============================================================================
# Discharge Tasks
# =============================================================================

@shared_task(
    bind=True,
    autoretry_for=(OperationalError, ExternalServiceError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
)
def send_scheduled_email(self, email_id: str) -> Dict[str, Any]:
    """
    Send a queued discharge email at its scheduled time.

    Delivery failures are recorded on the row (status=failed) rather than
    retried, so a broken address is not mailed repeatedly.
    """
    db = get_db_session()
    try:
        result = execute_scheduled_email(db, UUID(email_id))
        logger.info(f"send_scheduled_email {email_id}: {result}")
        return result
    finally:
        db.close()


@shared_task(
    bind=True,
    autoretry_for=(OperationalError, ExternalServiceError),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
    max_retries=3,
    acks_late=True,
)
def execute_scheduled_call(self, call_id: str) -> Dict[str, Any]:
    """Place a queued discharge follow-up call through Vapi."""
    db = get_db_session()
    try:
        result = place_scheduled_call(db, UUID(call_id))
        logger.info(f"execute_scheduled_call {call_id}: {result}")
        return result
    finally:
        db.close()
