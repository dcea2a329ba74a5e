"""
Scheduled discharge email model.
"""

import enum
import uuid

from sqlalchemy import Column, String, DateTime, Text, Uuid, Enum as SQLEnum, ForeignKey

from ..core.clock import utcnow
from ..core.database import Base, JSONType


class EmailStatus(str, enum.Enum):
    QUEUED = "queued"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ScheduledDischargeEmail(Base):
    """
    Discharge email waiting for (or past) delivery.

    Attributes:
        recipient_email: Actual delivery address (test contact in test mode)
        scheduled_for: Earliest send time
        meta: Test-mode bookkeeping (original recipient) and delivery details
        task_id: Celery task id of the deferred send
        dispatched_at: Set by the worker that claimed the row to send it
    """

    __tablename__ = "scheduled_discharge_emails"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=True, index=True)
    recipient_email = Column(String(255), nullable=False)
    recipient_name = Column(String(255), nullable=True)
    subject = Column(String(500), nullable=False)
    html_content = Column(Text, nullable=False)
    text_content = Column(Text, nullable=True)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    status = Column(SQLEnum(EmailStatus, name="email_status", native_enum=False, values_callable=lambda e: [x.value for x in e]), nullable=False, default=EmailStatus.QUEUED, index=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    task_id = Column(String(255), nullable=True)
    provider_message_id = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
