"""
Voice call models.

Outbound discharge follow-up calls and inbound calls answered by the
clinic's voice assistant are stored in separate tables that share the
same call-outcome columns.
"""

import enum
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Float, Text, Uuid, Enum as SQLEnum, ForeignKey

from ..core.clock import utcnow
from ..core.database import Base, JSONType


class CallStatus(str, enum.Enum):
    """Internal call lifecycle, mapped from Vapi statuses and ended reasons."""
    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _call_status_column():
    return Column(
        SQLEnum(CallStatus, name="call_status", native_enum=False, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
        default=CallStatus.QUEUED,
        index=True,
    )


class CallOutcomeMixin:
    """Columns written from end-of-call reports."""

    vapi_call_id = Column(String(100), nullable=True, unique=True, index=True)
    ended_reason = Column(String(255), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    recording_url = Column(String(1000), nullable=True)
    stereo_recording_url = Column(String(1000), nullable=True)
    transcript = Column(Text, nullable=True)
    transcript_messages = Column(JSONType, nullable=True)
    call_analysis = Column(JSONType, nullable=True)
    summary = Column(Text, nullable=True)
    success_evaluation = Column(String(255), nullable=True)
    structured_data = Column(JSONType, nullable=True)
    user_sentiment = Column(String(20), nullable=True)
    cost = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    OUTCOME_FIELDS = (
        "vapi_call_id", "ended_reason", "started_at", "ended_at", "duration_seconds",
        "recording_url", "stereo_recording_url", "transcript", "transcript_messages",
        "call_analysis", "summary", "success_evaluation", "structured_data",
        "user_sentiment", "cost",
    )

    def clear_outcome(self) -> None:
        """Forget the previous attempt so the row can be placed again."""
        for field in self.OUTCOME_FIELDS:
            setattr(self, field, None)


class ScheduledDischargeCall(CallOutcomeMixin, Base):
    """
    Outbound follow-up call scheduled after a discharge.

    Attributes:
        case_id: Case the call follows up on
        customer_phone: E.164 number dialled
        scheduled_for: When the call should be placed
        dynamic_variables: Variables passed to the assistant prompt
        task_id: Celery task id of the deferred dial
        urgent_reason_summary: Why the call was flagged urgent, when it was
        dispatched_at: Set by the worker that claimed the row to dial it
    """

    __tablename__ = "scheduled_discharge_calls"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=True, index=True)
    status = _call_status_column()
    customer_phone = Column(String(50), nullable=False)
    scheduled_for = Column(DateTime(timezone=True), nullable=False)
    assistant_id = Column(String(100), nullable=True)
    dynamic_variables = Column(JSONType, nullable=False, default=dict)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    task_id = Column(String(255), nullable=True)
    urgent_reason_summary = Column(Text, nullable=True)
    dispatched_at = Column(DateTime(timezone=True), nullable=True)

    OUTCOME_FIELDS = CallOutcomeMixin.OUTCOME_FIELDS + ("urgent_reason_summary", "dispatched_at")


class InboundCall(CallOutcomeMixin, Base):
    """Inbound call answered by a clinic's voice assistant."""

    __tablename__ = "inbound_vapi_calls"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    clinic_name = Column(String(255), nullable=True)
    assistant_id = Column(String(100), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    status = _call_status_column()
