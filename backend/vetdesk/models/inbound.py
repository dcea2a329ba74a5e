"""
Records created by the inbound voice assistant's tools.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Text, Uuid, ForeignKey

from ..core.clock import utcnow
from ..core.database import Base, JSONType


class ClinicMessage(Base):
    """
    Message left for the clinic (general messages and emergency triage logs).

    Attributes:
        message_type: general, billing, appointment, clinical, emergency_triage ...
        priority: normal or urgent
        triage_data: Urgency, symptoms and action taken (emergency logs only)
    """

    __tablename__ = "clinic_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    vapi_call_id = Column(String(100), nullable=True, index=True)
    caller_name = Column(String(255), nullable=True)
    caller_phone = Column(String(50), nullable=True)
    pet_name = Column(String(255), nullable=True)
    message_content = Column(Text, nullable=False)
    message_type = Column(String(50), nullable=False, default="general")
    priority = Column(String(20), nullable=False, default="normal")
    status = Column(String(20), nullable=False, default="new")
    triage_data = Column(JSONType, nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class RefillRequest(Base):
    """Prescription refill requested over the phone."""

    __tablename__ = "refill_requests"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, index=True)
    vapi_call_id = Column(String(100), nullable=True, index=True)
    client_name = Column(String(255), nullable=False)
    client_phone = Column(String(50), nullable=False)
    pet_name = Column(String(255), nullable=False)
    species = Column(String(100), nullable=True)
    medication_name = Column(String(255), nullable=False)
    pharmacy_preference = Column(String(50), nullable=False, default="pickup")
    pharmacy_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="pending")
    is_urgent = Column(Boolean, nullable=False, default=False)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
