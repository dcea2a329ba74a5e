"""
Clinic models: branding, voice assistant routing and stored PIMS credentials.
"""

import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Text, Uuid, ForeignKey
from sqlalchemy.orm import relationship

from ..core.clock import utcnow
from ..core.database import Base


class Clinic(Base):
    """
    Veterinary clinic.

    Attributes:
        name: Display name used in emails and voice greetings
        phone: Front desk number read out by the voice agent
        primary_color: Hex brand colour for discharge emails
        inbound_assistant_id: Vapi assistant that answers this clinic's line
    """

    __tablename__ = "clinics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    email = Column(String(255), nullable=True)
    primary_color = Column(String(20), nullable=True)
    logo_url = Column(String(500), nullable=True)
    email_header_text = Column(Text, nullable=True)
    email_footer_text = Column(Text, nullable=True)
    inbound_assistant_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Clinic(id={self.id}, name={self.name})>"


class AssistantMapping(Base):
    """Maps an inbound Vapi assistant id to the clinic (and owner) it serves."""

    __tablename__ = "vapi_assistant_mappings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    assistant_id = Column(String(100), nullable=False, index=True)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    clinic = relationship("Clinic", lazy="joined")


class ClinicCredential(Base):
    """
    PIMS login stored for the browser extension sync.

    The password is only ever persisted as an AES-256-GCM envelope.
    """

    __tablename__ = "clinic_credentials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider = Column(String(50), nullable=False, default="idexx")
    username = Column(String(255), nullable=False)
    password_encrypted = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
