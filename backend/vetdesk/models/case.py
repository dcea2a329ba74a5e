"""
Case models: the patient visit and the clinical documents attached to it.
"""

import enum
import uuid

from sqlalchemy import Column, String, Boolean, DateTime, Text, Uuid, Enum as SQLEnum, ForeignKey
from sqlalchemy.orm import relationship

from ..core.clock import utcnow
from ..core.database import Base, JSONType


class CaseStatus(str, enum.Enum):
    DRAFT = "draft"
    ONGOING = "ongoing"
    COMPLETED = "completed"


class Case(Base):
    """
    A patient visit driving discharge summaries and follow-up calls.

    Attributes:
        source: Where the case came from (manual, idexx_neo, idexx_extension, ...)
        meta: Free-form source payload (IDEXX consultation, raw entities)
        entity_extraction: Structured entities extracted by the LLM
        is_urgent: Flagged from a follow-up call's structured output
        urgent_reason_summary: Short LLM summary explaining the urgent flag
    """

    __tablename__ = "cases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    clinic_id = Column(Uuid, ForeignKey("clinics.id", ondelete="SET NULL"), nullable=True)
    status = Column(SQLEnum(CaseStatus, name="case_status", native_enum=False, values_callable=lambda e: [x.value for x in e]), nullable=False, default=CaseStatus.ONGOING)
    source = Column(String(50), nullable=False, default="manual")
    type = Column(String(50), nullable=True)
    meta = Column("metadata", JSONType, nullable=False, default=dict)
    entity_extraction = Column(JSONType, nullable=True)
    is_urgent = Column(Boolean, nullable=False, default=False)
    urgent_reason_summary = Column(Text, nullable=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    patients = relationship("Patient", back_populates="case", cascade="all, delete-orphan")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=True)
    species = Column(String(100), nullable=True)
    breed = Column(String(100), nullable=True)
    owner_name = Column(String(255), nullable=True)
    owner_email = Column(String(255), nullable=True)
    owner_phone = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    case = relationship("Case", back_populates="patients")


class Transcription(Base):
    __tablename__ = "transcriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    transcript = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class SoapNote(Base):
    """SOAP note; client_instructions wins over the four sections for summaries."""

    __tablename__ = "soap_notes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    subjective = Column(Text, nullable=True)
    objective = Column(Text, nullable=True)
    assessment = Column(Text, nullable=True)
    plan = Column(Text, nullable=True)
    client_instructions = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class DischargeSummary(Base):
    __tablename__ = "discharge_summaries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    case_id = Column(Uuid, ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    structured_content = Column(JSONType, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
