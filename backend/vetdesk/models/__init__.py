"""
SQLAlchemy ORM models for VetDesk.

Importing this package registers every table on the shared Base.
"""

from .user import User, UserRole, UserStatus
from .clinic import Clinic, AssistantMapping, ClinicCredential
from .case import Case, CaseStatus, Patient, Transcription, SoapNote, DischargeSummary
from .call import CallStatus, ScheduledDischargeCall, InboundCall
from .email import EmailStatus, ScheduledDischargeEmail
from .inbound import ClinicMessage, RefillRequest
from .audit_log import AuditLog, AuditAction

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "Clinic",
    "AssistantMapping",
    "ClinicCredential",
    "Case",
    "CaseStatus",
    "Patient",
    "Transcription",
    "SoapNote",
    "DischargeSummary",
    "CallStatus",
    "ScheduledDischargeCall",
    "InboundCall",
    "EmailStatus",
    "ScheduledDischargeEmail",
    "ClinicMessage",
    "RefillRequest",
    "AuditLog",
    "AuditAction",
]
