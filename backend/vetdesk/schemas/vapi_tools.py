"""
Inbound voice assistant tool schemas.

Validated after tool arguments are pulled out of the Vapi envelope, so the
field names match what the assistant's tool definitions send.
"""

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field


MessageType = Literal["general", "billing", "records", "refill", "clinical", "other"]
PharmacyPreference = Literal["pickup", "external_pharmacy"]
Urgency = Literal["critical", "urgent", "monitor"]
TriageAction = Literal["sent_to_er", "scheduled_appointment", "home_care_advised"]
Species = Literal["dog", "cat", "other"]


class ToolContext(BaseModel):
    """Routing fields every tool accepts."""

    model_config = {"str_strip_whitespace": True}

    assistant_id: Optional[str] = Field(default=None, description="Vapi assistant that placed the call")
    clinic_id: Optional[UUID] = Field(default=None, description="Explicit clinic override")
    vapi_call_id: Optional[str] = Field(default=None, description="Vapi call id for traceability")


class LeaveMessageInput(ToolContext):
    """Callback message left with the front desk."""

    client_name: str = Field(..., min_length=1)
    client_phone: str = Field(..., min_length=1)
    pet_name: Optional[str] = None
    message: str = Field(..., min_length=1)
    is_urgent: bool = False
    message_type: MessageType = "general"
    best_callback_time: Optional[str] = None
    notes: Optional[str] = None


class RefillRequestInput(ToolContext):
    """Prescription refill request."""

    client_name: str = Field(..., min_length=1)
    client_phone: str = Field(..., min_length=1)
    pet_name: str = Field(..., min_length=1)
    species: Optional[str] = None
    medication_name: str = Field(..., min_length=1)
    medication_strength: Optional[str] = None
    pharmacy_preference: PharmacyPreference = "pickup"
    pharmacy_name: Optional[str] = None
    last_refill_date: Optional[str] = None
    notes: Optional[str] = None


class EmergencyTriageInput(ToolContext):
    """Emergency triage outcome recorded by the emergency agent."""

    caller_name: str = Field(..., min_length=1)
    caller_phone: str = Field(..., min_length=1)
    pet_name: str = Field(..., min_length=1)
    species: Species = "other"
    symptoms: str = Field(..., min_length=1)
    urgency: Urgency
    action_taken: TriageAction
    er_referred: bool = False
    notes: Optional[str] = None
