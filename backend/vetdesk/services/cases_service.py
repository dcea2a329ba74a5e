"""
Case service: ingestion, case lookups and discharge call scheduling.

Entities are plain dicts in the shape the LLM returns:

    {
        "patient": {"name", "species", "breed", "age", "sex", "weight"},
        "owner": {"name", "phone", "email"},
        "clinical": {"diagnoses", "medications", "follow_up_instructions", ...},
        "caseType": str,
        "confidence": {"overall": float},
    }
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.clock import as_utc, to_iso, utcnow
from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..core.transactions import transaction
from ..models import (
    CallStatus,
    Case,
    CaseStatus,
    DischargeSummary,
    Patient,
    ScheduledDischargeCall,
    SoapNote,
    Transcription,
    User,
)
from .llm_client import LLMClient, llm_client
from .phone import normalize_to_e164


logger = logging.getLogger(__name__)


IDEXX_SOURCES = ("idexx_neo", "idexx_extension")
VALID_SPECIES = ("dog", "cat", "bird", "rabbit", "other", "unknown")

STAGGER_MINUTES = 2
STAGGER_WINDOW = timedelta(minutes=2.5)
TEST_MODE_CALL_DELAY_MINUTES = 1

# Existing calls in these states keep their status when rescheduled
ACTIVE_CALL_STATUSES = (CallStatus.IN_PROGRESS, CallStatus.RINGING, CallStatus.COMPLETED)


@dataclass
class CaseWithEntities:
    case: Case
    patient: Optional[Patient]
    entities: Optional[Dict[str, Any]]
    soap_notes: List[SoapNote] = field(default_factory=list)
    discharge_summaries: List[DischargeSummary] = field(default_factory=list)
    transcriptions: List[Transcription] = field(default_factory=list)


# =============================================================================
# Entity helpers
# =============================================================================

def empty_entities() -> Dict[str, Any]:
    return {
        "patient": {"name": None, "species": None, "breed": None},
        "owner": {"name": None, "phone": None, "email": None},
        "clinical": {"diagnoses": [], "medications": []},
        "caseType": "other",
        "confidence": {"overall": 0.0},
    }


def map_idexx_to_entities(data: Dict[str, Any]) -> Dict[str, Any]:
    """Entities from a flat IDEXX Neo appointment payload."""
    species = str(data.get("species") or "unknown").lower()
    if species not in VALID_SPECIES:
        species = "unknown"

    first = data.get("client_first_name") or ""
    last = data.get("client_last_name") or ""
    owner_name = f"{first} {last}".strip() if first and last else (data.get("owner_name") or "Unknown")

    return {
        "patient": {
            "name": data.get("pet_name") or "Unknown",
            "species": species,
            "breed": data.get("breed"),
        },
        "owner": {
            "name": owner_name,
            "phone": data.get("phone_number") or data.get("mobile_number"),
            "email": data.get("email"),
        },
        "clinical": {"diagnoses": [], "medications": []},
        "caseType": "checkup",
        "confidence": {"overall": 0.5},
        "extractedAt": to_iso(utcnow()),
    }


def enrich_entities_with_patient(entities: Optional[Dict[str, Any]], patient: Optional[Patient]) -> None:
    """Overwrite entity fields with database patient values (database wins)."""
    if not entities or patient is None:
        return
    pet = entities.setdefault("patient", {})
    owner = entities.setdefault("owner", {})
    for key, value in (("name", patient.name), ("species", patient.species), ("breed", patient.breed)):
        if value:
            pet[key] = value
    for key, value in (("name", patient.owner_name), ("phone", patient.owner_phone), ("email", patient.owner_email)):
        if value:
            owner[key] = value


def is_entities_incomplete(entities: Optional[Dict[str, Any]]) -> bool:
    if not entities:
        return True
    pet_name = (entities.get("patient") or {}).get("name")
    owner_phone = (entities.get("owner") or {}).get("phone")
    return not pet_name or pet_name == "unknown" or not owner_phone


def generate_summary_from_entities(entities: Dict[str, Any]) -> str:
    clinical = entities.get("clinical") or {}
    parts = []
    if clinical.get("diagnoses"):
        parts.append(f"Diagnoses: {', '.join(clinical['diagnoses'])}.")
    if clinical.get("medications"):
        meds = "; ".join(
            f"{m.get('name')} ({m.get('dosage') or ''}, {m.get('frequency') or ''})"
            for m in clinical["medications"]
        )
        parts.append(f"Medications: {meds}.")
    if clinical.get("follow_up_instructions"):
        parts.append(f"Instructions: {clinical['follow_up_instructions']}")
    return " ".join(parts)


def extract_first_name(name: Optional[str]) -> str:
    if not name or not name.strip():
        return ""
    return name.strip().split()[0]


def _parse_number(value: Any) -> Optional[float]:
    if value is None:
        return None
    match = re.search(r"\d+(\.\d+)?", str(value))
    return float(match.group()) if match else None


def build_dynamic_variables(
    entities: Dict[str, Any],
    clinic_name: str,
    clinic_phone: str,
    emergency_phone: str,
    agent_name: str,
    summary_content: Optional[str],
) -> Dict[str, Any]:
    """Snake_case variable values handed to the outbound Vapi assistant."""
    pet = entities.get("patient") or {}
    owner = entities.get("owner") or {}
    clinical = entities.get("clinical") or {}

    species = pet.get("species")
    if species and species not in ("dog", "cat"):
        species = "other"

    variables = {
        "clinic_name": clinic_name,
        "agent_name": agent_name,
        "pet_name": extract_first_name(pet.get("name")),
        "owner_name": owner.get("name"),
        "appointment_date": "recent visit",
        "call_type": "discharge",
        "clinic_phone": clinic_phone,
        "emergency_phone": emergency_phone,
        "discharge_summary": summary_content or generate_summary_from_entities(entities),
        "medications": ", ".join(
            " ".join(filter(None, [m.get("name"), m.get("dosage"), m.get("frequency")]))
            for m in clinical.get("medications") or []
        ),
        "diagnoses": ", ".join(clinical.get("diagnoses") or []),
        "next_steps": clinical.get("follow_up_instructions"),
        "pet_species": species,
        "pet_age": _parse_number(pet.get("age")),
        "pet_weight": _parse_number(pet.get("weight")),
    }
    return {k: v for k, v in variables.items() if v not in (None, "")}


def determine_scheduled_time(
    requested: Optional[datetime],
    user_delay_minutes: Optional[int],
    test_mode: bool,
    now: datetime,
) -> datetime:
    """
    Resolve when a call should be placed.

    An explicit time must be in the future. Otherwise the user's delay
    override applies, then one minute in test mode, then the deployment
    default.
    """
    if requested is not None:
        requested = as_utc(requested)
        if requested <= now:
            raise ValueError(
                f"Scheduled time must be in the future. Provided: {to_iso(requested)}, Server now: {to_iso(now)}"
            )
        return requested

    if user_delay_minutes is not None:
        return now + timedelta(minutes=user_delay_minutes)
    if test_mode:
        return now + timedelta(minutes=TEST_MODE_CALL_DELAY_MINUTES)
    return now + timedelta(hours=settings.default_call_delay_hours)


# =============================================================================
# Service
# =============================================================================

class CasesService:
    """Case ingestion and discharge call scheduling for one session."""

    def __init__(self, db: Session, llm: Optional[LLMClient] = None):
        self.db = db
        self.llm = llm or llm_client

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, user: User, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a case from raw text or a structured (PIMS) payload.

        Args:
            payload: {"mode": "text"|"structured", "source", "text"|"data", "options"}

        Returns:
            {"caseId": str, "entities": dict}
        """
        source = payload.get("source") or "manual"
        transcript: Optional[str] = None
        meta: Dict[str, Any] = {}

        if payload.get("mode") == "text":
            transcript = payload.get("text") or ""
            entities = self.llm.extract_entities(transcript)
        else:
            data = payload.get("data") or {}
            meta = {"idexx": data} if source in IDEXX_SOURCES else {"raw_data": data}
            if isinstance(data.get("patient"), dict) and isinstance(data.get("clinical"), dict):
                entities = data
            else:
                entities = map_idexx_to_entities(data)

        if not entities:
            raise ValueError("Failed to extract entities from payload")

        pet = entities.get("patient") or {}
        owner = entities.get("owner") or {}

        with transaction(self.db):
            case = Case(
                user_id=user.id,
                clinic_id=user.clinic_id,
                source=source,
                type=entities.get("caseType"),
                status=CaseStatus.ONGOING,
                meta=meta,
                entity_extraction=entities,
            )
            self.db.add(case)
            self.db.flush()

            self.db.add(Patient(
                case_id=case.id,
                user_id=user.id,
                name=pet.get("name"),
                species=pet.get("species"),
                breed=pet.get("breed"),
                owner_name=owner.get("name"),
                owner_email=owner.get("email"),
                owner_phone=owner.get("phone"),
            ))
            if transcript:
                self.db.add(Transcription(case_id=case.id, transcript=transcript))

        logger.info(f"Ingested case {case.id} from {source} ({payload.get('mode')})")
        return {"caseId": str(case.id), "entities": entities}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_case_with_entities(self, case_id: UUID) -> Optional[CaseWithEntities]:
        case = self.db.get(Case, UUID(str(case_id)))
        if case is None:
            return None

        def latest(model):
            return list(self.db.scalars(
                select(model).where(model.case_id == case.id).order_by(model.created_at.desc())
            ))

        return CaseWithEntities(
            case=case,
            patient=case.patients[0] if case.patients else None,
            entities=case.entity_extraction,
            soap_notes=latest(SoapNote),
            discharge_summaries=latest(DischargeSummary),
            transcriptions=latest(Transcription),
        )

    # ------------------------------------------------------------------
    # Call scheduling
    # ------------------------------------------------------------------

    def _client_instructions(self, info: CaseWithEntities) -> Optional[str]:
        note = info.soap_notes[0] if info.soap_notes else None
        if note and note.client_instructions:
            return note.client_instructions
        if note and note.plan:
            return note.plan
        if info.discharge_summaries and info.discharge_summaries[0].content:
            return info.discharge_summaries[0].content
        return None

    def _entities_for_call(self, info: CaseWithEntities) -> Dict[str, Any]:
        entities = copy.deepcopy(info.entities) if info.entities else None

        if is_entities_incomplete(entities) and info.transcriptions and info.transcriptions[0].transcript:
            logger.info(f"Entities incomplete for case {info.case.id}, extracting from transcription")
            try:
                entities = self.llm.extract_entities(info.transcriptions[0].transcript)
            except Exception as e:
                logger.warning(f"Fallback entity extraction failed for case {info.case.id}: {e}")

        if entities is None and info.patient is not None:
            entities = empty_entities()
        if entities is None:
            raise ValueError("Case has no entities")

        enrich_entities_with_patient(entities, info.patient)
        instructions = self._client_instructions(info)
        if instructions:
            entities.setdefault("clinical", {})["follow_up_instructions"] = instructions
        return entities

    def schedule_discharge_call(
        self,
        user: User,
        case_id: UUID,
        scheduled_at: Optional[datetime] = None,
        summary_content: Optional[str] = None,
        clinic_name: Optional[str] = None,
        clinic_phone: Optional[str] = None,
        emergency_phone: Optional[str] = None,
        agent_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> ScheduledDischargeCall:
        """
        Create (or refresh) the follow-up call for a case and queue it.

        In test mode the call goes to the user's test contact and is placed
        immediately; otherwise it is queued on Celery with an ETA.
        """
        info = self.get_case_with_entities(case_id)
        if info is None:
            raise NotFoundError("Case not found")

        entities = self._entities_for_call(info)
        variables = build_dynamic_variables(
            entities,
            clinic_name=clinic_name or "Your Clinic",
            clinic_phone=clinic_phone or "",
            emergency_phone=emergency_phone or clinic_phone or "",
            agent_name=agent_name or "Sarah",
            summary_content=summary_content,
        )

        customer_phone = phone_number or (entities.get("owner") or {}).get("phone") or ""
        if user.test_mode_enabled:
            if not user.test_contact_phone:
                raise ValueError("Test mode is enabled but test contact phone is not configured")
            logger.info(f"Test mode: redirecting call for case {info.case.id} to test contact")
            customer_phone = user.test_contact_phone
        elif not customer_phone:
            raise ValueError("Patient phone number is required to schedule call")

        normalized = normalize_to_e164(customer_phone)
        if not normalized:
            raise ValueError(f"Invalid phone number format: {customer_phone}")

        now = utcnow()
        scheduled_for = determine_scheduled_time(
            scheduled_at, user.default_schedule_delay_minutes, user.test_mode_enabled, now
        )

        # Vapi caps concurrent calls; spread calls that land in the same window
        in_window = len(self.db.scalars(
            select(ScheduledDischargeCall.id).where(
                ScheduledDischargeCall.user_id == user.id,
                ScheduledDischargeCall.status == CallStatus.QUEUED,
                ScheduledDischargeCall.case_id != info.case.id,
                ScheduledDischargeCall.scheduled_for >= scheduled_for - STAGGER_WINDOW,
                ScheduledDischargeCall.scheduled_for <= scheduled_for + STAGGER_WINDOW,
            )
        ).all())
        if in_window:
            scheduled_for = scheduled_for + timedelta(minutes=in_window * STAGGER_MINUTES)
            logger.info(f"Staggered call for case {info.case.id} by {in_window * STAGGER_MINUTES} minutes")

        existing = self.db.scalars(
            select(ScheduledDischargeCall)
            .where(ScheduledDischargeCall.case_id == info.case.id, ScheduledDischargeCall.user_id == user.id)
            .order_by(ScheduledDischargeCall.created_at.desc())
            .limit(1)
        ).first()

        meta = {
            "notes": notes,
            "retry_count": 0,
            "max_retries": 3,
            "phone_number_id": settings.vapi_phone_number_id,
        }

        with transaction(self.db):
            if existing is not None:
                call = existing
                time_changed = as_utc(call.scheduled_for) != scheduled_for
                needs_dispatch = not call.task_id or time_changed
                if call.status not in ACTIVE_CALL_STATUSES:
                    if call.status != CallStatus.QUEUED:
                        # failed or cancelled: the previous attempt's task has already run
                        call.clear_outcome()
                        needs_dispatch = True
                    call.status = CallStatus.QUEUED
                call.customer_phone = normalized
                call.scheduled_for = scheduled_for
                call.assistant_id = settings.vapi_outbound_assistant_id or None
                call.dynamic_variables = variables
                call.meta = meta
                logger.info(f"Updated existing call {call.id} for case {info.case.id}")
            else:
                call = ScheduledDischargeCall(
                    user_id=user.id,
                    case_id=info.case.id,
                    status=CallStatus.QUEUED,
                    customer_phone=normalized,
                    scheduled_for=scheduled_for,
                    assistant_id=settings.vapi_outbound_assistant_id or None,
                    dynamic_variables=variables,
                    meta=meta,
                )
                self.db.add(call)
                needs_dispatch = True

        if needs_dispatch and call.status == CallStatus.QUEUED:
            self._dispatch_call(call, user.test_mode_enabled)
        return call

    def _dispatch_call(self, call: ScheduledDischargeCall, immediate: bool) -> None:
        if immediate:
            from .call_executor import execute_scheduled_call

            result = execute_scheduled_call(self.db, call.id)
            if not result.get("success"):
                logger.error(f"Immediate call execution failed for {call.id}: {result.get('error')}")
            return

        from ..tasks.discharge_tasks import execute_scheduled_call as execute_call_task

        task = execute_call_task.apply_async(args=[str(call.id)], eta=as_utc(call.scheduled_for))
        with transaction(self.db):
            call.task_id = task.id
        logger.info(f"Queued call {call.id} for {to_iso(call.scheduled_for)} (task {task.id})")
