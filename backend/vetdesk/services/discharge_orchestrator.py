"""
Discharge orchestration.

Runs the discharge pipeline for one case:

    ingest -> extractEntities -> generateSummary -> prepareEmail -> scheduleEmail
                             \\-> scheduleCall

Each step is toggled per request. Independent steps run in asyncio batches
when ``parallel`` is set. A failed step marks its dependents skipped, and
every step failure is collected into the result instead of aborting the run.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.clock import as_utc, to_iso, utcnow
from ..core.config import settings
from ..core.exceptions import NotFoundError
from ..core.transactions import transaction
from ..models import Case, DischargeSummary, EmailStatus, ScheduledDischargeEmail, User
from ..schemas.discharge import OrchestrationRequest
from .cases_service import IDEXX_SOURCES, CasesService, enrich_entities_with_patient
from .contact import is_valid_email
from .email_templates import create_clinic_branding, render_discharge_email, strip_html
from .execution_plan import STEP_ORDER, ExecutionPlan
from .llm_client import LLMClient, llm_client


logger = logging.getLogger(__name__)


MIN_EXTRACTION_TEXT_LENGTH = 50
SOAP_STALE_AFTER = timedelta(hours=24)
EMAIL_MINIMUM_BUFFER = timedelta(seconds=10)

EUTHANASIA_ERROR = "Euthanasia case detected. Discharge workflow is not applicable for euthanasia cases."

RESULT_KEYS = {
    "ingest": "ingestion",
    "extractEntities": "extractedEntities",
    "generateSummary": "summary",
    "prepareEmail": "email",
    "scheduleEmail": "emailSchedule",
    "scheduleCall": "call",
}


@dataclass
class StepResult:
    step: str
    status: str  # completed | skipped | failed
    duration: int = 0
    data: Any = None
    error: Optional[str] = None


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class DischargeOrchestrator:
    """
    One orchestration run for one user.

    Example:
        orchestrator = DischargeOrchestrator(db, current_user)
        result = await orchestrator.orchestrate(request)
    """

    def __init__(
        self,
        db: Session,
        user: User,
        cases_service: Optional[CasesService] = None,
        llm: Optional[LLMClient] = None,
    ):
        self.db = db
        self.user = user
        self.llm = llm or llm_client
        self.cases = cases_service or CasesService(db, self.llm)
        self.results: Dict[str, StepResult] = {}
        self.plan = ExecutionPlan()
        self.request: Optional[OrchestrationRequest] = None

    # =========================================================================
    # Entry point
    # =========================================================================

    async def orchestrate(self, request: OrchestrationRequest) -> Dict[str, Any]:
        start = time.perf_counter()
        self.request = request
        self.plan = ExecutionPlan(request.steps.to_plan_config())
        self.results = {}

        if request.options.dry_run:
            for step in STEP_ORDER:
                self.results[step] = StepResult(step=step, status="skipped")
            result = self.build_result(start)
            result["metadata"]["plan"] = self.plan.to_dict()
            return result

        try:
            if request.options.parallel:
                await self.execute_parallel()
            else:
                await self.execute_sequential()
            return self.build_result(start)
        except Exception as e:
            logger.error(f"Orchestration failed for user {self.user.id}: {e}", exc_info=True)
            return self.build_error_result(e, start)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _prepare_existing_case(self) -> None:
        """Existing cases count as ingested; supplied email content counts as prepared."""
        existing = self.request.input.existing_case
        if existing is None:
            return

        if "ingest" not in self.results:
            result = await self.execute_step("ingest")
            self.results["ingest"] = result
            if result.status == "completed":
                self.plan.mark_completed("ingest")

        if existing.email_content and "prepareEmail" not in self.results and self.plan.is_enabled("prepareEmail"):
            result = await self.execute_step("prepareEmail")
            self.results["prepareEmail"] = result
            if result.status == "completed":
                self.plan.mark_completed("prepareEmail")
                if "generateSummary" not in self.plan.get_completed_steps():
                    self.plan.mark_completed("generateSummary")

    def _record(self, step: str, result: StepResult) -> None:
        self.results[step] = result
        if result.status == "completed":
            self.plan.mark_completed(step)
        elif result.status == "failed":
            self.plan.mark_failed(step)
            self.mark_dependent_steps_skipped(step)

    def _track_untouched_steps(self) -> None:
        for step in STEP_ORDER:
            self.results.setdefault(step, StepResult(step=step, status="skipped"))

    async def execute_sequential(self) -> None:
        await self._prepare_existing_case()

        for step in STEP_ORDER:
            if not self.plan.should_execute_step(step):
                if self.plan.is_enabled(step) and self.plan.has_failed_dependency(step):
                    self.results.setdefault(
                        step, StepResult(step=step, status="skipped", error="Dependency failed")
                    )
                    continue
                self.results.setdefault(step, StepResult(step=step, status="skipped"))
                continue

            result = await self.execute_step(step)
            self._record(step, result)
            if result.status == "failed" and self.request.options.stop_on_error:
                break

        self._track_untouched_steps()

    async def execute_parallel(self) -> None:
        await self._prepare_existing_case()

        while self.plan.has_remaining_steps():
            batch = self.plan.get_next_batch()
            if not batch:
                break

            for step in batch:
                self.plan.mark_started(step)
            outcomes = await asyncio.gather(
                *(self.execute_step(step) for step in batch), return_exceptions=True
            )

            batch_failed = False
            for step, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    outcome = StepResult(step=step, status="failed", error=str(outcome))
                self._record(step, outcome)
                batch_failed = batch_failed or outcome.status == "failed"

            if batch_failed and self.request.options.stop_on_error:
                for step in batch:
                    self.results.setdefault(
                        step,
                        StepResult(step=step, status="skipped", error="Cancelled due to previous step failure"),
                    )
                break

        self._track_untouched_steps()

    async def execute_step(self, step: str) -> StepResult:
        handlers = {
            "ingest": self.execute_ingestion,
            "extractEntities": self.execute_entity_extraction,
            "generateSummary": self.execute_summary_generation,
            "prepareEmail": self.execute_email_preparation,
            "scheduleEmail": self.execute_email_scheduling,
            "scheduleCall": self.execute_call_scheduling,
        }
        start = time.perf_counter()
        try:
            return await handlers[step](start)
        except Exception as e:
            logger.warning(f"Step {step} failed: {e}")
            return StepResult(step=step, status="failed", duration=_elapsed_ms(start), error=str(e))

    def mark_dependent_steps_skipped(self, failed_step: str) -> None:
        for step in STEP_ORDER:
            if not self.plan.is_enabled(step) or step in self.results:
                continue
            if failed_step in self.plan.get_step_dependencies(step):
                self.results[step] = StepResult(
                    step=step, status="skipped", error=f"Dependency '{failed_step}' failed"
                )

    # =========================================================================
    # Step handlers
    # =========================================================================

    async def execute_ingestion(self, start: float) -> StepResult:
        existing = self.request.input.existing_case
        if existing is not None:
            return StepResult(
                step="ingest", status="completed", duration=_elapsed_ms(start),
                data={"caseId": str(existing.case_id)},
            )

        config = self.plan.get_step_config("ingest")
        if not config or not config.enabled:
            return StepResult(step="ingest", status="skipped")

        raw = self.request.input.raw_data
        payload: Dict[str, Any] = {"mode": raw.mode, "source": raw.source, "options": config.options or None}
        if raw.mode == "text":
            payload["text"] = raw.text or ""
        else:
            payload["data"] = raw.data or {}

        data = self.cases.ingest(self.user, payload)
        return StepResult(step="ingest", status="completed", duration=_elapsed_ms(start), data=data)

    def _extraction_text(self, case: Case) -> tuple[Optional[str], str]:
        transcriptions = self.cases.get_case_with_entities(case.id).transcriptions
        latest = transcriptions[0] if transcriptions else None
        if latest is not None and latest.transcript:
            return latest.transcript, "transcription"

        if case.source in IDEXX_SOURCES:
            notes = ((case.meta or {}).get("idexx") or {}).get("consultation_notes")
            if notes:
                return strip_html(notes), "idexx_consultation_notes"

        return None, "transcription"

    async def execute_entity_extraction(self, start: float) -> StepResult:
        config = self.plan.get_step_config("extractEntities")
        if not config or not config.enabled:
            return StepResult(step="extractEntities", status="skipped")

        case_id = self.get_case_id()
        if not case_id:
            raise ValueError("Case ID required for entity extraction")

        case = self.db.get(Case, UUID(case_id))
        if case is None:
            raise ValueError("Failed to fetch case: Case not found")

        text, source = self._extraction_text(case)
        meta = case.meta or {}
        idexx = meta.get("idexx") or {}
        lowered = (text or "").lower()
        if (
            (meta.get("entities") or {}).get("caseType") == "euthanasia"
            or (case.entity_extraction or {}).get("caseType") == "euthanasia"
            or "euthanasia" in lowered
            or "euthanize" in lowered
            or "euthanasia" in str(idexx.get("appointment_type") or "").lower()
        ):
            logger.warning(f"Euthanasia case detected, blocking discharge for case {case_id}")
            raise ValueError(EUTHANASIA_ERROR)

        force_refresh = bool((config.options or {}).get("forceRefresh"))
        existing = case.entity_extraction
        if (
            not force_refresh
            and existing
            and (existing.get("patient") or {}).get("name")
            and (existing.get("confidence") or {}).get("overall")
        ):
            logger.info(f"Using pre-extracted entities for case {case_id}")
            return StepResult(
                step="extractEntities", status="completed", duration=_elapsed_ms(start),
                data={"caseId": case_id, "entities": existing, "source": "existing"},
            )

        if not text or len(text) < MIN_EXTRACTION_TEXT_LENGTH:
            logger.warning(f"Minimal text for case {case_id}, skipping entity extraction")
            return StepResult(
                step="extractEntities", status="completed", duration=_elapsed_ms(start),
                data={
                    "caseId": case_id,
                    "entities": None,
                    "source": source,
                    "skipped": True,
                    "reason": "Minimal text - using database patient data",
                },
            )

        entities = self.llm.extract_entities(text)

        info = self.cases.get_case_with_entities(case.id)
        enrich_entities_with_patient(entities, info.patient if info else None)

        pet = entities.setdefault("patient", {})
        if not (pet.get("name") or "").strip() or pet.get("name") == "unknown":
            if (idexx.get("pet_name") or "").strip():
                pet["name"] = idexx["pet_name"]
            owner = entities.setdefault("owner", {})
            if not owner.get("name") or owner.get("name") == "unknown":
                full = f"{idexx.get('client_first_name') or ''} {idexx.get('client_last_name') or ''}".strip()
                owner_name = idexx.get("owner_name") or full
                if owner_name:
                    owner["name"] = owner_name

        with transaction(self.db):
            case.entity_extraction = entities

        logger.info(f"Saved extracted entities for case {case_id} ({source})")
        return StepResult(
            step="extractEntities", status="completed", duration=_elapsed_ms(start),
            data={"caseId": case_id, "entities": entities, "source": source},
        )

    async def execute_summary_generation(self, start: float) -> StepResult:
        config = self.plan.get_step_config("generateSummary")
        if not config or not config.enabled:
            return StepResult(step="generateSummary", status="skipped")

        case_id = self.get_case_id()
        if not case_id:
            raise ValueError("Case ID required for summary generation")

        info = self.cases.get_case_with_entities(UUID(case_id))
        if info is None:
            raise NotFoundError("Case not found")

        fresh_entities = None
        extracted = self.results.get("extractEntities")
        if extracted and extracted.status == "completed" and isinstance(extracted.data, dict):
            fresh_entities = extracted.data.get("entities")

        soap_content: Optional[str] = None
        if info.soap_notes:
            note = info.soap_notes[0]
            if note.created_at and utcnow() - as_utc(note.created_at) > SOAP_STALE_AFTER:
                logger.warning(f"SOAP note {note.id} for case {case_id} may be stale")
            if note.client_instructions:
                soap_content = note.client_instructions
            else:
                sections = [
                    f"{label}:\n{value}"
                    for label, value in (
                        ("Subjective", note.subjective),
                        ("Objective", note.objective),
                        ("Assessment", note.assessment),
                        ("Plan", note.plan),
                    )
                    if value
                ]
                soap_content = "\n\n".join(sections) or None
        else:
            logger.warning(f"No SOAP notes found for case {case_id}")

        patient = info.patient
        summary = self.llm.generate_discharge_summary(
            soap_content,
            entities=fresh_entities or info.entities,
            patient_data={
                "name": patient.name if patient else None,
                "species": patient.species if patient else None,
                "breed": patient.breed if patient else None,
                "owner_name": patient.owner_name if patient else None,
            },
        )

        with transaction(self.db):
            row = DischargeSummary(
                case_id=info.case.id,
                user_id=self.user.id,
                content=summary["plain_text"],
                structured_content=summary["structured"],
            )
            self.db.add(row)

        return StepResult(
            step="generateSummary", status="completed", duration=_elapsed_ms(start),
            data={
                "summaryId": str(row.id),
                "content": summary["plain_text"],
                "structuredContent": summary["structured"],
            },
        )

    def _discharge_summary(self, case_id: str) -> Dict[str, Any]:
        generated = self.results.get("generateSummary")
        if generated and isinstance(generated.data, dict) and generated.data.get("content"):
            return {
                "content": generated.data["content"],
                "structuredContent": generated.data.get("structuredContent"),
            }

        summary_id = self.request.input.existing_case.summary_id if self.request.input.existing_case else None
        if summary_id:
            row = self.db.get(DischargeSummary, summary_id)
        else:
            row = self.db.scalars(
                select(DischargeSummary)
                .where(DischargeSummary.case_id == UUID(case_id))
                .order_by(DischargeSummary.created_at.desc())
                .limit(1)
            ).first()

        if row is None or not row.content:
            raise NotFoundError("Discharge summary not found")
        return {"content": row.content, "structuredContent": row.structured_content}

    async def execute_email_preparation(self, start: float) -> StepResult:
        existing = self.request.input.existing_case
        if existing is not None and existing.email_content:
            return StepResult(
                step="prepareEmail", status="completed", duration=_elapsed_ms(start),
                data=existing.email_content.model_dump(),
            )

        config = self.plan.get_step_config("prepareEmail")
        if not config or not config.enabled:
            return StepResult(step="prepareEmail", status="skipped")

        case_id = self.get_case_id()
        if not case_id:
            raise ValueError("Case ID required for email preparation")

        info = self.cases.get_case_with_entities(UUID(case_id))
        if info is None:
            raise NotFoundError("Case not found")

        patient = info.patient
        clinic = self.user.clinic
        branding = create_clinic_branding(
            clinic_name=(clinic.name if clinic else None) or self.user.clinic_name,
            clinic_phone=(clinic.phone if clinic else None) or self.user.clinic_phone,
            clinic_email=(clinic.email if clinic else None) or self.user.clinic_email,
            primary_color=clinic.primary_color if clinic else None,
            logo_url=clinic.logo_url if clinic else None,
            email_header_text=clinic.email_header_text if clinic else None,
            email_footer_text=clinic.email_footer_text if clinic else None,
        )

        summary = self._discharge_summary(case_id)
        email = render_discharge_email(
            summary["content"],
            patient_name=(patient.name if patient else None) or "your pet",
            species=patient.species if patient else None,
            breed=patient.breed if patient else None,
            branding=branding,
            structured_content=summary["structuredContent"],
        )
        return StepResult(step="prepareEmail", status="completed", duration=_elapsed_ms(start), data=email)

    async def execute_email_scheduling(self, start: float) -> StepResult:
        config = self.plan.get_step_config("scheduleEmail")
        if not config or not config.enabled:
            return StepResult(step="scheduleEmail", status="skipped")

        prepared = self.results.get("prepareEmail")
        if not prepared or not isinstance(prepared.data, dict):
            raise ValueError("Email content required for scheduling")
        content = prepared.data

        options = config.options or {}
        case_id = self.get_case_id()
        info = self.cases.get_case_with_entities(UUID(case_id)) if case_id else None
        patient = info.patient if info else None

        recipient_email = options.get("recipientEmail") or (patient.owner_email if patient else None)
        if not recipient_email:
            raise ValueError("Recipient email is required")
        if not is_valid_email(recipient_email):
            raise ValueError(f"Invalid email address format: {recipient_email}")
        recipient_name = patient.owner_name if patient else None

        test_mode = bool(self.user.test_mode_enabled)
        final_email, final_name = recipient_email, recipient_name
        if test_mode:
            if not self.user.test_contact_email:
                raise ValueError(
                    "Test mode is enabled but test contact email is not configured in user settings"
                )
            logger.info(f"Test mode: redirecting email for case {case_id} to test contact")
            final_email = self.user.test_contact_email
            final_name = self.user.test_contact_name or recipient_name

        now = utcnow()
        requested = options.get("scheduledFor")
        if requested is not None:
            requested = as_utc(requested)
            if requested <= now:
                raise ValueError(
                    f"Scheduled time must be in the future. Provided: {to_iso(requested)}, Server now: {to_iso(now)}"
                )
            scheduled_for = requested
        else:
            delay_minutes = self.user.default_schedule_delay_minutes
            if delay_minutes is None:
                delay_minutes = settings.default_schedule_delay_minutes
            scheduled_for = now + max(timedelta(minutes=delay_minutes), EMAIL_MINIMUM_BUFFER)

        with transaction(self.db):
            email = ScheduledDischargeEmail(
                user_id=self.user.id,
                case_id=UUID(case_id) if case_id else None,
                recipient_email=final_email,
                recipient_name=final_name,
                subject=content["subject"],
                html_content=content["html"],
                text_content=content.get("text"),
                scheduled_for=scheduled_for,
                status=EmailStatus.QUEUED,
                meta=(
                    {
                        "test_mode": True,
                        "original_recipient_email": recipient_email,
                        "original_recipient_name": recipient_name,
                    }
                    if test_mode else {}
                ),
            )
            self.db.add(email)

        task_id: Optional[str] = None
        if test_mode:
            try:
                from .email_executor import execute_scheduled_email

                result = execute_scheduled_email(self.db, email.id)
                if not result.get("success"):
                    raise RuntimeError(result.get("error") or "Immediate email execution failed")
            except Exception as e:
                self._delete_scheduled_email(email)
                raise RuntimeError(f"Failed to execute email immediately: {e}") from e
        else:
            try:
                from ..tasks.discharge_tasks import send_scheduled_email

                task_id = send_scheduled_email.apply_async(args=[str(email.id)], eta=scheduled_for).id
            except Exception as e:
                self._delete_scheduled_email(email)
                raise RuntimeError(f"Failed to schedule email delivery: {e}") from e

            try:
                with transaction(self.db):
                    email.task_id = task_id
            except Exception as e:
                # the task is queued; only the tracking id is missing
                logger.error(f"Failed to store task id for email {email.id}: {e}")

        return StepResult(
            step="scheduleEmail", status="completed", duration=_elapsed_ms(start),
            data={
                "emailId": str(email.id),
                "scheduledFor": to_iso(scheduled_for),
                "taskId": task_id,
                "immediateExecution": test_mode,
            },
        )

    def _delete_scheduled_email(self, email: ScheduledDischargeEmail) -> None:
        try:
            with transaction(self.db):
                self.db.delete(email)
        except Exception as e:
            logger.error(f"Failed to roll back scheduled email {email.id}: {e}")

    async def execute_call_scheduling(self, start: float) -> StepResult:
        config = self.plan.get_step_config("scheduleCall")
        if not config or not config.enabled:
            return StepResult(step="scheduleCall", status="skipped")

        case_id = self.get_case_id()
        if not case_id:
            raise ValueError("Case ID required for call scheduling")

        options = config.options or {}
        summary_content = None
        generated = self.results.get("generateSummary")
        if generated and isinstance(generated.data, dict):
            summary_content = generated.data.get("content")

        clinic = self.user.clinic
        clinic_name = (clinic.name if clinic else None) or self.user.clinic_name or "Your Clinic"
        clinic_phone = (clinic.phone if clinic else None) or self.user.clinic_phone or ""

        if self.user.test_mode_enabled and not self.user.test_contact_phone:
            raise ValueError(
                "Test mode is enabled but test contact phone is not configured in user settings"
            )

        now = utcnow()
        scheduled_at = options.get("scheduledFor")
        if scheduled_at is not None:
            scheduled_at = as_utc(scheduled_at)
            if scheduled_at <= now:
                raise ValueError(
                    f"Scheduled time must be in the future. Provided: {to_iso(scheduled_at)}, Server now: {to_iso(now)}"
                )

        call = self.cases.schedule_discharge_call(
            self.user,
            UUID(case_id),
            scheduled_at=scheduled_at,
            summary_content=summary_content,
            clinic_name=clinic_name,
            clinic_phone=clinic_phone,
            emergency_phone=clinic_phone,
            agent_name=self.user.first_name or "Sarah",
            phone_number=options.get("phoneNumber"),
        )
        return StepResult(
            step="scheduleCall", status="completed", duration=_elapsed_ms(start),
            data={"callId": str(call.id), "scheduledFor": to_iso(call.scheduled_for)},
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def get_case_id(self) -> Optional[str]:
        ingested = self.results.get("ingest")
        if ingested and isinstance(ingested.data, dict) and ingested.data.get("caseId"):
            return str(ingested.data["caseId"])
        existing = self.request.input.existing_case if self.request else None
        if existing is not None:
            return str(existing.case_id)
        return None

    def build_result(self, start: float) -> Dict[str, Any]:
        completed: List[str] = []
        skipped: List[str] = []
        failed: List[str] = []
        timings: Dict[str, int] = {}

        for step, result in self.results.items():
            timings[step] = 1 if result.status == "completed" and result.duration == 0 else result.duration
            if result.status == "completed":
                completed.append(step)
            elif result.status == "skipped":
                skipped.append(step)
            elif result.status == "failed":
                failed.append(step)

        data: Dict[str, Any] = {
            "completedSteps": completed,
            "skippedSteps": skipped,
            "failedSteps": failed,
        }
        for step, key in RESULT_KEYS.items():
            result = self.results.get(step)
            data[key] = result.data if result else None

        return {
            "success": not failed,
            "data": data,
            "metadata": {
                "totalProcessingTime": max(_elapsed_ms(start), 1),
                "stepTimings": timings,
                "parallelExecution": bool(self.request and self.request.options.parallel),
                "errors": [
                    {"step": step, "error": self.results[step].error or "Unknown error"}
                    for step in failed
                ],
            },
        }

    def build_error_result(self, error: Exception, start: float) -> Dict[str, Any]:
        result = self.build_result(start)
        result["success"] = False
        result["metadata"]["errors"].append({"step": "orchestration", "error": str(error)})
        return result
