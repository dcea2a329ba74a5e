"""
LLM client for clinical text processing.

Talks to an OpenAI-compatible chat completions endpoint and is used for:
    - entity extraction from transcripts and consultation notes
    - discharge summary generation from SOAP notes
    - short urgent-reason summaries from follow-up call transcripts

Transport errors and timeouts are retried by tenacity; everything else is
raised as ExternalServiceError.
"""

import json
import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import settings
from ..core.exceptions import ExternalServiceError


logger = logging.getLogger(__name__)


ENTITY_EXTRACTION_PROMPT = """You extract structured data from veterinary clinical text.
Return JSON with keys:
  patient: {name, species, breed, age, sex, weight}
  owner: {name, phone, email}
  clinical: {chief_complaint, diagnoses, medications: [{name, dosage, frequency, duration}],
             procedures, follow_up_instructions, recheck_date}
  caseType: one of checkup, surgery, dental, emergency, vaccination, euthanasia, other
  confidence: {overall} as a number between 0 and 1
Use null for anything not stated. Do not invent values."""

DISCHARGE_SUMMARY_PROMPT = """You write discharge instructions for pet owners.
Using the clinical notes and extracted entities, return JSON with keys:
  patientName, visitSummary, diagnosis, medications: [{name, instructions}],
  homeCare: [..], warningSigns: [..], followUp, plainText
plainText is the full summary as friendly plain prose for an email body.
Write at a reading level suitable for any pet owner."""

URGENT_REASON_PROMPT = """A follow-up call with a pet owner was flagged as urgent.
In one or two sentences, state what the owner reported that needs the
veterinary team's attention. Plain text only."""


class LLMClient:
    """
    Thin chat-completions client.

    Example:
        entities = llm_client.extract_entities(transcript_text)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
        reraise=True,
    )
    def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                f"{self.base_url}/chat/completions",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        if response.status_code >= 400:
            raise ExternalServiceError("llm", f"HTTP {response.status_code}: {response.text[:200]}")
        return response.json()

    def complete(self, system: str, user: str, json_mode: bool = False) -> str:
        """Run one chat completion and return the message content."""
        if not self.api_key:
            raise ExternalServiceError("llm", "LLM API key not configured")

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": 0.2,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            data = self._post(payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError("llm", f"request failed: {e}") from e

        try:
            return data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError("llm", "unexpected response shape") from e

    def complete_json(self, system: str, user: str) -> dict[str, Any]:
        content = self.complete(system, user, json_mode=True)
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ExternalServiceError("llm", "response was not valid JSON") from e
        if not isinstance(parsed, dict):
            raise ExternalServiceError("llm", "response JSON was not an object")
        return parsed

    # ------------------------------------------------------------------
    # Use cases
    # ------------------------------------------------------------------

    def extract_entities(self, text: str) -> dict[str, Any]:
        logger.info(f"Extracting entities from {len(text)} chars of clinical text")
        return self.complete_json(ENTITY_EXTRACTION_PROMPT, text)

    def generate_discharge_summary(
        self,
        soap_content: Optional[str],
        entities: Optional[dict[str, Any]] = None,
        patient_data: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Returns:
            {"structured": {...}, "plain_text": str}
        """
        user = (
            f"Clinical notes:\n{soap_content or '(none)'}\n\n"
            f"Extracted entities:\n{json.dumps(entities or {}, default=str)}\n\n"
            f"Patient record:\n{json.dumps(patient_data or {}, default=str)}"
        )
        structured = self.complete_json(DISCHARGE_SUMMARY_PROMPT, user)
        plain_text = structured.pop("plainText", None) or structured.get("visitSummary") or ""
        return {"structured": structured, "plain_text": plain_text}

    def summarize_urgent_reason(self, transcript: str) -> str:
        return self.complete(URGENT_REASON_PROMPT, transcript).strip()


# Global service instance
llm_client = LLMClient()
