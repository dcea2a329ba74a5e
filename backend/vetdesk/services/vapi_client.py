"""
Vapi REST client for placing outbound discharge follow-up calls.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.config import settings
from ..core.exceptions import ExternalServiceError


logger = logging.getLogger(__name__)


class VapiClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.api_key = api_key if api_key is not None else settings.vapi_api_key
        self.base_url = (base_url or settings.vapi_base_url).rstrip("/")
        self.timeout = timeout

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
        reraise=True,
    )
    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(
                f"{self.base_url}{path}",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )
        if response.status_code >= 400:
            raise ExternalServiceError("vapi", f"HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as e:
            raise ExternalServiceError("vapi", "response was not JSON") from e

    def create_phone_call(
        self,
        phone_number: str,
        assistant_id: str,
        phone_number_id: str,
        variable_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Start an outbound call.

        Returns the Vapi call object; ``id`` and ``status`` are always present.
        """
        if not self.api_key:
            raise ExternalServiceError("vapi", "Vapi API key not configured")

        payload: Dict[str, Any] = {
            "assistantId": assistant_id,
            "phoneNumberId": phone_number_id,
            "customer": {"number": phone_number},
        }
        if variable_values:
            payload["assistantOverrides"] = {"variableValues": variable_values}
        if metadata:
            payload["metadata"] = metadata

        try:
            data = self._post("/call", payload)
        except httpx.HTTPError as e:
            raise ExternalServiceError("vapi", f"request failed: {e}") from e

        if not isinstance(data, dict) or "id" not in data:
            raise ExternalServiceError("vapi", "unexpected response shape")

        logger.info(f"Vapi call created: {data['id']} ({data.get('status')})")
        return data


# Global service instance
vapi_client = VapiClient()
