"""Voice provider (Vapi) client and payload models.

Wraps the place-call command and the per-call control URL commands
(answer, reject, end). Commands are not retried: placing a call twice is
not idempotent, and control failures feed the local fallback path.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from callease.core.config import settings
from callease.services.call_registry import CallDirection, CallStatus

logger = structlog.get_logger()

# Provider status -> registry status. Statuses not listed are ignored.
PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.ONGOING,
    "ongoing": CallStatus.ONGOING,
    "forwarding": CallStatus.ONGOING,
    "completed": CallStatus.COMPLETED,
    "ended": CallStatus.ENDED,
}


class VoiceProviderError(Exception):
    """Raised when a voice provider request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ProviderCustomer(BaseModel):
    number: str | None = None


class ProviderMonitor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    control_url: str | None = Field(default=None, alias="controlUrl")
    listen_url: str | None = Field(default=None, alias="listenUrl")


class ProviderCall(BaseModel):
    """Call object as it appears in provider responses and webhooks."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: str | None = None
    direction: str | None = None
    status: str | None = None
    customer: ProviderCustomer | None = None
    monitor: ProviderMonitor | None = None
    assistant_id: str | None = Field(default=None, alias="assistantId")
    agent_id: str | None = Field(default=None, alias="agentId")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    ended_at: datetime | None = Field(default=None, alias="endedAt")
    duration: float | None = None

    @property
    def control_url(self) -> str | None:
        return self.monitor.control_url if self.monitor else None

    @property
    def customer_number(self) -> str | None:
        return self.customer.number if self.customer else None

    @property
    def normalized_status(self) -> CallStatus | None:
        if not self.status:
            return None
        return PROVIDER_STATUS_MAP.get(self.status.lower())

    @property
    def normalized_direction(self) -> CallDirection | None:
        hint = (self.direction or self.type or "").lower()
        if "inbound" in hint:
            return CallDirection.INBOUND
        if "outbound" in hint:
            return CallDirection.OUTBOUND
        return None

    @property
    def assistant(self) -> str | None:
        return self.assistant_id or self.agent_id


class VapiClient:
    """Async client for the Vapi REST API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.VAPI_API_KEY
        self.base_url = base_url or settings.VAPI_BASE_URL
        self.timeout = timeout or settings.VAPI_TIMEOUT
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=httpx.Timeout(self.timeout, connect=5.0),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = self._ensure_client()
        try:
            response = await client.post(url, json=payload)
        except httpx.RequestError as e:
            raise VoiceProviderError(f"Request error: {e}") from e

        if response.status_code >= 400:  # noqa: PLR2004
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise VoiceProviderError(str(message), status_code=response.status_code)

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def place_call(self, phone_number: str) -> ProviderCall:
        """Place an outbound call with the configured assistant.

        Raises:
            VoiceProviderError: If the provider rejects the request.
        """
        payload = {
            "phoneNumberId": settings.VAPI_PHONE_NUMBER_ID,
            "assistantId": settings.OUTBOUND_VAPI_ASSISTANT_ID,
            "customer": {"number": phone_number},
        }
        data = await self._post("/call/phone", payload)
        if not data.get("id"):
            raise VoiceProviderError("Provider response did not include a call id")

        call = ProviderCall.model_validate(data)
        logger.info(
            "provider_call_placed",
            call_id=call.id,
            status=call.status,
            has_control_url=bool(call.control_url),
        )
        return call

    async def answer(self, control_url: str) -> None:
        await self._post(
            control_url,
            {
                "type": "control",
                "control": "answer-call",
                "assistantId": settings.VAPI_INBOUND_ASSISTANT_ID,
            },
        )

    async def reject(self, control_url: str) -> None:
        await self._post(control_url, {"type": "end-call", "reason": "rejected"})

    async def end(self, control_url: str) -> None:
        await self._post(control_url, {"type": "end-call"})
