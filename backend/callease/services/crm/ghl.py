"""GoHighLevel CRM client.

Contact upsert, tag merge and note creation against the GoHighLevel v1 REST
API. Every request goes through a circuit breaker so a CRM outage stops
costing a request timeout per job. The client is a no-op when no API key is
configured.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import httpx
import structlog
from aiobreaker import CircuitBreaker, CircuitBreakerError

from callease.core.config import settings

logger = structlog.get_logger()


class CRMError(Exception):
    """Raised when a GoHighLevel request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GoHighLevelClient:
    """Async client for GoHighLevel contacts and notes."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.GHL_API_KEY
        self.base_url = base_url or settings.GHL_BASE_URL
        self.timeout = timeout or settings.GHL_TIMEOUT
        self.breaker = breaker or CircuitBreaker(
            fail_max=settings.GHL_CIRCUIT_FAILURE_THRESHOLD,
            timeout_duration=timedelta(seconds=settings.GHL_CIRCUIT_RECOVERY_TIMEOUT),
            name="gohighlevel_api",
        )
        self._client: httpx.AsyncClient | None = None

        if not self.api_key:
            logger.warning("ghl_disabled", reason="GHL_API_KEY not configured")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Version": settings.GHL_API_VERSION,
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=httpx.Timeout(self.timeout, connect=5.0),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        not_found_ok: bool = False,
    ) -> dict[str, Any] | None:
        """Send one request through the circuit breaker.

        Returns:
            Decoded JSON body, or None for a tolerated 404.

        Raises:
            CRMError: On transport errors, error statuses, or an open circuit.
        """
        try:
            response = await self.breaker.call_async(
                self._send, method, path, params, json, not_found_ok
            )
        except CircuitBreakerError as e:
            raise CRMError("GoHighLevel circuit open") from e
        except httpx.HTTPStatusError as e:
            raise CRMError(
                f"GoHighLevel {method} {path} failed: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise CRMError(f"GoHighLevel request error: {e}") from e

        if response is None:
            return None
        if not response.content:
            return {}
        data = response.json()
        return data if isinstance(data, dict) else {}

    async def _send(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None,
        json: dict[str, Any] | None,
        not_found_ok: bool,
    ) -> httpx.Response | None:
        response = await self._ensure_client().request(method, path, params=params, json=json)
        if response.status_code == 404 and not_found_ok:  # noqa: PLR2004
            return None
        response.raise_for_status()
        return response

    async def lookup_contact(
        self, email: str | None = None, phone: str | None = None
    ) -> dict[str, Any] | None:
        """Find the first contact matching an email or phone number."""
        if not self.enabled:
            return None
        if not email and not phone:
            raise ValueError("email or phone is required")

        params = {"email": email} if email else {"phone": str(phone)}
        data = await self._request("GET", "/contacts/lookup", params=params, not_found_ok=True)
        contacts = (data or {}).get("contacts") or []
        if not contacts:
            logger.debug("ghl_contact_not_found", **params)
            return None
        return contacts[0]

    async def get_contact(self, contact_id: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        data = await self._request("GET", f"/contacts/{contact_id}", not_found_ok=True)
        if data is None:
            return None
        return data.get("contact") or data

    async def create_contact(self, contact: dict[str, Any]) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        if not contact.get("email") and not contact.get("phone"):
            raise ValueError("email or phone is required")

        payload = {k: v for k, v in contact.items() if v is not None}
        if "name" not in payload and ("firstName" in payload or "lastName" in payload):
            payload["name"] = f"{payload.get('firstName', '')} {payload.get('lastName', '')}".strip()

        data = await self._request("POST", "/contacts/", json=payload)
        created = (data or {}).get("contact") or data
        if not created or not created.get("id"):
            raise CRMError("GoHighLevel create response did not include a contact id")

        logger.info("ghl_contact_created", contact_id=created["id"])
        return created

    async def update_contact(self, contact_id: str, updates: dict[str, Any]) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        payload = {k: v for k, v in updates.items() if v is not None}
        if not payload:
            raise ValueError("updates must not be empty")

        data = await self._request("PUT", f"/contacts/{contact_id}", json=payload)
        updated = (data or {}).get("contact") or data or {}
        updated.setdefault("id", contact_id)
        logger.info("ghl_contact_updated", contact_id=contact_id, fields=sorted(payload))
        return updated

    async def create_or_update_contact(self, contact: dict[str, Any]) -> dict[str, Any] | None:
        """Look the contact up by email (or phone), then update or create it.

        Tags on an existing contact are merged rather than replaced.
        """
        if not self.enabled:
            return None

        email = contact.get("email")
        phone = contact.get("phone")
        existing = await self.lookup_contact(email=email, phone=None if email else phone)
        if existing is None:
            return await self.create_contact(contact)

        updates = {k: v for k, v in contact.items() if k not in ("email", "phone") and v is not None}
        if not updates:
            return existing
        if updates.get("tags"):
            updates["tags"] = sorted(set(existing.get("tags") or []) | set(updates["tags"]))
        return await self.update_contact(existing["id"], updates)

    async def add_tags(self, contact_id: str, tags: list[str]) -> bool:
        """Merge ``tags`` into the contact's existing tags.

        Returns:
            True when the contact now carries every tag, False if it was not found.
        """
        if not self.enabled:
            return False
        if not tags:
            raise ValueError("tags must not be empty")

        current = await self.get_contact(contact_id)
        if current is None:
            logger.warning("ghl_add_tags_contact_missing", contact_id=contact_id)
            return False

        existing = set(current.get("tags") or [])
        merged = existing | set(tags)
        if merged == existing:
            return True

        await self.update_contact(contact_id, {"tags": sorted(merged)})
        return True

    async def create_note(self, contact_id: str, body: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        if not body:
            raise ValueError("note body must not be empty")

        data = await self._request("POST", f"/contacts/{contact_id}/notes", json={"body": body})
        logger.info("ghl_note_created", contact_id=contact_id, note_id=(data or {}).get("id"))
        return data


__all__ = ["CRMError", "GoHighLevelClient"]
