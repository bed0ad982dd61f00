"""Stripe payments adapter.

Checkout session creation over the REST API and verification of signed
webhook payloads (``Stripe-Signature: t=<ts>,v1=<hmac-sha256>``).
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any

import httpx
import structlog

from callease.core.config import settings

logger = structlog.get_logger()


class PaymentsProviderError(Exception):
    """Raised when a Stripe request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SignatureVerificationError(Exception):
    """Raised when a webhook signature is missing, malformed or does not match."""


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as e:
                raise SignatureVerificationError("Invalid timestamp in signature header") from e
        elif key == "v1":
            signatures.append(value)

    if timestamp is None or not signatures:
        raise SignatureVerificationError("Unable to extract timestamp and signatures from header")
    return timestamp, signatures


def construct_event(
    payload: bytes,
    sig_header: str,
    secret: str,
    tolerance: int | None = None,
) -> dict[str, Any]:
    """Verify a webhook payload and decode it.

    Args:
        payload: Raw request body
        sig_header: ``Stripe-Signature`` header value
        secret: Endpoint signing secret
        tolerance: Maximum signature age in seconds

    Returns:
        The decoded event.

    Raises:
        SignatureVerificationError: If the signature does not verify.
    """
    tolerance = settings.STRIPE_WEBHOOK_TOLERANCE if tolerance is None else tolerance
    timestamp, signatures = _parse_signature_header(sig_header)

    expected = compute_signature(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, s) for s in signatures):
        raise SignatureVerificationError("No signatures found matching the expected signature")

    if tolerance and timestamp < time.time() - tolerance:
        raise SignatureVerificationError("Timestamp outside the tolerance zone")

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise SignatureVerificationError("Invalid payload") from e
    if not isinstance(event, dict):
        raise SignatureVerificationError("Invalid payload")
    return event


class StripeClient:
    """Async client for the Stripe REST API."""

    def __init__(
        self,
        secret_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else settings.STRIPE_SECRET_KEY
        self.base_url = base_url or settings.STRIPE_BASE_URL
        self.timeout = timeout or settings.STRIPE_TIMEOUT
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=(self.secret_key or "", ""),
                timeout=httpx.Timeout(self.timeout, connect=5.0),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def create_checkout_session(self, plan_id: str, price_id: str, email: str) -> str:
        """Create a subscription-mode checkout session.

        Returns:
            The checkout session id.

        Raises:
            PaymentsProviderError: If Stripe rejects the request.
        """
        form = {
            "mode": "subscription",
            "payment_method_types[0]": "card",
            "customer_email": email,
            "billing_address_collection": "auto",
            "line_items[0][price]": price_id,
            "line_items[0][quantity]": "1",
            "metadata[plan]": plan_id,
            "success_url": f"{settings.FRONTEND_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{settings.FRONTEND_URL}/cancel",
        }

        try:
            response = await self._ensure_client().post("/checkout/sessions", data=form)
        except httpx.RequestError as e:
            raise PaymentsProviderError(f"Request error: {e}") from e

        if response.status_code >= 400:  # noqa: PLR2004
            try:
                message = response.json().get("error", {}).get("message", response.text)
            except ValueError:
                message = response.text
            raise PaymentsProviderError(str(message), status_code=response.status_code)

        session_id = response.json().get("id")
        if not session_id:
            raise PaymentsProviderError("Checkout response did not include a session id")

        logger.info("checkout_session_created", session_id=session_id, plan=plan_id)
        return str(session_id)


__all__ = [
    "PaymentsProviderError",
    "SignatureVerificationError",
    "StripeClient",
    "compute_signature",
    "construct_event",
]
