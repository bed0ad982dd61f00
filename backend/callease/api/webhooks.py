"""Provider webhook ingest.

``POST /webhook/inbound`` receives voice provider call events.
``POST /webhook`` is the signed payments channel, which can also carry call
events. Both acknowledge with ``{"received": true}`` once the payload has
been accepted; downstream failures are logged, not returned.
"""

from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from callease.api.deps import Services
from callease.core.config import settings
from callease.core.exceptions import CallEaseError, ValidationError
from callease.db.session import get_db
from callease.monitoring.metrics import record_webhook_event
from callease.services.call_lifecycle import CallLifecycleService
from callease.services.stripe import SignatureVerificationError, construct_event
from callease.services.subscriptions import cancel_subscription, one_month_from, save_subscription
from callease.services.users import find_by_phone
from callease.services.vapi import ProviderCall

router = APIRouter(prefix="/webhook", tags=["webhooks"])
logger = structlog.get_logger()

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INBOUND_CALL_COMPLETED = "call.inbound.completed"

RECEIVED = {"received": True}


def extract_call(payload: dict[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    """Find the call object in a voice provider payload.

    Accepts ``data.object``, a top-level ``call``, or a server message
    (``message.call`` with ``message.status``).

    Returns:
        The raw call object (or None) and a status that overrides the call's own.
    """
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("object"), dict):
        return data["object"], None
    if isinstance(payload.get("call"), dict):
        return payload["call"], None

    message = payload.get("message")
    if isinstance(message, dict) and isinstance(message.get("call"), dict):
        return message["call"], message.get("status")
    return None, None


async def resolve_owner(db: AsyncSession, phone_number: str | None) -> str | None:
    """Email of the user registered with ``phone_number``, if any."""
    if not phone_number:
        return None
    try:
        user = await find_by_phone(db, phone_number)
    except SQLAlchemyError:
        logger.exception("owner_lookup_failed")
        return None
    return user.email if user else None


async def apply_call_event(
    lifecycle: CallLifecycleService,
    db: AsyncSession,
    raw_call: dict[str, Any],
    status_override: str | None = None,
) -> None:
    """Validate and ingest one call event; failures past validation are only logged.

    Raises:
        ValidationError: If the call object has no usable id.
    """
    try:
        call = ProviderCall.model_validate(raw_call)
    except PydanticValidationError as e:
        raise ValidationError("Invalid call payload") from e

    owner = await resolve_owner(db, call.customer_number)
    try:
        await lifecycle.ingest_provider_event(call, owner_email=owner, status_override=status_override)
    except CallEaseError as e:
        logger.error("call_event_failed", call_id=call.id, error=e.message)


@router.post("/inbound")
async def inbound_call_webhook(
    request: Request,
    services: Services,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, bool]:
    """Voice provider call events (new inbound calls and status changes)."""
    try:
        payload = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from e
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    raw_call, status_override = extract_call(payload)
    if raw_call is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No call data found")

    record_webhook_event("voice", status_override or str(raw_call.get("status") or "unknown"))
    await apply_call_event(services.lifecycle, db, raw_call, status_override)
    return RECEIVED


@router.post("")
async def payments_webhook(
    request: Request,
    services: Services,
    db: Annotated[AsyncSession, Depends(get_db)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, bool]:
    """Signed payments-provider events; subscription lifecycle and forwarded call events."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("stripe_webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook configuration error."
        )
    if not stripe_signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature.")

    body = await request.body()
    try:
        event = construct_event(body, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
    except SignatureVerificationError as e:
        logger.warning("stripe_signature_invalid", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}") from e

    event_type = event.get("type")
    if not event_type and isinstance(event.get("call"), dict):
        event_type = INBOUND_CALL_COMPLETED

    log = logger.bind(event_id=event.get("id"), event_type=event_type)
    log.info("stripe_event_received")
    record_webhook_event("payments", event_type or "unknown")

    obj = (event.get("data") or {}).get("object") or {}
    try:
        email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
        if event_type == CHECKOUT_COMPLETED and not email:
            log.warning("checkout_session_without_email")
        elif event_type == CHECKOUT_COMPLETED:
            await save_subscription(
                db,
                email=email,
                subscription_id=obj.get("subscription"),
                plan=(obj.get("metadata") or {}).get("plan") or "unknown",
                price=obj["amount_total"] / 100 if obj.get("amount_total") else 0.0,
                stripe_event_id=event.get("id"),
                expiry_date=one_month_from(datetime.now(UTC)),
                crm_queue=services.crm_queue,
            )
        elif event_type == SUBSCRIPTION_DELETED and obj.get("id"):
            await cancel_subscription(
                db,
                obj["id"],
                stripe_event_id=event.get("id"),
                crm_queue=services.crm_queue,
            )
        elif event_type == INBOUND_CALL_COMPLETED:
            raw_call = obj or event.get("call")
            if isinstance(raw_call, dict):
                await apply_call_event(services.lifecycle, db, raw_call)
        else:
            log.debug("stripe_event_ignored")
    except CallEaseError as e:
        log.error("stripe_event_failed", error=e.message)
    except SQLAlchemyError:
        log.exception("stripe_event_db_failed")

    return RECEIVED
