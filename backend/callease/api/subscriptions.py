"""Subscription and checkout API routes."""

from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from callease.api.deps import Services
from callease.core.auth import CurrentUser
from callease.core.config import settings
from callease.core.exceptions import NotFoundError, UpstreamError, ValidationError
from callease.db.session import get_db
from callease.models.subscription import STATUS_ACTIVE, Subscription
from callease.services.stripe import PaymentsProviderError
from callease.services.subscriptions import add_subscription, get_active_subscription

router = APIRouter(tags=["subscriptions"])
logger = structlog.get_logger()


class CheckoutRequest(BaseModel):
    plan_id: str = Field(alias="planId")
    email: EmailStr


class CheckoutResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(serialization_alias="sessionId")


class AddSubscriptionRequest(BaseModel):
    email: EmailStr
    subscription_id: str | None = Field(default=None, alias="subscriptionId")
    plan: str
    status: str = STATUS_ACTIVE
    price: float = 0.0


class SubscriptionResponse(BaseModel):
    """Subscription record."""

    model_config = ConfigDict(from_attributes=True)

    email: str
    subscription_id: str | None
    plan: str
    status: str
    price: float
    expiry_date: datetime | None
    name: str | None = None

    @classmethod
    def from_subscription(cls, subscription: Subscription, name: str | None = None) -> "SubscriptionResponse":
        response = cls.model_validate(subscription)
        response.name = name
        return response


@router.post(
    "/api/stripe/create-checkout-session",
    response_model=CheckoutResponse,
    response_model_by_alias=True,
)
async def create_checkout_session(request: CheckoutRequest, services: Services) -> CheckoutResponse:
    """Start a Stripe checkout for one of the configured plans."""
    price_id = settings.STRIPE_PLAN_PRICES.get(request.plan_id)
    if not price_id:
        raise ValidationError("Invalid plan ID", plan_id=request.plan_id)

    try:
        session_id = await services.stripe_client.create_checkout_session(
            request.plan_id, price_id, str(request.email)
        )
    except PaymentsProviderError as e:
        raise UpstreamError(f"Failed to create checkout session: {e.message}") from e

    return CheckoutResponse(session_id=session_id)


@router.post("/api/subscriptions/add-subscription")
async def create_subscription(
    request: AddSubscriptionRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> dict[str, str]:
    await add_subscription(
        db,
        email=str(request.email),
        subscription_id=request.subscription_id,
        plan=request.plan,
        status=request.status,
        price=request.price,
    )
    return {"message": "Subscription added successfully"}


@router.get("/api/subscriptions/me", response_model=SubscriptionResponse)
async def my_subscription(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> SubscriptionResponse:
    """Active subscription of the current user."""
    subscription = await get_active_subscription(db, current_user.email)
    if subscription is None:
        raise NotFoundError("No active subscription found for this user")
    return SubscriptionResponse.from_subscription(subscription, name=current_user.name)
