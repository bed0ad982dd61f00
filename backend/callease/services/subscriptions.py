"""Subscription persistence.

Each payment-provider event id is recorded once in a ledger table and
subscriptions are upserted by email, so each user has a single row updated
in place.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from callease.core.exceptions import PersistenceError
from callease.models.processed_stripe_event import ProcessedStripeEvent
from callease.models.subscription import STATUS_ACTIVE, STATUS_CANCELED, Subscription
from callease.services.crm_sync import subscription_job

if TYPE_CHECKING:
    from callease.services.crm_sync import CRMSyncQueue

logger = structlog.get_logger()


def one_month_from(moment: datetime) -> datetime:
    """Same day next month, clamped to the last day of a shorter month."""
    year = moment.year + moment.month // 12
    month = moment.month % 12 + 1
    for day in (moment.day, 30, 29, 28):
        try:
            return moment.replace(year=year, month=month, day=day)
        except ValueError:
            continue
    raise ValueError(f"Cannot advance {moment} by one month")


async def save_subscription(
    db: AsyncSession,
    *,
    email: str,
    subscription_id: str | None,
    plan: str,
    status: str = STATUS_ACTIVE,
    price: float = 0.0,
    stripe_event_id: str | None = None,
    expiry_date: datetime | None = None,
    crm_queue: CRMSyncQueue | None = None,
) -> Subscription | None:
    """Store a billing event for ``email``.

    The event id is recorded in ``processed_stripe_events`` in the same
    transaction as the subscription write, so a redelivered event is skipped
    no matter how many other events were applied since.

    Returns:
        The saved subscription, or None when the event was already processed.

    Raises:
        PersistenceError: If a database read or write fails.
    """
    log = logger.bind(email=email, stripe_event_id=stripe_event_id, plan=plan)

    if not stripe_event_id:
        log.warning("subscription_event_without_id")

    try:
        if stripe_event_id:
            result = await db.execute(
                select(ProcessedStripeEvent.id)
                .where(ProcessedStripeEvent.event_id == stripe_event_id)
                .limit(1)
            )
            if result.first() is not None:
                log.info("subscription_event_duplicate")
                return None

        result = await db.execute(select(Subscription).where(Subscription.email == email).limit(1))
        subscription = result.scalar_one_or_none()
        if subscription is None:
            subscription = Subscription(email=email)
            db.add(subscription)
            operation = "insert"
        else:
            operation = "update"

        subscription.subscription_id = subscription_id
        subscription.plan = plan
        subscription.status = status
        subscription.price = price
        subscription.expiry_date = expiry_date
        subscription.stripe_event_id = stripe_event_id
        subscription.updated_at = datetime.now(UTC)
        if stripe_event_id:
            db.add(ProcessedStripeEvent(event_id=stripe_event_id, email=email))

        await db.commit()
        await db.refresh(subscription)
    except IntegrityError as e:
        await db.rollback()
        if stripe_event_id:
            # Lost a race with a concurrent delivery of the same event.
            log.info("subscription_event_duplicate", concurrent=True)
            return None
        log.exception("subscription_save_failed")
        raise PersistenceError("Failed to save subscription", email=email) from e
    except SQLAlchemyError as e:
        await db.rollback()
        log.exception("subscription_save_failed")
        raise PersistenceError("Failed to save subscription", email=email) from e

    log.info("subscription_saved", operation=operation, status=status)

    if crm_queue is not None:
        crm_queue.submit(subscription_job(email, plan, status))

    return subscription


async def cancel_subscription(
    db: AsyncSession,
    subscription_id: str,
    stripe_event_id: str | None = None,
    crm_queue: CRMSyncQueue | None = None,
) -> Subscription | None:
    """Mark the subscription with payment-provider id ``subscription_id`` as canceled.

    Returns:
        The updated subscription, or None if it is unknown or the event was seen.

    Raises:
        PersistenceError: If the lookup or the write fails.
    """
    try:
        result = await db.execute(
            select(Subscription).where(Subscription.subscription_id == subscription_id).limit(1)
        )
        subscription = result.scalar_one_or_none()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("subscription_cancel_lookup_failed", subscription_id=subscription_id)
        raise PersistenceError(
            "Failed to look up subscription", subscription_id=subscription_id
        ) from e

    if subscription is None:
        logger.info("subscription_cancel_unknown", subscription_id=subscription_id)
        return None

    return await save_subscription(
        db,
        email=subscription.email,
        subscription_id=subscription.subscription_id,
        plan=subscription.plan,
        status=STATUS_CANCELED,
        price=subscription.price,
        stripe_event_id=stripe_event_id,
        expiry_date=subscription.expiry_date,
        crm_queue=crm_queue,
    )


async def get_active_subscription(db: AsyncSession, email: str) -> Subscription | None:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.email == email, Subscription.status == STATUS_ACTIVE)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def add_subscription(
    db: AsyncSession,
    *,
    email: str,
    subscription_id: str | None,
    plan: str,
    status: str,
    price: float,
) -> Subscription:
    """Insert a subscription row directly, outside the billing webhook flow."""
    subscription = Subscription(
        email=email,
        subscription_id=subscription_id,
        plan=plan,
        status=status,
        price=price,
    )
    db.add(subscription)
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception("subscription_add_failed", email=email)
        raise PersistenceError("Failed to add subscription", email=email) from e
    await db.refresh(subscription)

    logger.info("subscription_added", email=email, plan=plan)
    return subscription
