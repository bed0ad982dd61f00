"""Tests for subscription persistence."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from callease.core.exceptions import PersistenceError
from callease.models.processed_stripe_event import ProcessedStripeEvent
from callease.models.subscription import STATUS_ACTIVE, STATUS_CANCELED, Subscription
from callease.services.subscriptions import (
    add_subscription,
    cancel_subscription,
    get_active_subscription,
    one_month_from,
    save_subscription,
)


class TestOneMonthFrom:
    def test_same_day_next_month(self) -> None:
        assert one_month_from(datetime(2026, 3, 15, tzinfo=UTC)) == datetime(2026, 4, 15, tzinfo=UTC)

    def test_december_rolls_year(self) -> None:
        assert one_month_from(datetime(2026, 12, 10, tzinfo=UTC)) == datetime(2027, 1, 10, tzinfo=UTC)

    def test_clamps_to_short_month(self) -> None:
        assert one_month_from(datetime(2026, 1, 31, tzinfo=UTC)) == datetime(2026, 2, 28, tzinfo=UTC)
        assert one_month_from(datetime(2026, 3, 31, tzinfo=UTC)) == datetime(2026, 4, 30, tzinfo=UTC)


class TestSaveSubscription:
    """Tests for save_subscription."""

    @pytest.mark.asyncio
    async def test_creates_then_updates_in_place(self, test_session: AsyncSession) -> None:
        await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="basic", stripe_event_id="evt_1"
        )
        saved = await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_2", plan="pro", price=49.0, stripe_event_id="evt_2"
        )

        count = await test_session.scalar(select(func.count()).select_from(Subscription))
        assert count == 1
        assert saved is not None
        assert saved.plan == "pro"
        assert saved.subscription_id == "sub_2"
        assert saved.price == 49.0

    @pytest.mark.asyncio
    async def test_duplicate_event_is_ignored(self, test_session: AsyncSession) -> None:
        await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="basic", stripe_event_id="evt_1"
        )

        result = await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="pro", stripe_event_id="evt_1"
        )

        assert result is None
        current = await get_active_subscription(test_session, "a@x.com")
        assert current is not None
        assert current.plan == "basic"

    @pytest.mark.asyncio
    async def test_submits_crm_job(self, test_session: AsyncSession) -> None:
        queue = MagicMock()

        await save_subscription(
            test_session,
            email="a@x.com",
            subscription_id="sub_1",
            plan="basic",
            stripe_event_id="evt_1",
            crm_queue=queue,
        )

        job = queue.submit.call_args.args[0]
        assert job.name == "subscription"
        assert job.subject == "a@x.com"

    @pytest.mark.asyncio
    async def test_older_event_replayed_after_newer_is_ignored(self, test_session: AsyncSession) -> None:
        await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="pro", stripe_event_id="evt_1"
        )
        await cancel_subscription(test_session, "sub_1", stripe_event_id="evt_2")

        replayed = await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="pro", stripe_event_id="evt_1"
        )

        assert replayed is None
        assert await get_active_subscription(test_session, "a@x.com") is None
        ledger = await test_session.scalar(select(func.count()).select_from(ProcessedStripeEvent))
        assert ledger == 2

    @pytest.mark.asyncio
    async def test_dedup_lookup_failure_raises_persistence_error(self) -> None:
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        db.rollback = AsyncMock()

        with pytest.raises(PersistenceError):
            await save_subscription(db, email="a@x.com", subscription_id="sub_1", plan="pro", stripe_event_id="evt_1")

        db.rollback.assert_awaited_once()


class TestCancelSubscription:
    @pytest.mark.asyncio
    async def test_cancel_by_provider_id(self, test_session: AsyncSession) -> None:
        await save_subscription(
            test_session, email="a@x.com", subscription_id="sub_1", plan="pro", stripe_event_id="evt_1"
        )

        canceled = await cancel_subscription(test_session, "sub_1", stripe_event_id="evt_2")

        assert canceled is not None
        assert canceled.status == STATUS_CANCELED
        assert canceled.plan == "pro"
        assert await get_active_subscription(test_session, "a@x.com") is None

    @pytest.mark.asyncio
    async def test_cancel_unknown_returns_none(self, test_session: AsyncSession) -> None:
        assert await cancel_subscription(test_session, "sub_missing") is None

    @pytest.mark.asyncio
    async def test_lookup_failure_raises_persistence_error(self) -> None:
        db = MagicMock()
        db.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        db.rollback = AsyncMock()

        with pytest.raises(PersistenceError):
            await cancel_subscription(db, "sub_1", stripe_event_id="evt_2")

        db.rollback.assert_awaited_once()


class TestAddSubscription:
    @pytest.mark.asyncio
    async def test_add_subscription_inserts_row(self, test_session: AsyncSession) -> None:
        subscription = await add_subscription(
            test_session,
            email="a@x.com",
            subscription_id="sub_9",
            plan="enterprise",
            status=STATUS_ACTIVE,
            price=99.0,
        )

        assert subscription.id is not None
        active = await get_active_subscription(test_session, "a@x.com")
        assert active is not None
        assert active.plan == "enterprise"
