"""Unit tests for call lifecycle reconciliation."""

from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from callease.core.exceptions import (
    ControlUnavailableError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamError,
)
from callease.models.user import ROLE_ADMIN, User
from callease.services import call_lifecycle
from callease.services.broadcaster import CallBroadcaster
from callease.services.call_lifecycle import CallLifecycleService, compute_duration
from callease.services.call_registry import (
    UNKNOWN_OWNER,
    CallDirection,
    CallPatch,
    CallRegistry,
    CallStatus,
    ControlOutcome,
)
from callease.services.vapi import VoiceProviderError

CONTROL_URL = "https://phone-call-websocket.vapi.ai/inbound-1/control"


def make_user(email: str = "owner@example.com", role: str = "user", user_id: int = 1) -> User:
    return User(id=user_id, google_id=f"g-{user_id}", email=email, name="Test", role=role)


@pytest.fixture
def call_log_store() -> MagicMock:
    store = MagicMock()
    store.save = AsyncMock(return_value=None)
    return store


@pytest.fixture
def lifecycle(fake_voice_client: MagicMock, call_log_store: MagicMock) -> CallLifecycleService:
    return CallLifecycleService(
        registry=CallRegistry(max_entries=100),
        broadcaster=CallBroadcaster(),
        voice_client=fake_voice_client,
        call_log_store=call_log_store,
    )


async def seed_ringing(lifecycle: CallLifecycleService, control_handle: str | None = CONTROL_URL) -> None:
    await lifecycle.registry.upsert(
        "inbound-1",
        CallPatch(
            direction=CallDirection.INBOUND,
            status=CallStatus.RINGING,
            owner_email="owner@example.com",
            control_handle=control_handle,
        ),
    )


class TestComputeDuration:
    """Tests for compute_duration."""

    def test_uses_timestamps(self) -> None:
        start = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert compute_duration(start, start + timedelta(seconds=42)) == 42

    def test_prefers_provider_duration(self) -> None:
        start = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert compute_duration(start, start + timedelta(seconds=42), 17.6) == 18

    def test_never_negative(self) -> None:
        start = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert compute_duration(start, start - timedelta(seconds=5)) == 0


class TestStartOutbound:
    """Tests for placing outbound calls."""

    @pytest.mark.asyncio
    async def test_registers_queued_record(self, lifecycle: CallLifecycleService) -> None:
        record = await lifecycle.start_outbound("owner@example.com", "+15550002222")

        assert record.id == "call-123"
        assert record.status == CallStatus.QUEUED
        assert record.direction == CallDirection.OUTBOUND
        assert record.owner_email == "owner@example.com"
        assert record.counterpart_number == "+15550002222"
        assert lifecycle.broadcaster.active_calls == 0

    @pytest.mark.asyncio
    async def test_provider_failure_raises_upstream(
        self, lifecycle: CallLifecycleService, fake_voice_client: MagicMock
    ) -> None:
        fake_voice_client.place_call.side_effect = VoiceProviderError("bad number", status_code=400)

        with pytest.raises(UpstreamError):
            await lifecycle.start_outbound("owner@example.com", "+15550002222")

        assert len(lifecycle.registry) == 0

    @pytest.mark.asyncio
    async def test_webhook_first_then_start_fills_owner(
        self, lifecycle: CallLifecycleService, provider_call: Any
    ) -> None:
        await lifecycle.ingest_provider_event(
            provider_call(status="ringing", type="outboundPhoneCall")
        )
        assert lifecycle.registry.get("call-123").owner_email == UNKNOWN_OWNER

        record = await lifecycle.start_outbound("owner@example.com", "+15550002222")

        assert record.owner_email == "owner@example.com"
        assert record.status == CallStatus.RINGING
        assert len(lifecycle.registry) == 1


class TestIngestProviderEvent:
    """Tests for webhook ingestion."""

    @pytest.mark.asyncio
    async def test_new_inbound_defaults_to_ringing(
        self, lifecycle: CallLifecycleService, provider_call: Any
    ) -> None:
        record = await lifecycle.ingest_provider_event(
            provider_call(call_id="inbound-1", status=None, control_url=CONTROL_URL),
            owner_email="owner@example.com",
        )

        assert record.direction == CallDirection.INBOUND
        assert record.status == CallStatus.RINGING
        assert record.control_handle == CONTROL_URL

    @pytest.mark.asyncio
    async def test_terminal_event_finalizes_once(
        self,
        lifecycle: CallLifecycleService,
        provider_call: Any,
        call_log_store: MagicMock,
    ) -> None:
        await seed_ringing(lifecycle)

        record = await lifecycle.ingest_provider_event(
            provider_call(call_id="inbound-1", status="ended", duration=61.0)
        )

        assert record.status == CallStatus.ENDED
        assert record.duration_seconds == 61
        assert record.ended_at is not None
        assert record.persisted is True
        call_log_store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_terminal_record_is_not_reopened(
        self, lifecycle: CallLifecycleService, provider_call: Any
    ) -> None:
        await seed_ringing(lifecycle)
        await lifecycle.ingest_provider_event(provider_call(call_id="inbound-1", status="completed"))

        record = await lifecycle.ingest_provider_event(provider_call(call_id="inbound-1", status="ringing"))

        assert record.status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_direction_and_known_owner_are_kept(
        self, lifecycle: CallLifecycleService, provider_call: Any
    ) -> None:
        await seed_ringing(lifecycle)

        record = await lifecycle.ingest_provider_event(
            provider_call(call_id="inbound-1", status="in-progress", type="outboundPhoneCall"),
            owner_email="someone@example.com",
        )

        assert record.direction == CallDirection.INBOUND
        assert record.owner_email == "owner@example.com"
        assert record.status == CallStatus.ONGOING
        assert lifecycle.broadcaster.active_calls == 1

    @pytest.mark.asyncio
    async def test_status_override_wins(self, lifecycle: CallLifecycleService, provider_call: Any) -> None:
        await seed_ringing(lifecycle)

        record = await lifecycle.ingest_provider_event(
            provider_call(call_id="inbound-1", status="ringing"), status_override="in-progress"
        )

        assert record.status == CallStatus.ONGOING

    @pytest.mark.asyncio
    async def test_dispatched_answer_is_confirmed_by_ongoing(
        self, lifecycle: CallLifecycleService, provider_call: Any
    ) -> None:
        await seed_ringing(lifecycle)
        await lifecycle.answer("inbound-1", make_user())

        record = await lifecycle.ingest_provider_event(provider_call(call_id="inbound-1", status="in-progress"))

        assert record.status == CallStatus.ONGOING
        assert record.control_outcome == ControlOutcome.CONFIRMED


class TestAnswerReject:
    """Tests for answering and rejecting inbound calls."""

    @pytest.mark.asyncio
    async def test_answer_dispatches(
        self, lifecycle: CallLifecycleService, fake_voice_client: MagicMock
    ) -> None:
        await seed_ringing(lifecycle)

        result = await lifecycle.answer("inbound-1", make_user())

        fake_voice_client.answer.assert_awaited_once_with(CONTROL_URL)
        assert result.outcome == ControlOutcome.DISPATCHED
        assert result.record.status == CallStatus.ANSWERING

    @pytest.mark.asyncio
    async def test_team_inbox_lets_any_user_answer(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)

        result = await lifecycle.answer("inbound-1", make_user("other@example.com", user_id=2))

        assert result.record.status == CallStatus.ANSWERING

    @pytest.mark.asyncio
    async def test_owner_only_policy_blocks_other_users(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)

        with patch.object(call_lifecycle.settings, "CALL_ANSWER_POLICY", "owner_only"):
            with pytest.raises(ForbiddenError):
                await lifecycle.answer("inbound-1", make_user("other@example.com", user_id=2))

        assert lifecycle.registry.get("inbound-1").status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_answer_non_ringing_leaves_record_unchanged(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)
        await lifecycle.registry.upsert("inbound-1", CallPatch(status=CallStatus.ONGOING))

        with pytest.raises(InvalidTransitionError):
            await lifecycle.answer("inbound-1", make_user())
        with pytest.raises(InvalidTransitionError):
            await lifecycle.reject("inbound-1", make_user())

        record = lifecycle.registry.get("inbound-1")
        assert record.status == CallStatus.ONGOING
        assert record.control_outcome is None

    @pytest.mark.asyncio
    async def test_ringing_outbound_call_can_be_answered(
        self, lifecycle: CallLifecycleService, fake_voice_client: MagicMock
    ) -> None:
        await lifecycle.start_outbound("owner@example.com", "+15550002222")
        await lifecycle.registry.upsert("call-123", CallPatch(status=CallStatus.RINGING, control_handle=CONTROL_URL))

        result = await lifecycle.answer("call-123", make_user())

        assert result.outcome == ControlOutcome.DISPATCHED
        assert result.record.direction == CallDirection.OUTBOUND
        fake_voice_client.answer.assert_awaited_once_with(CONTROL_URL)

    @pytest.mark.asyncio
    async def test_missing_handle_is_unavailable(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle, control_handle=None)

        with pytest.raises(ControlUnavailableError):
            await lifecycle.answer("inbound-1", make_user())

    @pytest.mark.asyncio
    async def test_unknown_call_not_found(self, lifecycle: CallLifecycleService) -> None:
        with pytest.raises(NotFoundError):
            await lifecycle.reject("missing", make_user())

    @pytest.mark.asyncio
    async def test_answer_provider_failure_raises(
        self, lifecycle: CallLifecycleService, fake_voice_client: MagicMock
    ) -> None:
        await seed_ringing(lifecycle)
        fake_voice_client.answer.side_effect = VoiceProviderError("gone", status_code=404)

        with pytest.raises(UpstreamError):
            await lifecycle.answer("inbound-1", make_user())

        assert lifecycle.registry.get("inbound-1").status == CallStatus.RINGING

    @pytest.mark.asyncio
    async def test_reject_provider_failure_finalizes_locally(
        self,
        lifecycle: CallLifecycleService,
        fake_voice_client: MagicMock,
        call_log_store: MagicMock,
    ) -> None:
        await seed_ringing(lifecycle)
        fake_voice_client.reject.side_effect = VoiceProviderError("timeout")

        result = await lifecycle.reject("inbound-1", make_user())

        assert result.outcome == ControlOutcome.LOCALLY_FINALIZED
        assert result.record.status == CallStatus.COMPLETED
        call_log_store.save.assert_awaited_once()


class TestEnd:
    """Tests for ending calls."""

    @pytest.mark.asyncio
    async def test_end_without_handle_completes_locally(
        self, lifecycle: CallLifecycleService, call_log_store: MagicMock
    ) -> None:
        await lifecycle.start_outbound("owner@example.com", "+15550002222")

        result = await lifecycle.end("call-123", make_user())

        assert result.outcome == ControlOutcome.LOCALLY_FINALIZED
        assert result.record.status == CallStatus.COMPLETED
        assert result.record.duration_seconds is not None
        assert result.record.ended_at is not None
        call_log_store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_provider_failure_completes_locally(
        self,
        lifecycle: CallLifecycleService,
        fake_voice_client: MagicMock,
        call_log_store: MagicMock,
    ) -> None:
        await seed_ringing(lifecycle)
        fake_voice_client.end.side_effect = VoiceProviderError("unreachable")

        result = await lifecycle.end("inbound-1", make_user())

        assert result.outcome == ControlOutcome.LOCALLY_FINALIZED
        assert result.record.status == CallStatus.COMPLETED
        call_log_store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_dispatches_then_webhook_confirms(
        self,
        lifecycle: CallLifecycleService,
        provider_call: Any,
        call_log_store: MagicMock,
    ) -> None:
        await seed_ringing(lifecycle)

        result = await lifecycle.end("inbound-1", make_user())
        assert result.outcome == ControlOutcome.DISPATCHED
        assert result.record.status == CallStatus.ENDING
        call_log_store.save.assert_not_awaited()

        record = await lifecycle.ingest_provider_event(provider_call(call_id="inbound-1", status="ended"))

        assert record.status == CallStatus.ENDED
        assert record.control_outcome == ControlOutcome.CONFIRMED
        call_log_store.save.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_end_by_non_owner_forbidden(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)

        with pytest.raises(ForbiddenError):
            await lifecycle.end("inbound-1", make_user("other@example.com", user_id=2))

    @pytest.mark.asyncio
    async def test_admin_can_end_any_call(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)

        result = await lifecycle.end("inbound-1", make_user("admin@example.com", ROLE_ADMIN, 3))

        assert result.record.status == CallStatus.ENDING

    @pytest.mark.asyncio
    async def test_end_terminal_call_rejected(self, lifecycle: CallLifecycleService) -> None:
        await lifecycle.start_outbound("owner@example.com", "+15550002222")
        await lifecycle.end("call-123", make_user())

        with pytest.raises(InvalidTransitionError):
            await lifecycle.end("call-123", make_user())


class TestVisibility:
    """Tests for owner-scoped reads."""

    @pytest.mark.asyncio
    async def test_list_visible_scopes_to_owner(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)
        await lifecycle.start_outbound("other@example.com", "+15550002222")

        assert [r.id for r in lifecycle.list_visible(make_user())] == ["inbound-1"]
        admin = make_user("admin@example.com", ROLE_ADMIN, 3)
        assert len(lifecycle.list_visible(admin)) == 2

    @pytest.mark.asyncio
    async def test_get_visible_forbidden_for_other_user(self, lifecycle: CallLifecycleService) -> None:
        await seed_ringing(lifecycle)

        with pytest.raises(ForbiddenError):
            lifecycle.get_visible("inbound-1", make_user("other@example.com", user_id=2))
