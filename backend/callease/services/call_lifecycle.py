"""Call lifecycle reconciliation.

Three independent sources mutate call state: the place-call response,
provider webhooks, and user control actions (answer, reject, end). This
service turns each of them into registry upserts, provider commands,
realtime broadcasts and, at terminal states, a durable call log row.

Control actions are optimistic. A successful provider command moves the call
to an intermediate status with outcome ``dispatched`` and the webhook that
follows confirms it. When the provider cannot be reached for ``end`` or
``reject`` the call is finalized locally so the record is never lost.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

from callease.core.config import settings
from callease.core.exceptions import (
    ControlUnavailableError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamError,
)
from callease.monitoring.metrics import (
    record_call_finalized,
    record_call_started,
    record_control_action,
    set_active_calls,
)
from callease.services.call_registry import (
    UNKNOWN_OWNER,
    CallDirection,
    CallPatch,
    CallRecord,
    CallRegistry,
    CallStatus,
    ControlOutcome,
)
from callease.services.crm_sync import call_log_job
from callease.services.vapi import ProviderCall, VoiceProviderError

if TYPE_CHECKING:
    from callease.models.user import User
    from callease.services.broadcaster import CallBroadcaster
    from callease.services.call_logs import CallLogStore
    from callease.services.crm_sync import CRMSyncQueue
    from callease.services.vapi import VapiClient

logger = structlog.get_logger()

SOURCE_WEBHOOK = "webhook"
SOURCE_LOCAL_FALLBACK = "local_fallback"


@dataclass
class ControlResult:
    """Result of an answer, reject or end request."""

    record: CallRecord
    outcome: ControlOutcome
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "outcome": self.outcome.value,
            "call": self.record.to_dict(),
        }


def compute_duration(
    started_at: datetime,
    ended_at: datetime,
    provider_duration: float | None = None,
) -> int:
    """Whole seconds between start and end, preferring the provider's figure."""
    if provider_duration is not None and provider_duration >= 0:
        return round(provider_duration)
    return max(0, round((ended_at - started_at).total_seconds()))


class CallLifecycleService:
    """Reconciles call state across start, webhook and control-action entry points."""

    def __init__(
        self,
        registry: CallRegistry,
        broadcaster: CallBroadcaster,
        voice_client: VapiClient,
        call_log_store: CallLogStore,
        crm_queue: CRMSyncQueue | None = None,
    ) -> None:
        self.registry = registry
        self.broadcaster = broadcaster
        self.voice_client = voice_client
        self.call_log_store = call_log_store
        self.crm_queue = crm_queue

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_visible(self, user: User) -> list[CallRecord]:
        return self.registry.list_for_owner(user.email, include_all=user.is_admin)

    def get_visible(self, call_id: str, user: User) -> CallRecord:
        record = self._require(call_id)
        if not self._owns(record, user):
            raise ForbiddenError("Access denied", call_id=call_id)
        return record

    # ------------------------------------------------------------------
    # Outbound start
    # ------------------------------------------------------------------

    async def start_outbound(self, owner_email: str, phone_number: str) -> CallRecord:
        """Place an outbound call and register it as ``queued``.

        Raises:
            UpstreamError: If the provider rejects the call.
        """
        log = logger.bind(owner=owner_email)
        try:
            call = await self.voice_client.place_call(phone_number)
        except VoiceProviderError as e:
            log.warning("outbound_call_failed", error=e.message, status_code=e.status_code)
            raise UpstreamError(f"Failed to start call: {e.message}") from e

        existing = self.registry.get(call.id)
        patch = CallPatch(
            direction=CallDirection.OUTBOUND,
            counterpart_number=call.customer_number or phone_number,
            control_handle=call.control_url,
            agent_id=call.assistant,
        )
        if existing is None:
            patch.status = CallStatus.QUEUED
            patch.owner_email = owner_email
            patch.started_at = call.started_at or call.created_at or datetime.now(UTC)
        elif existing.owner_email == UNKNOWN_OWNER:
            # A webhook for this call arrived before the place-call response.
            patch.owner_email = owner_email

        record = await self.registry.upsert(call.id, patch)
        record_call_started()
        log.info("outbound_call_started", call_id=record.id, status=record.status.value)

        await self._publish(record)
        return record

    # ------------------------------------------------------------------
    # Provider webhooks
    # ------------------------------------------------------------------

    async def ingest_provider_event(
        self,
        call: ProviderCall,
        owner_email: str | None = None,
        status_override: str | None = None,
        default_direction: CallDirection = CallDirection.INBOUND,
    ) -> CallRecord:
        """Merge a provider call event into the registry.

        Transitions are permissive so out-of-order delivery is tolerated,
        except that a terminal record is never reopened by a non-terminal
        status. Direction and a known owner are never overwritten.

        Args:
            call: Call object from the webhook payload.
            owner_email: Owner resolved from the caller number, if any.
            status_override: Raw provider status that supersedes ``call.status``.
            default_direction: Direction for a new record when the payload has none.

        Raises:
            PersistenceError: If the call reached a terminal state and the
                call log write failed.
        """
        log = logger.bind(call_id=call.id)
        existing = self.registry.get(call.id)

        status = call.normalized_status
        if status_override:
            status = ProviderCall(id=call.id, status=status_override).normalized_status or status

        patch = CallPatch(
            counterpart_number=call.customer_number,
            control_handle=call.control_url,
            agent_id=call.assistant,
        )

        if existing is None:
            direction = call.normalized_direction or default_direction
            patch.direction = direction
            patch.owner_email = owner_email or UNKNOWN_OWNER
            patch.started_at = call.started_at or call.created_at or datetime.now(UTC)
            if status is None:
                status = CallStatus.RINGING if direction == CallDirection.INBOUND else CallStatus.QUEUED
        elif existing.owner_email == UNKNOWN_OWNER and owner_email:
            patch.owner_email = owner_email

        if existing is not None and existing.is_terminal and status is not None and not status.is_terminal:
            log.info(
                "call_reopen_ignored",
                current_status=existing.status.value,
                reported_status=status.value,
            )
            status = None

        if existing is not None and status is not None and existing.control_outcome == ControlOutcome.DISPATCHED:
            if status.is_terminal or (status == CallStatus.ONGOING and existing.status == CallStatus.ANSWERING):
                patch.control_outcome = ControlOutcome.CONFIRMED

        patch.status = status
        record = await self.registry.upsert(call.id, patch)
        log.info("provider_event_applied", status=record.status.value, owner=record.owner_email)

        if record.is_terminal:
            return await self._finalize(
                record,
                source=SOURCE_WEBHOOK,
                provider_duration=call.duration,
                ended_at=call.ended_at,
            )

        await self._publish(record)
        return record

    # ------------------------------------------------------------------
    # Control actions
    # ------------------------------------------------------------------

    async def answer(self, call_id: str, user: User) -> ControlResult:
        """Answer a ringing call.

        Raises:
            NotFoundError, ForbiddenError, InvalidTransitionError,
            ControlUnavailableError, UpstreamError
        """
        record, control_url = self._check_ringing_control(call_id, user, "answer")
        log = logger.bind(call_id=call_id, user=user.email, action="answer")

        try:
            await self.voice_client.answer(control_url)
        except VoiceProviderError as e:
            log.warning("control_dispatch_failed", error=e.message, status_code=e.status_code)
            record_control_action("answer", "failed")
            raise UpstreamError(f"Failed to answer call: {e.message}", call_id=call_id) from e

        return await self._mark_dispatched(record, CallStatus.ANSWERING, "answer", "Answer command sent")

    async def reject(self, call_id: str, user: User) -> ControlResult:
        """Reject a ringing call, finalizing locally if the provider fails."""
        record, control_url = self._check_ringing_control(call_id, user, "reject")
        log = logger.bind(call_id=call_id, user=user.email, action="reject")

        try:
            await self.voice_client.reject(control_url)
        except VoiceProviderError as e:
            log.warning("control_dispatch_failed", error=e.message, status_code=e.status_code)
            return await self._finalize_locally(record, "reject", "Call rejected locally")

        return await self._mark_dispatched(record, CallStatus.REJECTING, "reject", "Reject command sent")

    async def end(self, call_id: str, user: User) -> ControlResult:
        """End a call in any non-terminal state.

        Without a control handle, or when the provider command fails, the
        call is completed locally and written to the call log immediately.

        Raises:
            NotFoundError, ForbiddenError, InvalidTransitionError, PersistenceError
        """
        record = self._require(call_id)
        if not self._owns(record, user):
            raise ForbiddenError("Only the call owner or an admin can end this call", call_id=call_id)
        if record.is_terminal:
            raise InvalidTransitionError(
                f"Call is already {record.status.value}", call_id=call_id, status=record.status.value
            )

        log = logger.bind(call_id=call_id, user=user.email, action="end")
        if not record.control_handle:
            log.info("control_handle_missing")
            return await self._finalize_locally(record, "end", "Call ended locally")

        try:
            await self.voice_client.end(record.control_handle)
        except VoiceProviderError as e:
            log.warning("control_dispatch_failed", error=e.message, status_code=e.status_code)
            return await self._finalize_locally(record, "end", "Call ended locally")

        return await self._mark_dispatched(record, CallStatus.ENDING, "end", "End command sent")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, call_id: str) -> CallRecord:
        record = self.registry.get(call_id)
        if record is None:
            raise NotFoundError("Call not found", call_id=call_id)
        return record

    @staticmethod
    def _owns(record: CallRecord, user: User) -> bool:
        return user.is_admin or record.owner_email == user.email

    def _check_ringing_control(self, call_id: str, user: User, action: str) -> tuple[CallRecord, str]:
        record = self._require(call_id)
        if settings.CALL_ANSWER_POLICY == "owner_only" and not self._owns(record, user):
            raise ForbiddenError(f"Only the call owner or an admin can {action} this call", call_id=call_id)
        if record.status != CallStatus.RINGING:
            raise InvalidTransitionError(
                f"Cannot {action} a call in status {record.status.value}",
                call_id=call_id,
                status=record.status.value,
            )
        if not record.control_handle:
            raise ControlUnavailableError("Control unavailable for this call", call_id=call_id)
        return record, record.control_handle

    async def _mark_dispatched(
        self,
        record: CallRecord,
        status: CallStatus,
        action: str,
        message: str,
    ) -> ControlResult:
        current = self._require(record.id)
        if current.is_terminal:
            # A webhook finalized the call while the command was in flight.
            outcome = current.control_outcome or ControlOutcome.CONFIRMED
            record_control_action(action, outcome.value)
            return ControlResult(current, outcome, message)

        updated = await self.registry.upsert(
            record.id, CallPatch(status=status, control_outcome=ControlOutcome.DISPATCHED)
        )
        record_control_action(action, ControlOutcome.DISPATCHED.value)
        logger.info("control_dispatched", call_id=record.id, action=action, status=status.value)

        await self._publish(updated)
        return ControlResult(updated, ControlOutcome.DISPATCHED, message)

    async def _finalize_locally(self, record: CallRecord, action: str, message: str) -> ControlResult:
        record = await self.registry.upsert(
            record.id,
            CallPatch(status=CallStatus.COMPLETED, control_outcome=ControlOutcome.LOCALLY_FINALIZED),
        )
        record_control_action(action, ControlOutcome.LOCALLY_FINALIZED.value)
        record = await self._finalize(record, source=SOURCE_LOCAL_FALLBACK)
        return ControlResult(record, ControlOutcome.LOCALLY_FINALIZED, message)

    async def _finalize(
        self,
        record: CallRecord,
        source: str,
        provider_duration: float | None = None,
        ended_at: datetime | None = None,
    ) -> CallRecord:
        """Stamp end time and duration on a terminal record and persist it.

        The call log write is an upsert keyed by call id, so replayed
        terminal webhooks rewrite the same row.
        """
        first_time = not record.persisted
        if first_time or provider_duration is not None:
            ended_at = ended_at or record.ended_at or datetime.now(UTC)
            record = await self.registry.upsert(
                record.id,
                CallPatch(
                    ended_at=ended_at,
                    duration_seconds=compute_duration(record.started_at, ended_at, provider_duration),
                ),
            )

        await self._publish(record)
        await self.call_log_store.save(record)
        record = await self.registry.upsert(record.id, CallPatch(persisted=True))

        if first_time:
            record_call_finalized(source, record.direction.value, record.duration_seconds or 0)
            logger.info(
                "call_finalized",
                call_id=record.id,
                source=source,
                status=record.status.value,
                duration=record.duration_seconds,
            )
            if self.crm_queue is not None and record.owner_email != UNKNOWN_OWNER:
                self.crm_queue.submit(call_log_job(record))

        return record

    async def _publish(self, record: CallRecord) -> None:
        active = self.registry.count_in_progress()
        set_active_calls(active)
        await self.broadcaster.publish_call(record)
        await self.broadcaster.publish_active_calls(active)


__all__ = [
    "SOURCE_LOCAL_FALLBACK",
    "SOURCE_WEBHOOK",
    "CallLifecycleService",
    "ControlResult",
    "compute_duration",
]
