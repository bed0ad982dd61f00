"""Call registry for tracking live calls.

In-memory registry keyed by provider call id. It is the single writer of
call record fields; every entry point (outbound start, provider webhooks,
control actions) goes through ``upsert``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from callease.core.config import settings

logger = structlog.get_logger()

UNKNOWN_OWNER = "unknown"


class CallDirection(StrEnum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class CallStatus(StrEnum):
    QUEUED = "queued"
    RINGING = "ringing"
    ANSWERING = "answering"
    ONGOING = "ongoing"
    REJECTING = "rejecting"
    ENDING = "ending"
    COMPLETED = "completed"
    ENDED = "ended"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({CallStatus.COMPLETED, CallStatus.ENDED})
IN_PROGRESS_STATUSES = frozenset({CallStatus.ONGOING})


class ControlOutcome(StrEnum):
    """How the most recent control action on a call resolved."""

    DISPATCHED = "dispatched"  # provider accepted the command, awaiting webhook
    CONFIRMED = "confirmed"  # provider webhook reported the terminal state
    LOCALLY_FINALIZED = "locally_finalized"  # provider unreachable, ended locally


@dataclass
class CallRecord:
    """Current lifecycle state of one phone call."""

    id: str
    direction: CallDirection
    status: CallStatus = CallStatus.QUEUED
    owner_email: str = UNKNOWN_OWNER
    counterpart_number: str | None = None
    control_handle: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    agent_id: str | None = None
    control_outcome: ControlOutcome | None = None
    persisted: bool = False
    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and realtime events."""
        return {
            "id": self.id,
            "direction": self.direction.value,
            "status": self.status.value,
            "ownerEmail": self.owner_email,
            "counterpartNumber": self.counterpart_number,
            "controlHandle": self.control_handle,
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "durationSeconds": self.duration_seconds,
            "agentId": self.agent_id,
            "controlOutcome": self.control_outcome.value if self.control_outcome else None,
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class CallPatch:
    """Partial update for a call record.

    ``None`` means "not supplied": the field is left as it is. An empty
    ``control_handle`` is treated the same way, so a populated handle is
    never cleared.
    """

    direction: CallDirection | None = None
    status: CallStatus | None = None
    owner_email: str | None = None
    counterpart_number: str | None = None
    control_handle: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    agent_id: str | None = None
    control_outcome: ControlOutcome | None = None
    persisted: bool | None = None

    def changes(self) -> dict[str, Any]:
        supplied = {f.name: getattr(self, f.name) for f in fields(self)}
        if not supplied["control_handle"]:
            supplied["control_handle"] = None
        return {name: value for name, value in supplied.items() if value is not None}


class CallRegistry:
    """Process-wide map of call id to CallRecord.

    Mutations are serialized by a single lock. Reads are lock-free since the
    event loop never preempts a synchronous read.

    Records are kept for the life of the process, bounded by ``max_entries``:
    once exceeded, the oldest records that are terminal and already persisted
    are evicted. Live or unflushed records are never evicted.
    """

    def __init__(self, max_entries: int | None = None) -> None:
        self._records: dict[str, CallRecord] = {}
        self._lock = asyncio.Lock()
        self.max_entries = max_entries if max_entries is not None else settings.CALL_REGISTRY_MAX_ENTRIES

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._records

    async def upsert(self, call_id: str, patch: CallPatch) -> CallRecord:
        """Create or merge a call record.

        Args:
            call_id: Provider call identifier.
            patch: Fields to set. Must include ``direction`` when the call
                is not yet known.

        Returns:
            The resulting record.

        Raises:
            ValueError: If the call is new and ``patch.direction`` is missing.
        """
        changes = patch.changes()

        async with self._lock:
            record = self._records.get(call_id)
            if record is None:
                if "direction" not in changes:
                    raise ValueError(f"Cannot create call {call_id} without a direction")
                record = CallRecord(id=call_id, **changes)
                self._records[call_id] = record
                logger.info(
                    "call_registered",
                    call_id=call_id,
                    direction=record.direction.value,
                    status=record.status.value,
                    owner=record.owner_email,
                )
            else:
                for name, value in changes.items():
                    setattr(record, name, value)
                record.updated_at = datetime.now(UTC)
                logger.debug("call_updated", call_id=call_id, fields=sorted(changes))

            self._evict_if_needed()
            return record

    def get(self, call_id: str) -> CallRecord | None:
        return self._records.get(call_id)

    def list_for_owner(self, email: str, include_all: bool = False) -> list[CallRecord]:
        """List records visible to a user, newest first.

        Args:
            email: Requesting user's email.
            include_all: Return every record (admin view).
        """
        records = (
            list(self._records.values())
            if include_all
            else [r for r in self._records.values() if r.owner_email == email]
        )
        return sorted(records, key=lambda r: r.started_at, reverse=True)

    def count_in_progress(self) -> int:
        return sum(1 for r in self._records.values() if r.status in IN_PROGRESS_STATUSES)

    def _evict_if_needed(self) -> None:
        overflow = len(self._records) - self.max_entries
        if overflow <= 0:
            return

        evictable = sorted(
            (r for r in self._records.values() if r.is_terminal and r.persisted),
            key=lambda r: r.updated_at,
        )
        for record in evictable[:overflow]:
            del self._records[record.id]
            logger.debug("call_evicted", call_id=record.id, status=record.status.value)

        if len(self._records) > self.max_entries:
            logger.warning(
                "call_registry_over_capacity",
                size=len(self._records),
                max_entries=self.max_entries,
            )


__all__ = [
    "IN_PROGRESS_STATUSES",
    "TERMINAL_STATUSES",
    "UNKNOWN_OWNER",
    "CallDirection",
    "CallPatch",
    "CallRecord",
    "CallRegistry",
    "CallStatus",
    "ControlOutcome",
]
