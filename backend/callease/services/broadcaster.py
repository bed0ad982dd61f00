"""Realtime fan-out of call state to WebSocket subscribers.

Every subscriber receives every update; clients filter by owner themselves.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol

import structlog

if TYPE_CHECKING:
    from callease.services.call_registry import CallRecord

logger = structlog.get_logger()

CALL_UPDATE_EVENT = "callUpdate"
ACTIVE_CALLS_EVENT = "activeCalls"


class Subscriber(Protocol):
    """Anything with an async ``send_json`` (a Starlette WebSocket)."""

    async def send_json(self, data: Any) -> None: ...


class CallBroadcaster:
    """Publishes call updates and the active-call count to all subscribers."""

    def __init__(self) -> None:
        self._subscribers: set[Subscriber] = set()
        self.active_calls = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def connect(self, subscriber: Subscriber) -> None:
        """Register a subscriber and send it the current active-call count."""
        self._subscribers.add(subscriber)
        logger.info("realtime_subscriber_connected", subscribers=len(self._subscribers))
        await self._send(subscriber, {"event": ACTIVE_CALLS_EVENT, "data": self.active_calls})

    def disconnect(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)
        logger.info("realtime_subscriber_disconnected", subscribers=len(self._subscribers))

    async def publish_call(self, record: CallRecord) -> None:
        await self._broadcast({"event": CALL_UPDATE_EVENT, "data": record.to_dict()})
        logger.debug(
            "call_update_emitted",
            call_id=record.id,
            owner=record.owner_email,
            status=record.status.value,
        )

    async def publish_active_calls(self, count: int) -> None:
        self.active_calls = count
        await self._broadcast({"event": ACTIVE_CALLS_EVENT, "data": count})

    async def _broadcast(self, message: dict[str, Any]) -> None:
        if not self._subscribers:
            return

        subscribers = list(self._subscribers)
        results = await asyncio.gather(
            *(self._send(s, message) for s in subscribers),
            return_exceptions=True,
        )
        for subscriber, delivered in zip(subscribers, results, strict=True):
            if delivered is not True:
                self._subscribers.discard(subscriber)

    async def _send(self, subscriber: Subscriber, message: dict[str, Any]) -> bool:
        try:
            await subscriber.send_json(message)
        except Exception:
            logger.warning("realtime_send_failed", message_event=message.get("event"), exc_info=True)
            self._subscribers.discard(subscriber)
            return False
        return True
