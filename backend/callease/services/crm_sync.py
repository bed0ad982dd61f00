"""Detached CRM sync queue.

Callers enqueue jobs and return immediately; a single background worker runs
them against GoHighLevel. Jobs are never retried. Failures are logged and
counted, never raised back to the request that produced them.
Feature-flagged via ENABLE_CRM_SYNC.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog

from callease.core.config import settings
from callease.monitoring.metrics import record_crm_sync_failure
from callease.services.crm.ghl import CRMError, GoHighLevelClient

if TYPE_CHECKING:
    from callease.services.call_registry import CallRecord

logger = structlog.get_logger()

SIGNUP_TAGS = ("CallEase Signup", "Lead")
SIGNUP_SOURCE = "CallEase App Signup"


@dataclass
class CRMJob:
    """One unit of CRM work.

    Attributes:
        name: Job kind, used as the metrics label.
        subject: Email the job is about, for logging.
        run: Coroutine function executed by the worker.
    """

    name: str
    subject: str
    run: Callable[[GoHighLevelClient], Awaitable[None]]


def user_signup_job(email: str, name: str | None, phone: str | None = None) -> CRMJob:
    """Create or update the CRM contact for a newly registered user."""
    first, _, last = (name or "").partition(" ")

    async def run(client: GoHighLevelClient) -> None:
        contact = await client.create_or_update_contact(
            {
                "email": email,
                "firstName": first,
                "lastName": last,
                "name": name,
                "phone": phone,
                "tags": list(SIGNUP_TAGS),
                "source": SIGNUP_SOURCE,
            }
        )
        if not contact or not contact.get("id"):
            raise CRMError("Signup contact was not created")

    return CRMJob(name="user_signup", subject=email, run=run)


def subscription_job(email: str, plan: str, status: str) -> CRMJob:
    """Tag the contact with its current plan and subscription status."""

    async def run(client: GoHighLevelClient) -> None:
        contact = await client.create_or_update_contact(
            {"email": email, "tags": [f"Plan: {plan}", f"Subscription Status: {status}"]}
        )
        if not contact or not contact.get("id"):
            raise CRMError("Subscription contact was not updated")

    return CRMJob(name="subscription", subject=email, run=run)


def call_log_tags(direction: str, status: str, started_at: datetime | None) -> list[str]:
    call_date = started_at.strftime("%m/%d/%Y") if started_at else "Unknown Date"
    tags = [f"Call Log: {call_date}", f"Call {direction} ({status})"]
    if status in ("completed", "ended"):
        tags.append("Call Completed")
    return tags


def call_log_note(record: CallRecord) -> str:
    started = record.started_at.strftime("%m/%d/%Y, %I:%M:%S %p") if record.started_at else "N/A"
    return (
        f"CallEase Log - Call ID: {record.id}\n"
        f"Direction: {record.direction.value}\n"
        f"Number: {record.counterpart_number or 'N/A'}\n"
        f"Status: {record.status.value}\n"
        f"Duration: {record.duration_seconds or 0}s\n"
        f"Time: {started}\n"
        f"Notes: None"
    )


def call_log_job(record: CallRecord) -> CRMJob:
    """Tag the owner's contact with the call, plus a note once the call is over."""
    email = record.owner_email
    tags = call_log_tags(record.direction.value, record.status.value, record.started_at)
    note = call_log_note(record) if record.is_terminal else None

    async def run(client: GoHighLevelClient) -> None:
        contact = await client.create_or_update_contact(
            {"email": email, "phone": record.counterpart_number}
        )
        if not contact or not contact.get("id"):
            raise CRMError("Call log contact was not found or created")

        await client.add_tags(contact["id"], tags)
        if note:
            await client.create_note(contact["id"], note)

    return CRMJob(name="call_log", subject=email, run=run)


class CRMSyncQueue:
    """Bounded in-process queue with a single background worker."""

    def __init__(self, client: GoHighLevelClient, maxsize: int | None = None) -> None:
        self.client = client
        self._queue: asyncio.Queue[CRMJob] = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else settings.CRM_SYNC_QUEUE_SIZE
        )
        self._worker: asyncio.Task[None] | None = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def submit(self, job: CRMJob) -> bool:
        """Enqueue a job without waiting.

        Returns:
            True if queued, False if skipped or dropped.
        """
        if not settings.ENABLE_CRM_SYNC or not self.client.enabled:
            logger.debug("crm_sync_skipped", job=job.name, reason="disabled")
            return False

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning("crm_sync_queue_full", job=job.name, subject=job.subject)
            record_crm_sync_failure(job.name, "queue_full")
            return False

        logger.debug("crm_sync_queued", job=job.name, pending=self._queue.qsize())
        return True

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="crm-sync-worker")
        logger.info("crm_sync_worker_started")

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.info("crm_sync_worker_stopped", dropped=self._queue.qsize())

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.run_job(job)
            finally:
                self._queue.task_done()

    async def run_job(self, job: CRMJob) -> bool:
        """Execute one job, logging and counting any failure."""
        log = logger.bind(job=job.name, subject=job.subject)
        try:
            await job.run(self.client)
        except CRMError as e:
            log.warning("crm_sync_failed", error=e.message, status_code=e.status_code)
            record_crm_sync_failure(job.name, "crm_error")
            return False
        except Exception:
            log.exception("crm_sync_crashed")
            record_crm_sync_failure(job.name, "unexpected")
            return False

        log.info("crm_sync_completed")
        return True


__all__ = [
    "CRMJob",
    "CRMSyncQueue",
    "call_log_job",
    "call_log_tags",
    "subscription_job",
    "user_signup_job",
]
