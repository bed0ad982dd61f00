"""Persisted call log storage.

Terminal call records are written through here. Writes are upserts keyed by
the provider call id so at-least-once webhook delivery never duplicates a row.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callease.core.exceptions import PersistenceError
from callease.models.call_log import CallLog
from callease.services.call_registry import CallRecord

logger = structlog.get_logger()


def _call_log_values(record: CallRecord) -> dict[str, object]:
    return {
        "user_email": record.owner_email,
        "direction": record.direction.value,
        "phone_number": record.counterpart_number or "N/A",
        "status": record.status.value,
        "start_time": record.started_at,
        "end_time": record.ended_at,
        "duration": record.duration_seconds or 0,
        "agent_id": record.agent_id,
    }


class CallLogStore:
    """Writes call records to the ``call_logs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def save(self, record: CallRecord) -> CallLog:
        """Insert or update the call log row for ``record``.

        Raises:
            PersistenceError: If the database write fails.
        """
        values = _call_log_values(record)
        log = logger.bind(call_id=record.id, status=record.status.value)

        try:
            try:
                row = await self._write(record.id, values)
            except IntegrityError:
                # A concurrent insert for the same call id won the race; update it.
                log.info("call_log_insert_conflict")
                row = await self._write(record.id, values)
        except SQLAlchemyError as e:
            log.exception("call_log_save_failed")
            raise PersistenceError("Failed to save call log", call_id=record.id) from e

        log.info("call_log_saved", duration=row.duration)
        return row

    async def _write(self, call_id: str, values: dict[str, object]) -> CallLog:
        async with self.session_factory() as session:
            result = await session.execute(select(CallLog).where(CallLog.call_id == call_id))
            row = result.scalar_one_or_none()
            if row is None:
                row = CallLog(call_id=call_id, **values)
                session.add(row)
            else:
                for name, value in values.items():
                    setattr(row, name, value)
            await session.commit()
            return row


async def list_call_logs(db: AsyncSession, user_email: str | None = None) -> Sequence[CallLog]:
    """Fetch persisted call logs, newest first.

    Args:
        db: Database session
        user_email: Restrict to this owner; ``None`` returns every log (admin view).
    """
    query = select(CallLog).order_by(CallLog.start_time.desc())
    if user_email is not None:
        query = query.where(CallLog.user_email == user_email)
    result = await db.execute(query)
    return result.scalars().all()
