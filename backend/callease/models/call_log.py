"""Persisted call log model."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from callease.db.base import Base


class CallLog(Base):
    """Durable copy of a call, written when the call reaches a terminal state.

    Keyed by the provider call id so repeated webhook deliveries update the
    same row.
    """

    __tablename__ = "call_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True, comment="Provider call id"
    )
    user_email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(
        String(20), nullable=False, comment="Call direction: inbound or outbound"
    )
    phone_number: Mapped[str] = mapped_column(String(50), nullable=False, default="N/A")
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Call duration in seconds"
    )
    agent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    def __repr__(self) -> str:
        return f"<CallLog(call_id={self.call_id}, status={self.status}, duration={self.duration})>"
