"""Ledger of payment-provider events that have already been applied."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from callease.db.base import Base


class ProcessedStripeEvent(Base):
    """One row per Stripe event id, written in the same transaction as its effect."""

    __tablename__ = "processed_stripe_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True, comment="Stripe event id"
    )
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    def __repr__(self) -> str:
        return f"<ProcessedStripeEvent(event_id={self.event_id})>"
