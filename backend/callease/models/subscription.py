"""Billing subscription model."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from callease.db.base import Base

STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"


class Subscription(Base):
    """One active-or-historical billing record per user email.

    ``stripe_event_id`` names the event last applied to the row. Dedup is
    done against ``ProcessedStripeEvent``, which keeps every event id.
    """

    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    subscription_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Stripe subscription id"
    )
    plan: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default=STATUS_ACTIVE)
    price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_event_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True, comment="Last applied Stripe event id"
    )
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
        return f"<Subscription(email={self.email}, plan={self.plan}, status={self.status})>"
