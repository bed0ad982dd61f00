"""Record every processed Stripe event id.

Revision ID: 002_processed_stripe_events
Revises: 001_initial_schema
Create Date: 2025-04-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_processed_stripe_events"
down_revision: str | None = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create processed_stripe_events and backfill it from subscriptions."""
    op.create_table(
        "processed_stripe_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "event_id",
            sa.String(255),
            nullable=False,
            comment="Stripe event id",
        ),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column(
            "processed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_processed_stripe_events_event_id",
        "processed_stripe_events",
        ["event_id"],
        unique=True,
    )
    op.execute(
        "INSERT INTO processed_stripe_events (event_id, email) "
        "SELECT stripe_event_id, email FROM subscriptions WHERE stripe_event_id IS NOT NULL"
    )


def downgrade() -> None:
    """Drop processed_stripe_events."""
    op.drop_index("ix_processed_stripe_events_event_id", "processed_stripe_events")
    op.drop_table("processed_stripe_events")
