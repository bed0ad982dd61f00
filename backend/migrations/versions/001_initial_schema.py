"""Create users, subscriptions and call_logs tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-03-20
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the account, billing and call history tables."""
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "google_id",
            sa.String(64),
            nullable=False,
            comment="OAuth provider subject id",
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False, server_default="User"),
        sa.Column(
            "phone",
            sa.String(50),
            nullable=True,
            comment="Used to map inbound callers to a user",
        ),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("google_id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_phone", "users", ["phone"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column(
            "subscription_id",
            sa.String(255),
            nullable=True,
            comment="Stripe subscription id",
        ),
        sa.Column("plan", sa.String(50), nullable=False, server_default="unknown"),
        sa.Column("status", sa.String(30), nullable=False, server_default="active"),
        sa.Column("price", sa.Float(), nullable=False, server_default="0"),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "stripe_event_id",
            sa.String(255),
            nullable=True,
            comment="Last processed Stripe event id",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_event_id"),
    )
    op.create_index("ix_subscriptions_email", "subscriptions", ["email"])

    op.create_table(
        "call_logs",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column(
            "call_id",
            sa.String(255),
            nullable=False,
            comment="Provider call id",
        ),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column(
            "direction",
            sa.String(20),
            nullable=False,
            comment="Call direction: inbound or outbound",
        ),
        sa.Column("phone_number", sa.String(50), nullable=False, server_default="N/A"),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "duration",
            sa.Integer(),
            nullable=False,
            server_default="0",
            comment="Call duration in seconds",
        ),
        sa.Column("agent_id", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_call_logs_call_id", "call_logs", ["call_id"], unique=True)
    op.create_index("ix_call_logs_user_email", "call_logs", ["user_email"])
    op.create_index(
        "ix_call_logs_user_start_time",
        "call_logs",
        ["user_email", "start_time"],
    )


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index("ix_call_logs_user_start_time", "call_logs")
    op.drop_index("ix_call_logs_user_email", "call_logs")
    op.drop_index("ix_call_logs_call_id", "call_logs")
    op.drop_table("call_logs")
    op.drop_index("ix_subscriptions_email", "subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_users_phone", "users")
    op.drop_index("ix_users_email", "users")
    op.drop_table("users")
