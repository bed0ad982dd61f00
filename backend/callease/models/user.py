"""Application user model."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from callease.db.base import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"


class User(Base):
    """Account created on first Google OAuth login.

    Immutable after creation except for ``role``.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    google_id: Mapped[str] = mapped_column(
        String(64), unique=True, nullable=False, comment="OAuth provider subject id"
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="User")
    phone: Mapped[str | None] = mapped_column(
        String(50), nullable=True, index=True, comment="Used to map inbound callers to a user"
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_USER)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    @property
    def is_admin(self) -> bool:
        return (self.role or ROLE_USER).lower() == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
