"""User account lookups and creation."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from callease.models.user import ROLE_USER, User
from callease.services.crm_sync import user_signup_job

if TYPE_CHECKING:
    from callease.services.crm_sync import CRMSyncQueue
    from callease.services.google_oauth import GoogleProfile

logger = structlog.get_logger()


async def find_by_google_id(db: AsyncSession, google_id: str) -> User | None:
    result = await db.execute(select(User).where(User.google_id == google_id))
    return result.scalar_one_or_none()


async def find_by_id(db: AsyncSession, user_id: int) -> User | None:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def find_by_phone(db: AsyncSession, phone: str) -> User | None:
    """Map an inbound caller number to a registered user."""
    result = await db.execute(select(User).where(User.phone == phone).limit(1))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    google_id: str,
    email: str,
    name: str,
    phone: str | None = None,
    crm_queue: CRMSyncQueue | None = None,
) -> User:
    """Insert a user and queue the CRM signup contact.

    Args:
        db: Database session
        google_id: OAuth subject id
        email: Account email
        name: Display name
        phone: Optional phone number, used to map inbound callers
        crm_queue: Sync queue for the signup contact; skipped when None

    Returns:
        Created user
    """
    user = User(google_id=google_id, email=email, name=name, phone=phone, role=ROLE_USER)
    db.add(user)
    await db.commit()
    await db.refresh(user)

    logger.info("user_created", user_id=user.id, email=email)

    if crm_queue is not None:
        crm_queue.submit(user_signup_job(email, name, phone))

    return user


async def get_or_create_from_profile(
    db: AsyncSession,
    profile: GoogleProfile,
    crm_queue: CRMSyncQueue | None = None,
) -> User:
    """Return the user for an OAuth profile, creating it on first login."""
    user = await find_by_google_id(db, profile.sub)
    if user is not None:
        logger.debug("user_login", user_id=user.id)
        return user

    return await create_user(
        db,
        google_id=profile.sub,
        email=profile.email,
        name=profile.name or "User",
        crm_queue=crm_queue,
    )
