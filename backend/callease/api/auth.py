"""Authentication API routes.

Google OAuth login: the consent redirect carries a signed ``state``; the
callback exchanges the code, finds or creates the user and hands the SPA a
bearer token in the URL fragment.
"""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from callease.api.deps import Services
from callease.core.auth import CurrentUser, create_access_token
from callease.core.config import settings
from callease.db.session import get_db
from callease.services.google_oauth import OAuthError, create_state, verify_state
from callease.services.subscriptions import get_active_subscription
from callease.services.users import get_or_create_from_profile

router = APIRouter(tags=["auth"])
logger = structlog.get_logger()


class UserResponse(BaseModel):
    """Current user as returned to the frontend."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    name: str
    is_subscribed: bool = Field(serialization_alias="isSubscribed")
    role: str


@router.get("/auth/google")
async def google_login(services: Services) -> RedirectResponse:
    """Redirect to the Google consent screen."""
    return RedirectResponse(services.oauth_client.authorization_url(create_state()))


@router.get("/auth/google/callback")
async def google_callback(
    services: Services,
    db: Annotated[AsyncSession, Depends(get_db)],
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
) -> RedirectResponse:
    """Complete the OAuth exchange and redirect back to the frontend."""
    login_url = f"{settings.FRONTEND_URL}/login"
    if error or not code:
        logger.warning("google_login_denied", error=error)
        return RedirectResponse(login_url)

    try:
        verify_state(state)
        profile = await services.oauth_client.authenticate(code)
    except OAuthError as e:
        logger.warning("google_login_failed", error=str(e))
        return RedirectResponse(login_url)

    user = await get_or_create_from_profile(db, profile, crm_queue=services.crm_queue)
    token = create_access_token(user.id)
    logger.info("google_login_success", user_id=user.id)
    return RedirectResponse(f"{settings.FRONTEND_URL}/dashboard#token={token}")


@router.get("/auth/logout")
async def logout() -> dict[str, str]:
    """Tokens are stateless; the client discards its copy."""
    return {"message": "Logged out"}


@router.get("/api/user", response_model=UserResponse, response_model_by_alias=True)
async def current_user_info(
    current_user: CurrentUser,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> UserResponse:
    subscription = await get_active_subscription(db, current_user.email)
    return UserResponse(
        email=current_user.email,
        name=current_user.name,
        is_subscribed=subscription is not None,
        role=current_user.role,
    )


@router.get("/dashboard")
async def dashboard(current_user: CurrentUser) -> dict[str, Any]:
    return {"message": f"Welcome to your dashboard, {current_user.name}!"}
