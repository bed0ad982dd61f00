"""Google OAuth 2.0 code-for-token exchange.

Token and profile requests are idempotent, so transient failures are retried
with exponential backoff.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx
import structlog
from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from callease.core.config import settings

logger = structlog.get_logger()

OAUTH_SCOPES = ("openid", "profile", "email")
STATE_PURPOSE = "oauth_state"


class OAuthError(Exception):
    """Raised when the OAuth exchange fails."""


class GoogleProfile(BaseModel):
    sub: str
    email: str
    name: str | None = None
    picture: str | None = None


def create_state(now: datetime | None = None) -> str:
    """Signed, short-lived value passed through the consent redirect."""
    now = now or datetime.now(UTC)
    claims = {
        "purpose": STATE_PURPOSE,
        "exp": now + timedelta(minutes=settings.OAUTH_STATE_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def verify_state(state: str | None) -> None:
    """Raises OAuthError if ``state`` was not issued by this service or has expired."""
    if not state:
        raise OAuthError("Missing OAuth state")
    try:
        claims = jwt.decode(state, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        raise OAuthError("Invalid OAuth state") from e
    if claims.get("purpose") != STATE_PURPOSE:
        raise OAuthError("Invalid OAuth state")


def _retry_transient() -> Any:
    return retry(
        stop=stop_after_attempt(settings.MAX_RETRIES),
        wait=wait_exponential(multiplier=settings.RETRY_BACKOFF_FACTOR, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "google_oauth_retry",
            attempt=retry_state.attempt_number,
            wait=getattr(retry_state.next_action, "sleep", None),
        ),
    )


class GoogleOAuthClient:
    """Exchanges an authorization code for the user's Google profile."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        callback_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.client_id = client_id if client_id is not None else settings.GOOGLE_CLIENT_ID
        self.client_secret = (
            client_secret if client_secret is not None else settings.GOOGLE_CLIENT_SECRET
        )
        self.callback_url = callback_url or settings.GOOGLE_CALLBACK_URL
        self.timeout = timeout or settings.GOOGLE_API_TIMEOUT
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=5.0))
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{settings.GOOGLE_AUTH_URL}?{urlencode(params)}"

    @_retry_transient()
    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for an access token."""
        response = await self._ensure_client().post(
            settings.GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": self.client_id or "",
                "client_secret": self.client_secret or "",
                "redirect_uri": self.callback_url,
                "grant_type": "authorization_code",
            },
        )
        if response.status_code >= 400:  # noqa: PLR2004
            raise OAuthError(f"Token exchange failed with status {response.status_code}")

        access_token = response.json().get("access_token")
        if not access_token:
            raise OAuthError("Token response did not include an access token")
        return str(access_token)

    @_retry_transient()
    async def fetch_profile(self, access_token: str) -> GoogleProfile:
        response = await self._ensure_client().get(
            settings.GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 400:  # noqa: PLR2004
            raise OAuthError(f"Profile request failed with status {response.status_code}")

        try:
            return GoogleProfile.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise OAuthError("Profile response is missing required fields") from e

    async def authenticate(self, code: str) -> GoogleProfile:
        """Run the full exchange: code to token to profile.

        Raises:
            OAuthError: On any failure, including exhausted retries.
        """
        try:
            token = await self.exchange_code(code)
            profile = await self.fetch_profile(token)
        except httpx.HTTPError as e:
            raise OAuthError(f"Google request failed: {e}") from e

        logger.info("google_profile_fetched", email=profile.email)
        return profile


__all__ = [
    "GoogleOAuthClient",
    "GoogleProfile",
    "OAuthError",
    "create_state",
    "verify_state",
]
