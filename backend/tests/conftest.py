"""Pytest configuration and fixtures for backend tests."""

import logging
import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from callease.api.deps import AppServices
from callease.core.auth import create_access_token
from callease.db.base import Base
from callease.db.session import get_db
from callease.main import create_app
from callease.models.user import ROLE_ADMIN, User
from callease.services.crm.ghl import GoHighLevelClient
from callease.services.google_oauth import GoogleOAuthClient
from callease.services.stripe import StripeClient
from callease.services.vapi import ProviderCall, VapiClient

logger = logging.getLogger(__name__)

CONTROL_URL = "https://phone-call-websocket.vapi.ai/call-123/control"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[Any, None]:
    """Create test database engine with fresh database for each test."""
    test_db_fd, test_db_path = tempfile.mkstemp(suffix=".db")
    os.close(test_db_fd)
    test_db_url = f"sqlite+aiosqlite:///{test_db_path}"

    engine = create_async_engine(
        test_db_url,
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()

    try:
        db_path = Path(test_db_path)
        if db_path.exists():
            db_path.unlink()
    except Exception as e:
        logger.debug("Failed to clean up test database: %s", e)


@pytest.fixture
def session_factory(test_engine: Any) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def test_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


def make_provider_call(
    call_id: str = "call-123",
    status: str | None = "queued",
    control_url: str | None = None,
    number: str = "+15550002222",
    **extra: Any,
) -> ProviderCall:
    """Build a provider call object the way Vapi returns it."""
    data: dict[str, Any] = {"id": call_id, "status": status, "customer": {"number": number}}
    if control_url:
        data["monitor"] = {"controlUrl": control_url}
    data.update(extra)
    return ProviderCall.model_validate(data)


@pytest.fixture
def fake_voice_client() -> MagicMock:
    """Voice provider client whose commands succeed by default."""
    client = MagicMock(spec=VapiClient)
    client.place_call = AsyncMock(return_value=make_provider_call(type="outboundPhoneCall"))
    client.answer = AsyncMock(return_value=None)
    client.reject = AsyncMock(return_value=None)
    client.end = AsyncMock(return_value=None)
    client.close = AsyncMock(return_value=None)
    return client


@pytest.fixture
def fake_stripe_client() -> MagicMock:
    client = MagicMock(spec=StripeClient)
    client.create_checkout_session = AsyncMock(return_value="cs_test_123")
    client.close = AsyncMock(return_value=None)
    return client


@pytest.fixture
def fake_oauth_client() -> MagicMock:
    client = MagicMock(spec=GoogleOAuthClient)
    client.authorization_url = MagicMock(
        return_value="https://accounts.google.com/o/oauth2/v2/auth?state=x"
    )
    client.authenticate = AsyncMock()
    client.close = AsyncMock(return_value=None)
    return client


@pytest.fixture
def services(
    session_factory: async_sessionmaker[AsyncSession],
    fake_voice_client: MagicMock,
    fake_stripe_client: MagicMock,
    fake_oauth_client: MagicMock,
) -> AppServices:
    """Service graph with fake providers and CRM sync disabled."""
    return AppServices.build(
        session_factory,
        voice_client=fake_voice_client,
        stripe_client=fake_stripe_client,
        oauth_client=fake_oauth_client,
        crm_client=GoHighLevelClient(api_key=""),
    )


@pytest.fixture
def app(services: AppServices, session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    application = create_app(services)

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest_asyncio.fixture(scope="function")
async def test_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client without credentials."""
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create_user(
    session_factory: async_sessionmaker[AsyncSession], **kwargs: Any
) -> User:
    async with session_factory() as session:
        user = User(**kwargs)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest_asyncio.fixture
async def test_user(session_factory: async_sessionmaker[AsyncSession]) -> User:
    return await _create_user(
        session_factory,
        google_id="google-user-1",
        email="owner@example.com",
        name="Olivia Owner",
        phone="+15550001111",
    )


@pytest_asyncio.fixture
async def other_user(session_factory: async_sessionmaker[AsyncSession]) -> User:
    return await _create_user(
        session_factory,
        google_id="google-user-2",
        email="other@example.com",
        name="Oscar Other",
    )


@pytest_asyncio.fixture
async def admin_user(session_factory: async_sessionmaker[AsyncSession]) -> User:
    return await _create_user(
        session_factory,
        google_id="google-admin-1",
        email="admin@example.com",
        name="Ada Admin",
        role=ROLE_ADMIN,
    )


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def sample_inbound_payload() -> dict[str, Any]:
    """Inbound call event as posted by the voice provider."""
    return {
        "data": {
            "object": {
                "id": "inbound-1",
                "type": "inboundPhoneCall",
                "status": "ringing",
                "customer": {"number": "+15550001111"},
                "monitor": {"controlUrl": CONTROL_URL},
                "createdAt": datetime.now(UTC).isoformat(),
            }
        }
    }


@pytest.fixture
def provider_call() -> Any:
    """Factory fixture for provider call objects."""
    return make_provider_call


@pytest.fixture
def headers_for() -> Any:
    """Factory fixture for bearer auth headers."""
    return auth_headers
