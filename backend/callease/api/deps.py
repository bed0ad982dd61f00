"""Application service container and FastAPI dependencies.

Services are built once per app in ``create_app`` and stored on
``app.state.services``; route handlers reach them through the dependencies
below, never through module globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from callease.services.broadcaster import CallBroadcaster
from callease.services.call_lifecycle import CallLifecycleService
from callease.services.call_logs import CallLogStore
from callease.services.call_registry import CallRegistry
from callease.services.crm.ghl import GoHighLevelClient
from callease.services.crm_sync import CRMSyncQueue
from callease.services.google_oauth import GoogleOAuthClient
from callease.services.stripe import StripeClient
from callease.services.vapi import VapiClient


@dataclass
class AppServices:
    """Long-lived collaborators shared by every request."""

    registry: CallRegistry
    broadcaster: CallBroadcaster
    voice_client: VapiClient
    stripe_client: StripeClient
    oauth_client: GoogleOAuthClient
    crm_client: GoHighLevelClient
    crm_queue: CRMSyncQueue
    call_log_store: CallLogStore
    lifecycle: CallLifecycleService

    @classmethod
    def build(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        voice_client: VapiClient | None = None,
        stripe_client: StripeClient | None = None,
        oauth_client: GoogleOAuthClient | None = None,
        crm_client: GoHighLevelClient | None = None,
    ) -> AppServices:
        """Wire the default service graph; any adapter may be overridden."""
        registry = CallRegistry()
        broadcaster = CallBroadcaster()
        voice_client = voice_client or VapiClient()
        crm_client = crm_client or GoHighLevelClient()
        crm_queue = CRMSyncQueue(crm_client)
        call_log_store = CallLogStore(session_factory)

        return cls(
            registry=registry,
            broadcaster=broadcaster,
            voice_client=voice_client,
            stripe_client=stripe_client or StripeClient(),
            oauth_client=oauth_client or GoogleOAuthClient(),
            crm_client=crm_client,
            crm_queue=crm_queue,
            call_log_store=call_log_store,
            lifecycle=CallLifecycleService(
                registry=registry,
                broadcaster=broadcaster,
                voice_client=voice_client,
                call_log_store=call_log_store,
                crm_queue=crm_queue,
            ),
        )

    async def close(self) -> None:
        await self.crm_queue.stop()
        await self.voice_client.close()
        await self.stripe_client.close()
        await self.oauth_client.close()
        await self.crm_client.close()


def get_services(request: Request) -> AppServices:
    services: AppServices = request.app.state.services
    return services


def get_lifecycle(services: Annotated[AppServices, Depends(get_services)]) -> CallLifecycleService:
    return services.lifecycle


Services = Annotated[AppServices, Depends(get_services)]
Lifecycle = Annotated[CallLifecycleService, Depends(get_lifecycle)]
