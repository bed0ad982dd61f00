"""FastAPI application entry point."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callease.api import auth, call_logs, calls, health, realtime, subscriptions, webhooks
from callease.api.deps import AppServices
from callease.core.config import settings
from callease.core.exceptions import register_exception_handlers
from callease.core.logging import configure_logging
from callease.db.session import AsyncSessionLocal
from callease.monitoring import get_metrics_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start the CRM sync worker and close provider clients on shutdown."""
    services: AppServices = app.state.services
    services.crm_queue.start()
    logger.info("app_started", app=settings.APP_NAME, version=settings.APP_VERSION)

    yield

    logger.info("app_shutting_down", tracked_calls=len(services.registry))
    await services.close()


def create_app(services: AppServices | None = None) -> FastAPI:
    """Build the application.

    Args:
        services: Pre-built service container; the default graph is wired
            against the configured database when omitted.
    """
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.services = services or AppServices.build(AsyncSessionLocal)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=settings.CORS_ALLOW_METHODS,
        allow_headers=settings.CORS_ALLOW_HEADERS,
    )
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(get_metrics_router())
    app.include_router(auth.router)
    app.include_router(calls.router)
    app.include_router(call_logs.router)
    app.include_router(subscriptions.router)
    app.include_router(webhooks.router)
    app.include_router(realtime.router)

    return app


app = create_app()
