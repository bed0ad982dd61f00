"""Prometheus metrics for call monitoring.

Provides counters, histograms, and gauges for tracking call lifecycle,
webhook ingest and CRM sync health.
Feature-flagged via ENABLE_PROMETHEUS_METRICS.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from callease.core.config import settings

logger = structlog.get_logger()

# Create custom registry to avoid conflicts
REGISTRY = CollectorRegistry(auto_describe=True)

# Counters
CALLS_STARTED = Counter(
    "callease_calls_started_total",
    "Total number of outbound calls placed",
    registry=REGISTRY,
)

CALL_CONTROL_ACTIONS = Counter(
    "callease_call_control_actions_total",
    "Control actions by action and outcome",
    ["action", "outcome"],
    registry=REGISTRY,
)

CALLS_FINALIZED = Counter(
    "callease_calls_finalized_total",
    "Calls written to the call log at a terminal state",
    ["source"],
    registry=REGISTRY,
)

WEBHOOK_EVENTS = Counter(
    "callease_webhook_events_total",
    "Webhook events received",
    ["channel", "event_type"],
    registry=REGISTRY,
)

CRM_SYNC_FAILURES = Counter(
    "callease_crm_sync_failures_total",
    "CRM sync jobs that failed or were dropped",
    ["job", "reason"],
    registry=REGISTRY,
)

# Histograms
CALLS_DURATION = Histogram(
    "callease_call_duration_seconds",
    "Call duration in seconds",
    ["direction"],
    buckets=(5, 15, 30, 60, 120, 300, 600, 1800),
    registry=REGISTRY,
)

# Gauges
ACTIVE_CALLS = Gauge(
    "callease_active_calls_current",
    "Current number of calls in progress",
    registry=REGISTRY,
)


def record_call_started() -> None:
    """Record an outbound call placement."""
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CALLS_STARTED.inc()
    logger.debug("metric_call_started")


def record_control_action(action: str, outcome: str) -> None:
    """Record a control action result.

    Args:
        action: answer, reject or end.
        outcome: ControlOutcome value, or "failed".
    """
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CALL_CONTROL_ACTIONS.labels(action=action, outcome=outcome).inc()
    logger.debug("metric_control_action", action=action, outcome=outcome)


def record_call_finalized(source: str, direction: str, duration_seconds: float) -> None:
    """Record a call reaching a terminal state and being persisted.

    Args:
        source: webhook or local_fallback.
        direction: inbound or outbound.
        duration_seconds: Call duration in seconds.
    """
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CALLS_FINALIZED.labels(source=source).inc()
    CALLS_DURATION.labels(direction=direction).observe(duration_seconds)
    logger.debug(
        "metric_call_finalized",
        source=source,
        duration=duration_seconds,
    )


def record_webhook_event(channel: str, event_type: str) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    WEBHOOK_EVENTS.labels(channel=channel, event_type=event_type).inc()


def record_crm_sync_failure(job: str, reason: str) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    CRM_SYNC_FAILURES.labels(job=job, reason=reason).inc()
    logger.debug("metric_crm_sync_failure", job=job, reason=reason)


def set_active_calls(count: int) -> None:
    if not settings.ENABLE_PROMETHEUS_METRICS:
        return

    ACTIVE_CALLS.set(count)


def get_metrics_router() -> APIRouter:
    """Get router with /metrics endpoint.

    Returns:
        FastAPI router with Prometheus metrics endpoint.
    """
    router = APIRouter()

    @router.get("/metrics")
    async def metrics() -> Response:
        """Prometheus metrics endpoint."""
        if not settings.ENABLE_PROMETHEUS_METRICS:
            return Response(
                content="Prometheus metrics disabled",
                status_code=503,
            )

        return Response(
            content=generate_latest(REGISTRY),
            media_type=CONTENT_TYPE_LATEST,
        )

    return router


__all__ = [
    "ACTIVE_CALLS",
    "CALLS_DURATION",
    "CALLS_FINALIZED",
    "CALLS_STARTED",
    "CALL_CONTROL_ACTIONS",
    "CRM_SYNC_FAILURES",
    "REGISTRY",
    "WEBHOOK_EVENTS",
    "get_metrics_router",
    "record_call_finalized",
    "record_call_started",
    "record_control_action",
    "record_crm_sync_failure",
    "record_webhook_event",
    "set_active_calls",
]
