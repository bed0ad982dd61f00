"""Monitoring module for Prometheus metrics and health checks."""

from callease.monitoring.metrics import (
    ACTIVE_CALLS,
    CALL_CONTROL_ACTIONS,
    CALLS_FINALIZED,
    CALLS_STARTED,
    CRM_SYNC_FAILURES,
    get_metrics_router,
    record_call_finalized,
    record_call_started,
    record_control_action,
    record_crm_sync_failure,
    record_webhook_event,
    set_active_calls,
)

__all__ = [
    "ACTIVE_CALLS",
    "CALLS_FINALIZED",
    "CALLS_STARTED",
    "CALL_CONTROL_ACTIONS",
    "CRM_SYNC_FAILURES",
    "get_metrics_router",
    "record_call_finalized",
    "record_call_started",
    "record_control_action",
    "record_crm_sync_failure",
    "record_webhook_event",
    "set_active_calls",
]
