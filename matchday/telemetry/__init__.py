"""
Automation telemetry.

Prometheus metrics for runs, phase events and dispatch latency, plus the
Sentry integration used by the app and the phase wrappers.
"""

from matchday.telemetry.metrics import (
    automation_runs_total,
    automation_events_total,
    automation_dispatch_duration_ms,
    automation_eligible_fixtures,
    record_automation_event,
    record_automation_run,
    set_eligible_fixtures,
    get_metrics_text,
)

from matchday.telemetry.sentry import (
    init_sentry,
    is_sentry_enabled,
    capture_phase_exception,
    scrub_sensitive_data,
)

__all__ = [
    # Metrics
    "automation_runs_total",
    "automation_events_total",
    "automation_dispatch_duration_ms",
    "automation_eligible_fixtures",
    "record_automation_event",
    "record_automation_run",
    "set_eligible_fixtures",
    "get_metrics_text",
    # Sentry
    "init_sentry",
    "is_sentry_enabled",
    "capture_phase_exception",
    "scrub_sensitive_data",
]
