"""
Prometheus metrics for the fixture trigger automation.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

ALLOWED LABELS (bounded sets):
- phase:    "pre-match", "prediction", "live", "post-match", "analysis", "cron-check"
- status:   "success", "error", "skipped", "no-action"
- outcome:  "success", "error", "skipped"

FORBIDDEN AS LABELS: fixture_id, league_id, run_id, URLs, error messages.
Use the automation_logs table for per-fixture debugging.
"""

import logging
import time

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)

logger = logging.getLogger(__name__)

# =============================================================================
# RUN METRICS
# =============================================================================

automation_runs_total = Counter(
    "automation_runs_total",
    "Total automation runs by outcome",
    ["outcome"],  # success, error, skipped
)

automation_run_duration_ms = Histogram(
    "automation_run_duration_ms",
    "Automation run duration in milliseconds",
    buckets=[100, 500, 1000, 5000, 10000, 30000, 60000, 120000, 300000, 600000],
)

automation_last_success_timestamp = Gauge(
    "automation_last_success_timestamp",
    "Unix timestamp of last successful automation run",
)

# =============================================================================
# PHASE / DISPATCH METRICS
# =============================================================================

automation_events_total = Counter(
    "automation_events_total",
    "Automation log rows written, by phase and status",
    ["phase", "status"],
)

automation_dispatch_duration_ms = Histogram(
    "automation_dispatch_duration_ms",
    "Workflow dispatch duration in milliseconds",
    ["phase"],
    buckets=[50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000, 60000, 300000],
)

automation_eligible_fixtures = Gauge(
    "automation_eligible_fixtures",
    "Fixtures selected for a phase in the last run",
    ["phase"],
)


def record_automation_event(phase: str, status: str, duration_ms: int = None) -> None:
    """Count one automation_logs row; observe dispatch latency when present."""
    try:
        automation_events_total.labels(phase=phase, status=status).inc()
        if duration_ms is not None and status in ("success", "error"):
            automation_dispatch_duration_ms.labels(phase=phase).observe(duration_ms)
    except Exception as e:
        logger.warning(f"Failed to record automation event metric: {e}")


def set_eligible_fixtures(phase: str, count: int) -> None:
    try:
        automation_eligible_fixtures.labels(phase=phase).set(count)
    except Exception as e:
        logger.warning(f"Failed to set eligible fixtures metric: {e}")


def record_automation_run(outcome: str, duration_ms: float) -> None:
    """
    Record a finished automation run.

    Args:
        outcome: "success", "error" or "skipped"
        duration_ms: Run duration in milliseconds
    """
    try:
        automation_runs_total.labels(outcome=outcome).inc()
        if duration_ms > 0:
            automation_run_duration_ms.observe(duration_ms)
        if outcome == "success":
            automation_last_success_timestamp.set(time.time())
    except Exception as e:
        logger.warning(f"Failed to record automation run metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
