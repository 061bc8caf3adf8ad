"""
Fixture lifecycle trigger automation.

Decides, per fixture and phase, whether a downstream workflow must be
triggered now, dispatches it, and records every decision in automation_logs.

Entry point: run_automation_cycle(ctx).
"""

from matchday.automation.runner import (
    AutomationContext,
    PhaseSummary,
    RunSummary,
    build_automation_context,
    run_automation_cycle,
)
from matchday.automation.windows import Phase

__all__ = [
    "AutomationContext",
    "PhaseSummary",
    "RunSummary",
    "Phase",
    "build_automation_context",
    "run_automation_cycle",
]
