"""
Automation run: the single entry point called by the periodic invoker.

Flow per invocation:
1. Load automation_config (TTL cache); master switch off -> one skipped row
2. last_run_status = running
3. Evaluate the five phases concurrently and independently:
   eligibility -> mark -> batched dispatch -> one log row per unit
4. last_run_status = success | error, return a per-phase summary

A phase that raises is logged, reported to Sentry and recorded as an error
row; the other phases are unaffected.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from matchday.automation.batching import BatchItemResult, run_in_batches
from matchday.automation.config_loader import AutomationConfigLoader
from matchday.automation.dispatcher import (
    DispatchFailed,
    DispatchResult,
    WorkflowDispatcher,
    resolve_endpoint,
)
from matchday.automation.eligibility import Candidate, EligibilityFilter
from matchday.automation.event_log import AutomationEventLogger
from matchday.automation.marker import TimestampTriggerMarker, TriggerMarker
from matchday.automation.windows import ALL_PHASES, CRON_CHECK, Phase, to_naive_utc, utcnow
from matchday.config import Settings
from matchday.telemetry.metrics import record_automation_run, set_eligible_fixtures
from matchday.telemetry.sentry import capture_phase_exception

logger = logging.getLogger(__name__)


@dataclass
class AutomationContext:
    """Collaborators of one automation run. Built once per process."""

    session_factory: Callable[[], AsyncSession]
    config_loader: AutomationConfigLoader
    dispatcher: WorkflowDispatcher
    settings: Settings
    eligibility: EligibilityFilter
    marker: TriggerMarker
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    clock: Callable[[], datetime] = utcnow


def build_automation_context(
    session_factory: Callable[[], AsyncSession],
    settings: Settings,
    dispatcher: Optional[WorkflowDispatcher] = None,
) -> AutomationContext:
    return AutomationContext(
        session_factory=session_factory,
        config_loader=AutomationConfigLoader(
            session_factory,
            ttl_seconds=settings.AUTOMATION_CONFIG_CACHE_TTL_SECONDS,
            polling_interval_minutes=settings.AUTOMATION_RUN_INTERVAL_MINUTES,
        ),
        dispatcher=dispatcher or WorkflowDispatcher.from_settings(settings),
        settings=settings,
        eligibility=EligibilityFilter.from_settings(settings),
        marker=TimestampTriggerMarker(session_factory),
    )


@dataclass
class PhaseSummary:
    checked: int = 0
    triggered: int = 0
    errors: int = 0
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "checked": self.checked,
            "triggered": self.triggered,
            "errors": self.errors,
            "skipped": self.skipped,
        }


@dataclass
class RunSummary:
    run_id: str
    started_at: datetime
    duration_ms: int = 0
    skipped: bool = False
    status: str = "success"
    per_phase: dict[str, PhaseSummary] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "runId": self.run_id,
            "timestamp": self.started_at.isoformat(),
            "durationMs": self.duration_ms,
            "skipped": self.skipped,
            "status": self.status,
            "perPhase": {name: s.to_dict() for name, s in self.per_phase.items()},
        }


@dataclass
class DispatchUnit:
    """One HTTP call: a single fixture, or a league group."""

    fixture_ids: list[int]
    payload: dict
    league_id: Optional[int] = None
    label: str = ""
    details: Optional[dict] = None


def _group_by_league(candidates: list[Candidate]) -> list[list[Candidate]]:
    """Group preserving the (anchor-ordered) position of each league's first fixture."""
    groups: dict[int, list[Candidate]] = {}
    for candidate in candidates:
        groups.setdefault(candidate.league_id, []).append(candidate)
    return list(groups.values())


def build_units(
    phase: Phase,
    candidates: list[Candidate],
    model: str,
    custom_prompt: Optional[str] = None,
) -> list[DispatchUnit]:
    """Shape the selected fixtures of a phase into dispatch units and payloads."""
    if phase.has_artifact:
        extra = {"custom_prompt": custom_prompt} if phase is Phase.PREDICTION and custom_prompt else {}
        return [
            DispatchUnit(
                fixture_ids=[c.fixture_id],
                payload={"fixture_id": c.fixture_id, "model": model, "trigger_type": phase.value, **extra},
                league_id=c.league_id,
                label=f"{c.home_team} vs {c.away_team}",
                details={"reason": c.reason, "kickoff_at": c.kickoff_at.isoformat()},
            )
            for c in candidates
        ]

    units = []
    for group in _group_by_league(candidates):
        first = group[0]
        ids = [c.fixture_id for c in group]
        if phase is Phase.PRE_MATCH:
            payload = {
                "league_id": first.league_id,
                "league_name": first.league_name,
                "fixtures": [
                    {
                        "id": c.fixture_id,
                        "home_team": c.home_team,
                        "away_team": c.away_team,
                        "kickoff_at": c.kickoff_at.isoformat(),
                    }
                    for c in group
                ],
                "trigger_type": phase.value,
            }
        elif phase is Phase.LIVE:
            payload = {
                "leagues": [{
                    "league_id": first.league_id,
                    "league_name": first.league_name,
                    "live_count": len(group),
                }],
                "trigger_type": phase.value,
            }
        else:
            payload = {
                "leagues": [{
                    "league_id": first.league_id,
                    "league_name": first.league_name,
                    "finished_count": len(group),
                }],
                "fixture_ids": ids,
                "trigger_type": phase.value,
            }
        units.append(DispatchUnit(
            fixture_ids=ids,
            payload=payload,
            league_id=first.league_id,
            label=first.league_name,
            details={"reasons": sorted({c.reason for c in group})},
        ))
    return units


def _dispatch_result(outcome: BatchItemResult) -> DispatchResult:
    if outcome.success:
        return outcome.value
    if isinstance(outcome.error, DispatchFailed):
        return outcome.error.result
    return DispatchResult(
        success=False,
        status=0,
        duration_ms=outcome.duration_ms,
        error=str(outcome.error) or type(outcome.error).__name__,
    )


async def run_phase(
    ctx: AutomationContext,
    phase: Phase,
    config,
    now: datetime,
    events: AutomationEventLogger,
) -> PhaseSummary:
    """Evaluate and dispatch a single phase."""
    if not getattr(config, f"{phase.key}_enabled"):
        await events.log_skipped(phase.value, f"{phase.value} trigger is disabled")
        return PhaseSummary(skipped=True)

    async with ctx.session_factory() as session:
        selection = await ctx.eligibility.select(session, phase, now, config)

    set_eligible_fixtures(phase.value, len(selection.selected))
    summary = PhaseSummary(checked=len(selection.selected))

    if not selection.selected:
        await events.log_no_action(
            phase.value, details={"excluded": selection.excluded} if selection.excluded else None
        )
        return summary

    units = build_units(
        phase,
        selection.selected,
        ctx.settings.AUTOMATION_GENERATION_MODEL,
        custom_prompt=config.custom_prediction_prompt,
    )
    endpoint = resolve_endpoint(phase, config, ctx.settings)

    async def _dispatch(unit: DispatchUnit) -> DispatchResult:
        # Mark first, stamped at marking time: a crash or timeout during the call
        # still blocks a duplicate for the full buffer
        await ctx.marker.mark_triggered(unit.fixture_ids, phase, ctx.clock())
        result = await ctx.dispatcher.send(endpoint, unit.payload)
        if not result.success:
            raise DispatchFailed(result)
        return result

    outcomes = await run_in_batches(
        units,
        _dispatch,
        batch_size=ctx.settings.AUTOMATION_BATCH_SIZE,
        delay_seconds=ctx.settings.AUTOMATION_BATCH_DELAY_SECONDS,
        sleep=ctx.sleep,
    )

    for outcome in outcomes:
        unit = outcome.item
        result = _dispatch_result(outcome)
        count = len(unit.fixture_ids)
        if result.success:
            message = f"Triggered {phase.value} for {count} fixture(s): {unit.label}"
            summary.triggered += count
        else:
            message = f"{phase.value} dispatch failed: {unit.label}"
            summary.errors += 1

        details = dict(unit.details or {})
        if selection.capped:
            details["deferred"] = selection.capped
        await events.log_dispatch(
            phase.value,
            endpoint,
            result,
            fixture_ids=unit.fixture_ids,
            league_id=unit.league_id,
            message=message,
            details=details or None,
        )

    logger.info(
        f"[AUTOMATION] {phase.value}: {summary.triggered}/{summary.checked} triggered, "
        f"{summary.errors} failed unit(s)"
    )
    return summary


async def _run_phase_safely(
    ctx: AutomationContext,
    phase: Phase,
    config,
    now: datetime,
    events: AutomationEventLogger,
) -> PhaseSummary:
    try:
        return await run_phase(ctx, phase, config, now, events)
    except Exception as e:
        logger.exception(f"[AUTOMATION] {phase.value} phase failed (run={events.run_id})")
        capture_phase_exception(e, phase.value, events.run_id)
        try:
            await events.log_error(
                phase.value,
                str(e) or type(e).__name__,
                message=f"{phase.value} evaluation failed",
            )
        except Exception:
            logger.exception(f"[AUTOMATION] Could not record {phase.value} failure")
        return PhaseSummary(errors=1)


async def run_automation_cycle(
    ctx: AutomationContext,
    now: Optional[datetime] = None,
) -> RunSummary:
    """
    Execute one automation run.

    Args:
        ctx: Shared collaborators (config loader, dispatcher, ...).
        now: Evaluation time; defaults to the context clock. Aware values are
            normalized to naive UTC.

    Returns:
        RunSummary with per-phase checked/triggered/errors/skipped.
    """
    run_id = str(uuid.uuid4())
    started = time.monotonic()
    now = to_naive_utc(now) if now is not None else ctx.clock()
    events = AutomationEventLogger(ctx.session_factory, run_id, clock=ctx.clock)
    summary = RunSummary(run_id=run_id, started_at=now)

    logger.info(f"[AUTOMATION] Starting run {run_id} at {now.isoformat()}")

    config = await ctx.config_loader.get()
    if not config.is_enabled:
        await events.log_skipped(CRON_CHECK, "Automation is disabled")
        summary.skipped = True
        summary.status = "skipped"
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        record_automation_run("skipped", summary.duration_ms)
        return summary

    await ctx.config_loader.record_run_state(run_id, "running", at=now)

    try:
        results = await asyncio.gather(
            *(_run_phase_safely(ctx, phase, config, now, events) for phase in ALL_PHASES)
        )
    except Exception as e:
        summary.duration_ms = int((time.monotonic() - started) * 1000)
        logger.exception(f"[AUTOMATION] Run {run_id} failed")
        await ctx.config_loader.record_run_state(run_id, "error")
        await events.log_error(CRON_CHECK, str(e) or type(e).__name__, message="Run failed with error")
        record_automation_run("error", summary.duration_ms)
        raise

    summary.per_phase = {phase.value: result for phase, result in zip(ALL_PHASES, results)}
    summary.status = "error" if any(r.errors for r in results) else "success"
    await ctx.config_loader.record_run_state(run_id, summary.status)

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    record_automation_run(summary.status, summary.duration_ms)
    logger.info(f"[AUTOMATION] Run {run_id} completed in {summary.duration_ms}ms: {summary.status}")
    return summary
