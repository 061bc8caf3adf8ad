"""
Eligibility filter: which fixtures need action for a phase right now.

Two layers:
- `decide_*` functions: pure rules on timestamps (unit-testable without a DB).
- `EligibilityFilter.select()`: one query per phase, then the pure rules,
  ordering by anchor ascending and capping per run.

Artifact phases (prediction, analysis), in priority order:
    fresh artifact (created at/after window open)      -> skip
    never triggered                                    -> select
    triggered within retry buffer                      -> skip (in flight)
    triggered outside buffer, no artifact              -> select (retry)
    stale artifact (created before window open)        -> select for
        regeneration, buffer applied to the regeneration trigger only

Marker phases (pre-match, post-match) have no artifact: select when never
triggered or last triggered before today (UTC), never inside the buffer.

Live: every in-play fixture, every run.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, null, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from matchday.automation.windows import (
    FINISHED_STATUSES,
    LIVE_STATUSES,
    NOT_STARTED_STATUSES,
    Phase,
    full_time_anchor,
    start_of_day,
    window_for,
    window_opened_at,
)
from matchday.models import Fixture, League, MatchAnalysis, Prediction, Team

logger = logging.getLogger(__name__)

# Decision reasons
NEVER_TRIGGERED = "never_triggered"
RETRY = "retry"
STALE_REGENERATE = "stale_regenerate"
PREVIOUS_DAY = "previous_day"
IN_PLAY = "in_play"
FRESH = "fresh"
IN_FLIGHT = "in_flight"
TRIGGERED_TODAY = "triggered_today"
NO_PREDICTION = "no_prediction"
OUTSIDE_WINDOW = "outside_window"

# Upper bound kickoff -> full-time (extra time, penalties, delays)
_MAX_MATCH_DURATION = timedelta(hours=6)


@dataclass(frozen=True)
class Decision:
    eligible: bool
    reason: str


@dataclass
class Candidate:
    """A fixture as seen by the filter for one phase."""

    fixture_id: int
    league_id: int
    league_name: str
    home_team: str
    away_team: str
    kickoff_at: datetime
    status: str
    anchor: datetime
    triggered_at: Optional[datetime] = None
    artifact_created_at: Optional[datetime] = None
    has_prediction: bool = False
    home_goals: Optional[int] = None
    away_goals: Optional[int] = None
    reason: str = ""


@dataclass
class EligibilityResult:
    phase: Phase
    selected: list[Candidate] = field(default_factory=list)
    excluded: dict[str, int] = field(default_factory=dict)
    capped: int = 0

    @property
    def fixture_ids(self) -> list[int]:
        return [c.fixture_id for c in self.selected]


def decide_marker_phase(
    triggered_at: Optional[datetime],
    now: datetime,
    retry_buffer: timedelta,
) -> Decision:
    """Pre-match / post-match: at most once per UTC day."""
    if triggered_at is None:
        return Decision(True, NEVER_TRIGGERED)
    if now - triggered_at < retry_buffer:
        return Decision(False, IN_FLIGHT)
    if triggered_at >= start_of_day(now):
        return Decision(False, TRIGGERED_TODAY)
    return Decision(True, PREVIOUS_DAY)


def decide_artifact_phase(
    triggered_at: Optional[datetime],
    artifact_created_at: Optional[datetime],
    opened_at: datetime,
    now: datetime,
    retry_buffer: timedelta,
) -> Decision:
    """Prediction / analysis: artifact freshness drives retries and regeneration."""
    if artifact_created_at is not None and artifact_created_at >= opened_at:
        return Decision(False, FRESH)

    stale = artifact_created_at is not None
    if stale and triggered_at is not None and triggered_at < opened_at:
        # The trigger predates this window: no regeneration attempted yet
        triggered_at = None

    if triggered_at is None:
        return Decision(True, STALE_REGENERATE if stale else NEVER_TRIGGERED)
    if now - triggered_at < retry_buffer:
        return Decision(False, IN_FLIGHT)
    return Decision(True, STALE_REGENERATE if stale else RETRY)


def decide(
    phase: Phase,
    candidate: Candidate,
    now: datetime,
    config,
    retry_buffer: timedelta,
) -> Decision:
    """Apply the rules of `phase` to one candidate."""
    if phase is Phase.LIVE:
        return Decision(True, IN_PLAY)

    if not window_for(phase, now, config).contains(candidate.anchor):
        return Decision(False, OUTSIDE_WINDOW)

    if phase is Phase.ANALYSIS and not candidate.has_prediction:
        return Decision(False, NO_PREDICTION)

    if phase.has_artifact:
        return decide_artifact_phase(
            triggered_at=candidate.triggered_at,
            artifact_created_at=candidate.artifact_created_at,
            opened_at=window_opened_at(phase, candidate.anchor, config),
            now=now,
            retry_buffer=retry_buffer,
        )
    return decide_marker_phase(candidate.triggered_at, now, retry_buffer)


def _latest_artifact(model):
    """Subquery: fixture_id -> most recent created_at."""
    return (
        select(
            model.fixture_id.label("fixture_id"),
            func.max(model.created_at).label("created_at"),
        )
        .group_by(model.fixture_id)
        .subquery()
    )


class EligibilityFilter:
    """Selects the fixtures a phase must act on at `now`."""

    def __init__(
        self,
        retry_buffer_minutes: int = 7,
        full_time_estimate_minutes: int = 115,
        max_predictions_per_run: int = 9,
        max_analyses_per_run: int = 9,
        max_group_fixtures_per_run: int = 200,
    ):
        self.retry_buffer = timedelta(minutes=retry_buffer_minutes)
        self.full_time_estimate_minutes = full_time_estimate_minutes
        self.max_per_run = {
            Phase.PRE_MATCH: max_group_fixtures_per_run,
            Phase.PREDICTION: max_predictions_per_run,
            Phase.LIVE: max_group_fixtures_per_run,
            Phase.POST_MATCH: max_group_fixtures_per_run,
            Phase.ANALYSIS: max_analyses_per_run,
        }

    @classmethod
    def from_settings(cls, settings) -> "EligibilityFilter":
        return cls(
            retry_buffer_minutes=settings.AUTOMATION_RETRY_BUFFER_MINUTES,
            full_time_estimate_minutes=settings.AUTOMATION_FULL_TIME_ESTIMATE_MINUTES,
            max_predictions_per_run=settings.AUTOMATION_MAX_PREDICTIONS_PER_RUN,
            max_analyses_per_run=settings.AUTOMATION_MAX_ANALYSES_PER_RUN,
            max_group_fixtures_per_run=settings.AUTOMATION_MAX_GROUP_FIXTURES_PER_RUN,
        )

    async def select(
        self,
        session: AsyncSession,
        phase: Phase,
        now: datetime,
        config,
    ) -> EligibilityResult:
        candidates = await self._fetch_candidates(session, phase, now, config)

        result = EligibilityResult(phase=phase)
        excluded = Counter()
        eligible = []
        for candidate in candidates:
            decision = decide(phase, candidate, now, config, self.retry_buffer)
            if decision.eligible:
                candidate.reason = decision.reason
                eligible.append(candidate)
            else:
                excluded[decision.reason] += 1

        eligible.sort(key=lambda c: (c.anchor, c.fixture_id))
        limit = self.max_per_run[phase]
        result.selected = eligible[:limit]
        result.capped = max(0, len(eligible) - limit)
        result.excluded = dict(excluded)

        if result.capped:
            logger.info(
                f"[AUTOMATION] {phase.value}: {len(eligible)} eligible, "
                f"capped to {limit} (deferred={result.capped})"
            )
        return result

    async def _fetch_candidates(
        self,
        session: AsyncSession,
        phase: Phase,
        now: datetime,
        config,
    ) -> list[Candidate]:
        home = aliased(Team)
        away = aliased(Team)
        trigger_col = getattr(Fixture, phase.trigger_column) if phase.trigger_column else None
        latest_prediction = _latest_artifact(Prediction)
        latest_analysis = _latest_artifact(MatchAnalysis)

        columns = [
            Fixture.id,
            Fixture.league_id,
            League.name,
            home.name,
            away.name,
            Fixture.kickoff_at,
            Fixture.status,
            Fixture.finished_at,
            Fixture.home_goals,
            Fixture.away_goals,
            trigger_col if trigger_col is not None else null().label("triggered_at"),
            latest_prediction.c.created_at,
            latest_analysis.c.created_at,
        ]
        stmt = (
            select(*columns)
            .join(League, League.id == Fixture.league_id)
            .join(home, home.id == Fixture.home_team_id)
            .join(away, away.id == Fixture.away_team_id)
            .outerjoin(latest_prediction, latest_prediction.c.fixture_id == Fixture.id)
            .outerjoin(latest_analysis, latest_analysis.c.fixture_id == Fixture.id)
            .where(League.is_active.is_(True))
        )

        if phase is Phase.LIVE:
            stmt = stmt.where(Fixture.status.in_(LIVE_STATUSES))
        elif phase.anchored_on_full_time:
            window = window_for(phase, now, config)
            stmt = stmt.where(
                Fixture.status.in_(FINISHED_STATUSES),
                Fixture.kickoff_at <= window.end,
                Fixture.kickoff_at >= window.start - _MAX_MATCH_DURATION,
            )
        else:
            window = window_for(phase, now, config)
            stmt = stmt.where(
                Fixture.status.in_(NOT_STARTED_STATUSES),
                Fixture.kickoff_at >= window.start,
                Fixture.kickoff_at <= window.end,
            )

        rows = (await session.execute(stmt.order_by(Fixture.kickoff_at, Fixture.id))).all()

        candidates = []
        for row in rows:
            (
                fixture_id, league_id, league_name, home_name, away_name,
                kickoff_at, status, finished_at, home_goals, away_goals,
                triggered_at, prediction_at, analysis_at,
            ) = row
            if phase.anchored_on_full_time:
                anchor = full_time_anchor(kickoff_at, finished_at, self.full_time_estimate_minutes)
            else:
                anchor = kickoff_at

            if phase is Phase.PREDICTION:
                artifact_at = prediction_at
            elif phase is Phase.ANALYSIS:
                artifact_at = analysis_at
            else:
                artifact_at = None

            candidates.append(Candidate(
                fixture_id=fixture_id,
                league_id=league_id,
                league_name=league_name,
                home_team=home_name,
                away_team=away_name,
                kickoff_at=kickoff_at,
                status=status,
                anchor=anchor,
                triggered_at=triggered_at,
                artifact_created_at=artifact_at,
                has_prediction=prediction_at is not None,
                home_goals=home_goals,
                away_goals=away_goals,
            ))
        return candidates
