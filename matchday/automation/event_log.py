"""
Automation event log.

Write side: AutomationEventLogger appends one immutable automation_logs row
per decision or dispatch attempt, correlated by run_id. The table is the
source of truth; the `[AUTOMATION]` log line and Prometheus counters are
mirrors only.

Read side: query_logs() for the activity feed, summarize_today() for the
status panel.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.automation.dispatcher import DispatchResult
from matchday.automation.windows import ALL_PHASES, CRON_CHECK, start_of_day, utcnow
from matchday.models import AutomationLog
from matchday.telemetry.metrics import record_automation_event

logger = logging.getLogger(__name__)

# Row statuses
SUCCESS = "success"
ERROR = "error"
SKIPPED = "skipped"
NO_ACTION = "no-action"
LOG_STATUSES = (SUCCESS, ERROR, SKIPPED, NO_ACTION)

LOG_PHASES = tuple(phase.value for phase in ALL_PHASES) + (CRON_CHECK,)

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 200

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class LogQueryError(ValueError):
    """Invalid filter for the automation log query."""


def _as_body(response: Any) -> Optional[dict]:
    if response is None or isinstance(response, dict):
        return response
    return {"data": response}


class AutomationEventLogger:
    """Appends automation_logs rows for one run."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        run_id: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self.run_id = run_id
        self._clock = clock

    async def log(
        self,
        phase: str,
        status: str,
        *,
        league_id: Optional[int] = None,
        fixture_ids: Optional[Sequence[int]] = None,
        endpoint: Optional[str] = None,
        response_status: Optional[int] = None,
        response_body: Any = None,
        duration_ms: Optional[int] = None,
        message: Optional[str] = None,
        error_message: Optional[str] = None,
        details: Optional[dict] = None,
        triggered_at: Optional[datetime] = None,
    ) -> AutomationLog:
        now = self._clock()
        ids = list(fixture_ids) if fixture_ids else []
        row = AutomationLog(
            run_id=self.run_id,
            phase=phase,
            league_id=league_id,
            fixture_ids=ids or None,
            fixture_count=len(ids),
            endpoint=endpoint,
            response_status=response_status,
            response_body=_as_body(response_body),
            duration_ms=duration_ms,
            status=status,
            message=message,
            error_message=error_message,
            details=details,
            triggered_at=triggered_at or now,
            completed_at=now if status in (SUCCESS, ERROR) else None,
        )

        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)

        line = f"[AUTOMATION] run={self.run_id} phase={phase} status={status} fixtures={len(ids)}"
        if message:
            line += f" msg={message}"
        if status == ERROR:
            logger.warning(f"{line} error={error_message}")
        else:
            logger.info(line)

        record_automation_event(phase, status, duration_ms)
        return row

    async def log_no_action(self, phase: str, details: Optional[dict] = None) -> AutomationLog:
        return await self.log(
            phase, NO_ACTION, message=f"No fixtures in {phase} window", details=details
        )

    async def log_skipped(self, phase: str, message: str) -> AutomationLog:
        return await self.log(phase, SKIPPED, message=message)

    async def log_error(
        self,
        phase: str,
        error_message: str,
        message: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AutomationLog:
        return await self.log(
            phase, ERROR, message=message, error_message=error_message, details=details
        )

    async def log_dispatch(
        self,
        phase: str,
        endpoint: str,
        result: DispatchResult,
        *,
        fixture_ids: Sequence[int],
        league_id: Optional[int] = None,
        message: Optional[str] = None,
        details: Optional[dict] = None,
        triggered_at: Optional[datetime] = None,
    ) -> AutomationLog:
        """One row per dispatch unit (fixture or league group)."""
        return await self.log(
            phase,
            SUCCESS if result.success else ERROR,
            league_id=league_id,
            fixture_ids=fixture_ids,
            endpoint=endpoint,
            response_status=result.status,
            response_body=result.response,
            duration_ms=result.duration_ms,
            message=message,
            error_message=result.error,
            details=details,
            triggered_at=triggered_at,
        )


def parse_log_date(value: str) -> datetime:
    """YYYY-MM-DD -> midnight (naive UTC)."""
    if not _DATE_RE.match(value):
        raise LogQueryError("Invalid date format. Use YYYY-MM-DD")
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise LogQueryError(f"Invalid date: {value}")


async def query_logs(
    session: AsyncSession,
    limit: Optional[int] = None,
    phase: Optional[str] = None,
    status: Optional[str] = None,
    date: Optional[str] = None,
    run_id: Optional[str] = None,
) -> list[AutomationLog]:
    """
    Automation log rows, newest first.

    Args:
        session: Database session.
        limit: 1..200, default 50.
        phase: One of the five phases or cron-check.
        status: success, error, skipped or no-action.
        date: UTC day as YYYY-MM-DD.
        run_id: Correlation id of a single run.

    Raises:
        LogQueryError: on any invalid filter.
    """
    if limit is None:
        limit = DEFAULT_LOG_LIMIT
    if limit < 1 or limit > MAX_LOG_LIMIT:
        raise LogQueryError(f"limit must be between 1 and {MAX_LOG_LIMIT}")

    stmt = select(AutomationLog)
    if phase:
        if phase not in LOG_PHASES:
            raise LogQueryError(f"Unknown phase: {phase}")
        stmt = stmt.where(AutomationLog.phase == phase)
    if status:
        if status not in LOG_STATUSES:
            raise LogQueryError(f"Unknown status: {status}")
        stmt = stmt.where(AutomationLog.status == status)
    if run_id:
        stmt = stmt.where(AutomationLog.run_id == run_id)
    if date:
        day = parse_log_date(date)
        stmt = stmt.where(
            AutomationLog.triggered_at >= day,
            AutomationLog.triggered_at < day + timedelta(days=1),
        )

    stmt = stmt.order_by(AutomationLog.triggered_at.desc(), AutomationLog.id.desc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


def next_run_at(
    last_run_at: Optional[datetime],
    now: datetime,
    interval_minutes: int,
) -> Optional[datetime]:
    """
    Expected next invocation of the periodic invoker.

    last run + interval, or the next interval boundary of the hour when that
    moment has already passed.
    """
    if last_run_at is None:
        return None
    expected = last_run_at + timedelta(minutes=interval_minutes)
    if expected >= now:
        return expected

    boundary = -(-now.minute // interval_minutes) * interval_minutes
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(minutes=boundary)


async def summarize_today(
    session: AsyncSession,
    config,
    now: datetime,
    interval_minutes: int = 5,
) -> dict:
    """
    Per-phase counters for the current UTC day.

    lastTriggered is the newest row that is not no-action.
    """
    rows = (
        await session.execute(
            select(AutomationLog.phase, AutomationLog.status, AutomationLog.triggered_at)
            .where(AutomationLog.triggered_at >= start_of_day(now))
            .where(AutomationLog.phase != CRON_CHECK)
            .order_by(AutomationLog.triggered_at.desc())
        )
    ).all()

    triggers = {
        phase.value: {
            "successToday": 0,
            "errorToday": 0,
            "lastTriggered": None,
            "enabled": bool(getattr(config, f"{phase.key}_enabled")),
        }
        for phase in ALL_PHASES
    }

    for phase, status, triggered_at in rows:
        stats = triggers.get(phase)
        if stats is None:
            continue
        if status == SUCCESS:
            stats["successToday"] += 1
        elif status == ERROR:
            stats["errorToday"] += 1
        if stats["lastTriggered"] is None and status != NO_ACTION:
            stats["lastTriggered"] = triggered_at.isoformat()

    next_run = next_run_at(config.last_run_at, now, interval_minutes)
    return {
        "isEnabled": config.is_enabled,
        "lastRun": config.last_run_at.isoformat() if config.last_run_at else None,
        "lastRunStatus": config.last_run_status,
        "lastRunId": config.last_run_id,
        "nextRun": next_run.isoformat() if next_run else None,
        "triggers": triggers,
        "errorsToday": sum(t["errorToday"] for t in triggers.values()),
    }
