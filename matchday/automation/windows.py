"""
Phase definitions and trigger window arithmetic.

Pure functions only (no I/O). A windowed phase has a signed offset pair
(start, end) in minutes relative to its anchor:

    pre-match / prediction   -> anchor = kickoff
    post-match / analysis    -> anchor = full-time

A fixture with anchor A is inside the window at `now` iff
A + start <= now <= A + end. Equivalently, the eligible anchors at `now`
are [now - end, now - start].

The width (end - start) must exceed the invoker's polling interval, otherwise
a fixture can fall through the gap between two consecutive runs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class Phase(str, Enum):
    """Downstream workflow tied to a moment in the fixture lifecycle."""

    PRE_MATCH = "pre-match"
    PREDICTION = "prediction"
    LIVE = "live"
    POST_MATCH = "post-match"
    ANALYSIS = "analysis"

    @property
    def key(self) -> str:
        """Snake-case prefix used for config and fixture columns."""
        return self.value.replace("-", "_")

    @property
    def trigger_column(self) -> Optional[str]:
        """Fixture column holding the trigger timestamp (live has none)."""
        if self is Phase.LIVE:
            return None
        return f"{self.key}_triggered_at"

    @property
    def is_windowed(self) -> bool:
        return self is not Phase.LIVE

    @property
    def anchored_on_full_time(self) -> bool:
        return self in (Phase.POST_MATCH, Phase.ANALYSIS)

    @property
    def has_artifact(self) -> bool:
        """Prediction/analysis produce an artifact whose existence drives retries."""
        return self in (Phase.PREDICTION, Phase.ANALYSIS)


ALL_PHASES = tuple(Phase)

# Pseudo-phase for run-level log rows (master switch off, run crash)
CRON_CHECK = "cron-check"

NOT_STARTED_STATUSES = frozenset(["NS", "TBD"])
LIVE_STATUSES = frozenset(["1H", "HT", "2H", "ET", "BT", "P", "LIVE", "INT", "SUSP"])
FINISHED_STATUSES = frozenset(["FT", "AET", "PEN"])


class WindowConfigError(ValueError):
    """Window offsets that would let fixtures slip between runs."""


@dataclass(frozen=True)
class WindowOffsets:
    start_minutes: int
    end_minutes: int

    @property
    def width_minutes(self) -> int:
        return self.end_minutes - self.start_minutes


@dataclass(frozen=True)
class Window:
    """Range of anchor times (inclusive) eligible at a given moment."""

    start: datetime
    end: datetime

    def contains(self, anchor: datetime) -> bool:
        return self.start <= anchor <= self.end


def utcnow() -> datetime:
    """Current time as naive UTC (storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive input is assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def start_of_day(now: datetime) -> datetime:
    """Midnight UTC of the day containing `now`."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def offsets_for(phase: Phase, config) -> WindowOffsets:
    """Read the (start, end) offsets of a windowed phase from an AutomationConfig."""
    if not phase.is_windowed:
        raise ValueError(f"Phase {phase.value} has no time window")
    return WindowOffsets(
        start_minutes=getattr(config, f"{phase.key}_window_start_minutes"),
        end_minutes=getattr(config, f"{phase.key}_window_end_minutes"),
    )


def window_for(phase: Phase, now: datetime, config) -> Window:
    """Anchor times whose window contains `now`."""
    offsets = offsets_for(phase, config)
    return Window(
        start=now - timedelta(minutes=offsets.end_minutes),
        end=now - timedelta(minutes=offsets.start_minutes),
    )


def window_opened_at(phase: Phase, anchor: datetime, config) -> datetime:
    """Moment this fixture's window opened. Artifacts older than this are stale."""
    return anchor + timedelta(minutes=offsets_for(phase, config).start_minutes)


def full_time_anchor(
    kickoff_at: datetime,
    finished_at: Optional[datetime],
    estimate_minutes: int,
) -> datetime:
    """Full-time as stamped by ingestion, else kickoff plus a fixed estimate."""
    if finished_at is not None:
        return finished_at
    return kickoff_at + timedelta(minutes=estimate_minutes)


def validate_window(start_minutes: int, end_minutes: int, polling_interval_minutes: int) -> None:
    """
    Reject offsets that cannot be served by a periodic invoker.

    Raises:
        WindowConfigError: start >= end, or width <= polling interval.
    """
    if start_minutes >= end_minutes:
        raise WindowConfigError(
            f"Window start ({start_minutes}) must be before end ({end_minutes})"
        )
    width = end_minutes - start_minutes
    if width <= polling_interval_minutes:
        raise WindowConfigError(
            f"Window width {width}min must exceed the {polling_interval_minutes}min polling interval"
        )


def describe_windows(config) -> dict:
    """Offsets of every windowed phase, for status endpoints."""
    described = {}
    for phase in ALL_PHASES:
        if not phase.is_windowed:
            continue
        offsets = offsets_for(phase, config)
        described[phase.value] = {
            "start_minutes": offsets.start_minutes,
            "end_minutes": offsets.end_minutes,
            "anchor": "full_time" if phase.anchored_on_full_time else "kickoff",
        }
    return described
