"""Database models using SQLModel.

All timestamps are stored as naive UTC (plain DateTime columns).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


class League(SQLModel, table=True):
    """Competition. Only active leagues are considered by the automation."""

    __tablename__ = "leagues"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(unique=True, index=True, description="Provider league ID")
    name: str = Field(max_length=255)
    is_active: bool = Field(default=True, index=True)


class Team(SQLModel, table=True):
    """Team (club or national side)."""

    __tablename__ = "teams"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(unique=True, index=True, description="Provider team ID")
    name: str = Field(max_length=255)


class Fixture(SQLModel, table=True):
    """
    Scheduled match.

    Owned by ingestion (status, goals, finished_at). The automation only
    writes the *_triggered_at columns.
    """

    __tablename__ = "fixtures"

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: int = Field(unique=True, index=True, description="Provider fixture ID")
    league_id: int = Field(foreign_key="leagues.id", index=True)
    kickoff_at: datetime = Field(index=True, description="Kickoff (naive UTC)", sa_type=DateTime)
    status: str = Field(max_length=20, default="NS", index=True, description="NS, 1H, HT, FT, ...")

    home_team_id: int = Field(foreign_key="teams.id", index=True)
    away_team_id: int = Field(foreign_key="teams.id", index=True)
    home_goals: Optional[int] = Field(default=None)
    away_goals: Optional[int] = Field(default=None)

    finished_at: Optional[datetime] = Field(default=None, description="When FT/AET/PEN was detected", sa_type=DateTime)

    # Soft idempotency guard, written before dispatch
    pre_match_triggered_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    prediction_triggered_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    post_match_triggered_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    analysis_triggered_at: Optional[datetime] = Field(default=None, sa_type=DateTime)


class Prediction(SQLModel, table=True):
    """AI prediction produced by the downstream workflow (most recent wins)."""

    __tablename__ = "predictions"

    id: Optional[int] = Field(default=None, primary_key=True)
    fixture_id: int = Field(foreign_key="fixtures.id", index=True)
    model: str = Field(max_length=100, default="")
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=DateTime)


class MatchAnalysis(SQLModel, table=True):
    """Post-match AI analysis produced by the downstream workflow."""

    __tablename__ = "match_analyses"

    id: Optional[int] = Field(default=None, primary_key=True)
    fixture_id: int = Field(foreign_key="fixtures.id", index=True)
    model: str = Field(max_length=100, default="")
    payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=DateTime)


class AutomationConfig(SQLModel, table=True):
    """
    Singleton automation settings row, edited by operators.

    Window offsets are signed minutes relative to the phase anchor
    (kickoff for pre-match/prediction, full-time for post-match/analysis).
    """

    __tablename__ = "automation_config"

    id: Optional[int] = Field(default=None, primary_key=True)

    # Master switch
    is_enabled: bool = Field(default=True)

    # Per-phase switches
    pre_match_enabled: bool = Field(default=True)
    prediction_enabled: bool = Field(default=True)
    live_enabled: bool = Field(default=True)
    post_match_enabled: bool = Field(default=True)
    analysis_enabled: bool = Field(default=True)

    # Windows
    pre_match_window_start_minutes: int = Field(default=-60)
    pre_match_window_end_minutes: int = Field(default=-50)
    prediction_window_start_minutes: int = Field(default=-50)
    prediction_window_end_minutes: int = Field(default=-10)
    post_match_window_start_minutes: int = Field(default=90)
    post_match_window_end_minutes: int = Field(default=150)
    analysis_window_start_minutes: int = Field(default=150)
    analysis_window_end_minutes: int = Field(default=210)

    # Endpoint overrides (NULL = env var or default)
    pre_match_webhook_url: Optional[str] = Field(default=None, max_length=500)
    prediction_webhook_url: Optional[str] = Field(default=None, max_length=500)
    live_webhook_url: Optional[str] = Field(default=None, max_length=500)
    post_match_webhook_url: Optional[str] = Field(default=None, max_length=500)
    analysis_webhook_url: Optional[str] = Field(default=None, max_length=500)

    # Factor-analysis prompt sent with automated predictions (NULL = workflow default)
    custom_prediction_prompt: Optional[str] = Field(default=None)

    # Last run bookkeeping
    last_run_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    last_run_status: Optional[str] = Field(default=None, max_length=20, description="running, success, error")
    last_run_id: Optional[str] = Field(default=None, max_length=36)

    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_type=DateTime)


class AutomationLog(SQLModel, table=True):
    """
    Append-only audit row: one per phase decision or dispatch attempt.

    All rows of a single invocation share run_id.
    """

    __tablename__ = "automation_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    run_id: str = Field(max_length=36, index=True)
    phase: str = Field(max_length=20, index=True, description="pre-match, prediction, live, post-match, analysis, cron-check")

    league_id: Optional[int] = Field(default=None, index=True)
    fixture_ids: Optional[list] = Field(default=None, sa_column=Column(JSON))
    fixture_count: int = Field(default=0)

    endpoint: Optional[str] = Field(default=None, max_length=500)
    response_status: Optional[int] = Field(default=None)
    response_body: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    duration_ms: Optional[int] = Field(default=None)

    status: str = Field(max_length=20, index=True, description="success, error, skipped, no-action")
    message: Optional[str] = Field(default=None)
    error_message: Optional[str] = Field(default=None)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    triggered_at: datetime = Field(default_factory=datetime.utcnow, index=True, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
