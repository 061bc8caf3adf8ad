"""Shared fixtures: file-backed SQLite per test, seeding helpers, mocked workflow engine."""

import itertools
import json
from datetime import datetime
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from matchday.automation.dispatcher import WorkflowDispatcher
from matchday.automation.runner import build_automation_context
from matchday.config import Settings
from matchday.database import get_engine_kwargs
from matchday.models import Fixture, League, MatchAnalysis, Prediction, Team

WEBHOOK_BASE = "https://flows.example.com/webhook"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        WEBHOOK_BASE_URL=WEBHOOK_BASE,
        PREDICTION_WEBHOOK_URL="https://flows.example.com/webhook/football-prediction",
        ANALYSIS_WEBHOOK_URL="https://flows.example.com/webhook/post-match-analysis",
        WEBHOOK_SECRET="s3cret",
        AUTOMATION_BATCH_DELAY_SECONDS=0.0,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    url = f"sqlite+aiosqlite:///{tmp_path / 'automation.db'}"
    engine = create_async_engine(url, **get_engine_kwargs(url))
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


class Seeder:
    """Inserts leagues, teams, fixtures and artifacts."""

    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._external_ids = itertools.count(1000)
        self._default_league: Optional[League] = None

    async def _add(self, obj):
        async with self.session_factory() as session:
            session.add(obj)
            await session.commit()
            await session.refresh(obj)
        return obj

    async def league(self, name: str = "Premier League", is_active: bool = True) -> League:
        return await self._add(League(external_id=next(self._external_ids), name=name, is_active=is_active))

    async def team(self, name: str) -> Team:
        return await self._add(Team(external_id=next(self._external_ids), name=name))

    async def fixture(
        self,
        kickoff_at: datetime,
        league: Optional[League] = None,
        status: str = "NS",
        home: str = "Arsenal",
        away: str = "Chelsea",
        **fields,
    ) -> Fixture:
        if league is None:
            if self._default_league is None:
                self._default_league = await self.league()
            league = self._default_league
        home_team = await self.team(home)
        away_team = await self.team(away)
        return await self._add(Fixture(
            external_id=next(self._external_ids),
            league_id=league.id,
            kickoff_at=kickoff_at,
            status=status,
            home_team_id=home_team.id,
            away_team_id=away_team.id,
            **fields,
        ))

    async def prediction(self, fixture_id: int, created_at: datetime) -> Prediction:
        return await self._add(Prediction(fixture_id=fixture_id, model="manual", created_at=created_at))

    async def analysis(self, fixture_id: int, created_at: datetime) -> MatchAnalysis:
        return await self._add(MatchAnalysis(fixture_id=fixture_id, model="manual", created_at=created_at))

    async def get_fixture(self, fixture_id: int) -> Fixture:
        async with self.session_factory() as session:
            return await session.get(Fixture, fixture_id)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


class WorkflowEngineStub:
    """httpx MockTransport handler recording every request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.fail_urls: set[str] = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) in self.fail_urls:
            return httpx.Response(500, json={"error": "workflow crashed"})
        return httpx.Response(200, json={"ok": True})

    def payloads(self, url: str) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if str(r.url) == url]


@pytest.fixture
def workflow_engine():
    return WorkflowEngineStub()


@pytest_asyncio.fixture
async def automation_ctx(session_factory, settings, workflow_engine):
    dispatcher = WorkflowDispatcher(
        timeout_seconds=5.0,
        secret=settings.WEBHOOK_SECRET,
        transport=httpx.MockTransport(workflow_engine),
    )
    ctx = build_automation_context(session_factory, settings, dispatcher=dispatcher)
    yield ctx
    await dispatcher.close()
