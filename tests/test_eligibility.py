"""Tests for the eligibility rules and the per-phase fixture selection."""

from datetime import datetime, timedelta

import pytest

from matchday.automation.eligibility import (
    FRESH,
    IN_FLIGHT,
    IN_PLAY,
    NEVER_TRIGGERED,
    NO_PREDICTION,
    PREVIOUS_DAY,
    RETRY,
    STALE_REGENERATE,
    TRIGGERED_TODAY,
    Decision,
    EligibilityFilter,
    decide_artifact_phase,
    decide_marker_phase,
)
from matchday.automation.marker import TimestampTriggerMarker
from matchday.automation.windows import Phase
from matchday.models import AutomationConfig

BUFFER = timedelta(minutes=7)
DAY = datetime(2026, 3, 14)


def at(hour: int, minute: int = 0, day: datetime = DAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


class TestMarkerPhaseRules:
    def test_never_triggered(self):
        assert decide_marker_phase(None, at(14, 5), BUFFER).reason == NEVER_TRIGGERED

    def test_inside_buffer(self):
        decision = decide_marker_phase(at(14, 5), at(14, 8), BUFFER)
        assert not decision.eligible
        assert decision.reason == IN_FLIGHT

    def test_triggered_today_past_buffer(self):
        """Pre-match has no artifact: past the buffer it stays excluded for the day."""
        decision = decide_marker_phase(at(14, 5), at(14, 20), BUFFER)
        assert not decision.eligible
        assert decision.reason == TRIGGERED_TODAY

    def test_triggered_previous_day(self):
        decision = decide_marker_phase(at(22, 0, DAY - timedelta(days=1)), at(9, 0), BUFFER)
        assert decision.eligible
        assert decision.reason == PREVIOUS_DAY

    def test_buffer_wins_across_midnight(self):
        decision = decide_marker_phase(at(23, 58, DAY - timedelta(days=1)), at(0, 2), BUFFER)
        assert decision.reason == IN_FLIGHT


class TestArtifactPhaseRules:
    OPENED = at(14, 10)

    def decide(self, triggered_at, artifact_at, now):
        return decide_artifact_phase(triggered_at, artifact_at, self.OPENED, now, BUFFER)

    def test_never_triggered(self):
        assert self.decide(None, None, at(14, 12)) == Decision(True, NEVER_TRIGGERED)

    def test_in_flight(self):
        assert self.decide(at(14, 12), None, at(14, 15)) == Decision(False, IN_FLIGHT)

    def test_retry_after_buffer_without_artifact(self):
        assert self.decide(at(14, 12), None, at(14, 20)) == Decision(True, RETRY)

    def test_fresh_artifact_is_done(self):
        assert self.decide(at(14, 12), at(14, 13), at(14, 40)) == Decision(False, FRESH)

    def test_artifact_at_window_open_is_fresh(self):
        assert self.decide(None, self.OPENED, at(14, 40)) == Decision(False, FRESH)

    def test_stale_artifact_regenerated(self):
        assert self.decide(None, at(9, 0), at(14, 12)) == Decision(True, STALE_REGENERATE)

    def test_stale_artifact_old_trigger_ignored(self):
        """A trigger from before the window opened is not a regeneration attempt."""
        assert self.decide(at(8, 59), at(9, 0), at(14, 12)) == Decision(True, STALE_REGENERATE)

    def test_stale_artifact_regeneration_in_flight(self):
        assert self.decide(at(14, 12), at(9, 0), at(14, 15)) == Decision(False, IN_FLIGHT)

    def test_stale_artifact_regeneration_retried(self):
        assert self.decide(at(14, 12), at(9, 0), at(14, 25)) == Decision(True, STALE_REGENERATE)


@pytest.fixture
def eligibility():
    return EligibilityFilter(retry_buffer_minutes=7, max_predictions_per_run=9)


class TestPreMatchSelection:
    @pytest.mark.asyncio
    async def test_kickoff_scenario(self, seed, session_factory, eligibility):
        """15:00 kickoff: picked at 14:05, in flight at 14:08, done for the day at 14:20."""
        config = AutomationConfig(pre_match_window_start_minutes=-60, pre_match_window_end_minutes=-30)
        fixture = await seed.fixture(at(15, 0))
        marker = TimestampTriggerMarker(session_factory)

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(14, 5), config)
        assert result.fixture_ids == [fixture.id]
        assert result.selected[0].reason == NEVER_TRIGGERED

        await marker.mark_triggered(result.fixture_ids, Phase.PRE_MATCH, at(14, 5))
        assert (await seed.get_fixture(fixture.id)).pre_match_triggered_at == at(14, 5)

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(14, 8), config)
        assert result.selected == []
        assert result.excluded == {IN_FLIGHT: 1}

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(14, 20), config)
        assert result.selected == []
        assert result.excluded == {TRIGGERED_TODAY: 1}

    @pytest.mark.asyncio
    async def test_outside_default_window(self, seed, session_factory, eligibility):
        await seed.fixture(at(15, 0))
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(13, 30), AutomationConfig())
        assert result.selected == []

    @pytest.mark.asyncio
    async def test_inactive_league_ignored(self, seed, session_factory, eligibility):
        league = await seed.league("Friendlies", is_active=False)
        await seed.fixture(at(15, 0), league=league)
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(14, 5), AutomationConfig())
        assert result.selected == []

    @pytest.mark.asyncio
    async def test_started_fixture_ignored(self, seed, session_factory, eligibility):
        await seed.fixture(at(15, 0), status="1H")
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PRE_MATCH, at(14, 5), AutomationConfig())
        assert result.selected == []


class TestPredictionSelection:
    @pytest.mark.asyncio
    async def test_manual_prediction_before_window_regenerated(self, seed, session_factory, eligibility):
        """Window opens 14:35; a 14:10 manual prediction is regenerated at 14:36."""
        config = AutomationConfig(prediction_window_start_minutes=-25, prediction_window_end_minutes=-10)
        fixture = await seed.fixture(at(15, 0))
        await seed.prediction(fixture.id, at(14, 10))

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PREDICTION, at(14, 36), config)
        assert result.fixture_ids == [fixture.id]
        assert result.selected[0].reason == STALE_REGENERATE

    @pytest.mark.asyncio
    async def test_prediction_inside_window_is_fresh(self, seed, session_factory, eligibility):
        config = AutomationConfig(prediction_window_start_minutes=-25, prediction_window_end_minutes=-10)
        fixture = await seed.fixture(at(15, 0), prediction_triggered_at=at(14, 36))
        await seed.prediction(fixture.id, at(14, 10))
        await seed.prediction(fixture.id, at(14, 38))

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PREDICTION, at(14, 45), config)
        assert result.selected == []
        assert result.excluded == {FRESH: 1}

    @pytest.mark.asyncio
    async def test_retry_until_artifact_appears(self, seed, session_factory, eligibility):
        fixture = await seed.fixture(at(15, 0), prediction_triggered_at=at(14, 15))
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PREDICTION, at(14, 25), AutomationConfig())
        assert result.fixture_ids == [fixture.id]
        assert result.selected[0].reason == RETRY

    @pytest.mark.asyncio
    async def test_capped_earliest_kickoff_first(self, seed, session_factory, eligibility):
        fixtures = []
        for minute in range(11, -1, -1):
            fixtures.append(await seed.fixture(at(15, minute)))

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.PREDICTION, at(14, 30), AutomationConfig())

        assert len(result.selected) == 9
        assert result.capped == 3
        kickoffs = [c.kickoff_at for c in result.selected]
        assert kickoffs == sorted(kickoffs)
        assert kickoffs[0] == at(15, 0)
        assert kickoffs[-1] == at(15, 8)


class TestFullTimePhases:
    @pytest.mark.asyncio
    async def test_post_match_uses_estimated_full_time(self, seed, session_factory, eligibility):
        """No finished_at: full-time is kickoff + 115min (13:55), window 90-150min after."""
        fixture = await seed.fixture(at(12, 0), status="FT")
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.POST_MATCH, at(15, 30), AutomationConfig())
        assert result.fixture_ids == [fixture.id]
        assert result.selected[0].anchor == at(13, 55)

    @pytest.mark.asyncio
    async def test_post_match_uses_finished_at(self, seed, session_factory, eligibility):
        await seed.fixture(at(12, 0), status="AET", finished_at=at(14, 30))
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.POST_MATCH, at(15, 30), AutomationConfig())
        # 14:30 + 90min = 16:00 -> not yet
        assert result.selected == []

    @pytest.mark.asyncio
    async def test_analysis_requires_prediction(self, seed, session_factory, eligibility):
        fixture = await seed.fixture(at(12, 0), status="FT", finished_at=at(13, 55))
        now = at(16, 30)

        async with session_factory() as session:
            result = await eligibility.select(session, Phase.ANALYSIS, now, AutomationConfig())
        assert result.selected == []
        assert result.excluded == {NO_PREDICTION: 1}

        await seed.prediction(fixture.id, at(11, 0))
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.ANALYSIS, now, AutomationConfig())
        assert result.fixture_ids == [fixture.id]
        assert result.selected[0].reason == NEVER_TRIGGERED

    @pytest.mark.asyncio
    async def test_analysis_done_once_fresh(self, seed, session_factory, eligibility):
        fixture = await seed.fixture(at(12, 0), status="FT", finished_at=at(13, 55))
        await seed.prediction(fixture.id, at(11, 0))
        await seed.analysis(fixture.id, at(16, 31))
        async with session_factory() as session:
            result = await eligibility.select(session, Phase.ANALYSIS, at(16, 45), AutomationConfig())
        assert result.excluded == {FRESH: 1}


class TestLiveSelection:
    @pytest.mark.asyncio
    async def test_every_in_play_fixture_every_run(self, seed, session_factory, eligibility):
        live = await seed.fixture(at(14, 0), status="2H")
        await seed.fixture(at(14, 0), status="HT")
        await seed.fixture(at(18, 0), status="NS")
        await seed.fixture(at(12, 0), status="FT")

        async with session_factory() as session:
            first = await eligibility.select(session, Phase.LIVE, at(15, 0), AutomationConfig())
            second = await eligibility.select(session, Phase.LIVE, at(15, 1), AutomationConfig())

        assert len(first.selected) == 2
        assert live.id in first.fixture_ids
        assert first.fixture_ids == second.fixture_ids
        assert all(c.reason == IN_PLAY for c in first.selected)
