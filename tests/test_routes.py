"""HTTP surface tests: automation admin routes, health, metrics, API key auth."""

import httpx
import pytest
import pytest_asyncio

from matchday import security
from matchday.automation.event_log import AutomationEventLogger
from matchday.main import app
from matchday.routes import core


@pytest_asyncio.fixture
async def client(automation_ctx, monkeypatch):
    monkeypatch.setattr(security.settings, "API_KEY", "")
    monkeypatch.setattr(security.settings, "ENVIRONMENT", "development")
    monkeypatch.setattr(core.settings, "METRICS_BEARER_TOKEN", "")
    monkeypatch.setattr(security.limiter, "enabled", False)

    app.state.automation = automation_ctx
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.state.automation = None


class TestTrigger:
    @pytest.mark.asyncio
    async def test_post_runs_cycle(self, client, session_factory):
        resp = await client.post("/automation/trigger")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["status"] == "success"
        assert body["skipped"] is False
        assert set(body["perPhase"]) == {"pre-match", "prediction", "live", "post-match", "analysis"}

        logs = (await client.get("/automation/logs", params={"run_id": body["runId"]})).json()
        assert logs["count"] == 5
        assert {log["status"] for log in logs["logs"]} == {"no-action"}

    @pytest.mark.asyncio
    async def test_get_state(self, client):
        await client.post("/automation/trigger")

        body = (await client.get("/automation/trigger")).json()
        assert body["isEnabled"] is True
        assert body["lastRunStatus"] == "success"
        assert body["nextRun"] is not None
        assert body["processing"]["batchSize"] == 3
        assert body["timingWindows"]["prediction"] == {
            "start_minutes": -50, "end_minutes": -10, "anchor": "kickoff",
        }
        assert "live" not in body["timingWindows"]

    @pytest.mark.asyncio
    async def test_not_initialized(self, client):
        app.state.automation = None
        resp = await client.post("/automation/trigger")
        assert resp.status_code == 503


class TestConfig:
    @pytest.mark.asyncio
    async def test_get(self, client):
        body = (await client.get("/automation/config")).json()
        assert body["config"]["is_enabled"] is True
        assert "id" not in body["config"]
        assert body["timingWindows"]["analysis"]["anchor"] == "full_time"

    @pytest.mark.asyncio
    async def test_partial_update(self, client):
        resp = await client.post("/automation/config", json={"prediction_enabled": False})
        assert resp.status_code == 200
        assert resp.json()["config"]["prediction_enabled"] is False

        body = (await client.get("/automation/config")).json()
        assert body["config"]["prediction_enabled"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("changes", [
        {},
        {"pre_match_window_start_minutes": -55},
        {"is_enabled": "yes"},
        {"last_run_status": "success"},
    ])
    async def test_rejected(self, client, changes):
        resp = await client.post("/automation/config", json=changes)
        assert resp.status_code == 400


class TestLogs:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [
        {"limit": 0},
        {"limit": 500},
        {"date": "yesterday"},
        {"phase": "kickoff"},
    ])
    async def test_bad_query(self, client, params):
        resp = await client.get("/automation/logs", params=params)
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_league_name_attached(self, client, automation_ctx, seed):
        league = await seed.league("Serie A")
        events = AutomationEventLogger(automation_ctx.session_factory, "run-x")
        await events.log("live", "success", league_id=league.id, fixture_ids=[1])

        body = (await client.get("/automation/logs", params={"run_id": "run-x"})).json()
        assert body["count"] == 1
        assert body["logs"][0]["league_name"] == "Serie A"
        assert body["logs"][0]["fixture_ids"] == [1]


class TestStatus:
    @pytest.mark.asyncio
    async def test_daily_summary(self, client):
        await client.post("/automation/trigger")

        body = (await client.get("/automation/status")).json()
        assert body["isEnabled"] is True
        assert body["lastRunStatus"] == "success"
        assert body["errorsToday"] == 0
        assert set(body["triggers"]) == {"pre-match", "prediction", "live", "post-match", "analysis"}
        assert body["triggers"]["live"]["enabled"] is True
        assert "timingWindows" in body


class TestWebhooks:
    @pytest.mark.asyncio
    async def test_sources(self, client):
        body = (await client.get("/automation/webhooks")).json()
        assert body["webhookSecretSet"] is True
        assert body["webhooks"]["live"] == {
            "url": "https://flows.example.com/webhook/trigger/live",
            "source": "env",
            "field": "live_webhook_url",
        }
        assert body["defaults"]["live"] == "http://localhost:5678/webhook/trigger/live"

    @pytest.mark.asyncio
    async def test_override_and_reset(self, client):
        resp = await client.patch(
            "/automation/webhooks", json={"live_webhook_url": "https://hooks.example.org/live"}
        )
        assert resp.status_code == 200
        assert resp.json()["webhooks"]["live"]["source"] == "config"
        assert resp.json()["webhooks"]["live"]["url"] == "https://hooks.example.org/live"

        resp = await client.patch("/automation/webhooks", json={"live_webhook_url": None})
        assert resp.json()["webhooks"]["live"]["source"] == "env"

    @pytest.mark.asyncio
    async def test_internal_url_rejected(self, client):
        resp = await client.patch(
            "/automation/webhooks", json={"live_webhook_url": "http://localhost:5678/webhook/x"}
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_only_webhook_fields(self, client):
        resp = await client.patch("/automation/webhooks", json={"is_enabled": False})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No valid fields to update"


class TestPrompt:
    @pytest.mark.asyncio
    async def test_unset_by_default(self, client):
        body = (await client.get("/automation/prompt")).json()
        assert body == {"custom_prompt": None, "has_custom_prompt": False}

    @pytest.mark.asyncio
    async def test_save_trims_then_clear(self, client):
        resp = await client.patch("/automation/prompt", json={"custom_prompt": "  Weigh recent form.  "})
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "message": "Custom prompt saved", "has_custom_prompt": True}

        body = (await client.get("/automation/prompt")).json()
        assert body == {"custom_prompt": "Weigh recent form.", "has_custom_prompt": True}

        resp = await client.patch("/automation/prompt", json={"custom_prompt": "   "})
        assert resp.json()["message"] == "Custom prompt cleared"
        assert (await client.get("/automation/prompt")).json()["has_custom_prompt"] is False

    @pytest.mark.asyncio
    async def test_non_string_rejected(self, client):
        resp = await client.patch("/automation/prompt", json={"custom_prompt": ["x"]})
        assert resp.status_code == 400


class TestAuth:
    @pytest.mark.asyncio
    async def test_api_key_required_when_configured(self, client, monkeypatch):
        monkeypatch.setattr(security.settings, "API_KEY", "secret")

        assert (await client.get("/automation/config")).status_code == 401
        assert (await client.get("/automation/config", headers={"X-API-Key": "nope"})).status_code == 403
        assert (await client.get("/automation/config", headers={"X-API-Key": "secret"})).status_code == 200

    @pytest.mark.asyncio
    async def test_fail_closed_in_production(self, client, monkeypatch):
        monkeypatch.setattr(security.settings, "ENVIRONMENT", "production")
        assert (await client.get("/automation/status")).status_code == 503


class TestCore:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    @pytest.mark.asyncio
    async def test_metrics(self, client):
        resp = await client.get("/metrics")
        assert resp.status_code == 200
        assert "automation_runs_total" in resp.text

    @pytest.mark.asyncio
    async def test_metrics_bearer_token(self, client, monkeypatch):
        monkeypatch.setattr(core.settings, "METRICS_BEARER_TOKEN", "scrape-me")

        assert (await client.get("/metrics")).status_code == 401
        assert (await client.get("/metrics", headers={"Authorization": "Basic abc"})).status_code == 401
        resp = await client.get("/metrics", headers={"Authorization": "Bearer scrape-me"})
        assert resp.status_code == 200
