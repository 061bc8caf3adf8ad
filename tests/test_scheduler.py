"""Tests for the optional in-process invoker and Sentry event scrubbing."""

from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from matchday import scheduler as scheduler_module
from matchday.telemetry.sentry import capture_phase_exception, is_sentry_enabled, scrub_sensitive_data


def fake_session_with_retry(session):
    @asynccontextmanager
    async def _factory(max_retries=3, retry_delay=1.0):
        yield session
    return _factory


class TestAutomationTick:
    @pytest.mark.asyncio
    async def test_checks_db_then_runs_cycle(self, monkeypatch):
        session = MagicMock()
        session.execute = AsyncMock()
        run_cycle = AsyncMock(return_value=SimpleNamespace(run_id="run-1", status="success"))
        monkeypatch.setattr(scheduler_module, "get_session_with_retry", fake_session_with_retry(session))
        monkeypatch.setattr(scheduler_module, "run_automation_cycle", run_cycle)

        ctx = object()
        await scheduler_module.automation_tick(ctx)

        session.execute.assert_awaited_once()
        run_cycle.assert_awaited_once_with(ctx)

    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, monkeypatch, caplog):
        session = MagicMock()
        session.execute = AsyncMock()
        run_cycle = AsyncMock(side_effect=RuntimeError("db gone"))
        monkeypatch.setattr(scheduler_module, "get_session_with_retry", fake_session_with_retry(session))
        monkeypatch.setattr(scheduler_module, "run_automation_cycle", run_cycle)

        await scheduler_module.automation_tick(object())

        assert "automation_tick failed: db gone" in caplog.text

    def test_reload_subprocess_skips_start(self, monkeypatch, settings):
        monkeypatch.setenv("UVICORN_RELOADED", "1")
        ctx = SimpleNamespace(settings=settings)

        returned = scheduler_module.start_scheduler(ctx)

        assert returned is scheduler_module.scheduler
        assert not returned.running
        assert returned.get_job(scheduler_module.AUTOMATION_JOB_ID) is None


class TestSentryScrub:
    def test_sensitive_headers_redacted(self):
        event = {
            "request": {
                "headers": {"X-API-Key": "k", "X-Webhook-Secret": "s", "Accept": "application/json"},
                "query_string": "run_id=abc&token=xyz",
                "data": {"live_webhook_url": "https://hooks.example.org"},
            }
        }

        scrubbed = scrub_sensitive_data(event, {})

        headers = scrubbed["request"]["headers"]
        assert headers["X-API-Key"] == "[REDACTED]"
        assert headers["X-Webhook-Secret"] == "[REDACTED]"
        assert headers["Accept"] == "application/json"
        assert scrubbed["request"]["query_string"] == "run_id=abc&token=[REDACTED]"
        assert scrubbed["request"]["data"] == "[SCRUBBED]"

    def test_event_without_request(self):
        assert scrub_sensitive_data({"message": "x"}, {})["message"] == "x"

    def test_capture_noop_when_disabled(self):
        assert not is_sentry_enabled()
        capture_phase_exception(RuntimeError("x"), "live", "run-1")
