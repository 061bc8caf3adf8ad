"""In-process invoker for the automation run (optional).

Production normally relies on an external cron calling POST
/automation/trigger. With AUTOMATION_SCHEDULER_ENABLED=true the app runs the
same entry point on an APScheduler interval instead.
"""

import logging
import os
import time
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text

from matchday.automation.runner import AutomationContext, run_automation_cycle
from matchday.database import get_session_with_retry

logger = logging.getLogger(__name__)

AUTOMATION_JOB_ID = "automation_tick"

# Flag to prevent multiple scheduler instances (e.g., with --reload)
_scheduler_started = False
scheduler = AsyncIOScheduler()


async def automation_tick(ctx: AutomationContext) -> None:
    """One scheduled automation run."""
    start = time.time()
    try:
        # Stale pooled connections after a DB restart: retry before running
        async with get_session_with_retry(max_retries=3, retry_delay=1.0) as session:
            await session.execute(text("SELECT 1"))

        summary = await run_automation_cycle(ctx)
        duration_ms = (time.time() - start) * 1000
        logger.info(
            f"[SCHEDULER] automation_tick done: run={summary.run_id} "
            f"status={summary.status} in {duration_ms:.0f}ms"
        )
    except Exception as e:
        logger.error(f"[SCHEDULER] automation_tick failed: {e}", exc_info=True)


def start_scheduler(ctx: AutomationContext) -> AsyncIOScheduler:
    """
    Start the background scheduler.

    Uses a module-level flag to prevent duplicate scheduler instances
    when running with --reload.
    """
    global _scheduler_started

    if _scheduler_started:
        logger.warning("Scheduler already started, skipping duplicate initialization")
        return scheduler

    if os.environ.get("UVICORN_RELOADED"):
        logger.info("Skipping scheduler in reload subprocess")
        return scheduler

    interval = ctx.settings.AUTOMATION_RUN_INTERVAL_MINUTES
    scheduler.add_job(
        automation_tick,
        trigger=IntervalTrigger(minutes=interval),
        args=[ctx],
        id=AUTOMATION_JOB_ID,
        name=f"Fixture Lifecycle Triggers (every {interval}min)",
        replace_existing=True,
        next_run_time=datetime.now(timezone.utc) + timedelta(seconds=30),
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    _scheduler_started = True
    logger.info(f"[SCHEDULER] Started: {AUTOMATION_JOB_ID} every {interval}min")
    return scheduler


def stop_scheduler():
    """Stop the background scheduler."""
    global _scheduler_started
    if scheduler.running:
        scheduler.shutdown()
        _scheduler_started = False
        logger.info("Scheduler stopped")
