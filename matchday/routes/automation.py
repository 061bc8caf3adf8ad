"""Automation routes: trigger, config, logs, status, webhooks, prompt.

Auth: every endpoint requires X-API-Key (verify_api_key, fail-closed in
production).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from sqlalchemy import select

from matchday.automation.config_loader import PROMPT_FIELD, WEBHOOK_FIELDS, ConfigValidationError
from matchday.automation.dispatcher import DEFAULT_ENDPOINTS, env_endpoint, resolve_endpoint
from matchday.automation.event_log import LogQueryError, next_run_at, query_logs, summarize_today
from matchday.automation.runner import AutomationContext, run_automation_cycle
from matchday.automation.windows import ALL_PHASES, WindowConfigError, describe_windows, utcnow
from matchday.models import League
from matchday.security import limiter, verify_api_key

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/automation", tags=["automation"], dependencies=[Depends(verify_api_key)])


def get_automation_context(request: Request) -> AutomationContext:
    """AutomationContext built in the app lifespan."""
    ctx = getattr(request.app.state, "automation", None)
    if ctx is None:
        raise HTTPException(status_code=503, detail="Automation not initialized")
    return ctx


def _processing(ctx: AutomationContext) -> dict:
    s = ctx.settings
    return {
        "maxPredictionsPerRun": s.AUTOMATION_MAX_PREDICTIONS_PER_RUN,
        "maxAnalysesPerRun": s.AUTOMATION_MAX_ANALYSES_PER_RUN,
        "batchSize": s.AUTOMATION_BATCH_SIZE,
        "batchDelaySeconds": s.AUTOMATION_BATCH_DELAY_SECONDS,
        "retryBufferMinutes": s.AUTOMATION_RETRY_BUFFER_MINUTES,
        "runIntervalMinutes": s.AUTOMATION_RUN_INTERVAL_MINUTES,
    }


def _public_config(config) -> dict:
    return config.model_dump(exclude={"id"})


@router.post("/trigger")
@limiter.limit("30/minute")
async def trigger_automation(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Run one automation cycle (called by the external 5-minute cron)."""
    summary = await run_automation_cycle(ctx)
    return {"success": True, **summary.to_dict()}


@router.get("/trigger")
@limiter.limit("60/minute")
async def get_trigger_state(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    config = await ctx.config_loader.get()
    next_run = next_run_at(config.last_run_at, utcnow(), ctx.settings.AUTOMATION_RUN_INTERVAL_MINUTES)
    return {
        "isEnabled": config.is_enabled,
        "lastRun": config.last_run_at.isoformat() if config.last_run_at else None,
        "lastRunStatus": config.last_run_status,
        "nextRun": next_run.isoformat() if next_run else None,
        "processing": _processing(ctx),
        "timingWindows": describe_windows(config),
        "enabled": {phase.value: getattr(config, f"{phase.key}_enabled") for phase in ALL_PHASES},
    }


@router.get("/config")
@limiter.limit("60/minute")
async def get_config(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    config = await ctx.config_loader.get()
    return {"config": _public_config(config), "timingWindows": describe_windows(config)}


@router.post("/config")
@limiter.limit("10/minute")
async def update_config(
    request: Request,
    changes: dict = Body(...),
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Partial update. Window widths must exceed the polling interval."""
    if not changes:
        raise HTTPException(status_code=400, detail="No fields to update")
    try:
        config = await ctx.config_loader.update(changes)
    except (ConfigValidationError, WindowConfigError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "config": _public_config(config), "timingWindows": describe_windows(config)}


@router.get("/logs")
@limiter.limit("60/minute")
async def get_logs(
    request: Request,
    limit: Optional[int] = Query(None),
    phase: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    date: Optional[str] = Query(None, description="YYYY-MM-DD (UTC)"),
    run_id: Optional[str] = Query(None),
    ctx: AutomationContext = Depends(get_automation_context),
):
    async with ctx.session_factory() as session:
        try:
            logs = await query_logs(
                session, limit=limit, phase=phase, status=status, date=date, run_id=run_id
            )
        except LogQueryError as e:
            raise HTTPException(status_code=400, detail=str(e))

        league_ids = {log.league_id for log in logs if log.league_id is not None}
        league_names = {}
        if league_ids:
            result = await session.execute(
                select(League.id, League.name).where(League.id.in_(league_ids))
            )
            league_names = dict(result.all())

    items = []
    for log in logs:
        item = log.model_dump()
        item["league_name"] = league_names.get(log.league_id)
        items.append(item)
    return {"logs": items, "count": len(items)}


@router.get("/status")
@limiter.limit("60/minute")
async def get_status(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    config = await ctx.config_loader.get()
    async with ctx.session_factory() as session:
        status = await summarize_today(
            session, config, utcnow(), ctx.settings.AUTOMATION_RUN_INTERVAL_MINUTES
        )
    status["timingWindows"] = describe_windows(config)
    return status


def _webhooks_view(ctx: AutomationContext, config) -> dict:
    webhooks = {}
    for phase in ALL_PHASES:
        override = getattr(config, f"{phase.key}_webhook_url")
        if override:
            source = "config"
        elif env_endpoint(phase, ctx.settings):
            source = "env"
        else:
            source = "default"
        webhooks[phase.value] = {
            "url": resolve_endpoint(phase, config, ctx.settings),
            "source": source,
            "field": f"{phase.key}_webhook_url",
        }
    return {
        "webhooks": webhooks,
        "webhookSecretSet": bool(ctx.settings.WEBHOOK_SECRET.strip()),
        "defaults": {phase.value: url for phase, url in DEFAULT_ENDPOINTS.items()},
    }


@router.get("/webhooks")
@limiter.limit("60/minute")
async def get_webhooks(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    config = await ctx.config_loader.get()
    return _webhooks_view(ctx, config)


@router.patch("/webhooks")
@limiter.limit("10/minute")
async def update_webhooks(
    request: Request,
    changes: dict = Body(...),
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Set or reset (null/empty) webhook URL overrides. The secret is env-only."""
    updates = {k: v for k, v in changes.items() if k in WEBHOOK_FIELDS}
    if not updates:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    try:
        config = await ctx.config_loader.update(updates)
    except ConfigValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **_webhooks_view(ctx, config)}


@router.get("/prompt")
@limiter.limit("60/minute")
async def get_prompt(
    request: Request,
    ctx: AutomationContext = Depends(get_automation_context),
):
    config = await ctx.config_loader.get()
    return {
        "custom_prompt": config.custom_prediction_prompt,
        "has_custom_prompt": bool(config.custom_prediction_prompt),
    }


@router.patch("/prompt")
@limiter.limit("10/minute")
async def update_prompt(
    request: Request,
    changes: dict = Body(...),
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Set the prediction prompt sent with automated predictions. Null or blank clears it."""
    try:
        config = await ctx.config_loader.update({PROMPT_FIELD: changes.get("custom_prompt")})
    except ConfigValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    prompt = config.custom_prediction_prompt
    return {
        "success": True,
        "message": "Custom prompt saved" if prompt else "Custom prompt cleared",
        "has_custom_prompt": bool(prompt),
    }
