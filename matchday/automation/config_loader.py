"""
Automation config loader.

The automation_config row is read on every run and on every dispatch, so it
is cached for a short TTL (60s by default). The loader is an explicit object
(value + fetched-at) owned by the AutomationContext, not a module global:
every process that builds a context gets its own cache, and writes made
through the loader invalidate it immediately.
"""

import ipaddress
import logging
import time
from typing import Callable, Optional
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from matchday.automation.windows import (
    ALL_PHASES,
    WindowConfigError,
    offsets_for,
    utcnow,
    validate_window,
)
from matchday.models import AutomationConfig

logger = logging.getLogger(__name__)

FLAG_FIELDS = frozenset(
    ["is_enabled"] + [f"{phase.key}_enabled" for phase in ALL_PHASES]
)
WINDOW_FIELDS = frozenset(
    f"{phase.key}_window_{edge}_minutes"
    for phase in ALL_PHASES
    if phase.is_windowed
    for edge in ("start", "end")
)
WEBHOOK_FIELDS = frozenset(f"{phase.key}_webhook_url" for phase in ALL_PHASES)
PROMPT_FIELD = "custom_prediction_prompt"

_BLOCKED_HOSTNAMES = ("metadata", "metadata.google.internal", "instance-data")


class ConfigValidationError(ValueError):
    """Rejected operator change to automation_config."""


def validate_webhook_url(field: str, value: str) -> None:
    """
    Accept only http(s) URLs pointing outside the local network.

    Raises:
        ConfigValidationError: bad scheme, localhost, private, link-local or
            cloud-metadata host.
    """
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ConfigValidationError(f"Invalid URL for {field}. Must be http or https.")

    hostname = parsed.hostname.lower()
    if hostname == "localhost":
        raise ConfigValidationError(f"Invalid URL for {field}: localhost addresses are not allowed")
    if any(blocked in hostname for blocked in _BLOCKED_HOSTNAMES):
        raise ConfigValidationError(f"Invalid URL for {field}: cloud metadata endpoints are not allowed")

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return
    if address.is_loopback or address.is_private or address.is_link_local or address.is_unspecified:
        raise ConfigValidationError(f"Invalid URL for {field}: internal address {hostname} is not allowed")


def _validate_changes(changes: dict) -> dict:
    """Type-check a partial update. Returns the normalized changes."""
    unknown = set(changes) - FLAG_FIELDS - WINDOW_FIELDS - WEBHOOK_FIELDS - {PROMPT_FIELD}
    if unknown:
        raise ConfigValidationError(f"Unknown config fields: {', '.join(sorted(unknown))}")

    normalized = {}
    for field, value in changes.items():
        if field in FLAG_FIELDS:
            if not isinstance(value, bool):
                raise ConfigValidationError(f"{field} must be a boolean")
        elif field in WINDOW_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigValidationError(f"{field} must be an integer number of minutes")
        elif field in WEBHOOK_FIELDS:
            # null/empty resets to env var or default
            if value in (None, ""):
                value = None
            elif not isinstance(value, str):
                raise ConfigValidationError(f"{field} must be a URL string")
            else:
                value = value.strip()
                validate_webhook_url(field, value)
        elif field == PROMPT_FIELD:
            if value is not None and not isinstance(value, str):
                raise ConfigValidationError(f"{field} must be a string")
            # null/blank clears it
            value = value.strip() if value and value.strip() else None
        normalized[field] = value
    return normalized


def validate_config_windows(config: AutomationConfig, polling_interval_minutes: int) -> None:
    """Check every windowed phase of a (merged) config."""
    for phase in ALL_PHASES:
        if not phase.is_windowed:
            continue
        offsets = offsets_for(phase, config)
        try:
            validate_window(offsets.start_minutes, offsets.end_minutes, polling_interval_minutes)
        except WindowConfigError as e:
            raise WindowConfigError(f"{phase.value}: {e}") from e


async def load_or_create_config(session: AsyncSession) -> AutomationConfig:
    """Fetch the singleton row, inserting defaults on first use."""
    result = await session.execute(
        select(AutomationConfig).order_by(AutomationConfig.id).limit(1)
    )
    config = result.scalars().first()
    if config is None:
        config = AutomationConfig()
        session.add(config)
        await session.commit()
        await session.refresh(config)
        logger.info("[AUTOMATION] Created default automation_config row")
    return config


def _detach(config: AutomationConfig) -> AutomationConfig:
    """Plain copy safe to share between concurrent phases."""
    return AutomationConfig.model_validate(config.model_dump())


class AutomationConfigLoader:
    """TTL-cached access to the automation_config row."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        ttl_seconds: float = 60.0,
        polling_interval_minutes: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self.polling_interval_minutes = polling_interval_minutes
        self._clock = clock
        self._value: Optional[AutomationConfig] = None
        self._fetched_at: Optional[float] = None

    @property
    def age(self) -> Optional[float]:
        """Seconds since last fetch, or None if empty."""
        if self._fetched_at is None:
            return None
        return self._clock() - self._fetched_at

    def invalidate(self) -> None:
        self._value = None
        self._fetched_at = None

    async def get(self, force_refresh: bool = False) -> AutomationConfig:
        """Cached config; hits the database at most once per TTL."""
        if not force_refresh and self._value is not None:
            if self._clock() - self._fetched_at < self.ttl_seconds:
                return self._value

        async with self._session_factory() as session:
            row = await load_or_create_config(session)
            value = _detach(row)

        try:
            validate_config_windows(value, self.polling_interval_minutes)
        except WindowConfigError as e:
            # Written before validation existed, or edited by hand
            logger.warning(f"[AUTOMATION] automation_config has an unsafe window: {e}")

        self._value = value
        self._fetched_at = self._clock()
        return value

    async def update(self, changes: dict) -> AutomationConfig:
        """
        Apply an operator change and invalidate the cache.

        Raises:
            ConfigValidationError: unknown field, wrong type or bad URL.
            WindowConfigError: resulting windows narrower than the polling interval.
        """
        normalized = _validate_changes(changes)

        async with self._session_factory() as session:
            row = await load_or_create_config(session)
            merged = _detach(row)
            for field, value in normalized.items():
                setattr(merged, field, value)
            validate_config_windows(merged, self.polling_interval_minutes)

            for field, value in normalized.items():
                setattr(row, field, value)
            row.updated_at = utcnow()
            session.add(row)
            await session.commit()
            await session.refresh(row)
            value = _detach(row)

        self.invalidate()
        logger.info(f"[AUTOMATION] Config updated: {sorted(normalized)}")
        return value

    async def record_run_state(self, run_id: str, status: str, at=None) -> None:
        """
        Persist last_run_* bookkeeping (running/success/error).

        The cached value keeps its TTL; only its bookkeeping fields are
        refreshed so status reads stay current.
        """
        changes = {"last_run_status": status, "last_run_id": run_id}
        if at is not None:
            changes["last_run_at"] = at

        async with self._session_factory() as session:
            row = await load_or_create_config(session)
            for field, value in changes.items():
                setattr(row, field, value)
            session.add(row)
            await session.commit()

        if self._value is not None:
            for field, value in changes.items():
                setattr(self._value, field, value)
