"""
Workflow dispatcher: one HTTP POST per unit of work.

Flow:
1. Resolve the endpoint (config row > env var > hard-coded default)
2. POST JSON with X-Webhook-Secret (when configured) and a hard timeout
3. Return a DispatchResult; network errors and timeouts are results
   (status=0), never exceptions
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from matchday.automation.windows import Phase

logger = logging.getLogger(__name__)

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"

# Fallbacks when neither automation_config nor the environment set a URL
DEFAULT_ENDPOINTS = {
    Phase.PRE_MATCH: "http://localhost:5678/webhook/trigger/pre-match",
    Phase.PREDICTION: "http://localhost:5678/webhook/football-prediction",
    Phase.LIVE: "http://localhost:5678/webhook/trigger/live",
    Phase.POST_MATCH: "http://localhost:5678/webhook/trigger/post-match",
    Phase.ANALYSIS: "http://localhost:5678/webhook/post-match-analysis",
}


@dataclass
class DispatchResult:
    success: bool
    status: int
    duration_ms: int
    response: Any = None
    error: Optional[str] = None


class DispatchFailed(Exception):
    """Raised inside a batch action so the executor records the item as failed."""

    def __init__(self, result: DispatchResult):
        self.result = result
        super().__init__(result.error or f"HTTP {result.status}")


def env_endpoint(phase: Phase, settings) -> Optional[str]:
    """Endpoint from environment settings, if any."""
    if phase is Phase.PREDICTION:
        return settings.PREDICTION_WEBHOOK_URL or None
    if phase is Phase.ANALYSIS:
        return settings.ANALYSIS_WEBHOOK_URL or None
    base = settings.WEBHOOK_BASE_URL.rstrip("/")
    if base:
        return f"{base}/trigger/{phase.value}"
    return None


def resolve_endpoint(phase: Phase, config, settings) -> str:
    """
    Endpoint for a phase.

    `config` is the TTL-cached automation_config row, so resolving costs no
    database round trip.
    """
    override = getattr(config, f"{phase.key}_webhook_url", None) if config is not None else None
    return override or env_endpoint(phase, settings) or DEFAULT_ENDPOINTS[phase]


class WorkflowDispatcher:
    """Async HTTP client for the downstream workflow engine."""

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        secret: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.secret = (secret or "").strip()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings) -> "WorkflowDispatcher":
        return cls(
            timeout_seconds=settings.AUTOMATION_DISPATCH_TIMEOUT_SECONDS,
            secret=settings.WEBHOOK_SECRET,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.secret:
                headers[WEBHOOK_SECRET_HEADER] = self.secret
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(self, url: str, payload: dict) -> DispatchResult:
        client = await self._get_client()
        started = time.monotonic()

        try:
            response = await client.post(url, json=payload)
        except httpx.TimeoutException:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.warning(f"[DISPATCH] Timeout after {self.timeout_seconds}s: {url}")
            return DispatchResult(
                success=False,
                status=0,
                duration_ms=duration_ms,
                error=f"Timed out after {self.timeout_seconds}s",
            )
        except httpx.HTTPError as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.warning(f"[DISPATCH] Request failed: {url}: {e!r}")
            return DispatchResult(
                success=False,
                status=0,
                duration_ms=duration_ms,
                error=str(e) or type(e).__name__,
            )

        duration_ms = int((time.monotonic() - started) * 1000)
        try:
            body = response.json()
        except ValueError:
            body = {"raw": response.text}

        success = response.is_success
        if success:
            logger.info(f"[DISPATCH] {url} -> {response.status_code} in {duration_ms}ms")
        else:
            logger.warning(f"[DISPATCH] {url} -> {response.status_code} in {duration_ms}ms")

        return DispatchResult(
            success=success,
            status=response.status_code,
            duration_ms=duration_ms,
            response=body,
            error=None if success else f"HTTP {response.status_code}",
        )
