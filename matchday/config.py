"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./matchday.db"

    # Runtime environment ("production" makes admin auth fail-closed)
    ENVIRONMENT: str = "development"

    # API Security
    API_KEY: str = ""  # Admin key for /automation/* (empty = open in dev, blocked in prod)
    API_KEY_HEADER: str = "X-API-Key"
    METRICS_BEARER_TOKEN: str = ""

    # Sentry (empty DSN = disabled)
    SENTRY_DSN: str = ""
    SENTRY_ENVIRONMENT: str = "development"
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    # ═══════════════════════════════════════════════════════════════
    # AUTOMATION: fixture lifecycle triggers
    # ═══════════════════════════════════════════════════════════════

    # Polling period of the external invoker. Every window must be wider.
    AUTOMATION_RUN_INTERVAL_MINUTES: int = 5
    # Minimum minutes after a trigger before the fixture can be retried
    AUTOMATION_RETRY_BUFFER_MINUTES: int = 7

    # Per-run caps (most time-critical fixtures first)
    AUTOMATION_MAX_PREDICTIONS_PER_RUN: int = 9
    AUTOMATION_MAX_ANALYSES_PER_RUN: int = 9
    AUTOMATION_MAX_GROUP_FIXTURES_PER_RUN: int = 200

    # Batch executor: 3 concurrent dispatches, 1s pause between batches
    AUTOMATION_BATCH_SIZE: int = 3
    AUTOMATION_BATCH_DELAY_SECONDS: float = 1.0

    # Downstream AI generation is slow (5 min hard timeout per call)
    AUTOMATION_DISPATCH_TIMEOUT_SECONDS: float = 300.0

    # automation_config row cache
    AUTOMATION_CONFIG_CACHE_TTL_SECONDS: float = 60.0

    # Full-time estimate when ingestion has not stamped finished_at yet
    AUTOMATION_FULL_TIME_ESTIMATE_MINUTES: int = 115

    # Model identifier sent to the prediction/analysis generators
    AUTOMATION_GENERATION_MODEL: str = "openai/gpt-5-mini"

    # In-process invoker (APScheduler). Default OFF: an external cron calls
    # POST /automation/trigger instead.
    AUTOMATION_SCHEDULER_ENABLED: bool = False

    # Outbound workflow endpoints (DB override > these > hard-coded defaults)
    WEBHOOK_BASE_URL: str = ""            # e.g. https://n8n.example.com/webhook
    PREDICTION_WEBHOOK_URL: str = ""
    ANALYSIS_WEBHOOK_URL: str = ""
    WEBHOOK_SECRET: str = ""              # X-Webhook-Secret, env only (never stored in DB)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
