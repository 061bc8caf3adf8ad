"""Security: rate limiting and API key authentication for admin endpoints."""

import logging
from typing import Optional

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader
from slowapi import Limiter
from slowapi.util import get_remote_address

from matchday.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)

# API Key header for admin endpoints
api_key_header = APIKeyHeader(name=settings.API_KEY_HEADER, auto_error=False)


def is_production() -> bool:
    return settings.ENVIRONMENT.lower() == "production"


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> bool:
    """
    Verify API key for protected endpoints.

    SECURITY: In production, API_KEY must be configured. Empty API_KEY
    blocks all admin requests (fail-closed). In development, empty API_KEY
    allows all requests for convenience.
    """
    # FAIL-CLOSED: In production, require API_KEY to be configured
    if not settings.API_KEY:
        if is_production():
            logger.error("API_KEY not configured in production - blocking admin access")
            raise HTTPException(
                status_code=503,
                detail="Service misconfigured. Admin access disabled.",
            )
        # Dev only: allow all if API_KEY not set
        return True

    if not api_key:
        raise HTTPException(
            status_code=401,
            detail=f"Missing API key. Provide it via {settings.API_KEY_HEADER} header.",
        )

    if api_key != settings.API_KEY:
        logger.warning("Invalid API key attempt from request")
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True
