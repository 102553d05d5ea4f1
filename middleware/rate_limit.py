# middleware/rate_limit.py
"""
Rate limiting configuration using slowapi.

Endpoints that call Gemini are limited: market refresh and chat have
their own limits, asset add, receipt upload and news refresh share
GEMINI_RATE_LIMIT. There is no login, so callers are bucketed by client
address.

Usage in route files:
    from middleware.rate_limit import limiter, REFRESH_RATE_LIMIT

    @router.post("/refresh")
    @limiter.limit(REFRESH_RATE_LIMIT)
    async def refresh(request: Request):
        ...
"""
import logging
import os

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    return get_remote_address(request)


# Env-overridable so limits can be tuned per environment without redeploying.
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "120/minute")
REFRESH_RATE_LIMIT = os.getenv("RATE_LIMIT_REFRESH", "10/minute")
CHAT_RATE_LIMIT = os.getenv("RATE_LIMIT_CHAT", "20/minute")
GEMINI_RATE_LIMIT = os.getenv("RATE_LIMIT_GEMINI", "30/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "1").lower() in ("1", "true", "yes")

limiter = Limiter(
    key_func=_get_rate_limit_key,
    default_limits=[DEFAULT_RATE_LIMIT],
    storage_uri="memory://",
    strategy="fixed-window",
    enabled=RATE_LIMIT_ENABLED,
)

if not RATE_LIMIT_ENABLED:
    logger.info("rate_limit.disabled")
