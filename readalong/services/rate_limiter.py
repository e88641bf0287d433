"""
Rate Limiting Service

slowapi limiter for the reading-group endpoints.

Tiers:
- reads (list, search, get, messages): settings.rate_limit_default
- commands (create, join, leave, progress, settings, member actions,
  posting): settings.rate_limit_write

Requests carrying a valid bearer token are counted per user, so readers
behind one NAT do not share a budget; anonymous requests (which fail
authentication anyway) are counted per client IP.

Counters live in settings.rate_limit_storage_uri ("memory://" unless a
shared store is configured).
"""

import logging

from fastapi import Request, status
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from readalong.config import get_settings
from readalong.services.exceptions import UnauthorizedError
from readalong.services.security import authenticate_token

logger = logging.getLogger(__name__)
settings = get_settings()

RETRY_AFTER_SECONDS = 60


def get_client_ip(request: Request) -> str:
    """Client IP, honouring X-Forwarded-For / X-Real-IP from a proxy."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def rate_limit_key(request: Request) -> str:
    """Bucket key: "user:<id>" for authenticated callers, else "ip:<addr>"."""
    credential = request.headers.get("Authorization")
    if credential:
        try:
            return f"user:{authenticate_token(credential).user_id}"
        except UnauthorizedError:
            pass
    return f"ip:{get_client_ip(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage_uri,
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)

logger.info(
    f"Rate limiter enabled={settings.rate_limit_enabled} "
    f"(reads {settings.rate_limit_default}, commands {settings.rate_limit_write})"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After, in the same {"detail": ...} shape as domain errors."""
    limit_detail = str(exc.detail)
    logger.warning(f"Rate limit {limit_detail} exceeded by {rate_limit_key(request)}")

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"detail": f"Too many requests: {limit_detail}"},
        headers={
            "Retry-After": str(RETRY_AFTER_SECONDS),
            "X-RateLimit-Limit": limit_detail,
        },
    )
