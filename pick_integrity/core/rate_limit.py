"""
Rate limiting for mutating endpoints (slowapi).

The limiter lives here rather than in main so route modules can decorate
handlers without importing the application.
"""
from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from pick_integrity.core.config import settings


def get_rate_limit_key(request: Request) -> str:
    """
    Get the rate limit key for a request.

    Uses the acting identity when present, then X-Forwarded-For for proxied
    requests, then the client IP address.
    """
    actor = request.headers.get("X-Actor-Id")
    if actor:
        return f"actor:{actor}"
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=["60/minute"],
    storage_uri=settings.REDIS_URL if settings.RATE_LIMIT_STORAGE == "redis" else "memory://",
    enabled=settings.RATE_LIMIT_ENABLED and not settings.is_test()
)

WRITE_LIMIT = settings.RATE_LIMIT_WRITES
