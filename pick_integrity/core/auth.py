"""
API authentication and actor context.

Two layers:
- X-API-Key guards the whole API when API_KEY is configured
- X-Actor-Id / X-Actor-Role identify who is acting, as forwarded by the
  gateway. The admin role is only honoured with a matching X-Admin-Token
  when ADMIN_TOKEN is configured.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader
from starlette.requests import Request

from pick_integrity.core.config import settings
from pick_integrity.core.errors import AccessDenied
from pick_integrity.core.logging import get_logger

logger = get_logger(__name__)

# API Key header name
API_KEY_NAME = "X-API-Key"

api_key_header = APIKeyHeader(name=API_KEY_NAME, auto_error=False)

ACTOR_ROLES = ("creator", "admin")

# Public endpoint paths (no auth required)
PUBLIC_PATHS = {
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/metrics",
}


def get_api_key(request: Request, api_key: Optional[str] = Security(api_key_header)) -> str:
    """
    Validate API key from request header.

    Raises:
        HTTPException: If API key is missing or invalid
    """
    if request.url.path in PUBLIC_PATHS:
        return "_health_skip_"

    if not settings.API_KEY:
        if settings.is_production():
            logger.warning("API_KEY not configured in production - rejecting request")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="API key required. Configure API_KEY environment variable."
            )
        logger.debug("API_KEY not configured - allowing request in development mode")
        return "_dev_skip_"

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key missing. Provide X-API-Key header."
        )

    if api_key != settings.API_KEY:
        logger.warning(f"Invalid API key attempt from {request.client.host if request.client else 'unknown'}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key."
        )

    return api_key


@dataclass(frozen=True)
class Actor:
    """Who is making the request."""
    actor_id: str
    role: str = "creator"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header("creator", alias="X-Actor-Role"),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
    _api_key: str = Depends(get_api_key),
) -> Actor:
    """
    Resolve the acting identity from gateway headers.

    Raises:
        HTTPException: 401 without an actor id
        AccessDenied: Admin role claimed without a valid admin token
    """
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Actor identity missing. Provide X-Actor-Id header."
        )

    role = (x_actor_role or "creator").lower()
    if role not in ACTOR_ROLES:
        raise AccessDenied(f"Unknown actor role: {role}", details={"allowed": list(ACTOR_ROLES)})

    if role == "admin" and settings.ADMIN_TOKEN and x_admin_token != settings.ADMIN_TOKEN:
        logger.warning(f"Admin role claimed by {x_actor_id} without a valid admin token")
        raise AccessDenied("Invalid admin token.", details={"actor_id": x_actor_id})

    return Actor(actor_id=x_actor_id.strip(), role=role)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    """Dependency for admin-only endpoints."""
    if not actor.is_admin:
        raise AccessDenied("Admin role required.", details={"actor_id": actor.actor_id})
    return actor
