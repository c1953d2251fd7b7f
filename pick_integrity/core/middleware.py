"""
FastAPI middleware for request context tracking.

For every request this middleware:
1. Reads or generates the X-Correlation-ID header
2. Stores it in request.state for endpoints
3. Binds it, plus the X-Actor-Id header, to the logging context
4. Echoes the correlation ID in the response headers
"""
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from pick_integrity.core.logging import (
    set_correlation_id,
    clear_correlation_id,
    set_actor_id,
    clear_actor_id,
    get_logger,
)

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"
ACTOR_HEADER = "X-Actor-Id"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Bind correlation and actor IDs for the lifetime of a request.

    Usage:
        app.add_middleware(CorrelationIdMiddleware)

    Access in endpoints:
        correlation_id = request.state.correlation_id
    """

    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        correlation_token = set_correlation_id(correlation_id)
        actor_token = set_actor_id(request.headers.get(ACTOR_HEADER, ""))

        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id

            logger.debug(
                f"Request completed: {request.method} {request.url.path}",
                extra={"method": request.method, "path": request.url.path, "status": response.status_code},
            )

            return response
        finally:
            clear_actor_id(actor_token)
            clear_correlation_id(correlation_token)
