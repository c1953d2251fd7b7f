"""
Exception taxonomy for the pick integrity engine.

Every domain failure is a PickIntegrityError carrying:
- code: stable machine-readable identifier returned to API callers
- status_code: HTTP status the API layer maps it to
- details: structured context so the caller can correct its input

Services raise these; routes let them propagate to the handler registered
by register_exception_handlers().
"""
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from pick_integrity.core.logging import get_logger

logger = get_logger(__name__)


class PickIntegrityError(Exception):
    """Base class for all engine errors."""

    code = "pick_integrity_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(PickIntegrityError):
    """Missing or malformed input."""

    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidOdds(ValidationError):
    """Odds outside the accepted American odds policy."""

    code = "invalid_odds"


class InvalidParlay(ValidationError):
    """Parlay with too few legs or an invalid leg."""

    code = "invalid_parlay"


class MissingUnitValue(ValidationError):
    """No explicit unit value and no creator default to derive the stake from."""

    code = "missing_unit_value"


class ReasonRequired(ValidationError):
    """Admin edit of a locked pick without a justification."""

    code = "reason_required"


class Locked(PickIntegrityError):
    """Non-admin edit attempted at or after game start."""

    code = "locked"
    status_code = status.HTTP_423_LOCKED


class AccessDenied(PickIntegrityError):
    """Actor is neither the pick's owner nor an admin."""

    code = "access_denied"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(PickIntegrityError):
    """Pick or ledger chain does not exist."""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ChainInvalid(PickIntegrityError):
    """Ledger chain failed verification. Reported, never repaired."""

    code = "chain_invalid"
    status_code = status.HTTP_409_CONFLICT


class WriteConflictError(PickIntegrityError):
    """Two writers raced on the same row. The mutation is rolled back and retried."""

    code = "write_conflict"
    status_code = status.HTTP_409_CONFLICT


class LedgerConflictError(WriteConflictError):
    """Two writers raced for the same (resource, sequence) slot."""

    code = "ledger_conflict"


async def pick_integrity_error_handler(request: Request, exc: PickIntegrityError) -> JSONResponse:
    """Render a PickIntegrityError as a JSON error body."""
    if exc.status_code >= 500 or isinstance(exc, ChainInvalid):
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the domain error handler to a FastAPI app."""
    app.add_exception_handler(PickIntegrityError, pick_integrity_error_handler)
