"""
Admin grading routes.

Trigger the grading job over a date range or a single game, or grade one
pick by hand (props, futures, anything the provider cannot settle).
"""
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from pick_integrity.api.dependencies import get_grading_job
from pick_integrity.core.auth import Actor, require_admin
from pick_integrity.core.database import get_db
from pick_integrity.core.logging import get_logger
from pick_integrity.core.rate_limit import limiter, WRITE_LIMIT
from pick_integrity.services.grading_service import GradingJob
from pick_integrity.utils.timezone import to_naive_utc

logger = get_logger(__name__)

router = APIRouter(prefix="/grading", tags=["admin-grading"])


class GradingRunRequest(BaseModel):
    """Window to grade; defaults to the configured lookback."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Stop starting new picks after this")


class ManualGradeRequest(BaseModel):
    result: str = Field(..., description="win, loss, push or void")
    reason: Optional[str] = None


@router.post("/run")
@limiter.limit(WRITE_LIMIT)
async def run_grading(
    request: Request,
    body: Optional[GradingRunRequest] = None,
    actor: Actor = Depends(require_admin),
    job: GradingJob = Depends(get_grading_job),
):
    """Grade every ungraded pick whose game finished in the window."""
    body = body or GradingRunRequest()
    logger.info(f"Grading run requested by {actor.actor_id}")
    return await job.run(
        start=to_naive_utc(body.start),
        end=to_naive_utc(body.end),
        timeout=body.timeout_seconds,
    )


@router.post("/game/{game_id}")
@limiter.limit(WRITE_LIMIT)
async def run_grading_for_game(
    request: Request,
    game_id: str,
    actor: Actor = Depends(require_admin),
    job: GradingJob = Depends(get_grading_job),
):
    """Grade the ungraded picks on one game."""
    logger.info(f"Grading of game {game_id} requested by {actor.actor_id}")
    return await job.run(game_id=game_id)


@router.post("/picks/{pick_id}")
@limiter.limit(WRITE_LIMIT)
def grade_pick_manually(
    request: Request,
    pick_id: str,
    body: ManualGradeRequest,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    job: GradingJob = Depends(get_grading_job),
):
    """Grade a single pick with an admin-supplied result and reason."""
    return asdict(job.grade_manually(db, pick_id, body.result, actor.actor_id, body.reason))
