"""
Creator API routes: performance stats and transparency score.
"""
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from pick_integrity.api.dependencies import get_clock
from pick_integrity.core.auth import Actor, get_actor
from pick_integrity.core.database import get_db
from pick_integrity.services.creator_stats_service import CreatorStatsService
from pick_integrity.services.transparency_service import TransparencyService

router = APIRouter(prefix="/creators", tags=["creators"])


@router.get("/{creator_id}/stats")
def get_creator_stats(
    creator_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Creator performance: totals, win rate and ROI.

    Picks excluded from leaderboards by the fraud heuristics do not count
    toward units, win rate or ROI.
    """
    return CreatorStatsService(db, clock=clock).get_creator_stats(creator_id)


@router.get("/{creator_id}/transparency")
def get_transparency_score(
    creator_id: str,
    force_recalc: bool = Query(False, description="Ignore the cached score"),
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Transparency score (0-100) with its weighted breakdown."""
    return TransparencyService(db, clock=clock).get_score(creator_id, force_recalc=force_recalc)
