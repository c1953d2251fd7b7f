"""
Pick API routes.

Create, read, edit and delete picks, admin flags and disputes, ledger proofs
and on-demand fraud assessments. Domain errors propagate to the handler
registered in pick_integrity.core.errors.
"""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from pick_integrity.api.dependencies import get_clock, get_sports_provider
from pick_integrity.core.auth import Actor, get_actor, require_admin
from pick_integrity.core.database import get_db
from pick_integrity.core.errors import AccessDenied
from pick_integrity.core.rate_limit import limiter, WRITE_LIMIT
from pick_integrity.models import Pick
from pick_integrity.services.fraud_service import FraudService
from pick_integrity.services.ledger_service import LedgerService
from pick_integrity.services.pick_lifecycle import PickLifecycleService, capture_market_at_post, is_locked
from pick_integrity.services.sports_data import SportsDataProvider

router = APIRouter(prefix="/picks", tags=["picks"])


# Request/Response models
class PickLegCreate(BaseModel):
    """One leg of a parlay."""
    sport: Optional[str] = None
    league: Optional[str] = None
    game_id: Optional[str] = None
    game_text: Optional[str] = None
    bet_type: Optional[str] = None
    selection: Optional[str] = None
    odds_american: Optional[int] = Field(None, description="American odds (+150, -110, ...)")
    game_start_time: Optional[datetime] = None


class CreatePickRequest(BaseModel):
    """Request to post a new pick."""
    storefront_id: str = Field(..., description="Storefront the pick is posted to")
    sport: Optional[str] = None
    league: Optional[str] = None
    game_id: Optional[str] = Field(None, description="Sports data provider game id")
    game_text: Optional[str] = Field(None, description="Free-text game description")
    home_team: Optional[str] = None
    away_team: Optional[str] = None
    bet_type: Optional[str] = Field(None, description="moneyline, spread, total, prop, future, parlay, other")
    selection: Optional[str] = Field(None, description="e.g. 'Lakers -5.5', 'Over 225.5'")
    odds_american: Optional[int] = None
    units_risked: Optional[float] = None
    amount_risked: Optional[int] = Field(None, description="Cents; derived from units when omitted")
    unit_value: Optional[int] = Field(None, description="Cents per unit; creator default when omitted")
    game_start_time: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    write_up: Optional[str] = None
    market_odds: Optional[Dict[str, Any]] = Field(None, description="Market lines captured at post time")
    legs: Optional[List[PickLegCreate]] = None


class UpdatePickRequest(BaseModel):
    """Field changes to a pick. Admin edits after game start need a reason."""
    changes: Dict[str, Any] = Field(..., description="Field name -> new value")
    reason: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


def pick_to_dict(pick: Pick, now: datetime) -> Dict[str, Any]:
    """Serialize a pick with its legs, audit trail and current lock state."""
    assessment = pick.fraud_assessment
    return {
        "id": pick.id,
        "creator_id": pick.creator_id,
        "storefront_id": pick.storefront_id,
        "sport": pick.sport,
        "league": pick.league,
        "game_id": pick.game_id,
        "game_text": pick.game_text,
        "home_team": pick.home_team,
        "away_team": pick.away_team,
        "bet_type": pick.bet_type,
        "selection": pick.selection,
        "odds_american": pick.odds_american,
        "odds_decimal": pick.odds_decimal,
        "units_risked": pick.units_risked,
        "amount_risked": pick.amount_risked,
        "unit_value_at_post": pick.unit_value_at_post,
        "is_parlay": pick.is_parlay,
        "game_start_time": pick.game_start_time.isoformat(),
        "created_at": pick.created_at.isoformat(),
        "updated_at": pick.updated_at.isoformat(),
        "scheduled_at": pick.scheduled_at.isoformat() if pick.scheduled_at else None,
        "published_at": pick.published_at.isoformat() if pick.published_at else None,
        "is_locked": is_locked(pick, now),
        "is_verified": pick.is_verified,
        "verification_source": pick.verification_source,
        "verification_evidence": pick.verification_evidence,
        "status": pick.status,
        "result": pick.result,
        "resolved_at": pick.resolved_at.isoformat() if pick.resolved_at else None,
        "profit_units": pick.profit_units,
        "profit_amount": pick.profit_amount,
        "market_odds_at_post": pick.market_odds_at_post,
        "closing_odds": pick.closing_odds,
        "clv_score": pick.clv_score,
        "write_up": pick.write_up,
        "legs": [
            {
                "position": leg.position,
                "sport": leg.sport,
                "league": leg.league,
                "game_id": leg.game_id,
                "game_text": leg.game_text,
                "bet_type": leg.bet_type,
                "selection": leg.selection,
                "odds_american": leg.odds_american,
                "odds_decimal": leg.odds_decimal,
                "game_start_time": leg.game_start_time.isoformat(),
                "result": leg.result,
            }
            for leg in pick.legs
        ],
        "edits": [
            {
                "editor_id": edit.editor_id,
                "edited_at": edit.edited_at.isoformat(),
                "old_value": edit.old_value,
                "new_value": edit.new_value,
                "reason": edit.reason,
                "is_admin_edit": edit.is_admin_edit,
            }
            for edit in pick.edits
        ],
        "flags": [
            {"reason": flag.reason, "flagged_by": flag.flagged_by, "flagged_at": flag.flagged_at.isoformat()}
            for flag in pick.flags
        ],
        "fraud": {
            "score": assessment.score,
            "flags": assessment.flags,
            "should_flag": assessment.should_flag,
            "exclude_from_leaderboards": assessment.exclude_from_leaderboards,
            "assessed_at": assessment.assessed_at.isoformat(),
        } if assessment else None,
    }


@router.post("", status_code=201)
@limiter.limit(WRITE_LIMIT)
async def create_pick(
    request: Request,
    body: CreatePickRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
    provider: SportsDataProvider = Depends(get_sports_provider),
):
    """
    Post a new pick as the acting creator.

    Market lines and team names for a single pick with a game_id are captured
    from the sports data provider. The pick is verified (posted before game
    start) and ledger entry #1 is written in the same transaction.
    """
    data = body.model_dump(exclude={"storefront_id"}, exclude_none=True)
    data = await capture_market_at_post(provider, data)
    service = PickLifecycleService(db, clock=clock)
    pick = await run_in_threadpool(service.create_pick, actor.actor_id, body.storefront_id, data)
    return await run_in_threadpool(pick_to_dict, pick, clock())


@router.get("/{pick_id}")
def get_pick(
    pick_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Get a pick with legs, edit history, flags and lock state."""
    pick = PickLifecycleService(db, clock=clock).get_pick(pick_id)
    return pick_to_dict(pick, clock())


@router.patch("/{pick_id}")
@limiter.limit(WRITE_LIMIT)
def update_pick(
    request: Request,
    pick_id: str,
    body: UpdatePickRequest,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """
    Edit a pick.

    Creators may edit their own picks until game start. Admins may edit any
    pick; after game start the edit needs a reason, unverifies the pick and
    adds a flag.
    """
    service = PickLifecycleService(db, clock=clock)
    pick = service.update_pick(pick_id, actor.actor_id, actor.is_admin, body.changes, reason=body.reason)
    return pick_to_dict(pick, clock())


@router.delete("/{pick_id}")
@limiter.limit(WRITE_LIMIT)
def delete_pick(
    request: Request,
    pick_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Delete a pick (owner only). The ledger keeps a final 'delete' entry."""
    return PickLifecycleService(db, clock=clock).delete_pick(pick_id, actor.actor_id)


@router.post("/{pick_id}/flag")
@limiter.limit(WRITE_LIMIT)
def flag_pick(
    request: Request,
    pick_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Flag a pick for review (admin)."""
    service = PickLifecycleService(db, clock=clock)
    pick = service.flag_pick(pick_id, actor.actor_id, actor.is_admin, body.reason)
    return pick_to_dict(pick, clock())


@router.post("/{pick_id}/dispute")
@limiter.limit(WRITE_LIMIT)
def dispute_pick(
    request: Request,
    pick_id: str,
    body: ReasonRequest,
    actor: Actor = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Mark a pick as disputed (admin). Disputed picks are not auto-graded."""
    service = PickLifecycleService(db, clock=clock)
    pick = service.mark_disputed(pick_id, actor.actor_id, actor.is_admin, body.reason)
    return pick_to_dict(pick, clock())


@router.get("/{pick_id}/ledger")
def get_ledger_proof(
    pick_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """
    Ledger proof for a pick: every entry plus the chain verification result.

    Still available after the pick is deleted.
    """
    return LedgerService(db).get_proof(pick_id)


@router.get("/{pick_id}/fraud")
def get_fraud_assessment(
    pick_id: str,
    actor: Actor = Depends(get_actor),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Run the fraud heuristics for a pick now, without storing the result."""
    pick = PickLifecycleService(db, clock=clock).get_pick(pick_id)
    if not actor.is_admin and actor.actor_id != pick.creator_id:
        raise AccessDenied(
            f"Actor {actor.actor_id} may not view fraud data for pick {pick_id}",
            details={"pick_id": pick_id},
        )
    report = FraudService(db, clock=clock).evaluate(pick)
    report["pick_id"] = pick_id
    return report
