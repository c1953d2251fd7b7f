"""
Odds utility routes: conversions and parlay pricing without posting a pick.
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from pick_integrity.core.auth import get_api_key
from pick_integrity.services.odds_math import (
    american_to_decimal,
    combine_parlay_odds,
    decimal_to_american,
    DECIMAL_PLACES,
)

router = APIRouter(prefix="/odds", tags=["odds"], dependencies=[Depends(get_api_key)])


class ParlayOddsRequest(BaseModel):
    """Leg odds to combine."""
    legs: List[int] = Field(..., description="American odds of each leg, e.g. [-110, -110]")


@router.post("/parlay")
def price_parlay(body: ParlayOddsRequest):
    """
    Combined odds of a parlay: decimal odds multiply across legs.

    [-110, -110] -> decimal 3.6446, American +264.
    """
    combined = combine_parlay_odds(body.legs)
    return {"legs": body.legs, **combined}


@router.get("/convert")
def convert_odds(american: int = Query(..., description="American odds")):
    """Convert American odds to decimal and back."""
    decimal = round(american_to_decimal(american), DECIMAL_PLACES)
    return {"american": american, "decimal": decimal, "round_trip_american": decimal_to_american(decimal)}
