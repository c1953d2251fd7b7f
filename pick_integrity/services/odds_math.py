"""
Odds conversion and parlay pricing.

American odds express the payout relative to a 100-unit stake:
- Positive (+135): profit on a 100 stake
- Negative (-110): stake needed to profit 100

Decimal odds express the total return per unit staked, stake included.
A parlay's decimal odds are the product of its legs' decimal odds.

All functions here are pure.
"""
import math
from numbers import Integral, Real
from typing import Dict, Sequence, Union

from pick_integrity.core.errors import InvalidOdds, InvalidParlay

# Canonical American odds bounds, applied everywhere odds are validated
MIN_AMERICAN_ODDS = -10000
MAX_AMERICAN_ODDS = 10000

MIN_PARLAY_LEGS = 2
DECIMAL_PLACES = 4


def _round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (towards +inf)."""
    return int(math.floor(value + 0.5))


def is_valid_american_odds(value) -> bool:
    """
    Check whether a value is acceptable American odds.

    Valid iff the value is an integer, non-zero, and within
    [MIN_AMERICAN_ODDS, MAX_AMERICAN_ODDS].

    Examples:
        >>> is_valid_american_odds(-110)
        True
        >>> is_valid_american_odds(0)
        False
        >>> is_valid_american_odds(-10001)
        False
        >>> is_valid_american_odds(-110.5)
        False
    """
    if isinstance(value, bool):
        return False
    if isinstance(value, Integral):
        american = int(value)
    elif isinstance(value, Real) and float(value).is_integer():
        american = int(value)
    else:
        return False
    return american != 0 and MIN_AMERICAN_ODDS <= american <= MAX_AMERICAN_ODDS


def american_to_decimal(american) -> float:
    """
    Convert American odds to decimal odds.

    Args:
        american: American odds (e.g. -110, +135)

    Returns:
        Decimal odds (e.g. 1.9091, 2.35)

    Raises:
        InvalidOdds: If american is zero or otherwise not valid American odds
    """
    if not is_valid_american_odds(american):
        raise InvalidOdds(
            f"Invalid American odds: {american!r}",
            details={"odds_american": american, "min": MIN_AMERICAN_ODDS, "max": MAX_AMERICAN_ODDS},
        )

    american = int(american)
    if american > 0:
        return american / 100 + 1
    return 100 / abs(american) + 1


def decimal_to_american(decimal_odds: float) -> int:
    """
    Convert decimal odds to American odds.

    Decimal odds of 2.0 or more map to positive American odds; anything
    shorter maps to negative American odds.

    Raises:
        InvalidOdds: If decimal_odds is not greater than 1
    """
    if decimal_odds is None or not math.isfinite(decimal_odds) or decimal_odds <= 1:
        raise InvalidOdds(
            f"Invalid decimal odds: {decimal_odds!r}",
            details={"odds_decimal": decimal_odds},
        )

    if decimal_odds >= 2:
        return _round_half_up((decimal_odds - 1) * 100)
    return _round_half_up(-100 / (decimal_odds - 1))


def combine_parlay_odds(leg_odds_american: Sequence[int]) -> Dict[str, Union[float, int]]:
    """
    Combine leg odds into parlay odds.

    Args:
        leg_odds_american: American odds for each leg, in leg order

    Returns:
        Dict with 'decimal' (rounded to 4 places) and 'american'

    Raises:
        InvalidParlay: If fewer than 2 legs or any leg has invalid odds

    Example:
        >>> combine_parlay_odds([-110, -110])
        {'decimal': 3.6446, 'american': 264}
    """
    legs = list(leg_odds_american or [])
    if len(legs) < MIN_PARLAY_LEGS:
        raise InvalidParlay(
            f"A parlay requires at least {MIN_PARLAY_LEGS} legs, got {len(legs)}",
            details={"leg_count": len(legs)},
        )

    invalid = [
        {"leg": index, "odds_american": odds}
        for index, odds in enumerate(legs)
        if not is_valid_american_odds(odds)
    ]
    if invalid:
        raise InvalidParlay("One or more parlay legs have invalid odds", details={"invalid_legs": invalid})

    combined = 1.0
    for odds in legs:
        combined *= american_to_decimal(odds)

    return {
        "decimal": round(combined, DECIMAL_PLACES),
        "american": decimal_to_american(combined),
    }


def calculate_profit(units_risked: float, unit_value: int, decimal_odds: float) -> Dict[str, Union[float, int]]:
    """
    Profit of a winning wager.

    Args:
        units_risked: Units staked
        unit_value: Value of one unit in cents
        decimal_odds: Decimal odds of the wager

    Returns:
        Dict with 'profit_units' (2 places) and 'profit_amount' (cents)
    """
    profit_units = units_risked * (decimal_odds - 1)
    return {
        "profit_units": round(profit_units, 2),
        "profit_amount": _round_half_up(profit_units * unit_value),
    }
