"""
Market helpers: which side of a market a selection is on, what price the
market offered for it, and how a finished game settles it.

Selections are free text, e.g.:
- moneyline: "Lakers ML", "Lakers"
- spread:    "Lakers -5.5", "Celtics +3"
- total:     "Over 225.5", "under 41"
"""
import re
from typing import Dict, Iterable, Optional, Tuple, Any

from pick_integrity.services.odds_math import american_to_decimal, is_valid_american_odds, DECIMAL_PLACES
from pick_integrity.services.sports_data import GameOutcome

AUTO_GRADED_BET_TYPES = ("moneyline", "spread", "total")

_TOTAL_RE = re.compile(r"\b(over|under)\b\s*([+-]?\d+(?:\.\d+)?)?", re.IGNORECASE)
# A number standing alone, so "76ers -3.5" yields -3.5 and not 76
_LINE_RE = re.compile(r"(?<![\w.])([+-]?\d+(?:\.\d+)?)(?![\w.])")


def parse_total(selection: str) -> Tuple[Optional[str], Optional[float]]:
    """('over' | 'under' | None, line or None) from a totals selection."""
    match = _TOTAL_RE.search(selection or "")
    if not match:
        return None, None
    line = float(match.group(2)) if match.group(2) else None
    return match.group(1).lower(), line


def parse_line(selection: str) -> Optional[float]:
    """Handicap of a spread selection; the last standalone number wins."""
    matches = _LINE_RE.findall(selection or "")
    return float(matches[-1]) if matches else None


def resolve_side(
    bet_type: str,
    selection: str,
    home_team: Optional[str] = None,
    away_team: Optional[str] = None,
) -> Optional[str]:
    """
    Market side a selection backs.

    Returns:
        'home' / 'away' for moneyline and spread, 'over' / 'under' for
        totals, or None if the selection cannot be matched
    """
    if bet_type == "total":
        return parse_total(selection)[0]

    if bet_type not in ("moneyline", "spread"):
        return None

    text = (selection or "").lower()
    home_hit = bool(home_team) and home_team.lower() in text
    away_hit = bool(away_team) and away_team.lower() in text
    if home_hit != away_hit:
        return "home" if home_hit else "away"

    if not home_team and not away_team:
        words = set(re.findall(r"[a-z]+", text))
        if "home" in words and "away" not in words:
            return "home"
        if "away" in words and "home" not in words:
            return "away"
    return None


def select_market_price(
    lines: Optional[Dict[str, Any]],
    bet_type: str,
    selection: str,
    home_team: Optional[str] = None,
    away_team: Optional[str] = None,
) -> Optional[int]:
    """American price the market offered for a selection, or None if unknown."""
    if not lines or bet_type not in AUTO_GRADED_BET_TYPES:
        return None

    market = lines.get(bet_type) or {}
    side = resolve_side(bet_type, selection, home_team, away_team)
    if side is None:
        return None

    price = market.get(side)
    if price is None or not is_valid_american_odds(price):
        return None
    return int(price)


def resolve_selection(bet_type: str, selection: str, game: GameOutcome) -> Optional[Tuple[str, str]]:
    """
    Settle a selection against a final score.

    Returns:
        (result, reason) with result in win/loss/push/void, or None when the
        bet type cannot be settled from a score (prop, future, other)
    """
    if bet_type not in AUTO_GRADED_BET_TYPES:
        return None

    if game.is_void:
        return "void", f"Game {game.status}"

    home, away = game.home_score, game.away_score

    if bet_type == "moneyline":
        if home == away:
            return "push", "Tie game"
        side = resolve_side(bet_type, selection, game.home_team, game.away_team)
        if side is None:
            return "void", "Could not determine team"
        won = (side == "home" and home > away) or (side == "away" and away > home)
        return ("win", "Moneyline winner") if won else ("loss", "Moneyline loser")

    if bet_type == "spread":
        line = parse_line(selection)
        if line is None:
            return "void", "Invalid spread format"
        side = resolve_side(bet_type, selection, game.home_team, game.away_team)
        if side is None:
            return "void", "Could not determine team"
        margin = home - away if side == "home" else away - home
        covered_by = margin + line
        if covered_by > 0:
            return "win", f"Margin {margin} covers {line:+g}"
        if covered_by < 0:
            return "loss", f"Margin {margin} fails to cover {line:+g}"
        return "push", f"Exact push ({margin})"

    direction, line = parse_total(selection)
    if direction is None or line is None:
        return "void", "Invalid total format"
    combined = home + away
    if combined == line:
        return "push", f"Exact push ({combined})"
    if (combined > line) == (direction == "over"):
        return "win", f"Total {combined} vs {line}"
    return "loss", f"Total {combined} vs {line}"


def combine_leg_results(leg_results: Iterable[str]) -> str:
    """
    Overall result of a parlay from its legs.

    Any void leg voids the parlay; otherwise any loss loses it; otherwise any
    push pushes it; all wins win it. Anything else is still pending.
    """
    results = list(leg_results)
    if "void" in results:
        return "void"
    if "loss" in results:
        return "loss"
    if "push" in results:
        return "push"
    if results and all(result == "win" for result in results):
        return "win"
    return "pending"


def calculate_clv(
    bet_type: str,
    selection: str,
    odds_decimal: float,
    closing_lines: Optional[Dict[str, Any]],
    home_team: Optional[str] = None,
    away_team: Optional[str] = None,
) -> Optional[float]:
    """
    Closing-line value: posted decimal odds minus closing decimal odds.

    Positive means the creator got a better price than the close.
    """
    price = select_market_price(closing_lines, bet_type, selection, home_team, away_team)
    if price is None or not odds_decimal:
        return None
    return round(odds_decimal - american_to_decimal(price), DECIMAL_PLACES)
