"""
Pick lifecycle: create, edit, delete, grade, flag and dispute.

A pick is locked once the server clock reaches its game_start_time. The
lock is computed on every access and never stored:

    pending --(now >= game_start_time)--> locked --(grading)--> graded
                                                 --(dispute)--> disputed

Rules enforced here:
- Only the owning creator or an admin may edit; only the owner may delete
- Non-admin edits of a locked pick fail with Locked
- Admin edits of a locked pick need a reason, clear is_verified and add a flag
- Every state-changing write appends exactly one ledger entry
- Grading is idempotent: grading a graded pick returns the stored result

Each mutation runs under the pick's resource lock with the row loaded
FOR UPDATE, and commits before the lock is released. A lost ledger sequence
race rolls back and retries the whole mutation.
"""
import math
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime
from numbers import Real
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_random_exponential, retry_if_exception_type

from pick_integrity.core.errors import (
    ValidationError,
    InvalidOdds,
    InvalidParlay,
    MissingUnitValue,
    ReasonRequired,
    Locked,
    AccessDenied,
    NotFound,
    WriteConflictError,
)
from pick_integrity.core.locks import resource_locks, creator_lock_key
from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import picks_created_total, pick_updates_total, pick_lock_rejections_total
from pick_integrity.models import (
    Pick, PickLeg, PickEdit, PickFlag, new_id, BET_TYPES, LEG_BET_TYPES, PICK_RESULTS,
)
from pick_integrity.repositories import PickRepository, CreatorProfileRepository
from pick_integrity.services.creator_stats_service import CreatorStatsService
from pick_integrity.services.ledger_service import LedgerService, canonicalize
from pick_integrity.services.odds_math import (
    american_to_decimal,
    calculate_profit,
    combine_parlay_odds,
    is_valid_american_odds,
    DECIMAL_PLACES,
    MIN_AMERICAN_ODDS,
    MAX_AMERICAN_ODDS,
    MIN_PARLAY_LEGS,
)
from pick_integrity.services.sports_data import SportsDataProvider
from pick_integrity.utils.timezone import utc_now, to_naive_utc

logger = get_logger(__name__)

LEDGER_RETRY_ATTEMPTS = 3

REQUIRED_PICK_FIELDS = ("sport", "bet_type", "selection", "odds_american", "units_risked", "game_start_time")
REQUIRED_PARLAY_FIELDS = ("units_risked",)
REQUIRED_LEG_FIELDS = ("sport", "bet_type", "selection", "odds_american", "game_start_time")

EDITABLE_FIELDS = (
    "sport", "league", "game_id", "game_text", "home_team", "away_team", "bet_type", "selection",
    "odds_american", "units_risked", "amount_risked", "game_start_time", "scheduled_at", "write_up",
)
# Changing any of these on a graded pick changes its profit
SETTLEMENT_FIELDS = ("odds_american", "odds_decimal", "units_risked", "amount_risked")
# Derived from the legs on a parlay
PARLAY_DERIVED_FIELDS = ("bet_type", "odds_american", "game_start_time", "sport")

FINAL_RESULTS = tuple(r for r in PICK_RESULTS if r != "pending")


def is_locked(pick: Pick, now: datetime) -> bool:
    """A pick is locked from the moment its game starts."""
    return now >= pick.game_start_time


@dataclass
class GradeOutcome:
    """What Grade did to a pick."""
    pick_id: str
    result: str
    profit_units: Optional[float]
    profit_amount: Optional[int]
    applied: bool


# ============================================================================
# FIELD VALIDATION
# ============================================================================

def _missing(data: Dict[str, Any], names) -> List[str]:
    return [name for name in names if data.get(name) in (None, "")]


def _text(data: Dict[str, Any], name: str, required: bool = True) -> Optional[str]:
    value = data.get(name)
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", details={"field": name})
        return None
    if not isinstance(value, str) or (required and not value.strip()):
        raise ValidationError(f"{name} must be a non-empty string", details={"field": name, "value": value})
    return value.strip()


def _shown(value: Any) -> Any:
    """Offending value as it can appear in error details; inf and nan have no JSON form."""
    if isinstance(value, float) and not math.isfinite(value):
        return str(value)
    return value


def _units(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, Real) or not math.isfinite(value) or not value > 0:
        raise ValidationError(
            "units_risked must be a positive finite number",
            details={"field": "units_risked", "value": _shown(value)},
        )
    return float(value)


def _cents(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, Real) or value < 0 or not float(value).is_integer():
        raise ValidationError(
            f"{name} must be a non-negative integer amount of cents",
            details={"field": name, "value": _shown(value)},
        )
    return int(value)


def _odds(value: Any, field: str = "odds_american") -> int:
    if not is_valid_american_odds(value):
        raise InvalidOdds(
            f"Invalid American odds: {value!r}",
            details={"field": field, "value": _shown(value), "min": MIN_AMERICAN_ODDS, "max": MAX_AMERICAN_ODDS},
        )
    return int(value)


def _timestamp(name: str, value: Any) -> datetime:
    try:
        parsed = to_naive_utc(value)
    except (TypeError, ValueError, AttributeError):
        parsed = None
    if parsed is None:
        raise ValidationError(f"{name} must be an ISO 8601 datetime", details={"field": name, "value": value})
    return parsed


def _bet_type(value: Any, allowed=BET_TYPES, field: str = "bet_type") -> str:
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of {', '.join(allowed)}",
            details={"field": field, "value": value, "allowed": list(allowed)},
        )
    return value


def _future(name: str, value: datetime, now: datetime) -> None:
    if value <= now:
        raise ValidationError(
            f"{name} must be in the future",
            details={"field": name, "value": value.isoformat(), "now": now.isoformat()},
        )


def _round_cents(value: float) -> int:
    if not math.isfinite(value):
        raise ValidationError("amount_risked is out of range", details={"field": "amount_risked"})
    return int(math.floor(value + 0.5))


def _settle_profit(pick: Pick) -> None:
    """Set profit_units and profit_amount from the result, stake and price of a graded pick."""
    if pick.result == "win":
        profit = calculate_profit(pick.units_risked, pick.unit_value_at_post, pick.odds_decimal)
        pick.profit_units = profit["profit_units"]
        pick.profit_amount = profit["profit_amount"]
    elif pick.result == "loss":
        pick.profit_units = -pick.units_risked
        pick.profit_amount = -pick.amount_risked
    else:
        pick.profit_units = 0.0
        pick.profit_amount = 0


async def capture_market_at_post(provider: SportsDataProvider, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill a single pick's market lines and team names from the provider.

    Provider data replaces anything the creator sent for market_odds,
    home_team and away_team. When the provider has nothing or fails, the
    payload is returned as sent; market data never blocks posting.

    Returns:
        A copy of data with the captured fields set
    """
    game_id = data.get("game_id")
    if data.get("bet_type") == "parlay" or not game_id:
        return data

    captured = dict(data)
    try:
        lines = await provider.get_market_lines(game_id)
    except Exception as e:
        logger.warning(f"Could not capture market lines for game {game_id}: {e}")
        lines = None
    if lines:
        captured["market_odds"] = lines

    try:
        game = await provider.get_game(game_id)
    except Exception as e:
        logger.warning(f"Could not capture teams for game {game_id}: {e}")
        game = None
    if game is not None and game.home_team and game.away_team:
        captured["home_team"] = game.home_team
        captured["away_team"] = game.away_team

    return captured


class PickLifecycleService:
    """Every write to a pick goes through this service."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.picks = PickRepository(db)
        self.profiles = CreatorProfileRepository(db)
        self.ledger = LedgerService(db)
        self.creator_stats = CreatorStatsService(db, clock=clock)
        self._held: Optional[ExitStack] = None

    # ========================================================================
    # Transaction plumbing
    # ========================================================================

    @retry(
        stop=stop_after_attempt(LEDGER_RETRY_ATTEMPTS),
        wait=wait_random_exponential(multiplier=0.05, max=0.5),
        retry=retry_if_exception_type(WriteConflictError),
        reraise=True,
    )
    def _mutate(self, pick_id: str, operation: Callable[[], Any]) -> Any:
        """
        Run operation under the pick's lock and commit, rolling back on any error.

        Locks taken through _hold_creator() are released with the pick lock,
        after the commit.
        """
        with ExitStack() as held:
            held.enter_context(resource_locks.hold(pick_id))
            self._held = held
            try:
                result = operation()
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise
            finally:
                self._held = None
        return result

    def _hold_creator(self, creator_id: str) -> None:
        """Serialize writers of a creator's aggregates until the current mutation commits."""
        self._held.enter_context(resource_locks.hold(creator_lock_key(creator_id)))

    def _load_for_update(self, pick_id: str) -> Pick:
        pick = self.picks.get_for_update(pick_id)
        if pick is None:
            raise NotFound(f"Pick {pick_id} not found", details={"pick_id": pick_id})
        return pick

    def get_pick(self, pick_id: str) -> Pick:
        pick = self.picks.find_by_id(pick_id)
        if pick is None:
            raise NotFound(f"Pick {pick_id} not found", details={"pick_id": pick_id})
        return pick

    # ========================================================================
    # Create
    # ========================================================================

    def create_pick(self, creator_id: str, storefront_id: str, data: Dict[str, Any]) -> Pick:
        """
        Validate and store a new pick, writing ledger entry #1.

        Args:
            creator_id: Owning creator
            storefront_id: Owning storefront
            data: Wager fields. Single picks need sport, bet_type, selection,
                odds_american, units_risked and game_start_time. Parlays
                (bet_type 'parlay') need units_risked and at least two legs.
                Optional: league, game_id, game_text, home_team, away_team,
                amount_risked (cents), unit_value (cents), scheduled_at,
                write_up, market_odds.

        Raises:
            ValidationError: Missing or malformed fields, start time not in the future
            InvalidOdds: Odds outside the accepted range
            InvalidParlay: Fewer than two legs or an invalid leg
            MissingUnitValue: No unit value supplied and no creator default
        """
        now = self.clock()
        if not creator_id or not storefront_id:
            raise ValidationError("creator_id and storefront_id are required",
                                  details={"missing_fields": _missing(
                                      {"creator_id": creator_id, "storefront_id": storefront_id},
                                      ("creator_id", "storefront_id"))})

        if data.get("bet_type") == "parlay":
            wager = self._validate_parlay(data, now)
        else:
            if data.get("legs"):
                raise ValidationError("Legs are only accepted on parlay picks", details={"field": "legs"})
            wager = self._validate_single(data, now)

        unit_value = self._resolve_unit_value(creator_id, data)
        if data.get("amount_risked") is not None:
            amount_risked = _cents("amount_risked", data["amount_risked"])
        else:
            amount_risked = _round_cents(wager["units_risked"] * unit_value)

        scheduled_at = _timestamp("scheduled_at", data["scheduled_at"]) if data.get("scheduled_at") else None
        market_odds = data.get("market_odds")
        if market_odds is not None and not isinstance(market_odds, dict):
            raise ValidationError("market_odds must be an object", details={"field": "market_odds"})

        pick_id = new_id()
        legs = wager.pop("legs")

        def operation() -> Pick:
            pick = Pick(
                id=pick_id,
                creator_id=creator_id,
                storefront_id=storefront_id,
                amount_risked=amount_risked,
                unit_value_at_post=unit_value,
                created_at=now,
                updated_at=now,
                scheduled_at=scheduled_at,
                published_at=None if scheduled_at and scheduled_at > now else now,
                is_verified=now < wager["game_start_time"],
                verification_source="system",
                status="pending",
                result="pending",
                market_odds_at_post=canonicalize(market_odds) if market_odds else None,
                write_up=data.get("write_up"),
                **wager,
            )
            pick.legs = [PickLeg(pick_id=pick_id, **leg) for leg in legs]
            self.db.add(pick)
            self.db.flush()

            self._hold_creator(creator_id)
            self.creator_stats.record_units(creator_id, pick.units_risked)
            self.ledger.record(pick, "create", now)
            return pick

        pick = self._mutate(pick_id, operation)

        picks_created_total.labels(bet_type=pick.bet_type).inc()
        logger.info(
            f"Pick created: {pick_id} by {creator_id}",
            extra={"pick_id": pick_id, "action": "create", "bet_type": pick.bet_type},
        )
        return pick

    def _validate_single(self, data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        missing = _missing(data, REQUIRED_PICK_FIELDS)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing_fields": missing},
            )

        bet_type = _bet_type(data["bet_type"], LEG_BET_TYPES)
        odds_american = _odds(data["odds_american"])
        game_start_time = _timestamp("game_start_time", data["game_start_time"])
        _future("game_start_time", game_start_time, now)

        return {
            "sport": _text(data, "sport"),
            "league": _text(data, "league", required=False),
            "game_id": _text(data, "game_id", required=False),
            "game_text": _text(data, "game_text", required=False),
            "home_team": _text(data, "home_team", required=False),
            "away_team": _text(data, "away_team", required=False),
            "bet_type": bet_type,
            "selection": _text(data, "selection"),
            "odds_american": odds_american,
            "odds_decimal": round(american_to_decimal(odds_american), DECIMAL_PLACES),
            "units_risked": _units(data["units_risked"]),
            "game_start_time": game_start_time,
            "is_parlay": False,
            "legs": [],
        }

    def _validate_parlay(self, data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        missing = _missing(data, REQUIRED_PARLAY_FIELDS)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing_fields": missing},
            )

        raw_legs = data.get("legs") or []
        if not isinstance(raw_legs, list) or len(raw_legs) < MIN_PARLAY_LEGS:
            raise InvalidParlay(
                f"A parlay requires at least {MIN_PARLAY_LEGS} legs",
                details={"leg_count": len(raw_legs) if isinstance(raw_legs, list) else 0},
            )

        legs = []
        for position, raw in enumerate(raw_legs):
            if not isinstance(raw, dict):
                raise InvalidParlay(f"Leg {position} must be an object", details={"leg": position})
            missing = _missing(raw, REQUIRED_LEG_FIELDS)
            if missing:
                raise InvalidParlay(
                    f"Leg {position} is missing required fields: {', '.join(missing)}",
                    details={"leg": position, "missing_fields": missing},
                )
            legs.append({
                "position": position,
                "sport": _text(raw, "sport"),
                "league": _text(raw, "league", required=False),
                "game_id": _text(raw, "game_id", required=False),
                "game_text": _text(raw, "game_text", required=False),
                "bet_type": _bet_type(raw["bet_type"], LEG_BET_TYPES, field=f"legs[{position}].bet_type"),
                "selection": _text(raw, "selection"),
                "odds_american": raw["odds_american"],
                "game_start_time": _timestamp(f"legs[{position}].game_start_time", raw["game_start_time"]),
                "result": "pending",
            })

        # Raises InvalidParlay naming every leg with bad odds
        combined = combine_parlay_odds([leg["odds_american"] for leg in legs])
        for leg in legs:
            leg["odds_american"] = int(leg["odds_american"])
            leg["odds_decimal"] = round(american_to_decimal(leg["odds_american"]), DECIMAL_PLACES)

        game_start_time = min(leg["game_start_time"] for leg in legs)
        _future("game_start_time", game_start_time, now)

        sports = {leg["sport"] for leg in legs}
        leagues = {leg["league"] for leg in legs}
        selection = data.get("selection") or " / ".join(leg["selection"] for leg in legs)

        return {
            "sport": sports.pop() if len(sports) == 1 else "multi",
            "league": leagues.pop() if len(leagues) == 1 else None,
            "game_id": None,
            "game_text": _text(data, "game_text", required=False),
            "home_team": None,
            "away_team": None,
            "bet_type": "parlay",
            "selection": selection,
            "odds_american": combined["american"],
            "odds_decimal": combined["decimal"],
            "units_risked": _units(data["units_risked"]),
            "game_start_time": game_start_time,
            "is_parlay": True,
            "legs": legs,
        }

    def _resolve_unit_value(self, creator_id: str, data: Dict[str, Any]) -> int:
        if data.get("unit_value") is not None:
            return _cents("unit_value", data["unit_value"])

        default = self.profiles.default_unit_value(creator_id)
        if default is None:
            raise MissingUnitValue(
                "No unit value supplied and the creator has no default unit value",
                details={"field": "unit_value", "creator_id": creator_id},
            )
        return default

    # ========================================================================
    # Update
    # ========================================================================

    def update_pick(
        self,
        pick_id: str,
        actor_id: str,
        is_admin: bool,
        changes: Dict[str, Any],
        reason: Optional[str] = None,
    ) -> Pick:
        """
        Apply field changes to a pick.

        Checks run in order: NotFound, AccessDenied, Locked, ReasonRequired,
        then field validation. A request that changes nothing writes nothing.
        Stake or price edits on a graded pick re-settle its profit.

        Raises:
            NotFound: Unknown pick
            AccessDenied: Actor is neither the owner nor an admin
            Locked: Non-admin edit at or after game start
            ReasonRequired: Admin edit of a locked pick without a reason
            ValidationError / InvalidOdds: Bad field values
        """
        def operation() -> Pick:
            now = self.clock()
            pick = self._load_for_update(pick_id)

            if actor_id != pick.creator_id and not is_admin:
                raise AccessDenied(
                    f"Actor {actor_id} may not edit pick {pick_id}",
                    details={"pick_id": pick_id, "actor_id": actor_id},
                )

            locked = is_locked(pick, now)
            if locked and not is_admin:
                pick_lock_rejections_total.inc()
                logger.warning(f"Locked edit rejected: {pick_id} by {actor_id}")
                raise Locked(
                    f"Pick {pick_id} locked at game start ({pick.game_start_time.isoformat()}); "
                    f"fields {', '.join(sorted(changes)) or '(none)'} can no longer be changed",
                    details={
                        "pick_id": pick_id,
                        "locked_fields": sorted(changes),
                        "locked_at": pick.game_start_time.isoformat(),
                    },
                )
            if locked and not (reason and reason.strip()):
                raise ReasonRequired(
                    "A reason is required to edit a pick after game start",
                    details={"field": "reason", "pick_id": pick_id},
                )

            new_values = self._validate_changes(pick, changes, now, is_admin)
            old_diff = {}
            new_diff = {}
            for name, value in new_values.items():
                if getattr(pick, name) != value:
                    old_diff[name] = getattr(pick, name)
                    new_diff[name] = value

            if not new_diff:
                return pick

            old_units = pick.units_risked
            for name, value in new_diff.items():
                setattr(pick, name, value)
            pick.updated_at = now
            if pick.status == "graded" and set(new_diff) & set(SETTLEMENT_FIELDS):
                _settle_profit(pick)

            pick.edits.append(PickEdit(
                editor_id=actor_id,
                edited_at=now,
                old_value=canonicalize(old_diff),
                new_value=canonicalize(new_diff),
                reason=reason.strip() if reason else None,
                is_admin_edit=bool(is_admin),
            ))

            if locked:
                pick.is_verified = False
                pick.flags.append(PickFlag(
                    reason=f"Edited after lock by admin {actor_id}: {reason.strip()}",
                    flagged_by=actor_id,
                    flagged_at=now,
                ))
                logger.warning(
                    f"Admin edit after lock: {pick_id} by {actor_id}",
                    extra={"pick_id": pick_id, "fields": sorted(new_diff), "reason": reason},
                )

            self._hold_creator(pick.creator_id)
            if "units_risked" in new_diff:
                self.creator_stats.replace_units(pick.creator_id, old_units, pick.units_risked)
            else:
                self.creator_stats.mark_transparency_stale(pick.creator_id)

            self.db.flush()
            self.ledger.record(pick, "edit", now)
            pick_updates_total.labels(locked=str(locked).lower()).inc()
            logger.info(
                f"Pick edited: {pick_id} ({', '.join(sorted(new_diff))})",
                extra={"pick_id": pick_id, "action": "edit", "locked": locked},
            )
            return pick

        return self._mutate(pick_id, operation)

    def _validate_changes(self, pick: Pick, changes: Dict[str, Any], now: datetime,
                          is_admin: bool) -> Dict[str, Any]:
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Fields cannot be edited: {', '.join(unknown)}",
                details={"unknown_fields": unknown, "editable_fields": list(EDITABLE_FIELDS)},
            )
        if pick.is_parlay:
            derived = sorted(set(changes) & set(PARLAY_DERIVED_FIELDS))
            if derived:
                raise ValidationError(
                    f"Fields are derived from the legs of a parlay: {', '.join(derived)}",
                    details={"derived_fields": derived},
                )

        values: Dict[str, Any] = {}
        for name in ("sport", "selection"):
            if name in changes:
                values[name] = _text(changes, name)
        for name in ("league", "game_id", "game_text", "home_team", "away_team", "write_up"):
            if name in changes:
                values[name] = _text(changes, name, required=False)
        if "bet_type" in changes:
            values["bet_type"] = _bet_type(changes["bet_type"], LEG_BET_TYPES)
        if "odds_american" in changes:
            values["odds_american"] = _odds(changes["odds_american"])
            values["odds_decimal"] = round(american_to_decimal(values["odds_american"]), DECIMAL_PLACES)
        if "units_risked" in changes:
            values["units_risked"] = _units(changes["units_risked"])
        if "amount_risked" in changes:
            values["amount_risked"] = _cents("amount_risked", changes["amount_risked"])
        elif "units_risked" in values and values["units_risked"] != pick.units_risked:
            values["amount_risked"] = _round_cents(values["units_risked"] * pick.unit_value_at_post)
        if "game_start_time" in changes:
            values["game_start_time"] = _timestamp("game_start_time", changes["game_start_time"])
            if not is_admin and values["game_start_time"] != pick.game_start_time:
                _future("game_start_time", values["game_start_time"], now)
        if "scheduled_at" in changes:
            values["scheduled_at"] = (
                _timestamp("scheduled_at", changes["scheduled_at"]) if changes["scheduled_at"] else None
            )
        return values

    # ========================================================================
    # Delete
    # ========================================================================

    def delete_pick(self, pick_id: str, actor_id: str) -> Dict[str, Any]:
        """
        Delete a pick. Only the owning creator may delete; no time lock applies.

        A final 'delete' ledger entry is appended first, so the chain stays
        verifiable after the pick row is gone.
        """
        def operation() -> Dict[str, Any]:
            now = self.clock()
            pick = self._load_for_update(pick_id)
            if actor_id != pick.creator_id:
                raise AccessDenied(
                    f"Only the owning creator may delete pick {pick_id}",
                    details={"pick_id": pick_id, "actor_id": actor_id},
                )

            entry = self.ledger.record(pick, "delete", now)
            self._hold_creator(pick.creator_id)
            self.creator_stats.remove_units(pick.creator_id, pick.units_risked)
            self.picks.delete(pick)
            self.db.flush()
            return {"pick_id": pick_id, "deleted": True, "ledger_sequence": entry.sequence}

        ack = self._mutate(pick_id, operation)
        logger.info(f"Pick deleted: {pick_id} by {actor_id}", extra={"pick_id": pick_id, "action": "delete"})
        return ack

    # ========================================================================
    # Grade
    # ========================================================================

    def grade_pick(
        self,
        pick_id: str,
        result: str,
        leg_results: Optional[Dict[int, str]] = None,
        closing_odds: Optional[Dict[str, Any]] = None,
        clv_score: Optional[float] = None,
        evidence: Optional[Dict[str, Any]] = None,
        verification_source: Optional[str] = None,
    ) -> GradeOutcome:
        """
        Assign a final result and profit. Called by the grading job.

        Idempotent: a graded pick is returned unchanged with applied=False
        and no ledger entry. is_verified is never re-derived here.

        Raises:
            NotFound: Unknown pick
            ValidationError: Unknown result, disputed pick, or game not started
        """
        if result not in FINAL_RESULTS:
            raise ValidationError(
                f"result must be one of {', '.join(FINAL_RESULTS)}",
                details={"field": "result", "value": result},
            )

        def operation() -> GradeOutcome:
            now = self.clock()
            pick = self._load_for_update(pick_id)

            if pick.status == "graded":
                return GradeOutcome(pick.id, pick.result, pick.profit_units, pick.profit_amount, applied=False)
            if pick.status == "disputed":
                raise ValidationError(f"Pick {pick_id} is disputed", details={"pick_id": pick_id})
            if not is_locked(pick, now):
                raise ValidationError(
                    f"Pick {pick_id} cannot be graded before game start",
                    details={"pick_id": pick_id, "game_start_time": pick.game_start_time.isoformat()},
                )

            pick.result = result
            _settle_profit(pick)
            pick.status = "graded"
            pick.resolved_at = now
            pick.updated_at = now
            if leg_results:
                for leg in pick.legs:
                    if leg.position in leg_results:
                        leg.result = leg_results[leg.position]
            if closing_odds is not None:
                pick.closing_odds = canonicalize(closing_odds)
            if clv_score is not None:
                pick.clv_score = clv_score
            if evidence is not None:
                pick.verification_evidence = canonicalize(evidence)
            if verification_source:
                pick.verification_source = verification_source

            self._hold_creator(pick.creator_id)
            self.creator_stats.mark_transparency_stale(pick.creator_id)
            self.db.flush()
            self.ledger.record(pick, "grade", now)
            return GradeOutcome(pick.id, pick.result, pick.profit_units, pick.profit_amount, applied=True)

        outcome = self._mutate(pick_id, operation)
        if outcome.applied:
            logger.info(
                f"Pick graded: {pick_id} -> {outcome.result} ({outcome.profit_units} units)",
                extra={"pick_id": pick_id, "action": "grade"},
            )
        return outcome

    # ========================================================================
    # Flag / dispute
    # ========================================================================

    def flag_pick(self, pick_id: str, actor_id: str, is_admin: bool, reason: Optional[str]) -> Pick:
        """Append an admin flag. Recorded in the ledger as 'flag'."""
        if not is_admin:
            raise AccessDenied("Only admins may flag picks", details={"actor_id": actor_id})
        if not (reason and reason.strip()):
            raise ReasonRequired("A reason is required to flag a pick", details={"field": "reason"})

        def operation() -> Pick:
            now = self.clock()
            pick = self._load_for_update(pick_id)
            pick.flags.append(PickFlag(reason=reason.strip(), flagged_by=actor_id, flagged_at=now))
            pick.updated_at = now
            self.db.flush()
            self.ledger.record(pick, "flag", now)
            return pick

        pick = self._mutate(pick_id, operation)
        logger.warning(f"Pick flagged: {pick_id} by {actor_id}: {reason}", extra={"pick_id": pick_id})
        return pick

    def mark_disputed(self, pick_id: str, actor_id: str, is_admin: bool, reason: Optional[str] = None) -> Pick:
        """
        Move a pick that has not been graded to 'disputed'.

        Disputed picks are left out of automatic grading. Marking an already
        disputed pick again is a no-op.
        """
        if not is_admin:
            raise AccessDenied("Only admins may mark picks disputed", details={"actor_id": actor_id})

        def operation() -> Pick:
            now = self.clock()
            pick = self._load_for_update(pick_id)
            if pick.status == "disputed":
                return pick
            if pick.status == "graded":
                raise ValidationError(
                    f"Pick {pick_id} is already graded",
                    details={"pick_id": pick_id, "status": pick.status},
                )

            pick.status = "disputed"
            pick.updated_at = now
            if reason and reason.strip():
                pick.flags.append(PickFlag(reason=f"Disputed: {reason.strip()}", flagged_by=actor_id, flagged_at=now))
            self.db.flush()
            self.ledger.record(pick, "dispute", now)
            return pick

        pick = self._mutate(pick_id, operation)
        logger.info(f"Pick disputed: {pick_id} by {actor_id}", extra={"pick_id": pick_id, "action": "dispute"})
        return pick
