"""
Fraud heuristics for posted picks.

Four independent detectors each return a finding dict:

- outlier_units:     stake far above the creator's usual stake
- suspicious_timing: posted within seconds of game start
- odds_mismatch:     posted price far from the market price at post time
- edit_after_lock:   a non-admin edit recorded at or after game start

Findings are combined into an additive score using the weights of a
FraudPolicy, which is passed in rather than read from globals. Flags are
informational: nothing here blocks a pick, it only marks it for review or
excludes it from leaderboards.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from pick_integrity.core.config import settings
from pick_integrity.core.errors import NotFound
from pick_integrity.core.locks import resource_locks
from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import fraud_flags_total
from pick_integrity.models import Pick, FraudAssessment
from pick_integrity.repositories import PickRepository
from pick_integrity.services.creator_stats_service import CreatorStatsService, UnitsBaseline
from pick_integrity.services.markets import select_market_price
from pick_integrity.services.odds_math import american_to_decimal
from pick_integrity.utils.timezone import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class FraudPolicy:
    """Detector thresholds and score weights."""
    outlier_sigma: float = 4.0
    outlier_medium_z: float = 5.0
    outlier_high_z: float = 6.0
    min_history: int = 2
    timing_window_seconds: int = 60
    timing_pattern_count: int = 3
    recent_picks: int = 20
    odds_mismatch_percent: float = 10.0
    low_weight: int = 1
    medium_weight: int = 2
    high_weight: int = 3
    odds_mismatch_weight: int = 2
    edit_after_lock_weight: int = 5
    flag_threshold: int = 3
    exclude_threshold: int = 5

    @classmethod
    def from_settings(cls, config=None) -> "FraudPolicy":
        config = config or settings
        return cls(
            outlier_sigma=config.FRAUD_OUTLIER_SIGMA,
            outlier_medium_z=config.FRAUD_OUTLIER_MEDIUM_Z,
            outlier_high_z=config.FRAUD_OUTLIER_HIGH_Z,
            min_history=config.FRAUD_MIN_HISTORY,
            timing_window_seconds=config.FRAUD_TIMING_WINDOW_SECONDS,
            timing_pattern_count=config.FRAUD_TIMING_PATTERN_COUNT,
            recent_picks=config.FRAUD_RECENT_PICKS,
            odds_mismatch_percent=config.FRAUD_ODDS_MISMATCH_PERCENT,
            odds_mismatch_weight=config.FRAUD_ODDS_MISMATCH_WEIGHT,
            edit_after_lock_weight=config.FRAUD_EDIT_AFTER_LOCK_WEIGHT,
            flag_threshold=config.FRAUD_FLAG_THRESHOLD,
            exclude_threshold=config.FRAUD_EXCLUDE_THRESHOLD,
        )

    def severity_weight(self, severity: str) -> int:
        return {"low": self.low_weight, "medium": self.medium_weight, "high": self.high_weight}[severity]


# ============================================================================
# DETECTORS
# ============================================================================

def detect_outlier_units(units_risked: float, baseline: UnitsBaseline, policy: FraudPolicy) -> Dict[str, Any]:
    """Flag a stake above mean + N sigma of the creator's history."""
    finding = {"is_outlier": False, "severity": None, "z_score": None, "reason": None}

    if baseline.count < policy.min_history or not baseline.std_dev:
        return finding

    threshold = baseline.mean + policy.outlier_sigma * baseline.std_dev
    if units_risked <= threshold:
        return finding

    z_score = (units_risked - baseline.mean) / baseline.std_dev
    if z_score > policy.outlier_high_z:
        severity = "high"
    elif z_score > policy.outlier_medium_z:
        severity = "medium"
    else:
        severity = "low"

    return {
        "is_outlier": True,
        "severity": severity,
        "z_score": round(z_score, 2),
        "reason": (
            f"Units risked ({units_risked}) exceeds normal range "
            f"(mean: {baseline.mean:.2f}, threshold: {threshold:.2f})"
        ),
    }


def _posted_within_window(pick, window_seconds: int) -> bool:
    lead = (pick.game_start_time - pick.created_at).total_seconds()
    return 0 <= lead < window_seconds


def detect_suspicious_timing(pick, recent_picks: Sequence, policy: FraudPolicy) -> Dict[str, Any]:
    """Flag a pick posted less than the timing window before start."""
    if not _posted_within_window(pick, policy.timing_window_seconds):
        return {"is_suspicious": False, "pattern": None, "suspicious_count": 0, "reason": None}

    suspicious_count = sum(
        1 for other in recent_picks
        if other.id != pick.id and _posted_within_window(other, policy.timing_window_seconds)
    )
    pattern = "frequent" if suspicious_count > policy.timing_pattern_count else "occasional"
    lead = (pick.game_start_time - pick.created_at).total_seconds()

    return {
        "is_suspicious": True,
        "pattern": pattern,
        "suspicious_count": suspicious_count,
        "reason": f"Posted {lead:.0f} seconds before game start",
    }


def detect_odds_mismatch(
    pick,
    market_lines: Optional[Dict[str, Any]],
    policy: FraudPolicy,
    home_team: Optional[str] = None,
    away_team: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Flag posted odds more than the policy percentage away from the market.

    market_lines has the provider shape {"moneyline": {"home", "away"},
    "spread": {"home", "away", "line"}, "total": {"over", "under", "line"}}.
    Team names map a moneyline or spread selection onto a side; without
    them only totals can be matched.
    """
    finding = {"is_mismatch": False, "difference_percent": None, "market_odds_american": None, "reason": None}

    if pick.is_parlay or not market_lines:
        return finding

    price = select_market_price(
        market_lines,
        pick.bet_type,
        pick.selection,
        home_team,
        away_team,
    )
    if price is None:
        return finding

    market_decimal = american_to_decimal(price)
    difference = abs(pick.odds_decimal - market_decimal) / market_decimal * 100
    finding["difference_percent"] = round(difference, 2)
    finding["market_odds_american"] = price

    if difference > policy.odds_mismatch_percent:
        finding["is_mismatch"] = True
        finding["reason"] = (
            f"Posted odds ({pick.odds_decimal:.2f}) differ {difference:.1f}% "
            f"from market ({market_decimal:.2f})"
        )
    return finding


def detect_edit_after_lock(pick) -> Dict[str, Any]:
    """Flag non-admin edits recorded at or after game start."""
    late_edits = [
        edit for edit in pick.edits
        if not edit.is_admin_edit and edit.edited_at >= pick.game_start_time
    ]
    if not late_edits:
        return {"was_edited_after_lock": False, "edit_count": 0, "reason": None}
    return {
        "was_edited_after_lock": True,
        "edit_count": len(late_edits),
        "reason": f"Pick was edited {len(late_edits)} time(s) after game start",
    }


def run_fraud_checks(
    pick,
    baseline: UnitsBaseline,
    recent_picks: Sequence,
    market_lines: Optional[Dict[str, Any]],
    policy: FraudPolicy,
    home_team: Optional[str] = None,
    away_team: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Run every detector and combine the findings.

    Returns:
        Dict with score, should_flag, exclude_from_leaderboards, flags
        (list of {type, severity, reason}) and checks (raw findings)
    """
    checks = {
        "outlier_units": detect_outlier_units(pick.units_risked, baseline, policy),
        "suspicious_timing": detect_suspicious_timing(pick, recent_picks, policy),
        "odds_mismatch": detect_odds_mismatch(pick, market_lines, policy, home_team, away_team),
        "edit_after_lock": detect_edit_after_lock(pick),
    }

    score = 0
    flags: List[Dict[str, Any]] = []

    outlier = checks["outlier_units"]
    if outlier["is_outlier"]:
        score += policy.severity_weight(outlier["severity"])
        flags.append({"type": "outlier_units", "severity": outlier["severity"], "reason": outlier["reason"]})

    timing = checks["suspicious_timing"]
    if timing["is_suspicious"]:
        severity = "high" if timing["pattern"] == "frequent" else "low"
        score += policy.severity_weight(severity)
        flags.append({"type": "suspicious_timing", "severity": severity, "reason": timing["reason"]})

    mismatch = checks["odds_mismatch"]
    if mismatch["is_mismatch"]:
        score += policy.odds_mismatch_weight
        flags.append({"type": "odds_mismatch", "severity": None, "reason": mismatch["reason"]})

    late_edit = checks["edit_after_lock"]
    if late_edit["was_edited_after_lock"]:
        score += policy.edit_after_lock_weight
        flags.append({"type": "edit_after_lock", "severity": None, "reason": late_edit["reason"]})

    return {
        "score": score,
        "should_flag": score >= policy.flag_threshold,
        "exclude_from_leaderboards": score >= policy.exclude_threshold,
        "flags": flags,
        "checks": checks,
    }


# ============================================================================
# SERVICE
# ============================================================================

class FraudService:
    """Assess picks and persist the latest assessment per pick."""

    def __init__(
        self,
        db: Session,
        policy: Optional[FraudPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.policy = policy or FraudPolicy.from_settings()
        self.clock = clock
        self.picks = PickRepository(db)
        self.creator_stats = CreatorStatsService(db, clock=clock)

    def evaluate(
        self,
        pick: Pick,
        market_lines: Optional[Dict[str, Any]] = None,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Run the detectors for a pick without persisting anything.

        Market lines and team names default to those captured on the pick.
        """
        baseline = self.creator_stats.units_baseline(pick.creator_id, exclude_units=pick.units_risked)
        recent = self.picks.find_recent_by_creator(
            pick.creator_id, limit=self.policy.recent_picks, exclude_id=pick.id
        )
        lines = market_lines if market_lines is not None else pick.market_odds_at_post
        return run_fraud_checks(
            pick,
            baseline,
            recent,
            lines,
            self.policy,
            home_team=home_team or pick.home_team,
            away_team=away_team or pick.away_team,
        )

    def assess_pick(
        self,
        pick_id: str,
        market_lines: Optional[Dict[str, Any]] = None,
        home_team: Optional[str] = None,
        away_team: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Evaluate a pick and store the result in fraud_assessments.

        Assessment rows are not part of the pick's wager state, so this does
        not append a ledger entry.

        Raises:
            NotFound: If the pick does not exist
        """
        with resource_locks.hold(pick_id):
            pick = self.picks.find_by_id(pick_id)
            if pick is None:
                raise NotFound(f"Pick {pick_id} not found", details={"pick_id": pick_id})

            report = self.evaluate(pick, market_lines, home_team, away_team)
            now = self.clock()

            assessment = pick.fraud_assessment
            if assessment is None:
                assessment = FraudAssessment(pick_id=pick.id, creator_id=pick.creator_id)
                pick.fraud_assessment = assessment
            assessment.score = report["score"]
            assessment.flags = report["flags"]
            assessment.checks = report["checks"]
            assessment.should_flag = report["should_flag"]
            assessment.exclude_from_leaderboards = report["exclude_from_leaderboards"]
            assessment.assessed_at = now

            try:
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        for flag in report["flags"]:
            fraud_flags_total.labels(flag=flag["type"]).inc()
        if report["should_flag"]:
            logger.warning(
                f"Pick {pick_id} flagged by fraud heuristics (score {report['score']})",
                extra={"pick_id": pick_id, "flags": [f["type"] for f in report["flags"]]},
            )

        report["pick_id"] = pick_id
        report["assessed_at"] = now.isoformat()
        return report
