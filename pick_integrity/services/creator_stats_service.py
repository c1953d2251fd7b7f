"""
Per-creator aggregates.

Two concerns live here:

1. Running mean/variance of units_risked (Welford's algorithm), updated on
   every create, stake edit and delete so the fraud outlier baseline never
   needs a full history scan. reconcile() rebuilds them from a rescan.
2. GetCreatorStats: win/loss, units and ROI figures computed with SQL
   aggregates. Picks excluded from leaderboards by the fraud heuristics are
   left out of the performance figures and reported as excluded_picks.
"""
import math
from dataclasses import dataclass
from typing import Callable, Dict, Any, Optional, Tuple
from datetime import datetime

from sqlalchemy import func, case, and_
from sqlalchemy.orm import Session

from pick_integrity.core.logging import get_logger
from pick_integrity.models import Pick, FraudAssessment, CreatorStats
from pick_integrity.repositories import PickRepository, CreatorStatsRepository
from pick_integrity.utils.timezone import utc_now

logger = get_logger(__name__)

SETTLED_RESULTS = ("win", "loss", "push")


# ============================================================================
# WELFORD AGGREGATES
# ============================================================================

def welford_add(count: int, mean: float, m2: float, value: float) -> Tuple[int, float, float]:
    """Fold one observation into (count, mean, M2)."""
    count += 1
    delta = value - mean
    mean += delta / count
    m2 += delta * (value - mean)
    return count, mean, m2


def welford_remove(count: int, mean: float, m2: float, value: float) -> Tuple[int, float, float]:
    """Remove one previously added observation from (count, mean, M2)."""
    if count <= 1:
        return 0, 0.0, 0.0
    new_count = count - 1
    new_mean = (count * mean - value) / new_count
    new_m2 = m2 - (value - mean) * (value - new_mean)
    return new_count, new_mean, max(new_m2, 0.0)


@dataclass
class UnitsBaseline:
    """A creator's historical units_risked distribution (population statistics)."""
    count: int
    mean: Optional[float]
    std_dev: Optional[float]

    @classmethod
    def from_aggregates(cls, count: int, mean: float, m2: float) -> "UnitsBaseline":
        if count == 0:
            return cls(count=0, mean=None, std_dev=None)
        return cls(count=count, mean=mean, std_dev=math.sqrt(m2 / count))


class CreatorStatsService:
    """
    Maintain creator aggregates and report creator performance.

    The incremental updates load the aggregates row FOR UPDATE. Callers hold
    resource_locks on creator_lock_key(creator_id) until they commit.
    """

    def __init__(self, db: Session, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.stats = CreatorStatsRepository(db)
        self.picks = PickRepository(db)

    # ========================================================================
    # Incremental updates (caller commits)
    # ========================================================================

    def record_units(self, creator_id: str, units: float) -> CreatorStats:
        """Add a pick's stake to the creator's running aggregates."""
        stats = self.stats.get_or_create(creator_id, self.clock())
        stats.units_count, stats.units_mean, stats.units_m2 = welford_add(
            stats.units_count, stats.units_mean, stats.units_m2, units
        )
        stats.transparency_stale = True
        stats.updated_at = self.clock()
        return stats

    def remove_units(self, creator_id: str, units: float) -> CreatorStats:
        """Remove a pick's stake from the creator's running aggregates."""
        stats = self.stats.get_or_create(creator_id, self.clock())
        stats.units_count, stats.units_mean, stats.units_m2 = welford_remove(
            stats.units_count, stats.units_mean, stats.units_m2, units
        )
        stats.transparency_stale = True
        stats.updated_at = self.clock()
        return stats

    def replace_units(self, creator_id: str, old_units: float, new_units: float) -> CreatorStats:
        stats = self.stats.get_or_create(creator_id, self.clock())
        aggregates = welford_remove(stats.units_count, stats.units_mean, stats.units_m2, old_units)
        stats.units_count, stats.units_mean, stats.units_m2 = welford_add(*aggregates, new_units)
        stats.transparency_stale = True
        stats.updated_at = self.clock()
        return stats

    def mark_transparency_stale(self, creator_id: str) -> None:
        stats = self.stats.get_or_create(creator_id, self.clock())
        stats.transparency_stale = True
        stats.updated_at = self.clock()

    def units_baseline(self, creator_id: str, exclude_units: Optional[float] = None) -> UnitsBaseline:
        """
        Baseline distribution of a creator's stakes.

        Args:
            creator_id: Creator ID
            exclude_units: Stake of the pick under assessment, removed from
                the aggregates so a pick is never compared against itself
        """
        stats = self.stats.find_by_id(creator_id)
        if stats is None:
            return UnitsBaseline(count=0, mean=None, std_dev=None)

        count, mean, m2 = stats.units_count, stats.units_mean, stats.units_m2
        if exclude_units is not None and count > 0:
            count, mean, m2 = welford_remove(count, mean, m2, exclude_units)
        return UnitsBaseline.from_aggregates(count, mean, m2)

    def reconcile(self, creator_id: str) -> CreatorStats:
        """Rebuild a creator's aggregates from a full rescan of their picks."""
        stats = self.stats.get_or_create(creator_id, self.clock())
        count, mean, m2 = 0, 0.0, 0.0
        for pick in self.picks.find_by_creator(creator_id):
            count, mean, m2 = welford_add(count, mean, m2, pick.units_risked)

        if stats.units_count != count or abs(stats.units_mean - mean) > 1e-9:
            logger.warning(
                f"Creator {creator_id} aggregates drifted "
                f"(count {stats.units_count} -> {count}); rebuilt from picks"
            )

        stats.units_count, stats.units_mean, stats.units_m2 = count, mean, m2
        stats.updated_at = self.clock()
        return stats

    # ========================================================================
    # GetCreatorStats
    # ========================================================================

    def get_creator_stats(self, creator_id: str) -> Dict[str, Any]:
        """
        Performance summary for a creator.

        Returns:
            Dict with total_picks, verified_picks, graded_picks, wins, losses,
            pushes, units_risked, units_won, win_rate (%), roi (%) and
            excluded_picks
        """
        excluded = func.coalesce(FraudAssessment.exclude_from_leaderboards, False)
        counted = and_(Pick.status == "graded", Pick.result.in_(SETTLED_RESULTS), excluded.is_(False))

        row = (
            self.db.query(
                func.count(Pick.id).label("total_picks"),
                func.sum(case((Pick.is_verified.is_(True), 1), else_=0)).label("verified_picks"),
                func.sum(case((Pick.status == "graded", 1), else_=0)).label("graded_picks"),
                func.sum(case((and_(counted, Pick.result == "win"), 1), else_=0)).label("wins"),
                func.sum(case((and_(counted, Pick.result == "loss"), 1), else_=0)).label("losses"),
                func.sum(case((and_(counted, Pick.result == "push"), 1), else_=0)).label("pushes"),
                func.sum(case((counted, Pick.units_risked), else_=0.0)).label("units_risked"),
                func.sum(case((counted, func.coalesce(Pick.profit_units, 0.0)), else_=0.0)).label("units_won"),
                func.sum(case((excluded.is_(True), 1), else_=0)).label("excluded_picks"),
            )
            .outerjoin(FraudAssessment, FraudAssessment.pick_id == Pick.id)
            .filter(Pick.creator_id == creator_id)
            .one()
        )

        wins = int(row.wins or 0)
        losses = int(row.losses or 0)
        units_risked = float(row.units_risked or 0.0)
        units_won = float(row.units_won or 0.0)

        return {
            "creator_id": creator_id,
            "total_picks": int(row.total_picks or 0),
            "verified_picks": int(row.verified_picks or 0),
            "graded_picks": int(row.graded_picks or 0),
            "wins": wins,
            "losses": losses,
            "pushes": int(row.pushes or 0),
            "units_risked": round(units_risked, 2),
            "units_won": round(units_won, 2),
            "win_rate": round(wins / (wins + losses) * 100, 2) if wins + losses else 0.0,
            "roi": round(units_won / units_risked * 100, 2) if units_risked > 0 else 0.0,
            "excluded_picks": int(row.excluded_picks or 0),
        }
