"""
Creator transparency score (0-100).

Five weighted components:

    verified_rate     0.40  verified picks / total picks
    win_consistency   0.25  wins / (wins + losses) among graded picks
    clv               0.15  average CLV normalized from [-0.5, 0.5] to [0, 1]
    edit_penalty      0.10  1 - picks with a post-lock non-admin edit / total picks
    complaint_score   0.10  1 - min(complaints / subscribers, 1)

score = round(sum(component * weight) * 100), clamped to [0, 100]. The
breakdown reports each component's weighted contribution in points.

Scores are cached on creator_stats and reused inside the freshness window
unless a caller forces a recalculation or a pick change marked them stale.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import func, case, and_
from sqlalchemy.orm import Session
from tenacity import retry, stop_after_attempt, wait_random_exponential, retry_if_exception_type

from pick_integrity.core.config import settings
from pick_integrity.core.errors import WriteConflictError
from pick_integrity.core.locks import resource_locks, creator_lock_key
from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import transparency_recalculations_total
from pick_integrity.models import Pick, PickEdit
from pick_integrity.repositories import CreatorProfileRepository, CreatorStatsRepository
from pick_integrity.utils.timezone import utc_now

logger = get_logger(__name__)

WEIGHTS = {
    "verified_rate": 0.40,
    "win_consistency": 0.25,
    "clv": 0.15,
    "edit_penalty": 0.10,
    "complaint_score": 0.10,
}

WRITE_RETRY_ATTEMPTS = 3

CLV_FLOOR = -0.5
CLV_RANGE = 1.0


def normalize_clv(avg_clv: float) -> float:
    return max(0.0, min(1.0, (avg_clv - CLV_FLOOR) / CLV_RANGE))


def compute_transparency(
    total_picks: int,
    verified_picks: int,
    wins: int,
    losses: int,
    avg_clv: Optional[float],
    late_edited_picks: int,
    subscriber_count: int,
    complaint_count: int,
) -> Dict[str, Any]:
    """
    Combine raw creator counts into a score and breakdown.

    Examples:
        >>> compute_transparency(0, 0, 0, 0, None, 0, 0, 0)["score"]
        0
        >>> compute_transparency(10, 10, 6, 0, None, 0, 5, 0)["score"]
        85
    """
    if total_picks == 0:
        return {"score": 0, "breakdown": {name: 0.0 for name in WEIGHTS}}

    complaint_rate = complaint_count / subscriber_count if subscriber_count > 0 else 0.0
    components = {
        "verified_rate": verified_picks / total_picks,
        "win_consistency": wins / (wins + losses) if wins + losses else 0.0,
        "clv": normalize_clv(avg_clv) if avg_clv is not None else 0.0,
        "edit_penalty": 1 - late_edited_picks / total_picks,
        "complaint_score": 1 - min(complaint_rate, 1.0),
    }

    weighted = {name: value * WEIGHTS[name] for name, value in components.items()}
    raw = sum(weighted.values()) * 100
    score = max(0, min(100, int(math.floor(raw + 0.5))))

    return {
        "score": score,
        "breakdown": {name: round(points * 100, 2) for name, points in weighted.items()},
    }


class TransparencyService:
    """Compute and cache transparency scores."""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utc_now,
        freshness_hours: Optional[int] = None,
    ):
        self.db = db
        self.clock = clock
        self.freshness = timedelta(
            hours=settings.TRANSPARENCY_FRESHNESS_HOURS if freshness_hours is None else freshness_hours
        )
        self.profiles = CreatorProfileRepository(db)
        self.stats = CreatorStatsRepository(db)

    def get_score(self, creator_id: str, force_recalc: bool = False) -> Dict[str, Any]:
        """
        Cached transparency score for a creator, recomputing when needed.

        Recomputes when forced, when no score exists, when the cached score
        is stale, or when it is older than the freshness window.
        """
        now = self.clock()
        stats = self.stats.find_by_id(creator_id)

        if (
            not force_recalc
            and stats is not None
            and stats.transparency_score is not None
            and not stats.transparency_stale
            and stats.transparency_computed_at is not None
            and now - stats.transparency_computed_at < self.freshness
        ):
            return self._payload(creator_id, stats.transparency_score, stats.transparency_breakdown,
                                 stats.transparency_computed_at, cached=True)

        return self.recalculate(creator_id)

    @retry(
        stop=stop_after_attempt(WRITE_RETRY_ATTEMPTS),
        wait=wait_random_exponential(multiplier=0.05, max=0.5),
        retry=retry_if_exception_type(WriteConflictError),
        reraise=True,
    )
    def recalculate(self, creator_id: str) -> Dict[str, Any]:
        """Recompute from pick history, persist and commit."""
        now = self.clock()
        with resource_locks.hold(creator_lock_key(creator_id)):
            try:
                stats = self.stats.get_or_create(creator_id, now)
                inputs = self._gather_inputs(creator_id)
                result = compute_transparency(**inputs)

                stats.transparency_score = result["score"]
                stats.transparency_breakdown = result["breakdown"]
                stats.transparency_computed_at = now
                stats.transparency_stale = False
                stats.updated_at = now
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        transparency_recalculations_total.inc()
        logger.info(f"Transparency score for {creator_id}: {result['score']}")
        payload = self._payload(creator_id, result["score"], result["breakdown"], now, cached=False)
        payload["details"] = inputs
        return payload

    def _gather_inputs(self, creator_id: str) -> Dict[str, Any]:
        row = (
            self.db.query(
                func.count(Pick.id).label("total_picks"),
                func.sum(case((Pick.is_verified.is_(True), 1), else_=0)).label("verified_picks"),
                func.sum(case((and_(Pick.status == "graded", Pick.result == "win"), 1), else_=0)).label("wins"),
                func.sum(case((and_(Pick.status == "graded", Pick.result == "loss"), 1), else_=0)).label("losses"),
                func.avg(Pick.clv_score).label("avg_clv"),
            )
            .filter(Pick.creator_id == creator_id)
            .one()
        )

        late_edited_picks = (
            self.db.query(func.count(func.distinct(PickEdit.pick_id)))
            .join(Pick, Pick.id == PickEdit.pick_id)
            .filter(
                Pick.creator_id == creator_id,
                PickEdit.is_admin_edit.is_(False),
                PickEdit.edited_at >= Pick.game_start_time,
            )
            .scalar()
        ) or 0

        profile = self.profiles.find_by_id(creator_id)

        return {
            "total_picks": int(row.total_picks or 0),
            "verified_picks": int(row.verified_picks or 0),
            "wins": int(row.wins or 0),
            "losses": int(row.losses or 0),
            "avg_clv": float(row.avg_clv) if row.avg_clv is not None else None,
            "late_edited_picks": int(late_edited_picks),
            "subscriber_count": profile.subscriber_count if profile else 0,
            "complaint_count": profile.complaint_count if profile else 0,
        }

    @staticmethod
    def _payload(creator_id: str, score: int, breakdown: Dict[str, Any], computed_at: datetime,
                 cached: bool) -> Dict[str, Any]:
        return {
            "creator_id": creator_id,
            "score": score,
            "breakdown": breakdown,
            "computed_at": computed_at.isoformat(),
            "cached": cached,
        }
