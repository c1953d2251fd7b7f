"""
Grading job: settle picks whose games have finished.

Flow for one run:
1. Collect candidate game ids: finished games reported by the provider in
   the window, plus game ids referenced by ungraded picks that started in it
2. Fetch each game's outcome from the sports data provider
3. For every ungraded pick on those games (parlays included), resolve the
   result, verify the pick's ledger chain, grade it, then run the fraud
   heuristics. Grading marks the creator's transparency score stale.

A failure on one pick never aborts the batch; it shows up as 'errored' in
the summary. Re-running is safe because grading a graded pick is a no-op.

Provider calls run in the event loop. Database work for each pick runs in a
worker thread with its own session, bounded by a semaphore.
"""
import asyncio
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from pick_integrity.core.config import settings
from pick_integrity.core.database import SessionLocal
from pick_integrity.core.errors import ChainInvalid, PickIntegrityError, ReasonRequired, ValidationError
from pick_integrity.core.logging import get_logger
from pick_integrity.core.locks import resource_locks, creator_lock_key
from pick_integrity.core.metrics import grading_outcomes_total, grading_job_duration_seconds
from pick_integrity.models import Pick
from pick_integrity.repositories import PickRepository, CreatorStatsRepository
from pick_integrity.services.creator_stats_service import CreatorStatsService
from pick_integrity.services.fraud_service import FraudPolicy, FraudService
from pick_integrity.services.ledger_service import LedgerService
from pick_integrity.services.markets import (
    AUTO_GRADED_BET_TYPES,
    calculate_clv,
    combine_leg_results,
    resolve_selection,
)
from pick_integrity.services.pick_lifecycle import PickLifecycleService, FINAL_RESULTS
from pick_integrity.services.sports_data import GameOutcome, SportsDataProvider, HttpSportsDataClient
from pick_integrity.services.transparency_service import TransparencyService
from pick_integrity.utils.timezone import utc_now, default_grading_window

logger = get_logger(__name__)


@dataclass
class PickGradeResult:
    """Outcome of one pick in a grading run."""
    pick_id: str
    outcome: str  # graded, skipped, errored
    result: Optional[str] = None
    reason: Optional[str] = None
    fraud_score: Optional[int] = None


@dataclass
class _Decision:
    result: Optional[str]
    reason: str
    leg_results: Optional[Dict[int, str]] = None
    evidence: Optional[Dict[str, Any]] = None
    closing_odds: Optional[Dict[str, Any]] = None
    clv_score: Optional[float] = None


def _settled(game: Optional[GameOutcome]) -> bool:
    return game is not None and (game.is_final or game.is_void)


def decide_result(pick: Pick, outcomes: Dict[str, Optional[GameOutcome]]) -> _Decision:
    """
    Work out a pick's result from game outcomes.

    Returns a decision with result None when the pick cannot be graded yet
    (game not final, or a bet type that needs manual grading).
    """
    if not pick.is_parlay:
        if pick.bet_type not in AUTO_GRADED_BET_TYPES:
            return _Decision(None, "manual_grading_required")
        game = outcomes.get(pick.game_id)
        if not _settled(game):
            return _Decision(None, "game_not_final")

        result, reason = resolve_selection(pick.bet_type, pick.selection, game)
        evidence = game.evidence()
        evidence["reason"] = reason
        return _Decision(
            result,
            reason,
            evidence=evidence,
            closing_odds=game.closing_lines,
            clv_score=calculate_clv(
                pick.bet_type, pick.selection, pick.odds_decimal,
                game.closing_lines, game.home_team, game.away_team,
            ),
        )

    leg_results: Dict[int, str] = {}
    leg_evidence = []
    for leg in pick.legs:
        if leg.bet_type not in AUTO_GRADED_BET_TYPES:
            return _Decision(None, "manual_grading_required")
        game = outcomes.get(leg.game_id) if leg.game_id else None
        if not _settled(game):
            leg_results[leg.position] = "pending"
            continue
        result, reason = resolve_selection(leg.bet_type, leg.selection, game)
        leg_results[leg.position] = result
        leg_evidence.append({"position": leg.position, "result": result, "reason": reason, **game.evidence()})

    combined = combine_leg_results(leg_results.values())
    if combined == "pending":
        return _Decision(None, "game_not_final")

    # Legs still pending once the parlay is decided stay pending
    return _Decision(
        combined,
        f"Parlay legs: {', '.join(leg_results[p] for p in sorted(leg_results))}",
        leg_results={p: r for p, r in leg_results.items() if r != "pending"},
        evidence={"legs": leg_evidence},
    )


class GradingJob:
    """
    Batch grader for finished games.

    Usage:
        job = GradingJob(provider=HttpSportsDataClient())
        summary = await job.run()                 # default lookback window
        summary = await job.run(game_id="401585")  # one game
    """

    def __init__(
        self,
        provider: Optional[SportsDataProvider] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        clock: Callable[[], datetime] = utc_now,
        policy: Optional[FraudPolicy] = None,
        max_concurrency: Optional[int] = None,
    ):
        self.provider = provider or HttpSportsDataClient()
        self.session_factory = session_factory
        self.clock = clock
        self.policy = policy or FraudPolicy.from_settings()
        self.max_concurrency = max_concurrency or settings.GRADING_MAX_CONCURRENCY

    # ========================================================================
    # Batch run
    # ========================================================================

    async def run(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        game_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Grade every ungraded pick whose game finished in a window, or on one game.

        Args:
            start: Window start (defaults to GRADING_LOOKBACK_HOURS ago)
            end: Window end (defaults to now)
            game_id: Grade a single game instead of a window
            timeout: Seconds after which no new picks are started; picks
                already in flight finish and the rest are skipped

        Returns:
            Dict with graded/skipped/errored counts and per-pick results
        """
        started = time.monotonic()
        timeout = settings.GRADING_TIMEOUT_SECONDS if timeout is None else timeout
        deadline = started + timeout if timeout else None

        if game_id:
            game_ids = [game_id]
            logger.info(f"Grading run for game {game_id}")
        else:
            if start is None or end is None:
                default_start, default_end = default_grading_window(settings.GRADING_LOOKBACK_HOURS, self.clock())
                start = start or default_start
                end = end or default_end
            game_ids = await self._candidate_game_ids(start, end)
            logger.info(f"Grading run {start.isoformat()} -> {end.isoformat()}: {len(game_ids)} games")

        outcomes: Dict[str, Optional[GameOutcome]] = {}
        errors: Dict[str, str] = {}
        await self._fetch_outcomes(game_ids, outcomes, errors)

        candidates = await asyncio.to_thread(self._candidate_picks, game_ids)

        # Parlay legs may sit on games outside the window
        extra = sorted({g for _, needed in candidates for g in needed} - set(outcomes) - set(errors))
        await self._fetch_outcomes(extra, outcomes, errors)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def grade(pick_id: str, needed: List[str]) -> PickGradeResult:
            async with semaphore:
                if deadline is not None and time.monotonic() >= deadline:
                    return PickGradeResult(pick_id, "skipped", reason="timeout")
                failed = [errors[g] for g in needed if g in errors]
                if failed:
                    return PickGradeResult(pick_id, "errored", reason=f"Provider error: {failed[0]}")
                return await asyncio.to_thread(self._grade_pick, pick_id, outcomes)

        results = await asyncio.gather(*(grade(pick_id, needed) for pick_id, needed in candidates))

        duration = time.monotonic() - started
        grading_job_duration_seconds.observe(duration)
        summary = self._summarize(results)
        logger.info(
            f"Grading complete: {summary['graded']} graded, {summary['skipped']} skipped, "
            f"{summary['errored']} errored ({duration:.2f}s)"
        )
        return summary

    async def _candidate_game_ids(self, start: datetime, end: datetime) -> List[str]:
        try:
            finished = await self.provider.get_finished_games(start, end)
        except Exception as e:
            logger.error(f"Could not list finished games from provider: {e}")
            finished = []

        known = await asyncio.to_thread(self._game_ids_started_between, start, end)
        return sorted(set(finished) | set(known))

    def _game_ids_started_between(self, start: datetime, end: datetime) -> List[str]:
        db = self.session_factory()
        try:
            return PickRepository(db).find_game_ids_started_between(start, end)
        finally:
            db.close()

    def _candidate_picks(self, game_ids: List[str]) -> List[Tuple[str, List[str]]]:
        """(pick_id, game ids the pick depends on) for ungraded picks on the games."""
        db = self.session_factory()
        try:
            repo = PickRepository(db)
            seen = {}
            for game_id in game_ids:
                for pick in repo.find_ungraded_for_game(game_id):
                    if pick.id in seen:
                        continue
                    if pick.is_parlay:
                        needed = sorted({leg.game_id for leg in pick.legs if leg.game_id})
                    else:
                        needed = [pick.game_id]
                    seen[pick.id] = needed
            return list(seen.items())
        finally:
            db.close()

    async def _fetch_outcomes(
        self,
        game_ids: List[str],
        outcomes: Dict[str, Optional[GameOutcome]],
        errors: Dict[str, str],
    ) -> None:
        for game_id in game_ids:
            try:
                outcomes[game_id] = await self.provider.get_game(game_id)
            except Exception as e:
                logger.error(f"Failed to fetch outcome for game {game_id}: {e}")
                errors[game_id] = str(e) or type(e).__name__

    # ========================================================================
    # Per-pick work (worker thread, own session)
    # ========================================================================

    def _grade_pick(self, pick_id: str, outcomes: Dict[str, Optional[GameOutcome]]) -> PickGradeResult:
        db = self.session_factory()
        try:
            lifecycle = PickLifecycleService(db, clock=self.clock)
            pick = lifecycle.get_pick(pick_id)
            if pick.status == "graded":
                return PickGradeResult(pick_id, "skipped", result=pick.result, reason="already_graded")
            if pick.status == "disputed":
                return PickGradeResult(pick_id, "skipped", reason="disputed")

            decision = decide_result(pick, outcomes)
            if decision.result is None:
                return PickGradeResult(pick_id, "skipped", reason=decision.reason)
            game = outcomes.get(pick.game_id) if pick.game_id else None

            return self._apply(
                db,
                lifecycle,
                pick_id,
                decision.result,
                reason=decision.reason,
                teams=(game.home_team, game.away_team) if game else (None, None),
                leg_results=decision.leg_results,
                closing_odds=decision.closing_odds,
                clv_score=decision.clv_score,
                evidence=decision.evidence,
                verification_source="system",
            )
        except PickIntegrityError as e:
            logger.error(f"Grading failed for pick {pick_id}: {e.message}")
            return PickGradeResult(pick_id, "errored", reason=f"{e.code}: {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected error grading pick {pick_id}")
            return PickGradeResult(pick_id, "errored", reason=f"{type(e).__name__}: {e}")
        finally:
            db.close()

    def _apply(self, db: Session, lifecycle: PickLifecycleService, pick_id: str, result: str,
               reason: str, teams: Tuple[Optional[str], Optional[str]] = (None, None),
               **grade_kwargs) -> PickGradeResult:
        """Verify the chain, grade, then assess. Raises ChainInvalid on a broken chain."""
        verification = LedgerService(db).verify_chain(pick_id)
        if not verification.valid:
            raise ChainInvalid(
                f"Ledger chain for pick {pick_id} is invalid: {verification.reason}",
                details=verification.to_dict(),
            )

        outcome = lifecycle.grade_pick(pick_id, result, **grade_kwargs)
        if not outcome.applied:
            return PickGradeResult(pick_id, "skipped", result=outcome.result, reason="already_graded")

        graded = PickGradeResult(pick_id, "graded", result=outcome.result, reason=reason)
        try:
            report = FraudService(db, policy=self.policy, clock=self.clock).assess_pick(
                pick_id, home_team=teams[0], away_team=teams[1]
            )
            graded.fraud_score = report["score"]
        except Exception as e:
            # The grade is committed; report it and leave the assessment for the next run
            logger.error(f"Fraud assessment failed for graded pick {pick_id}: {e}")
            graded.reason = f"{reason}; fraud assessment failed: {e}"
        return graded

    # ========================================================================
    # Manual grading
    # ========================================================================

    def grade_manually(self, db: Session, pick_id: str, result: str, actor_id: str,
                       reason: Optional[str]) -> PickGradeResult:
        """
        Admin-supplied result, used for props, futures and anything the
        provider cannot settle. Goes through the same verify/grade/assess path.

        Raises:
            ReasonRequired: Empty reason
            ValidationError: Unknown result
            ChainInvalid: Broken ledger chain
        """
        if not (reason and reason.strip()):
            raise ReasonRequired("A reason is required to grade a pick manually", details={"field": "reason"})
        if result not in FINAL_RESULTS:
            raise ValidationError(
                f"result must be one of {', '.join(FINAL_RESULTS)}",
                details={"field": "result", "value": result},
            )

        lifecycle = PickLifecycleService(db, clock=self.clock)
        graded = self._apply(
            db,
            lifecycle,
            pick_id,
            result,
            reason=reason.strip(),
            evidence={"source": "manual", "graded_by": actor_id, "reason": reason.strip()},
            verification_source="manual",
        )
        grading_outcomes_total.labels(outcome=graded.outcome).inc()
        logger.info(f"Manual grade by {actor_id}: {pick_id} -> {result}")
        return graded

    @staticmethod
    def _summarize(results: List[PickGradeResult]) -> Dict[str, Any]:
        summary = {"graded": 0, "skipped": 0, "errored": 0, "results": []}
        for item in results:
            summary[item.outcome] += 1
            summary["results"].append(asdict(item))
            grading_outcomes_total.labels(outcome=item.outcome).inc()
        return summary


# ============================================================================
# STATS RECONCILIATION
# ============================================================================

def reconcile_creator_stats(
    session_factory: Callable[[], Session] = SessionLocal,
    clock: Callable[[], datetime] = utc_now,
) -> Dict[str, int]:
    """
    Rebuild every creator's Welford aggregates from their picks, then
    recompute transparency scores marked stale.
    """
    db = session_factory()
    try:
        creator_ids = PickRepository(db).creator_ids()
        stats_service = CreatorStatsService(db, clock=clock)
        for creator_id in creator_ids:
            with resource_locks.hold(creator_lock_key(creator_id)):
                stats_service.reconcile(creator_id)
                db.commit()

        stale = [stats.creator_id for stats in CreatorStatsRepository(db).find_stale()]
        transparency = TransparencyService(db, clock=clock)
        for creator_id in stale:
            transparency.recalculate(creator_id)

        logger.info(f"Reconciled {len(creator_ids)} creators, recomputed {len(stale)} transparency scores")
        return {"creators_reconciled": len(creator_ids), "transparency_recomputed": len(stale)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
