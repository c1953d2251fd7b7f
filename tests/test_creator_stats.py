"""
Tests for creator aggregates, reconciliation and performance stats.

Run with: pytest tests/test_creator_stats.py -v
"""
import statistics
import threading
from datetime import timedelta

import pytest

from conftest import CREATOR_ID, OTHER_CREATOR_ID, STOREFRONT_ID
from pick_integrity.core.errors import WriteConflictError
from pick_integrity.models import CreatorStats, FraudAssessment
from pick_integrity.repositories.creator_repository import CreatorStatsRepository
from pick_integrity.services.creator_stats_service import (
    CreatorStatsService,
    UnitsBaseline,
    welford_add,
    welford_remove,
)
from pick_integrity.services.grading_service import reconcile_creator_stats
from pick_integrity.services.ledger_service import LedgerService
from pick_integrity.services.pick_lifecycle import PickLifecycleService


class TestWelford:

    def test_matches_population_statistics(self):
        values = [1.0, 2.0, 2.5, 4.0, 10.0]
        count, mean, m2 = 0, 0.0, 0.0
        for value in values:
            count, mean, m2 = welford_add(count, mean, m2, value)

        baseline = UnitsBaseline.from_aggregates(count, mean, m2)
        assert baseline.count == 5
        assert baseline.mean == pytest.approx(statistics.fmean(values))
        assert baseline.std_dev == pytest.approx(statistics.pstdev(values))

    def test_remove_reverses_add(self):
        count, mean, m2 = 0, 0.0, 0.0
        for value in (1.5, 2.5, 1.5, 2.5):
            count, mean, m2 = welford_add(count, mean, m2, value)
        added = welford_add(count, mean, m2, 10.0)

        removed = welford_remove(*added, 10.0)

        assert removed[0] == 4
        assert removed[1] == pytest.approx(2.0)
        assert removed[2] == pytest.approx(1.0)

    def test_remove_last_value_resets(self):
        assert welford_remove(1, 3.0, 0.0, 3.0) == (0, 0.0, 0.0)

    def test_empty_baseline(self):
        baseline = UnitsBaseline.from_aggregates(0, 0.0, 0.0)
        assert baseline.mean is None
        assert baseline.std_dev is None


class TestAggregates:

    def test_baseline_excludes_pick_under_assessment(self, db_session, lifecycle, creator_profile, pick_data,
                                                     clock):
        for units in (1.0, 3.0, 5.0):
            lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=units))

        baseline = CreatorStatsService(db_session, clock=clock).units_baseline(CREATOR_ID, exclude_units=5.0)

        assert baseline.count == 2
        assert baseline.mean == pytest.approx(2.0)
        assert baseline.std_dev == pytest.approx(1.0)

    def test_reconcile_repairs_drift(self, db_session, lifecycle, creator_profile, pick_data, clock):
        """Should rebuild the running aggregates from the picks table."""
        lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=2.0))
        lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=4.0))
        stats = db_session.get(CreatorStats, CREATOR_ID)
        stats.units_count = 99
        stats.units_mean = 42.0
        db_session.commit()

        service = CreatorStatsService(db_session, clock=clock)
        service.reconcile(CREATOR_ID)
        db_session.commit()

        stats = db_session.get(CreatorStats, CREATOR_ID)
        assert stats.units_count == 2
        assert stats.units_mean == pytest.approx(3.0)
        assert stats.units_m2 == pytest.approx(2.0)

    def test_reconcile_job(self, db_session, session_factory, lifecycle, creator_profile, pick_data, clock):
        """Should reconcile every creator and recompute stale transparency scores."""
        lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data())
        lifecycle.create_pick(OTHER_CREATOR_ID, STOREFRONT_ID, pick_data(unit_value=500))

        summary = reconcile_creator_stats(session_factory=session_factory, clock=clock)

        assert summary == {"creators_reconciled": 2, "transparency_recomputed": 2}
        db_session.expire_all()
        assert db_session.get(CreatorStats, CREATOR_ID).transparency_stale is False


class TestConcurrentWriters:
    """Several writers sharing one creator's aggregates row."""

    def test_parallel_first_picks_all_counted(self, session_factory, clock, creator_profile, pick_data,
                                               db_session):
        """Should count every pick when the creator's first picks arrive at once."""
        errors = []

        def worker(units):
            session = session_factory()
            try:
                PickLifecycleService(session, clock=clock).create_pick(
                    CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=units)
                )
            except Exception as e:
                errors.append(e)
            finally:
                session.close()

        units = [1.0, 2.0, 3.0, 4.0, 5.0]
        threads = [threading.Thread(target=worker, args=(value,)) for value in units]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        db_session.expire_all()
        stats = db_session.get(CreatorStats, CREATOR_ID)
        assert stats.units_count == 5
        assert stats.units_mean == pytest.approx(3.0)
        assert stats.units_m2 == pytest.approx(10.0)

    def test_lost_insert_race_is_retried(self, session_factory, db_session, lifecycle, creator_profile,
                                         pick_data, clock, monkeypatch):
        """Should retry a create whose aggregates insert collided with another writer's."""
        other = session_factory()
        CreatorStatsService(other, clock=clock).record_units(CREATOR_ID, 2.0)
        other.commit()
        other.close()

        original = CreatorStatsRepository.get_for_update
        calls = []

        def stale_read(self, creator_id):
            calls.append(creator_id)
            if len(calls) == 1:
                return None
            return original(self, creator_id)

        monkeypatch.setattr(CreatorStatsRepository, "get_for_update", stale_read)
        pick = lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=4.0))

        assert len(calls) == 2
        db_session.expire_all()
        stats = db_session.get(CreatorStats, CREATOR_ID)
        assert stats.units_count == 2
        assert stats.units_mean == pytest.approx(3.0)
        assert [entry.sequence for entry in LedgerService(db_session).entries.get_chain(pick.id)] == [1]

    def test_duplicate_insert_is_a_write_conflict(self, session_factory, db_session, clock):
        first = session_factory()
        CreatorStatsRepository(first).get_or_create(CREATOR_ID, clock())
        first.commit()
        first.close()

        repository = CreatorStatsRepository(db_session)
        repository.get_for_update = lambda creator_id: None

        with pytest.raises(WriteConflictError) as exc_info:
            repository.get_or_create(CREATOR_ID, clock())
        db_session.rollback()

        assert exc_info.value.details == {"creator_id": CREATOR_ID}
        assert db_session.query(CreatorStats).count() == 1


class TestGetCreatorStats:

    @pytest.fixture
    def graded_picks(self, lifecycle, creator_profile, pick_data, clock):
        """A 1 unit win at -110 and a 2 unit loss."""
        win = lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=1.0))
        loss = lifecycle.create_pick(CREATOR_ID, STOREFRONT_ID, pick_data(units_risked=2.0, selection="Celtics ML"))
        pending = lifecycle.create_pick(
            CREATOR_ID, STOREFRONT_ID, pick_data(game_start_time=clock.now + timedelta(days=2))
        )
        clock.advance(hours=5)
        lifecycle.grade_pick(win.id, "win")
        lifecycle.grade_pick(loss.id, "loss")
        return win, loss, pending

    def test_performance_figures(self, db_session, graded_picks, clock):
        stats = CreatorStatsService(db_session, clock=clock).get_creator_stats(CREATOR_ID)

        assert stats["total_picks"] == 3
        assert stats["verified_picks"] == 3
        assert stats["graded_picks"] == 2
        assert stats["wins"] == 1
        assert stats["losses"] == 1
        assert stats["pushes"] == 0
        assert stats["units_risked"] == 3.0
        assert stats["units_won"] == -1.09
        assert stats["win_rate"] == 50.0
        assert stats["roi"] == -36.33
        assert stats["excluded_picks"] == 0

    def test_excluded_picks_left_out(self, db_session, graded_picks, clock):
        """Should drop picks excluded by the fraud heuristics from performance figures."""
        _, loss, _ = graded_picks
        db_session.add(FraudAssessment(
            pick_id=loss.id,
            creator_id=CREATOR_ID,
            score=5,
            flags=[{"type": "edit_after_lock", "severity": None, "reason": "late edit"}],
            checks={},
            should_flag=True,
            exclude_from_leaderboards=True,
            assessed_at=clock.now,
        ))
        db_session.commit()

        stats = CreatorStatsService(db_session, clock=clock).get_creator_stats(CREATOR_ID)

        assert stats["excluded_picks"] == 1
        assert stats["losses"] == 0
        assert stats["units_risked"] == 1.0
        assert stats["win_rate"] == 100.0
        assert stats["roi"] == 91.0
        assert stats["total_picks"] == 3

    def test_creator_without_picks(self, db_session, clock):
        stats = CreatorStatsService(db_session, clock=clock).get_creator_stats("nobody")

        assert stats["total_picks"] == 0
        assert stats["win_rate"] == 0.0
        assert stats["roi"] == 0.0
