"""Shared pytest fixtures for pick-integrity-api tests."""
import os
import sys
from pathlib import Path
from datetime import datetime, timedelta
from typing import Any, Dict, Generator, List, Optional

# Must be set before pick_integrity.core.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_pick_integrity.db")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOG_JSON", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

CREATOR_ID = "creator-1"
OTHER_CREATOR_ID = "creator-2"
ADMIN_ID = "admin-1"
STOREFRONT_ID = "storefront-1"
UNIT_VALUE = 1000  # $10.00 per unit

NOW = datetime(2025, 3, 1, 12, 0, 0)


class FixedClock:
    """Callable clock for lock-boundary tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeSportsProvider:
    """In-memory sports data collaborator."""

    def __init__(self):
        self.games: Dict[str, Any] = {}
        self.finished: List[str] = []
        self.lines: Dict[str, Dict[str, Any]] = {}
        self.failing: Dict[str, Exception] = {}
        self.requested: List[str] = []

    def add_game(self, game_id: str, home_score: Optional[int], away_score: Optional[int],
                 status: str = "final", home_team: str = "Lakers", away_team: str = "Celtics",
                 closing_lines: Optional[Dict[str, Any]] = None):
        from pick_integrity.services.sports_data import GameOutcome

        self.games[game_id] = GameOutcome(
            game_id=game_id,
            status=status,
            home_team=home_team,
            away_team=away_team,
            home_score=home_score,
            away_score=away_score,
            closing_lines=closing_lines,
            provider="fake",
        )
        if status == "final":
            self.finished.append(game_id)
        return self.games[game_id]

    async def get_game(self, game_id: str):
        self.requested.append(game_id)
        if game_id in self.failing:
            raise self.failing[game_id]
        return self.games.get(game_id)

    async def get_finished_games(self, start: datetime, end: datetime) -> List[str]:
        return list(self.finished)

    async def get_market_lines(self, game_id: str):
        if game_id in self.failing:
            raise self.failing[game_id]
        return self.lines.get(game_id)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    File-backed SQLite database per test.

    A file (not :memory:) so the grading job's worker threads, each with
    its own session, see the same data.
    """
    from pick_integrity.models import Base

    engine = create_engine(
        f"sqlite:///{tmp_path / 'picks.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(bind=engine, checkfirst=True)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def creator_profile(db_session: Session):
    """Creator with a $10 default unit and 20 subscribers."""
    from pick_integrity.models import CreatorProfile

    profile = CreatorProfile(
        creator_id=CREATOR_ID,
        default_unit_value=UNIT_VALUE,
        subscriber_count=20,
        complaint_count=0,
        created_at=NOW,
        updated_at=NOW,
    )
    db_session.add(profile)
    db_session.commit()
    return profile


@pytest.fixture
def lifecycle(db_session: Session, clock: FixedClock):
    from pick_integrity.services.pick_lifecycle import PickLifecycleService
    return PickLifecycleService(db_session, clock=clock)


@pytest.fixture
def pick_data(clock: FixedClock):
    """Factory for valid single-pick payloads starting two hours from now."""

    def make(**overrides) -> Dict[str, Any]:
        data = {
            "sport": "basketball",
            "league": "NBA",
            "game_id": "g1",
            "game_text": "Celtics @ Lakers",
            "bet_type": "moneyline",
            "selection": "Lakers ML",
            "odds_american": -110,
            "units_risked": 1.0,
            "game_start_time": clock.now + timedelta(hours=2),
        }
        data.update(overrides)
        return data

    return make


@pytest.fixture
def provider() -> FakeSportsProvider:
    return FakeSportsProvider()


@pytest.fixture
def test_client(session_factory, clock, provider):
    """TestClient with the database, clock and grading job swapped for test doubles."""
    from fastapi.testclient import TestClient
    from pick_integrity.main import app
    from pick_integrity.core.database import get_db
    from pick_integrity.api.dependencies import get_clock, get_grading_job
    from pick_integrity.services.grading_service import GradingJob

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    job = GradingJob(provider=provider, session_factory=session_factory, clock=clock, max_concurrency=1)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_grading_job] = lambda: job

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
