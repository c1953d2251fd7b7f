"""
Pick Repository for pick data access.

Usage:
    repo = PickRepository(db)
    pick = repo.get_for_update(pick_id)
    recent = repo.find_recent_by_creator(creator_id, limit=20)
"""
from typing import Optional, List
from datetime import datetime
from sqlalchemy import desc, or_

from pick_integrity.models import Pick, PickLeg
from pick_integrity.repositories.base import BaseRepository

UNGRADED_STATUSES = ("pending", "locked")


class PickRepository(BaseRepository[Pick]):
    """Repository for pick data access."""

    def __init__(self, db):
        super().__init__(Pick, db)

    def get_for_update(self, pick_id: str) -> Optional[Pick]:
        """
        Load a pick with a row lock (SELECT ... FOR UPDATE).

        The lock is held until the surrounding transaction ends. SQLite
        ignores FOR UPDATE; there the in-process resource lock applies.
        """
        return (
            self.db.query(Pick)
            .filter(Pick.id == pick_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    # ========================================================================
    # Creator-based Queries
    # ========================================================================

    def find_by_creator(self, creator_id: str) -> List[Pick]:
        """All picks of a creator, oldest first."""
        return (
            self.db.query(Pick)
            .filter(Pick.creator_id == creator_id)
            .order_by(Pick.created_at)
            .all()
        )

    def find_recent_by_creator(
        self,
        creator_id: str,
        limit: int = 20,
        exclude_id: Optional[str] = None
    ) -> List[Pick]:
        """Most recent picks of a creator, newest first."""
        query = self.db.query(Pick).filter(Pick.creator_id == creator_id)
        if exclude_id:
            query = query.filter(Pick.id != exclude_id)
        return query.order_by(desc(Pick.created_at)).limit(limit).all()

    def creator_ids(self) -> List[str]:
        """Every creator with at least one pick."""
        return self.distinct_values("creator_id")

    # ========================================================================
    # Grading Queries
    # ========================================================================

    def find_ungraded_for_game(self, game_id: str) -> List[Pick]:
        """
        Ungraded picks that depend on a game: single picks on the game and
        parlays with at least one leg on it. Disputed picks are excluded.
        """
        leg_pick_ids = self.db.query(PickLeg.pick_id).filter(PickLeg.game_id == game_id)
        return (
            self.db.query(Pick)
            .filter(
                Pick.status.in_(UNGRADED_STATUSES),
                or_(Pick.game_id == game_id, Pick.id.in_(leg_pick_ids)),
            )
            .order_by(Pick.created_at)
            .all()
        )

    def find_game_ids_started_between(self, start: datetime, end: datetime) -> List[str]:
        """Game ids referenced by ungraded picks or legs whose game started in [start, end]."""
        pick_games = self.distinct_values(
            "game_id",
            Pick.status.in_(UNGRADED_STATUSES),
            Pick.game_id.isnot(None),
            Pick.game_start_time >= start,
            Pick.game_start_time <= end,
        )
        leg_games = [
            row[0]
            for row in self.db.query(PickLeg.game_id)
            .join(Pick, Pick.id == PickLeg.pick_id)
            .filter(
                Pick.status.in_(UNGRADED_STATUSES),
                PickLeg.game_id.isnot(None),
                PickLeg.game_start_time >= start,
                PickLeg.game_start_time <= end,
            )
            .distinct()
            .all()
        ]
        return sorted(set(pick_games) | set(leg_games))
