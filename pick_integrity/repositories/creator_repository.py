"""
Creator repositories: account facts mirrored from the surrounding system,
and the per-creator aggregates maintained by this service.
"""
from typing import Optional, List
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from pick_integrity.core.errors import WriteConflictError
from pick_integrity.models import CreatorProfile, CreatorStats
from pick_integrity.repositories.base import BaseRepository


class CreatorProfileRepository(BaseRepository[CreatorProfile]):
    """Repository for creator profiles."""

    def __init__(self, db):
        super().__init__(CreatorProfile, db)

    def default_unit_value(self, creator_id: str) -> Optional[int]:
        """Creator's default unit value in cents, if one is configured."""
        profile = self.find_by_id(creator_id)
        return profile.default_unit_value if profile else None


class CreatorStatsRepository(BaseRepository[CreatorStats]):
    """Repository for creator aggregates."""

    def __init__(self, db):
        super().__init__(CreatorStats, db)

    def get_for_update(self, creator_id: str) -> Optional[CreatorStats]:
        """Load a creator's aggregates row with a row lock (SELECT ... FOR UPDATE)."""
        # Pending changes would be overwritten by populate_existing
        self.db.flush()
        return (
            self.db.query(CreatorStats)
            .filter(CreatorStats.creator_id == creator_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def get_or_create(self, creator_id: str, now: datetime) -> CreatorStats:
        """
        Row-locked aggregates for a creator, inserting an empty row if none exists.

        Raises:
            WriteConflictError: Another transaction inserted the row first.
                The caller rolls back and retries.
        """
        stats = self.get_for_update(creator_id)
        if stats is None:
            stats = self.create(
                creator_id=creator_id,
                units_count=0,
                units_mean=0.0,
                units_m2=0.0,
                transparency_stale=True,
                updated_at=now,
            )
            try:
                self.flush()
            except IntegrityError as e:
                raise WriteConflictError(
                    f"Aggregates for creator {creator_id} were created concurrently",
                    details={"creator_id": creator_id},
                ) from e
        return stats

    def find_stale(self) -> List[CreatorStats]:
        """Creators whose cached transparency score needs recomputing."""
        return self.where(CreatorStats.transparency_stale.is_(True))
