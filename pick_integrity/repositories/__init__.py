"""
Repository layer for data access.

Usage:
    from pick_integrity.repositories import PickRepository
    from pick_integrity.core.database import SessionLocal

    db = SessionLocal()
    pick = PickRepository(db).find_by_id(pick_id)
    db.close()
"""

from pick_integrity.repositories.base import BaseRepository
from pick_integrity.repositories.pick_repository import PickRepository
from pick_integrity.repositories.ledger_repository import LedgerRepository
from pick_integrity.repositories.creator_repository import (
    CreatorProfileRepository,
    CreatorStatsRepository,
)

__all__ = [
    "BaseRepository",
    "PickRepository",
    "LedgerRepository",
    "CreatorProfileRepository",
    "CreatorStatsRepository",
]
