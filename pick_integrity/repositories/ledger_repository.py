"""
Ledger Repository: read access to per-pick hash chains.

Entries are insert-only.
"""
from typing import Optional, List
from sqlalchemy import desc

from pick_integrity.models import LedgerEntry
from pick_integrity.repositories.base import BaseRepository


class LedgerRepository(BaseRepository[LedgerEntry]):
    """Repository for ledger entries."""

    def __init__(self, db):
        super().__init__(LedgerEntry, db)

    def get_head(self, resource_id: str) -> Optional[LedgerEntry]:
        """Entry with the highest sequence for a resource, or None."""
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.resource_id == resource_id)
            .order_by(desc(LedgerEntry.sequence))
            .first()
        )

    def get_chain(self, resource_id: str) -> List[LedgerEntry]:
        """All entries for a resource in sequence order."""
        return (
            self.db.query(LedgerEntry)
            .filter(LedgerEntry.resource_id == resource_id)
            .order_by(LedgerEntry.sequence)
            .all()
        )

    def count_for(self, resource_id: str) -> int:
        return self.count(LedgerEntry.resource_id == resource_id)
