"""
Tamper-evident ledger of pick mutations.

Each pick has its own hash chain: entry N stores a SHA-256 digest of a
canonical JSON snapshot of the pick plus the digest of entry N-1. Altering a
stored snapshot breaks its own digest; removing or reordering entries breaks
the previous-hash link or the sequence numbering.

Canonical encoding: keys sorted, no whitespace, datetimes as ISO 8601,
Decimals as strings. Snapshots are stored already canonicalized so that the
digest recomputed from a row read back from the database matches the one
computed at write time.
"""
import hashlib
import json
from dataclasses import dataclass, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pick_integrity.core.errors import LedgerConflictError, NotFound
from pick_integrity.core.logging import get_logger
from pick_integrity.core.metrics import (
    ledger_entries_total,
    ledger_chain_failures_total,
    ledger_append_conflicts_total,
)
from pick_integrity.models import Pick, LedgerEntry, LEDGER_ACTIONS
from pick_integrity.repositories import LedgerRepository
from pick_integrity.utils.timezone import utc_now

logger = get_logger(__name__)


def canonicalize(value: Any) -> Any:
    """Normalize a value into plain JSON types with deterministic ordering."""
    if value is None:
        return None
    elif isinstance(value, Decimal):
        return str(value)
    elif isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in sorted(value.items())}
    elif isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    elif isinstance(value, (int, float, str, bool)):
        return value
    else:
        return str(value)


def compute_hash(snapshot: Dict[str, Any]) -> str:
    """
    Deterministic SHA-256 of a snapshot.

    Returns:
        Hex-encoded digest (64 characters)
    """
    canonical = json.dumps(canonicalize(snapshot), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def build_snapshot(pick: Pick, action: str, timestamp: datetime) -> Dict[str, Any]:
    """Canonical snapshot of a pick's state at a mutation."""
    snapshot = {
        "pick_id": pick.id,
        "creator_id": pick.creator_id,
        "storefront_id": pick.storefront_id,
        "sport": pick.sport,
        "league": pick.league,
        "game_id": pick.game_id,
        "game_text": pick.game_text,
        "home_team": pick.home_team,
        "away_team": pick.away_team,
        "bet_type": pick.bet_type,
        "selection": pick.selection,
        "odds_american": pick.odds_american,
        "odds_decimal": pick.odds_decimal,
        "units_risked": pick.units_risked,
        "amount_risked": pick.amount_risked,
        "unit_value_at_post": pick.unit_value_at_post,
        "game_start_time": pick.game_start_time,
        "created_at": pick.created_at,
        "scheduled_at": pick.scheduled_at,
        "published_at": pick.published_at,
        "write_up": pick.write_up,
        "market_odds_at_post": pick.market_odds_at_post,
        "status": pick.status,
        "result": pick.result,
        "profit_units": pick.profit_units,
        "profit_amount": pick.profit_amount,
        "resolved_at": pick.resolved_at,
        "closing_odds": pick.closing_odds,
        "clv_score": pick.clv_score,
        "is_verified": pick.is_verified,
        "verification_source": pick.verification_source,
        "verification_evidence": pick.verification_evidence,
        "is_parlay": bool(pick.is_parlay),
        "legs": [
            {
                "position": leg.position,
                "sport": leg.sport,
                "league": leg.league,
                "game_id": leg.game_id,
                "game_text": leg.game_text,
                "bet_type": leg.bet_type,
                "selection": leg.selection,
                "odds_american": leg.odds_american,
                "odds_decimal": leg.odds_decimal,
                "game_start_time": leg.game_start_time,
                "result": leg.result,
            }
            for leg in pick.legs
        ],
        "edit_count": len(pick.edits),
        "flag_count": len(pick.flags),
        "action": action,
        "timestamp": timestamp,
    }
    return canonicalize(snapshot)


@dataclass
class ChainVerification:
    """Outcome of walking one resource's chain."""
    valid: bool
    entry_count: int
    first_invalid_sequence: Optional[int] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def entry_to_dict(entry: LedgerEntry) -> Dict[str, Any]:
    return {
        "sequence": entry.sequence,
        "action": entry.action,
        "hash": entry.hash,
        "previous_hash": entry.previous_hash,
        "snapshot": entry.snapshot,
        "created_at": entry.created_at.isoformat(),
    }


class LedgerService:
    """
    Append and verify per-pick hash chains.

    append_entry() only flushes; the caller commits. Callers serialize appends
    for one resource (see pick_integrity.core.locks); the unique
    (resource_id, sequence) constraint turns any race that slips through into
    LedgerConflictError, after which the caller rolls back and retries.
    """

    def __init__(self, db: Session):
        self.db = db
        self.entries = LedgerRepository(db)

    def append_entry(
        self,
        resource_id: str,
        snapshot: Dict[str, Any],
        action: str,
        creator_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> LedgerEntry:
        """
        Append the next entry of a resource's chain.

        Raises:
            ValueError: If action is not a ledger action
            LedgerConflictError: If another writer took the same sequence
        """
        if action not in LEDGER_ACTIONS:
            raise ValueError(f"Unknown ledger action: {action}")

        head = self.entries.get_head(resource_id)
        sequence = head.sequence + 1 if head else 1
        snapshot = canonicalize(snapshot)

        entry = self.entries.create(
            resource_id=resource_id,
            creator_id=creator_id,
            sequence=sequence,
            hash=compute_hash(snapshot),
            previous_hash=head.hash if head else None,
            snapshot=snapshot,
            action=action,
            created_at=timestamp or utc_now(),
        )

        try:
            self.entries.flush()
        except IntegrityError as e:
            ledger_append_conflicts_total.inc()
            logger.warning(f"Ledger sequence conflict for {resource_id} at sequence {sequence}")
            raise LedgerConflictError(
                f"Ledger sequence {sequence} for {resource_id} was taken by a concurrent writer",
                details={"resource_id": resource_id, "sequence": sequence},
            ) from e

        ledger_entries_total.labels(action=action).inc()
        logger.info(f"Ledger entry appended: {resource_id} #{sequence} ({action})")
        return entry

    def record(self, pick: Pick, action: str, timestamp: datetime) -> LedgerEntry:
        """Snapshot a pick and append it to the pick's chain."""
        return self.append_entry(
            pick.id,
            build_snapshot(pick, action, timestamp),
            action,
            creator_id=pick.creator_id,
            timestamp=timestamp,
        )

    def verify_chain(self, resource_id: str) -> ChainVerification:
        """
        Walk a chain in sequence order.

        Never raises for a broken chain; the result names the first
        offending sequence number.
        """
        chain = self.entries.get_chain(resource_id)
        result = verify_entries(chain)

        if not result.valid and chain:
            ledger_chain_failures_total.inc()
            logger.error(
                f"Ledger chain invalid for {resource_id}: {result.reason}",
                extra={"resource_id": resource_id, "sequence": result.first_invalid_sequence},
            )
        return result

    def get_proof(self, resource_id: str) -> Dict[str, Any]:
        """
        All entries of a chain plus its verification result.

        Raises:
            NotFound: If the resource has no ledger entries
        """
        chain = self.entries.get_chain(resource_id)
        if not chain:
            raise NotFound(f"No ledger entries for {resource_id}", details={"resource_id": resource_id})

        verification = self.verify_chain(resource_id)
        return {
            "resource_id": resource_id,
            "entries": [entry_to_dict(entry) for entry in chain],
            "chain_valid": verification.valid,
            "verification": verification.to_dict(),
        }


def verify_entries(chain: List[LedgerEntry]) -> ChainVerification:
    """Check digests, previous-hash links and contiguous numbering of an ordered chain."""
    if not chain:
        return ChainVerification(valid=False, entry_count=0, reason="No entries found")

    previous_hash = None
    for expected_sequence, entry in enumerate(chain, start=1):
        if entry.sequence != expected_sequence:
            return ChainVerification(
                valid=False,
                entry_count=len(chain),
                first_invalid_sequence=entry.sequence,
                reason=f"Sequence gap at sequence {entry.sequence} (expected {expected_sequence})",
            )
        if entry.hash != compute_hash(entry.snapshot):
            return ChainVerification(
                valid=False,
                entry_count=len(chain),
                first_invalid_sequence=entry.sequence,
                reason=f"Hash mismatch at sequence {entry.sequence}",
            )
        if entry.previous_hash != previous_hash:
            return ChainVerification(
                valid=False,
                entry_count=len(chain),
                first_invalid_sequence=entry.sequence,
                reason=f"Previous hash mismatch at sequence {entry.sequence}",
            )
        previous_hash = entry.hash

    return ChainVerification(valid=True, entry_count=len(chain))
