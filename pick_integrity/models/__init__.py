"""
ORM models for the pick integrity engine.

Usage:
    from pick_integrity.models import Pick, LedgerEntry
"""

from pick_integrity.models.models import (
    Base,
    BET_TYPES,
    LEG_BET_TYPES,
    PICK_STATUSES,
    PICK_RESULTS,
    LEDGER_ACTIONS,
    new_id,
    Pick,
    PickLeg,
    PickEdit,
    PickFlag,
    LedgerEntry,
    FraudAssessment,
    CreatorProfile,
    CreatorStats,
)

__all__ = [
    "Base",
    "BET_TYPES",
    "LEG_BET_TYPES",
    "PICK_STATUSES",
    "PICK_RESULTS",
    "LEDGER_ACTIONS",
    "new_id",
    "Pick",
    "PickLeg",
    "PickEdit",
    "PickFlag",
    "LedgerEntry",
    "FraudAssessment",
    "CreatorProfile",
    "CreatorStats",
]
