"""
Database models for the Pick Integrity API.

All datetimes are stored as naive UTC (see pick_integrity.utils.timezone).
Amounts of money are integer cents.
"""
import uuid

from sqlalchemy import (
    Column, String, Float, Integer, DateTime, ForeignKey, Boolean, Text, JSON, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()

BET_TYPES = ("moneyline", "spread", "total", "prop", "future", "parlay", "other")
LEG_BET_TYPES = tuple(b for b in BET_TYPES if b != "parlay")
PICK_STATUSES = ("pending", "locked", "graded", "disputed")
PICK_RESULTS = ("pending", "win", "loss", "push", "void")
LEDGER_ACTIONS = ("create", "edit", "grade", "flag", "dispute", "delete")


def new_id() -> str:
    return str(uuid.uuid4())


class Pick(Base):
    """A creator's posted wager. Wager facts freeze at game_start_time."""
    __tablename__ = "picks"

    id = Column(String(36), primary_key=True, default=new_id)
    creator_id = Column(String(36), nullable=False, index=True)
    storefront_id = Column(String(36), nullable=False, index=True)

    # Wager facts
    sport = Column(String(50), nullable=False, index=True)
    league = Column(String(50), nullable=True)
    game_id = Column(String(100), nullable=True, index=True)  # provider game id
    game_text = Column(String(255), nullable=True)  # free-text game description
    home_team = Column(String(100), nullable=True)  # names the market sides for moneyline and spread
    away_team = Column(String(100), nullable=True)
    bet_type = Column(String(20), nullable=False)  # moneyline, spread, total, prop, future, parlay, other
    selection = Column(String(500), nullable=False)  # e.g. "Lakers -5.5", "Over 225.5"
    odds_american = Column(Integer, nullable=False)
    odds_decimal = Column(Float, nullable=False)
    units_risked = Column(Float, nullable=False)
    amount_risked = Column(Integer, nullable=False)  # cents
    unit_value_at_post = Column(Integer, nullable=False)  # cents, snapshot at creation
    is_parlay = Column(Boolean, nullable=False, default=False)

    # Timing
    game_start_time = Column(DateTime, nullable=False, index=True)  # lock boundary
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    scheduled_at = Column(DateTime, nullable=True)
    published_at = Column(DateTime, nullable=True)

    # Verification
    is_verified = Column(Boolean, nullable=False, default=False)
    verification_source = Column(String(20), nullable=False, default="system")  # system, manual
    verification_evidence = Column(JSON, nullable=True)

    # Lifecycle
    status = Column(String(20), nullable=False, default="pending", index=True)
    result = Column(String(20), nullable=False, default="pending", index=True)
    resolved_at = Column(DateTime, nullable=True)
    profit_units = Column(Float, nullable=True)
    profit_amount = Column(Integer, nullable=True)  # cents

    # Market data
    market_odds_at_post = Column(JSON, nullable=True)
    closing_odds = Column(JSON, nullable=True)
    clv_score = Column(Float, nullable=True)

    write_up = Column(Text, nullable=True)

    # Relationships
    legs = relationship(
        "PickLeg", back_populates="pick", cascade="all, delete-orphan", order_by="PickLeg.position"
    )
    edits = relationship(
        "PickEdit", back_populates="pick", cascade="all, delete-orphan", order_by="PickEdit.edited_at"
    )
    flags = relationship(
        "PickFlag", back_populates="pick", cascade="all, delete-orphan", order_by="PickFlag.flagged_at"
    )
    fraud_assessment = relationship(
        "FraudAssessment", back_populates="pick", cascade="all, delete-orphan", uselist=False
    )

    __table_args__ = (
        Index('ix_picks_creator_created', 'creator_id', 'created_at'),
        Index('ix_picks_status_start', 'status', 'game_start_time'),
    )


class PickLeg(Base):
    """One leg of a parlay, in leg order."""
    __tablename__ = "pick_legs"

    id = Column(String(36), primary_key=True, default=new_id)
    pick_id = Column(String(36), ForeignKey("picks.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    sport = Column(String(50), nullable=False)
    league = Column(String(50), nullable=True)
    game_id = Column(String(100), nullable=True, index=True)
    game_text = Column(String(255), nullable=True)
    bet_type = Column(String(20), nullable=False)
    selection = Column(String(500), nullable=False)
    odds_american = Column(Integer, nullable=False)
    odds_decimal = Column(Float, nullable=False)
    game_start_time = Column(DateTime, nullable=False)
    result = Column(String(20), nullable=False, default="pending")

    pick = relationship("Pick", back_populates="legs")

    __table_args__ = (
        UniqueConstraint('pick_id', 'position', name='uq_pick_legs_position'),
    )


class PickEdit(Base):
    """Edit history record: who changed which fields, from what, to what."""
    __tablename__ = "pick_edits"

    id = Column(String(36), primary_key=True, default=new_id)
    pick_id = Column(String(36), ForeignKey("picks.id", ondelete="CASCADE"), nullable=False, index=True)
    editor_id = Column(String(36), nullable=False)
    edited_at = Column(DateTime, nullable=False)
    old_value = Column(JSON, nullable=False)
    new_value = Column(JSON, nullable=False)
    reason = Column(Text, nullable=True)
    is_admin_edit = Column(Boolean, nullable=False, default=False)

    pick = relationship("Pick", back_populates="edits")


class PickFlag(Base):
    """Flag attached to a pick (admin flag or post-lock edit attribution)."""
    __tablename__ = "pick_flags"

    id = Column(String(36), primary_key=True, default=new_id)
    pick_id = Column(String(36), ForeignKey("picks.id", ondelete="CASCADE"), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    flagged_by = Column(String(36), nullable=False)
    flagged_at = Column(DateTime, nullable=False)

    pick = relationship("Pick", back_populates="flags")


class LedgerEntry(Base):
    """
    One immutable, hash-linked snapshot of a pick's state.

    No foreign key to picks: the chain outlives a deleted pick.
    """
    __tablename__ = "ledger_entries"

    id = Column(String(36), primary_key=True, default=new_id)
    resource_id = Column(String(36), nullable=False, index=True)
    creator_id = Column(String(36), nullable=True, index=True)
    sequence = Column(Integer, nullable=False)
    hash = Column(String(64), nullable=False)
    previous_hash = Column(String(64), nullable=True)
    snapshot = Column(JSON, nullable=False)
    action = Column(String(20), nullable=False)  # create, edit, grade, flag, dispute, delete
    created_at = Column(DateTime, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint('resource_id', 'sequence', name='uq_ledger_resource_sequence'),
    )


class FraudAssessment(Base):
    """Latest fraud heuristics result for a pick."""
    __tablename__ = "fraud_assessments"

    id = Column(String(36), primary_key=True, default=new_id)
    pick_id = Column(String(36), ForeignKey("picks.id", ondelete="CASCADE"), nullable=False, unique=True)
    creator_id = Column(String(36), nullable=False, index=True)
    score = Column(Integer, nullable=False, default=0)
    flags = Column(JSON, nullable=False)  # [{type, severity, reason}]
    checks = Column(JSON, nullable=False)  # detector findings
    should_flag = Column(Boolean, nullable=False, default=False)
    exclude_from_leaderboards = Column(Boolean, nullable=False, default=False, index=True)
    assessed_at = Column(DateTime, nullable=False)

    pick = relationship("Pick", back_populates="fraud_assessment")


class CreatorProfile(Base):
    """Creator account facts owned by the account and subscription systems."""
    __tablename__ = "creator_profiles"

    creator_id = Column(String(36), primary_key=True)
    default_unit_value = Column(Integer, nullable=True)  # cents per unit
    subscriber_count = Column(Integer, nullable=False, default=0)
    complaint_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


class CreatorStats(Base):
    """Incremental per-creator aggregates and the cached transparency score."""
    __tablename__ = "creator_stats"

    creator_id = Column(String(36), primary_key=True)

    # Welford running aggregates of units_risked
    units_count = Column(Integer, nullable=False, default=0)
    units_mean = Column(Float, nullable=False, default=0.0)
    units_m2 = Column(Float, nullable=False, default=0.0)

    transparency_score = Column(Integer, nullable=True)
    transparency_breakdown = Column(JSON, nullable=True)
    transparency_computed_at = Column(DateTime, nullable=True)
    transparency_stale = Column(Boolean, nullable=False, default=True, index=True)

    updated_at = Column(DateTime, nullable=False)
