#!/usr/bin/env python3
"""
Initialize database tables from SQLAlchemy models.

Creates every table of the pick integrity engine (picks, legs, edits, flags,
ledger entries, fraud assessments, creator profiles and stats).
"""
import sys
from pathlib import Path

# Add project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from pick_integrity.core.config import settings
from pick_integrity.core.database import init_db
from pick_integrity.core.logging import configure_logging, get_logger

configure_logging(level=settings.LOG_LEVEL, json_output=False)
logger = get_logger(__name__)


def main():
    """Create all database tables from models."""
    logger.info("Creating database tables from SQLAlchemy models...")
    init_db()
    logger.info("All database tables created successfully")


if __name__ == "__main__":
    main()
