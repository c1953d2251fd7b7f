"""
Shared FastAPI dependencies.

Routes take the clock, grading job and sports data provider through these so
tests can swap them with app.dependency_overrides.
"""
from datetime import datetime
from typing import Callable

from fastapi import Depends

from pick_integrity.services.grading_service import GradingJob
from pick_integrity.services.sports_data import SportsDataProvider
from pick_integrity.utils.timezone import utc_now

_grading_job = None


def get_clock() -> Callable[[], datetime]:
    """Server clock used for lock checks."""
    return utc_now


def get_grading_job() -> GradingJob:
    """Process-wide grading job backed by the HTTP sports data client."""
    global _grading_job
    if _grading_job is None:
        _grading_job = GradingJob()
    return _grading_job


def get_sports_provider(job: GradingJob = Depends(get_grading_job)) -> SportsDataProvider:
    """The grading job's sports data provider, shared for post-time market capture."""
    return job.provider
