"""
Timezone utilities for the pick integrity engine.

All times are stored as naive UTC datetimes. The lock boundary of a pick is a
comparison between the server clock and the stored game start time, so every
timestamp that enters the system is normalized here first.

- Aware datetimes are converted to UTC and stripped of tzinfo
- Naive datetimes are assumed to already be UTC
- ISO 8601 strings (including a trailing 'Z') are parsed
"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Union

UTC = timezone.utc


def utc_now() -> datetime:
    """Current server time as a naive UTC datetime."""
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(value: Optional[Union[datetime, str]]) -> Optional[datetime]:
    """
    Normalize a datetime (or ISO string) to naive UTC.

    Args:
        value: Aware or naive datetime, ISO 8601 string, or None

    Returns:
        Naive UTC datetime, or None if value is None

    Examples:
        >>> to_naive_utc("2025-01-29T19:00:00Z")
        datetime.datetime(2025, 1, 29, 19, 0)
        >>> to_naive_utc(datetime(2025, 1, 29, 14, 0, tzinfo=timezone(timedelta(hours=-5))))
        datetime.datetime(2025, 1, 29, 19, 0)
    """
    if value is None:
        return None

    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))

    if value.tzinfo is not None:
        value = value.astimezone(UTC).replace(tzinfo=None)

    return value


def default_grading_window(lookback_hours: int, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Default date range for a grading run: the last `lookback_hours` up to now.

    Returns:
        (start, end) as naive UTC datetimes
    """
    end = now or utc_now()
    return end - timedelta(hours=lookback_hours), end
