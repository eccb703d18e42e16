"""
Local-calendar date helpers.

Every "day" in the engine is a local-timezone calendar day, not a 24 hour
window. Boundaries are computed from local midnights, so DST days are 23 or
25 hours long.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Tuple, Union

DATE_FMT = "%Y-%m-%d"

DayLike = Union[date, datetime, str]


def to_date(day: DayLike) -> date:
    """Normalize a date, datetime or 'YYYY-MM-DD' string to a date."""
    if isinstance(day, datetime):
        return day.date()
    if isinstance(day, date):
        return day
    return datetime.strptime(day, DATE_FMT).date()


def format_date(day: DayLike) -> str:
    return to_date(day).strftime(DATE_FMT)


def start_of_day(day: DayLike) -> datetime:
    return datetime.combine(to_date(day), time.min)


def day_bounds(day: DayLike) -> Tuple[int, int]:
    """Return [start, end) Unix timestamps of the local calendar day."""
    d = to_date(day)
    start = datetime.combine(d, time.min)
    end = datetime.combine(d + timedelta(days=1), time.min)
    return int(start.timestamp()), int(end.timestamp())


def align_to_minute(ts: float) -> int:
    """Floor a Unix timestamp to its minute boundary."""
    return int(ts) // 60 * 60


def to_timestamp(value: Union[datetime, float, int]) -> float:
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def from_timestamp(ts: float) -> datetime:
    """Unix seconds → naive local datetime."""
    return datetime.fromtimestamp(ts)


def local_hour(ts: float) -> int:
    return datetime.fromtimestamp(ts).hour
