"""Calendar helpers for rollup windows.

Message days are UTC calendar dates of the Slack ``ts``.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Tuple, Union


def utc_date(ts: Union[str, float]) -> date:
    """UTC calendar date of a Slack timestamp."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc).date()


def date_range(start: date, end: date) -> Iterator[date]:
    """Every calendar day from ``start`` to ``end``, both inclusive."""
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)


def window_start(today: date, days: int) -> date:
    """First day of a ``days`` window ending today."""
    return today - timedelta(days=days)


def epoch_bounds(start: date, end: date) -> Tuple[float, float]:
    """Epoch seconds of ``start`` 00:00 UTC and of the day after ``end``."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return lower.timestamp(), upper.timestamp()
