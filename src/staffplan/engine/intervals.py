"""
Date interval helpers. All intervals are inclusive on both ends.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Tuple

ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class WeekBucket:
    week_start: date
    week_end: date

    @property
    def days(self) -> int:
        return (self.week_end - self.week_start).days + 1

    @property
    def period(self) -> str:
        return iso_period(self.week_start)


def overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True when the two inclusive intervals share at least one day."""
    return a_start <= b_end and b_start <= a_end


def overlap_days(a_start: date, a_end: date, b_start: date, b_end: date) -> int:
    """Number of days both intervals cover; 0 when disjoint."""
    shared = intersection(a_start, a_end, b_start, b_end)
    if shared is None:
        return 0
    return (shared[1] - shared[0]).days + 1


def intersection(a_start: date, a_end: date, b_start: date, b_end: date) -> Optional[Tuple[date, date]]:
    if not overlaps(a_start, a_end, b_start, b_end):
        return None
    return max(a_start, b_start), min(a_end, b_end)


def week_bounds(day: date) -> Tuple[date, date]:
    """Monday and Sunday of the week containing day."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def iso_period(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def weeks_between(start: date, end: date) -> List[WeekBucket]:
    """
    Partition [start, end] into Monday-aligned weeks.

    The first and last buckets are clipped to the range, so every day of the
    range lands in exactly one bucket.
    """
    buckets: List[WeekBucket] = []
    if start > end:
        return buckets

    current = start
    while current <= end:
        _, sunday = week_bounds(current)
        bucket_end = min(sunday, end)
        buckets.append(WeekBucket(current, bucket_end))
        current = bucket_end + ONE_DAY
    return buckets
