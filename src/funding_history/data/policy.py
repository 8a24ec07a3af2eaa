"""Cache freshness policy and calendar-month helpers.

All calendar arithmetic is done in UTC so month buckets line up with the
exchange's monthly endpoint regardless of the host timezone.
"""

import time
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from funding_history.data.models import MonthBucket
from funding_history.models import SECONDS_PER_DAY


def to_utc(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def utc_date(ts: float) -> date:
    return to_utc(ts).date()


def days_ago(now: float, days: int) -> float:
    """Timestamp `days` whole days before `now`."""
    return now - days * SECONDS_PER_DAY


def month_start_ts(year: int, month: int) -> float:
    return datetime(year, month, 1, tzinfo=timezone.utc).timestamp()


def month_end_ts(year: int, month: int) -> float:
    """Timestamp of the first instant of the following month."""
    if month == 12:
        return datetime(year + 1, 1, 1, tzinfo=timezone.utc).timestamp()
    return datetime(year, month + 1, 1, tzinfo=timezone.utc).timestamp()


def months_in_range(start_ts: float, end_ts: float) -> list[tuple[int, int]]:
    """All (year, month) pairs touched by [start_ts, end_ts], oldest first."""
    start = to_utc(start_ts)
    end = to_utc(end_ts)
    year, month = start.year, start.month
    months: list[tuple[int, int]] = []
    while (year, month) <= (end.year, end.month):
        months.append((year, month))
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def trailing_months(now: float, count: int) -> list[tuple[int, int]]:
    """The `count` calendar months ending with the current one, newest first."""
    today = to_utc(now)
    year, month = today.year, today.month
    months: list[tuple[int, int]] = []
    for _ in range(count):
        months.append((year, month))
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
    return months


def date_days_ago(now: float, days: int) -> date:
    return utc_date(now) - timedelta(days=days)


class CachePolicy:
    """Decides whether a cached month may be served without a network call.

    A closed month (fully fetched after it ended) is never stale. An open
    month is stale once its last fetch is older than the freshness window.
    """

    def __init__(
        self,
        freshness_seconds: int = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._freshness_seconds = freshness_seconds
        self._clock = clock

    @property
    def freshness_seconds(self) -> int:
        return self._freshness_seconds

    def now(self) -> float:
        return self._clock()

    def is_current_month(self, year: int, month: int) -> bool:
        today = to_utc(self._clock())
        return today.year == year and today.month == month

    def is_month_over(self, year: int, month: int) -> bool:
        return month_end_ts(year, month) <= self._clock()

    def is_stale(self, bucket: MonthBucket | None, is_current_month: bool) -> bool:
        if bucket is None:
            return True
        if bucket.closed and not is_current_month:
            return False
        return self._clock() - bucket.fetched_at > self._freshness_seconds

    def needs_fetch(self, bucket: MonthBucket | None) -> bool:
        """Convenience wrapper that works out whether the bucket is current."""
        if bucket is None:
            return True
        return self.is_stale(bucket, self.is_current_month(bucket.year, bucket.month))
