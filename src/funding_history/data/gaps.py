"""Cache-gap resolution from the per-wallet day index.

Answers "what, if anything, must be fetched" by reading only the DayIndex,
never the month buckets themselves.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from funding_history.data.models import DayIndex
from funding_history.data.policy import date_days_ago, days_ago, to_utc, utc_date


class FetchNeed(str, Enum):
    """Which slice of a requested window is missing from the cache."""

    NONE = "none"
    RECENT = "recent"
    HISTORICAL = "historical"
    BOTH = "both"


@dataclass(frozen=True)
class MissingRange:
    """Sub-range of a requested window that is not covered by the cache."""

    start: datetime
    end: datetime
    need: FetchNeed

    @property
    def start_ts(self) -> float:
        return self.start.timestamp()


def compute_missing_range(
    index: DayIndex | None,
    requested_days: int,
    now: float,
    freshness_seconds: int,
) -> MissingRange:
    """Compare a wallet's day index against a requested trailing depth.

    - No index: everything is missing (BOTH).
    - Fresh, today covered and requested start covered: nothing (NONE).
    - Stale or today missing: BOTH when history is also missing, else
      RECENT from the newest covered date.
    - Otherwise only the older part is missing (HISTORICAL).
    """
    now_dt = to_utc(now)
    requested_start = to_utc(days_ago(now, requested_days))

    if index is None:
        return MissingRange(requested_start, now_dt, FetchNeed.BOTH)

    is_stale = now - index.refreshed_at > freshness_seconds
    has_today = index.newest_date >= utc_date(now)
    has_historical = index.oldest_date <= date_days_ago(now, requested_days)

    if has_today and not is_stale and has_historical:
        return MissingRange(requested_start, now_dt, FetchNeed.NONE)

    if not has_today or is_stale:
        if not has_historical:
            return MissingRange(requested_start, now_dt, FetchNeed.BOTH)
        newest = datetime.combine(index.newest_date, datetime.min.time(), timezone.utc)
        return MissingRange(newest, now_dt, FetchNeed.RECENT)

    oldest = datetime.combine(index.oldest_date, datetime.min.time(), timezone.utc)
    return MissingRange(requested_start, oldest, FetchNeed.HISTORICAL)
