"""Tests for CachePolicy staleness rules and calendar helpers."""

from datetime import datetime, timezone

from funding_history.data.models import BucketKind, MonthBucket
from funding_history.data.policy import (
    CachePolicy,
    month_end_ts,
    month_start_ts,
    months_in_range,
    trailing_months,
)


def _ts(*args: int) -> float:
    return datetime(*args, tzinfo=timezone.utc).timestamp()


def _bucket(year: int, month: int, fetched_at: float, closed: bool) -> MonthBucket:
    return MonthBucket(
        wallet="wallet",
        kind=BucketKind.FUNDING_MONTH,
        year=year,
        month=month,
        fetched_at=fetched_at,
        closed=closed,
    )


class TestCalendarHelpers:
    def test_months_in_range_crosses_year_boundary(self) -> None:
        months = months_in_range(_ts(2025, 11, 15), _ts(2026, 2, 3))

        assert months == [(2025, 11), (2025, 12), (2026, 1), (2026, 2)]

    def test_months_in_range_single_month(self) -> None:
        assert months_in_range(_ts(2026, 3, 1), _ts(2026, 3, 31)) == [(2026, 3)]

    def test_trailing_months_newest_first(self) -> None:
        assert trailing_months(_ts(2026, 2, 10), 4) == [
            (2026, 2),
            (2026, 1),
            (2025, 12),
            (2025, 11),
        ]

    def test_month_bounds(self) -> None:
        assert month_start_ts(2025, 12) == _ts(2025, 12, 1)
        assert month_end_ts(2025, 12) == _ts(2026, 1, 1)
        assert month_end_ts(2026, 2) == _ts(2026, 3, 1)


class TestCachePolicy:
    def test_missing_bucket_is_stale(self, policy: CachePolicy) -> None:
        assert policy.is_stale(None, is_current_month=False) is True

    def test_closed_past_month_never_stale(self, policy: CachePolicy, clock) -> None:
        bucket = _bucket(2025, 6, fetched_at=_ts(2025, 7, 2), closed=True)

        assert policy.is_stale(bucket, is_current_month=False) is False
        clock.advance(365 * 86_400)
        assert policy.is_stale(bucket, is_current_month=False) is False

    def test_open_month_fresh_within_window(self, policy: CachePolicy, clock) -> None:
        bucket = _bucket(2026, 3, fetched_at=clock.now - 100, closed=False)

        assert policy.is_stale(bucket, is_current_month=True) is False

    def test_open_month_stale_after_window(self, policy: CachePolicy, clock) -> None:
        bucket = _bucket(2026, 3, fetched_at=clock.now - 301, closed=False)

        assert policy.is_stale(bucket, is_current_month=True) is True

    def test_open_past_month_goes_stale(self, policy: CachePolicy, clock) -> None:
        # Partially written past month: must be re-fetched to become closed.
        bucket = _bucket(2026, 1, fetched_at=0.0, closed=False)

        assert policy.is_stale(bucket, is_current_month=False) is True

    def test_closed_flag_ignored_for_current_month(self, policy: CachePolicy, clock) -> None:
        bucket = _bucket(2026, 3, fetched_at=clock.now - 1000, closed=True)

        assert policy.is_stale(bucket, is_current_month=True) is True

    def test_current_month_and_month_over(self, policy: CachePolicy) -> None:
        assert policy.is_current_month(2026, 3) is True
        assert policy.is_current_month(2026, 2) is False
        assert policy.is_month_over(2026, 2) is True
        assert policy.is_month_over(2026, 3) is False

    def test_needs_fetch_works_out_current_month(self, policy: CachePolicy, clock) -> None:
        current = _bucket(2026, 3, fetched_at=clock.now - 1000, closed=False)
        past = _bucket(2026, 2, fetched_at=clock.now - 1000, closed=True)

        assert policy.needs_fetch(current) is True
        assert policy.needs_fetch(past) is False
        assert policy.needs_fetch(None) is True
