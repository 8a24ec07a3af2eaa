"""Typed read/write abstraction over the funding cache database.

Provides FundingCacheStore with typed methods for month buckets and the
per-wallet day index. All key naming, JSON encoding, deduplicated merging,
and quota handling is isolated behind this interface.

CRITICAL: Writes never delete records. A bucket only grows by merging
newly fetched records through the deduplicator.
"""

import json
from datetime import date, timedelta

from funding_history.data.database import CacheDatabase
from funding_history.data.dedupe import dedupe, newest_first
from funding_history.data.gaps import MissingRange, compute_missing_range
from funding_history.data.models import (
    BucketKind,
    CacheState,
    DayIndex,
    FundingRecord,
    MonthBucket,
)
from funding_history.data.policy import (
    CachePolicy,
    date_days_ago,
    days_ago,
    month_end_ts,
    month_start_ts,
    months_in_range,
    to_utc,
    utc_date,
)
from funding_history.exceptions import QuotaError
from funding_history.logging import get_logger
from funding_history.models import (
    EXTENDED_TIMEFRAMES,
    SECONDS_PER_DAY,
    Timeframe,
)

logger = get_logger(__name__)

DAY_INDEX_KIND = "day-index"

# Eviction order: least essential record classes first.
_EVICTION_KIND_ORDER = (BucketKind.CANDLE_MONTH.value, BucketKind.FUNDING_MONTH.value)


class FundingCacheStore:
    """Month-bucketed funding cache with a per-wallet day index.

    Wraps CacheDatabase with typed methods. Constructed once per process
    and passed to the fetcher and the loading session.

    Usage:
        async with CacheDatabase("data/funding_cache.db") as database:
            store = FundingCacheStore(database, CachePolicy())
            await store.write_bucket(wallet, BucketKind.FUNDING_MONTH, 2025, 3, records)
    """

    def __init__(
        self,
        database: CacheDatabase,
        policy: CachePolicy,
        wallet_key_length: int = 8,
    ) -> None:
        self._database = database
        self._policy = policy
        self._wallet_key_length = wallet_key_length
        # Funding months whose cached records are incomplete (evicted or a
        # skipped write), keyed by wallet prefix. Value is the loss sequence.
        self._losses: dict[str, dict[tuple[int, int], int]] = {}
        self._loss_seq = 0

    @property
    def policy(self) -> CachePolicy:
        return self._policy

    # ──────────────────────────────────────────────
    # Keys
    # ──────────────────────────────────────────────

    def _wallet_prefix(self, wallet: str) -> str:
        return wallet[: self._wallet_key_length]

    def bucket_key(self, wallet: str, kind: BucketKind, year: int, month: int) -> str:
        return f"drift:{kind.value}:{self._wallet_prefix(wallet)}:{year}-{month:02d}"

    def day_index_key(self, wallet: str) -> str:
        return f"drift:{DAY_INDEX_KIND}:{self._wallet_prefix(wallet)}"

    def _kind_prefix(self, wallet: str, kind: BucketKind) -> str:
        return f"drift:{kind.value}:{self._wallet_prefix(wallet)}:"

    # ──────────────────────────────────────────────
    # Month buckets
    # ──────────────────────────────────────────────

    async def read_bucket(
        self,
        wallet: str,
        kind: BucketKind,
        year: int,
        month: int,
    ) -> MonthBucket | None:
        """Return the cached bucket, or None if absent or unreadable."""
        key = self.bucket_key(wallet, kind, year, month)
        raw = await self._database.get(key)
        if raw is None:
            return None
        try:
            return MonthBucket.from_dict(wallet, kind, year, month, json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("cache_bucket_unreadable", key=key, error=str(e))
            return None

    async def write_bucket(
        self,
        wallet: str,
        kind: BucketKind,
        year: int,
        month: int,
        records: list[FundingRecord],
        refreshed: bool = True,
    ) -> MonthBucket:
        """Merge records into a month bucket and persist it.

        refreshed=True means `records` is the complete set for the month as of
        now: the bucket's fetch time is updated and it is closed if the month
        has already ended. A partial write keeps the previous freshness data.

        The returned bucket has persisted=False when the write was skipped
        for lack of space; the month then counts as lost until a later
        refreshed write lands.
        """
        existing = await self.read_bucket(wallet, kind, year, month)
        if existing is not None:
            merged = dedupe([*existing.records, *records])
        else:
            merged = dedupe(records)

        if refreshed:
            fetched_at = self._policy.now()
            closed = self._policy.is_month_over(year, month)
        else:
            fetched_at = existing.fetched_at if existing else 0.0
            closed = existing.closed if existing else False

        bucket = MonthBucket(
            wallet=wallet,
            kind=kind,
            year=year,
            month=month,
            records=merged,
            fetched_at=fetched_at,
            closed=closed,
        )
        bucket.persisted = await self._put(
            self.bucket_key(wallet, kind, year, month),
            kind.value,
            json.dumps(bucket.to_dict()),
            wallet,
        )
        is_funding = kind is BucketKind.FUNDING_MONTH
        if not bucket.persisted:
            if is_funding:
                self._note_loss(self._wallet_prefix(wallet), year, month)
            return bucket

        if refreshed and is_funding:
            self._losses.get(self._wallet_prefix(wallet), {}).pop((year, month), None)
        logger.debug(
            "cache_bucket_written",
            kind=kind.value,
            month=f"{year}-{month:02d}",
            records=len(merged),
            added=len(merged) - (len(existing.records) if existing else 0),
            closed=closed,
        )
        return bucket

    async def store_records(
        self,
        wallet: str,
        records: list[FundingRecord],
        covered_from: float | None = None,
        since: int | None = None,
    ) -> bool:
        """Group records by calendar month and merge them into buckets.

        covered_from is the oldest timestamp a contiguous newest-first walk has
        reached. Every month that starts at or after it has been seen in full
        and is written as refreshed, even when it holds no records.

        since is the loss_mark() taken when the walk began. A covered month
        lost after that point is missing pages of this walk, so it is only
        written as a partial update. Without a mark any loss counts.

        Returns False when any write had to be skipped.
        """
        by_month: dict[tuple[int, int], list[FundingRecord]] = {}
        for record in records:
            dt = to_utc(record.ts)
            by_month.setdefault((dt.year, dt.month), []).append(record)

        covered: set[tuple[int, int]] = set()
        if covered_from is not None:
            covered = {
                (year, month)
                for year, month in months_in_range(covered_from, self._policy.now())
                if month_start_ts(year, month) >= covered_from
            }

        persisted = True
        for year, month in sorted(set(by_month) | covered):
            refreshed = (year, month) in covered and not self._lost_since(
                wallet, year, month, since
            )
            bucket = await self.write_bucket(
                wallet,
                BucketKind.FUNDING_MONTH,
                year,
                month,
                by_month.get((year, month), []),
                refreshed=refreshed,
            )
            persisted = persisted and bucket.persisted
        return persisted

    async def get_cached_records(self, wallet: str, days: int) -> list[FundingRecord]:
        """Cached funding records for the trailing `days`, newest first."""
        now = self._policy.now()
        cutoff = days_ago(now, days)
        collected: list[FundingRecord] = []
        for year, month in months_in_range(cutoff, now):
            bucket = await self.read_bucket(wallet, BucketKind.FUNDING_MONTH, year, month)
            if bucket is not None:
                collected.extend(bucket.records)
        return [r for r in newest_first(collected) if r.ts >= cutoff]

    # ──────────────────────────────────────────────
    # Day index
    # ──────────────────────────────────────────────

    async def get_day_index(self, wallet: str) -> DayIndex | None:
        key = self.day_index_key(wallet)
        raw = await self._database.get(key)
        if raw is None:
            return None
        try:
            return DayIndex.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("day_index_unreadable", key=key, error=str(e))
            return None

    async def set_day_index(self, wallet: str, index: DayIndex) -> None:
        key = self.day_index_key(wallet)
        written = await self._put(key, DAY_INDEX_KIND, json.dumps(index.to_dict()), wallet)
        if not written:
            # An older index left in place could claim a stale range.
            await self._database.delete(key)

    async def record_coverage(
        self,
        wallet: str,
        oldest: date,
        newest: date,
        refreshed_at: float | None = None,
    ) -> DayIndex | None:
        """Widen the day index to include [oldest, newest].

        The covered range only ever grows, except that it never reaches back
        past a month whose cached records are incomplete. If such a month
        holds the newest day, nothing can be claimed: the index is dropped
        and None is returned. refreshed_at=None keeps the previous refresh
        time (0 for a new index, i.e. immediately stale).
        """
        existing = await self.get_day_index(wallet)
        if existing is not None:
            index = DayIndex(
                newest_date=max(existing.newest_date, newest),
                oldest_date=min(existing.oldest_date, oldest),
                refreshed_at=(
                    refreshed_at if refreshed_at is not None else existing.refreshed_at
                ),
            )
        else:
            index = DayIndex(
                newest_date=newest,
                oldest_date=oldest,
                refreshed_at=refreshed_at if refreshed_at is not None else 0.0,
            )

        barrier = self._newest_lost_day(wallet, index.oldest_date, index.newest_date)
        if barrier is not None:
            if barrier >= index.newest_date:
                await self._database.delete(self.day_index_key(wallet))
                logger.warning("day_index_dropped", lost_through=barrier.isoformat())
                return None
            index.oldest_date = barrier + timedelta(days=1)

        await self.set_day_index(wallet, index)
        logger.debug(
            "day_index_updated",
            oldest=index.oldest_date.isoformat(),
            newest=index.newest_date.isoformat(),
        )
        return index

    async def get_missing_range(self, wallet: str, requested_days: int) -> MissingRange:
        """Ask the gap resolver what part of `requested_days` is missing."""
        index = await self.get_day_index(wallet)
        missing = compute_missing_range(
            index,
            requested_days,
            self._policy.now(),
            self._policy.freshness_seconds,
        )
        logger.debug(
            "cache_gap_resolved",
            requested_days=requested_days,
            need=missing.need.value,
            has_index=index is not None,
        )
        return missing

    async def get_cache_state(self, wallet: str) -> CacheState:
        index = await self.get_day_index(wallet)
        if index is None:
            return CacheState(has_cache=False)
        return CacheState(
            has_cache=True,
            oldest_date=index.oldest_date,
            newest_date=index.newest_date,
            days_covered=(index.newest_date - index.oldest_date).days,
        )

    async def cached_extended_windows(self, wallet: str) -> list[Timeframe]:
        """Extended windows whose full depth the day index already covers."""
        index = await self.get_day_index(wallet)
        if index is None:
            return []
        now = self._policy.now()
        return [
            tf
            for tf in EXTENDED_TIMEFRAMES
            if index.oldest_date <= date_days_ago(now, tf.days)
        ]

    # ──────────────────────────────────────────────
    # Manual clearing
    # ──────────────────────────────────────────────

    async def clear_current_month(self, wallet: str) -> None:
        """Forget the open month so the next read re-fetches it."""
        today = to_utc(self._policy.now())
        await self._database.delete(
            self.bucket_key(wallet, BucketKind.FUNDING_MONTH, today.year, today.month)
        )

    async def clear_wallet(self, wallet: str) -> int:
        """Drop every funding bucket and the day index for a wallet."""
        removed = await self._database.delete_prefix(
            self._kind_prefix(wallet, BucketKind.FUNDING_MONTH)
        )
        if await self._database.delete(self.day_index_key(wallet)):
            removed += 1
        self._losses.pop(self._wallet_prefix(wallet), None)
        logger.info("wallet_cache_cleared", entries=removed)
        return removed

    # ──────────────────────────────────────────────
    # Quota handling
    # ──────────────────────────────────────────────

    def loss_mark(self) -> int:
        """Position in the loss sequence; pass to store_records as `since`."""
        return self._loss_seq

    def lost_months(self, wallet: str) -> list[tuple[int, int]]:
        """Funding months whose cached records are currently incomplete."""
        return sorted(self._losses.get(self._wallet_prefix(wallet), {}))

    def _note_loss(self, prefix: str, year: int, month: int) -> None:
        self._loss_seq += 1
        self._losses.setdefault(prefix, {})[(year, month)] = self._loss_seq
        logger.debug("cache_month_lost", month=f"{year}-{month:02d}", seq=self._loss_seq)

    def _lost_since(self, wallet: str, year: int, month: int, since: int | None) -> bool:
        seq = self._losses.get(self._wallet_prefix(wallet), {}).get((year, month))
        if seq is None:
            return False
        return since is None or seq > since

    def _newest_lost_day(self, wallet: str, oldest: date, newest: date) -> date | None:
        """Last day of the newest incomplete month overlapping [oldest, newest]."""
        barrier: date | None = None
        for year, month in self._losses.get(self._wallet_prefix(wallet), {}):
            first = utc_date(month_start_ts(year, month))
            last = utc_date(month_end_ts(year, month)) - timedelta(days=1)
            if first <= newest and last >= oldest and (barrier is None or last > barrier):
                barrier = last
        return barrier

    async def _put(self, key: str, kind: str, value: str, wallet: str) -> bool:
        """Write through to the database, evicting once on QuotaError.

        Returns False when the write had to be skipped.
        """
        try:
            await self._database.put(key, kind, value)
            return True
        except QuotaError as e:
            logger.warning("cache_quota_exceeded", key=key, error=str(e))

        needed = len(value.encode("utf-8"))
        await self._evict(needed, keep_key=key, wallet=wallet)

        try:
            await self._database.put(key, kind, value)
            return True
        except QuotaError:
            logger.warning("cache_write_skipped", key=key, size=needed)
            return False

    async def _evict(self, needed: int, keep_key: str, wallet: str) -> int:
        """Free at least `needed` bytes of headroom, least essential first.

        Order: candle months, then other wallets' buckets (least recently
        used first), then this wallet's buckets (oldest month first). A
        wallet whose buckets are evicted loses its day index too, and each
        evicted funding month is remembered as lost so that a later
        record_coverage() does not claim it again.
        """
        overflow = (await self._database.usage()) + needed - self._database.max_bytes
        own_prefix = self._wallet_prefix(wallet)

        candidates = []
        for kind in _EVICTION_KIND_ORDER:
            entries = [e for e in await self._database.entries(kind=kind) if e.key != keep_key]
            others = [e for e in entries if e.key.split(":")[2] != own_prefix]
            own = sorted(
                (e for e in entries if e.key.split(":")[2] == own_prefix),
                key=lambda e: e.key,
            )
            candidates.extend(others)
            candidates.extend(own)

        freed = 0
        evicted = 0
        dropped_indexes: set[str] = set()
        for entry in candidates:
            if freed >= overflow:
                break
            if not await self._database.delete(entry.key):
                continue
            freed += entry.size
            evicted += 1
            if entry.kind != BucketKind.FUNDING_MONTH.value:
                continue
            _, _, prefix, year_month = entry.key.split(":")
            year, month = (int(part) for part in year_month.split("-"))
            self._note_loss(prefix, year, month)
            if prefix not in dropped_indexes:
                dropped_indexes.add(prefix)
                await self._database.delete(f"drift:{DAY_INDEX_KIND}:{prefix}")

        logger.warning(
            "cache_evicted",
            entries=evicted,
            freed_bytes=freed,
            needed_bytes=max(overflow, 0),
        )
        return freed


def days_covered(records: list[FundingRecord], now: float) -> int:
    """Whole days between now and the oldest record (0 when empty)."""
    if not records:
        return 0
    oldest = min(r.ts for r in records)
    return max(0, -(-int(now - oldest) // SECONDS_PER_DAY))


def select_default_timeframe(state: CacheState, now: float) -> Timeframe:
    """Pick the window to show first for a returning wallet.

    Recent data defaults to 7D; otherwise the smallest window that still
    reaches the newest cached day.
    """
    if not state.has_cache or state.newest_date is None:
        return Timeframe.SEVEN_DAYS

    age_days = (utc_date(now) - state.newest_date).days
    if age_days <= 7:
        return Timeframe.SEVEN_DAYS
    for tf in (Timeframe.THIRTY_DAYS, Timeframe.THREE_MONTHS, Timeframe.SIX_MONTHS):
        if age_days <= tf.days:
            return tf
    return Timeframe.ONE_YEAR
