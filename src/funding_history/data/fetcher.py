"""Incremental funding payment fetch pipeline with cache-gap awareness.

Orchestrates fetching funding payments from the remote API and persisting
them via FundingCacheStore. Three request shapes:

- fetch_incremental: walks the newest-first paginated endpoint until the
  missing slice of the requested depth is covered, emitting coverage
  milestones while pages are still arriving.
- fetch_extended: serves 3M/6M/1Y windows month by month, fetching only
  absent or stale months in bounded concurrent batches.
- probe_twelve_months: scans the trailing twelve months to tell "no recent
  activity" apart from "no history at all".

CRITICAL implementation notes:
- Every page and month is persisted as soon as it arrives, so a later
  failure never loses what was already fetched.
- No retries happen at this layer. Failures are reported as a FetchFailed
  event and re-raised for the caller to decide.
- Closed months are never requested again once cached.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from funding_history.config import FetchSettings
from funding_history.data.dedupe import newest_first
from funding_history.data.events import (
    CacheHit,
    EventListener,
    FetchCompleted,
    FetchFailed,
    MilestoneReached,
    MonthProgress,
    ProgressPhase,
    RecordsUpdated,
    emit,
)
from funding_history.data.gaps import FetchNeed
from funding_history.data.models import BucketKind, FundingRecord
from funding_history.data.policy import (
    days_ago,
    month_start_ts,
    months_in_range,
    trailing_months,
    utc_date,
)
from funding_history.data.store import FundingCacheStore, days_covered
from funding_history.exceptions import FetchError
from funding_history.logging import get_logger, short_wallet
from funding_history.models import (
    SECONDS_PER_DAY,
    Milestone,
    Timeframe,
    milestones_up_to,
)

if TYPE_CHECKING:
    from funding_history.api.client import FundingApiClient

logger = get_logger(__name__)


class FundingFetcher:
    """Fetches funding payments from the API and persists them via the store.

    Usage:
        fetcher = FundingFetcher(client, store, settings.fetch)
        records = await fetcher.fetch_incremental(wallet, FetchCallbacks(on_complete=show))
    """

    def __init__(
        self,
        client: FundingApiClient,
        store: FundingCacheStore,
        settings: FetchSettings,
    ) -> None:
        self._client = client
        self._store = store
        self._settings = settings

    # ──────────────────────────────────────────────
    # Public methods
    # ──────────────────────────────────────────────

    async def fetch_incremental(
        self,
        wallet: str,
        listener: EventListener | None = None,
        days: int | None = None,
    ) -> list[FundingRecord]:
        """Fetch the trailing `days` (default incremental_days) of payments.

        Returns the deduplicated, newest-first records of the window.
        Raises FetchError after emitting FetchFailed.
        """
        requested_days = days or self._settings.incremental_days
        try:
            return await self._fetch_incremental(wallet, listener, requested_days)
        except FetchError as e:
            logger.warning(
                "incremental_fetch_failed",
                wallet=short_wallet(wallet),
                error=str(e),
            )
            await emit(listener, FetchFailed(wallet, e))
            raise

    async def fetch_extended(
        self,
        wallet: str,
        window: Timeframe,
        listener: EventListener | None = None,
    ) -> list[FundingRecord]:
        """Fetch a 3M/6M/1Y window through the monthly endpoint."""
        if not window.is_extended:
            raise ValueError(f"{window.value} is not an extended timeframe")
        try:
            return await self._fetch_extended(wallet, window, listener)
        except FetchError as e:
            logger.warning(
                "extended_fetch_failed",
                wallet=short_wallet(wallet),
                window=window.value,
                error=str(e),
            )
            await emit(listener, FetchFailed(wallet, e))
            raise

    async def probe_twelve_months(
        self,
        wallet: str,
        listener: EventListener | None = None,
    ) -> list[FundingRecord]:
        """Scan the trailing probe_months months for any activity at all.

        Every visited month is cached, empty ones included, and the scan
        never stops on the first hit because activity can be sparse.
        """
        try:
            return await self._probe(wallet, listener)
        except FetchError as e:
            logger.warning("probe_failed", wallet=short_wallet(wallet), error=str(e))
            await emit(listener, FetchFailed(wallet, e))
            raise

    # ──────────────────────────────────────────────
    # Bounded incremental walk
    # ──────────────────────────────────────────────

    async def _fetch_incremental(
        self,
        wallet: str,
        listener: EventListener | None,
        requested_days: int,
    ) -> list[FundingRecord]:
        policy = self._store.policy
        now = policy.now()
        requested_cutoff = days_ago(now, requested_days)

        missing = await self._store.get_missing_range(wallet, requested_days)
        cached = await self._store.get_cached_records(wallet, requested_days)

        if missing.need is FetchNeed.NONE:
            logger.info(
                "funding_cache_hit",
                wallet=short_wallet(wallet),
                records=len(cached),
                days=requested_days,
            )
            await emit(listener, CacheHit(wallet))
            for milestone in milestones_up_to(requested_days):
                await emit(listener, MilestoneReached(wallet, milestone))
            await emit(listener, RecordsUpdated(wallet, cached, requested_days))
            await emit(listener, FetchCompleted(wallet, cached))
            return cached

        emitted: set[Milestone] = set()
        index = await self._store.get_day_index(wallet)
        cached_days = 0
        if index is not None:
            cached_days = min(max(0, (utc_date(now) - index.oldest_date).days), requested_days)
        if cached and cached_days >= self._settings.initial_days:
            # Show what we already have while the gap is filled.
            for milestone in milestones_up_to(cached_days):
                emitted.add(milestone)
                await emit(listener, MilestoneReached(wallet, milestone))
            await emit(listener, RecordsUpdated(wallet, cached, cached_days))

        fetched: list[FundingRecord] = []
        walked_from = now
        loss_mark = self._store.loss_mark()
        persisted = True
        stop_before = missing.start_ts
        page_token: str | None = None
        pages = 0
        exhausted = False

        while True:
            page = await self._client.fetch_funding_page(wallet, page_token)
            pages += 1

            if page.records:
                fetched.extend(page.records)
                walked_from = min(walked_from, page.oldest_ts)
                persisted &= await self._store.store_records(
                    wallet, page.records, covered_from=walked_from, since=loss_mark
                )

                walked_days = int((now - walked_from) // SECONDS_PER_DAY)
                days_loaded = max(cached_days, min(walked_days, requested_days))
                for milestone in milestones_up_to(days_loaded):
                    if milestone in emitted:
                        continue
                    emitted.add(milestone)
                    await emit(listener, MilestoneReached(wallet, milestone))
                    if milestone is Milestone.SEVEN_DAYS:
                        partial = self._window([*fetched, *cached], requested_cutoff)
                        await emit(listener, RecordsUpdated(wallet, partial, days_loaded))

                if page.oldest_ts < stop_before:
                    break

            next_page = page.next_page
            if not next_page or next_page == page_token:
                exhausted = True
                break
            page_token = next_page

        if exhausted:
            # Nothing older exists, so the whole requested window is now known.
            walked_from = min(walked_from, requested_cutoff)
            persisted &= await self._store.store_records(
                wallet, [], covered_from=walked_from, since=loss_mark
            )

        final = self._window([*fetched, *cached], requested_cutoff)

        if final or index is not None:
            await self._store.record_coverage(
                wallet,
                oldest=utc_date(walked_from),
                newest=utc_date(now),
                refreshed_at=now,
            )

        if final:
            for milestone in milestones_up_to(requested_days):
                if milestone not in emitted:
                    emitted.add(milestone)
                    await emit(listener, MilestoneReached(wallet, milestone))

        logger.info(
            "incremental_fetch_complete",
            wallet=short_wallet(wallet),
            need=missing.need.value,
            pages=pages,
            fetched=len(fetched),
            records=len(final),
            exhausted=exhausted,
            persisted=persisted,
        )

        await emit(listener, RecordsUpdated(wallet, final, requested_days if final else 0))
        await emit(listener, FetchCompleted(wallet, final))
        return final

    # ──────────────────────────────────────────────
    # Monthly variants
    # ──────────────────────────────────────────────

    async def _fetch_extended(
        self,
        wallet: str,
        window: Timeframe,
        listener: EventListener | None,
    ) -> list[FundingRecord]:
        now = self._store.policy.now()
        cutoff = days_ago(now, window.days)
        months = list(reversed(months_in_range(cutoff, now)))

        records, fetched_current = await self._collect_months(wallet, months, listener)

        oldest_year, oldest_month = months[-1]
        await self._store.record_coverage(
            wallet,
            oldest=utc_date(month_start_ts(oldest_year, oldest_month)),
            newest=utc_date(now),
            refreshed_at=now if fetched_current else None,
        )

        final = self._window(records, cutoff)
        logger.info(
            "extended_fetch_complete",
            wallet=short_wallet(wallet),
            window=window.value,
            months=len(months),
            records=len(final),
        )
        await emit(listener, FetchCompleted(wallet, final))
        return final

    async def _probe(
        self,
        wallet: str,
        listener: EventListener | None,
    ) -> list[FundingRecord]:
        now = self._store.policy.now()
        months = trailing_months(now, self._settings.probe_months)

        records, fetched_current = await self._collect_months(wallet, months, listener)
        final = newest_first(records)

        if final:
            oldest_year, oldest_month = months[-1]
            await self._store.record_coverage(
                wallet,
                oldest=utc_date(month_start_ts(oldest_year, oldest_month)),
                newest=utc_date(now),
                refreshed_at=now if fetched_current else None,
            )

        logger.info(
            "probe_complete",
            wallet=short_wallet(wallet),
            months=len(months),
            records=len(final),
        )
        await emit(listener, FetchCompleted(wallet, final))
        return final

    async def _collect_months(
        self,
        wallet: str,
        months: list[tuple[int, int]],
        listener: EventListener | None,
    ) -> tuple[list[FundingRecord], bool]:
        """Serve months from cache where fresh, fetch the rest in batches.

        `months` is newest first. Returns all collected records and whether
        the current month was fetched from the network.
        """
        policy = self._store.policy
        total = len(months)
        await emit(listener, MonthProgress(wallet, 0, total, ProgressPhase.CHECKING_CACHE))

        collected: list[FundingRecord] = []
        to_fetch: list[tuple[int, int]] = []
        for year, month in months:
            bucket = await self._store.read_bucket(
                wallet, BucketKind.FUNDING_MONTH, year, month
            )
            if policy.is_stale(bucket, policy.is_current_month(year, month)):
                to_fetch.append((year, month))
            else:
                collected.extend(bucket.records)

        now = policy.now()
        satisfied = total - len(to_fetch)
        if collected:
            await emit(
                listener,
                RecordsUpdated(wallet, newest_first(collected), days_covered(collected, now)),
            )

        fetched_current = any(policy.is_current_month(y, m) for y, m in to_fetch)
        last_phase = ProgressPhase.CHECKING_CACHE
        if to_fetch:
            last_phase = ProgressPhase.FETCHING
            await emit(listener, MonthProgress(wallet, satisfied, total, last_phase))

        batch_size = max(1, self._settings.month_batch_size)
        for i in range(0, len(to_fetch), batch_size):
            batch = to_fetch[i : i + batch_size]
            results = await asyncio.gather(
                *(self._client.fetch_funding_month(wallet, y, m) for y, m in batch),
                return_exceptions=True,
            )

            first_error: BaseException | None = None
            for (year, month), result in zip(batch, results):
                if isinstance(result, BaseException):
                    first_error = first_error or result
                    continue
                # Empty months are cached too so they count as fetched.
                bucket = await self._store.write_bucket(
                    wallet, BucketKind.FUNDING_MONTH, year, month, result
                )
                collected.extend(bucket.records)

            if first_error is not None:
                raise first_error

            satisfied += len(batch)
            last_phase = ProgressPhase.COMPLETE if satisfied == total else ProgressPhase.FETCHING
            await emit(listener, MonthProgress(wallet, satisfied, total, last_phase))
            await emit(
                listener,
                RecordsUpdated(wallet, newest_first(collected), days_covered(collected, now)),
            )

        if last_phase is not ProgressPhase.COMPLETE:
            await emit(listener, MonthProgress(wallet, total, total, ProgressPhase.COMPLETE))

        return collected, fetched_current

    @staticmethod
    def _window(records: list[FundingRecord], cutoff: float) -> list[FundingRecord]:
        return [r for r in newest_first(records) if r.ts >= cutoff]
