"""Per-wallet loading session wiring the fetcher to the state machine.

FundingSession owns the LoadingStateMachine for the selected wallet and runs
the backfill sequence: resume from cache, bounded 30-day fetch (probing the
last twelve months when it comes back empty), then each queued extended
window in turn.

Every fetch event is tagged with the wallet generation it was started for.
Selecting another wallet bumps the generation, so events that arrive late
for the previous wallet are dropped here (their records are still cached by
the fetcher).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from funding_history.config import FetchSettings
from funding_history.data.dedupe import newest_first
from funding_history.data.events import (
    CacheHit,
    EventListener,
    FetchCompleted,
    FetchEvent,
    FetchFailed,
    MilestoneReached,
    MonthProgress,
    RecordsUpdated,
    emit,
)
from funding_history.data.policy import days_ago
from funding_history.data.store import days_covered
from funding_history.exceptions import EmptyHistoryError, FetchError
from funding_history.loading.machine import LoadingPhase, LoadingStateMachine
from funding_history.logging import bind_wallet, get_logger, short_wallet, unbind_wallet
from funding_history.models import Timeframe

if TYPE_CHECKING:
    from funding_history.data.fetcher import FundingFetcher
    from funding_history.data.models import FundingRecord
    from funding_history.data.store import FundingCacheStore

logger = get_logger(__name__)


class FundingSession:
    """Drives progressive loading for whichever wallet is selected.

    Args:
        fetcher: Fetch pipeline used for every network or cache read.
        store: Cache store, read directly for resume decisions.
        settings: Fetch depths and batch sizes.
        listener: Optional consumer of fetch events for the current wallet.
            EmptyHistoryError is delivered to it as a FetchFailed event.

    Usage:
        session = FundingSession(fetcher, store, settings.fetch)
        await session.select_wallet(wallet)
        session.machine.available_windows()
        session.records_for(Timeframe.SEVEN_DAYS)
    """

    def __init__(
        self,
        fetcher: FundingFetcher,
        store: FundingCacheStore,
        settings: FetchSettings,
        listener: EventListener | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._settings = settings
        self._listener = listener
        self._machine = LoadingStateMachine()
        self._wallet: str | None = None
        self._generation = 0
        self._in_flight_generation: int | None = None
        self._records: list[FundingRecord] = []
        self._empty_reported = False

    @property
    def machine(self) -> LoadingStateMachine:
        return self._machine

    @property
    def wallet(self) -> str | None:
        return self._wallet

    @property
    def records(self) -> list[FundingRecord]:
        """Every record loaded for the current wallet, newest first."""
        return list(self._records)

    @property
    def has_no_history(self) -> bool:
        return self._empty_reported

    # ──────────────────────────────────────────────
    # Public methods
    # ──────────────────────────────────────────────

    async def select_wallet(self, wallet: str) -> None:
        """Switch to `wallet`, discarding the previous session, and load it."""
        self._generation += 1
        self._wallet = wallet
        self._records = []
        self._empty_reported = False
        self._machine.reset(wallet)
        logger.info("wallet_selected", wallet=short_wallet(wallet), generation=self._generation)
        await self.load()

    async def load(self) -> None:
        """Run the backfill sequence for the selected wallet.

        A no-op while a load for the same selection is already running.
        Fetch failures set the machine's error overlay and are not raised.
        """
        wallet = self._wallet
        if wallet is None:
            return
        generation = self._generation
        if self._in_flight_generation == generation:
            logger.debug("load_already_in_flight", wallet=short_wallet(wallet))
            return

        self._in_flight_generation = generation
        bind_wallet(wallet)
        try:
            await self._run(wallet, generation)
        except FetchError as e:
            logger.warning("load_failed", error=str(e), phase=self._machine.state.phase.value)
            if self._is_current(generation):
                self._machine.fail(e)
        finally:
            if self._in_flight_generation == generation:
                self._in_flight_generation = None
            unbind_wallet()

    async def retry(self) -> None:
        """Clear the error overlay and continue loading from where it stopped."""
        self._machine.clear_error()
        await self.load()

    def records_for(self, window: Timeframe) -> list[FundingRecord]:
        """Loaded records inside the trailing `window`, newest first."""
        cutoff = days_ago(self._store.policy.now(), window.days)
        return [r for r in self._records if r.ts >= cutoff]

    # ──────────────────────────────────────────────
    # Backfill sequence
    # ──────────────────────────────────────────────

    async def _run(self, wallet: str, generation: int) -> None:
        machine = self._machine
        listener = self._forward(generation)

        if machine.state.phase is LoadingPhase.IDLE:
            await self._start(wallet, generation)
            if not self._is_current(generation):
                return

        if machine.state.phase is LoadingPhase.SHORT_RANGE_LOADED:
            machine.begin_medium_range()

        records = await self._fetcher.fetch_incremental(
            wallet, listener, days=self._settings.incremental_days
        )
        if not self._is_current(generation):
            return

        if not records and not self._records:
            await self._probe(wallet, generation)
            return

        while machine.state.extended_queue and self._is_current(generation):
            window = machine.state.extended_queue[0]
            machine.begin_extended(window)
            await self._fetcher.fetch_extended(wallet, window, listener)
            if not self._is_current(generation):
                return
            machine.on_extended_loaded(window)

        if self._is_current(generation):
            machine.complete()
            logger.info(
                "load_complete",
                records=len(self._records),
                days_loaded=machine.state.days_loaded,
            )

    async def _start(self, wallet: str, generation: int) -> None:
        """Enter the first phase, resuming from the day index when possible.

        Gives up without touching the machine or the loaded records as soon
        as another wallet has been selected.
        """
        cache_state = await self._store.get_cache_state(wallet)
        if not self._is_current(generation):
            return
        if not cache_state.has_cache or cache_state.days_covered < self._settings.initial_days:
            self._machine.start_fresh()
            return

        cached_windows = await self._store.cached_extended_windows(wallet)
        if not self._is_current(generation):
            return
        self._machine.start_from_cache(cache_state.days_covered, cached_windows)

        deepest = max(
            [tf.days for tf in cached_windows] + [self._settings.incremental_days]
        )
        cached = await self._store.get_cached_records(wallet, deepest)
        if not self._is_current(generation):
            return
        self._records = newest_first([*self._records, *cached])

    async def _probe(self, wallet: str, generation: int) -> None:
        """Check the last twelve months before declaring the wallet empty."""
        logger.info("bounded_fetch_empty_probing", months=self._settings.probe_months)
        records = await self._fetcher.probe_twelve_months(wallet, self._forward(generation))
        if not self._is_current(generation):
            return

        if records:
            self._machine.update_days_loaded(days_covered(records, self._store.policy.now()))
        else:
            await self._report_empty(wallet)
        self._machine.complete()

    async def _report_empty(self, wallet: str) -> None:
        if self._empty_reported:
            return
        self._empty_reported = True
        error = EmptyHistoryError(wallet)
        logger.info("wallet_has_no_history")
        await emit(self._listener, FetchFailed(wallet, error))

    # ──────────────────────────────────────────────
    # Event handling
    # ──────────────────────────────────────────────

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _forward(self, generation: int) -> EventListener:
        """Listener that applies events to this session if still current."""

        async def listener(event: FetchEvent) -> None:
            if not self._is_current(generation):
                logger.debug("stale_event_dropped", event_type=type(event).__name__)
                return
            self._apply(event)
            await emit(self._listener, event)

        return listener

    def _apply(self, event: FetchEvent) -> None:
        machine = self._machine
        if isinstance(event, MilestoneReached):
            machine.on_milestone(event.wallet, event.milestone)
        elif isinstance(event, RecordsUpdated):
            self._records = newest_first([*self._records, *event.records])
            machine.update_days_loaded(event.days_loaded)
        elif isinstance(event, FetchCompleted):
            self._records = newest_first([*self._records, *event.records])
        elif isinstance(event, MonthProgress):
            machine.update_extended_progress(event)
        elif isinstance(event, CacheHit):
            machine.mark_cache_hit()
        # FetchFailed is always followed by the raise that load() turns into
        # the error overlay.
