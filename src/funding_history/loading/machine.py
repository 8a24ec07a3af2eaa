"""Loading state machine sequencing which trailing window is being populated.

Phases advance short range (7 days) -> medium range (30 days) -> extended
windows (3M, 6M, 1Y, one at a time) -> complete. The phase never moves
backwards within a wallet session; only reset() starts over.

ERROR is an overlay rather than a terminal phase: fail() records the error
and current_phase() reports ERROR, but the underlying phase, loaded days and
pending queue are kept so clear_error() resumes where loading stopped.

Milestones are idempotent and keyed by wallet. A repeated milestone, one for
a different wallet, or one behind the current phase is ignored, so a late
"30 days loaded" signal from a cache check can never rewind the machine or
reset the extended queue.
"""

from dataclasses import dataclass, field
from enum import Enum

from funding_history.data.events import MonthProgress
from funding_history.logging import get_logger, short_wallet
from funding_history.models import (
    ALL_TIMEFRAMES,
    EXTENDED_TIMEFRAMES,
    SHORT_TIMEFRAMES,
    Milestone,
    Timeframe,
    milestones_up_to,
)

logger = get_logger(__name__)


class LoadingPhase(str, Enum):
    """Backfill phase, in the order the machine moves through them."""

    IDLE = "idle"
    LOADING_SHORT_RANGE = "loading_short_range"
    SHORT_RANGE_LOADED = "short_range_loaded"
    LOADING_MEDIUM_RANGE = "loading_medium_range"
    MEDIUM_RANGE_LOADED = "medium_range_loaded"
    LOADING_EXTENDED = "loading_extended"
    COMPLETE = "complete"
    ERROR = "error"  # overlay only, never stored as the underlying phase

    @property
    def rank(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [
    LoadingPhase.IDLE,
    LoadingPhase.LOADING_SHORT_RANGE,
    LoadingPhase.SHORT_RANGE_LOADED,
    LoadingPhase.LOADING_MEDIUM_RANGE,
    LoadingPhase.MEDIUM_RANGE_LOADED,
    LoadingPhase.LOADING_EXTENDED,
    LoadingPhase.COMPLETE,
    LoadingPhase.ERROR,
]


class WindowState(str, Enum):
    """How a consumer should present a trailing window."""

    DISABLED = "disabled"
    LOADING = "loading"
    AVAILABLE = "available"


@dataclass
class LoadingState:
    """Snapshot of one wallet session's loading progress."""

    wallet: str | None = None
    phase: LoadingPhase = LoadingPhase.IDLE
    days_loaded: int = 0
    currently_fetching: Timeframe | None = None
    extended_queue: list[Timeframe] = field(default_factory=list)
    cache_hit: bool = False
    milestones: set[Milestone] = field(default_factory=set)
    error: Exception | None = None
    extended_progress: MonthProgress | None = None


class LoadingStateMachine:
    """Finite-state machine over LoadingPhase for a single wallet at a time.

    Usage:
        machine = LoadingStateMachine()
        machine.reset(wallet)
        machine.start_fresh()
        machine.on_milestone(wallet, Milestone.SEVEN_DAYS)
        machine.available_windows()  # [24H, 7D]
    """

    def __init__(self) -> None:
        self._state = LoadingState()

    @property
    def state(self) -> LoadingState:
        return self._state

    # ──────────────────────────────────────────────
    # Session lifecycle
    # ──────────────────────────────────────────────

    def reset(self, wallet: str | None = None) -> None:
        """Discard all progress and bind the machine to `wallet`."""
        self._state = LoadingState(wallet=wallet)

    def start_fresh(self) -> None:
        """Begin the short-range load for a wallet with nothing cached."""
        if self._state.phase is not LoadingPhase.IDLE:
            logger.debug("start_ignored", phase=self._state.phase.value)
            return
        self._state.phase = LoadingPhase.LOADING_SHORT_RANGE
        self._state.currently_fetching = Timeframe.SEVEN_DAYS

    def start_from_cache(
        self,
        days_covered: int,
        cached_windows: list[Timeframe] | tuple[Timeframe, ...] = (),
    ) -> None:
        """Resume from a cached day index covering `days_covered` days.

        Skips every phase the cache already satisfies. With 30 or more days
        the queue holds only the extended windows that are not cached yet.
        """
        if self._state.phase is not LoadingPhase.IDLE:
            logger.debug("start_ignored", phase=self._state.phase.value)
            return

        state = self._state
        state.cache_hit = True
        state.days_loaded = days_covered
        state.milestones = set(milestones_up_to(days_covered))

        if days_covered >= Milestone.THIRTY_DAYS.days:
            queue = [tf for tf in EXTENDED_TIMEFRAMES if tf not in cached_windows]
            state.extended_queue = queue
            if queue:
                state.phase = LoadingPhase.MEDIUM_RANGE_LOADED
                state.currently_fetching = queue[0]
            else:
                state.phase = LoadingPhase.COMPLETE
                state.currently_fetching = None
        elif days_covered >= Milestone.SEVEN_DAYS.days:
            state.phase = LoadingPhase.SHORT_RANGE_LOADED
            state.currently_fetching = Timeframe.THIRTY_DAYS
        else:
            state.phase = LoadingPhase.LOADING_SHORT_RANGE
            state.currently_fetching = Timeframe.SEVEN_DAYS

        logger.info(
            "loading_resumed_from_cache",
            wallet=short_wallet(state.wallet or ""),
            days_covered=days_covered,
            phase=state.phase.value,
            queue=[tf.value for tf in state.extended_queue],
        )

    # ──────────────────────────────────────────────
    # Transitions
    # ──────────────────────────────────────────────

    def on_milestone(self, wallet: str, milestone: Milestone) -> bool:
        """Apply a coverage milestone. Returns False when it was ignored."""
        state = self._state
        if wallet != state.wallet:
            logger.debug("milestone_for_other_wallet", milestone=milestone.value)
            return False
        if milestone in state.milestones:
            return False

        state.milestones.add(milestone)
        state.days_loaded = max(state.days_loaded, milestone.days)

        if milestone is Milestone.SEVEN_DAYS:
            if self._advance(LoadingPhase.SHORT_RANGE_LOADED):
                state.currently_fetching = Timeframe.THIRTY_DAYS
        elif milestone is Milestone.THIRTY_DAYS:
            if self._advance(LoadingPhase.MEDIUM_RANGE_LOADED):
                state.extended_queue = list(EXTENDED_TIMEFRAMES)
                state.currently_fetching = state.extended_queue[0]
        # 14d only unlocks the 7D comparison and moves no phase.

        logger.debug(
            "milestone_reached",
            milestone=milestone.value,
            phase=state.phase.value,
        )
        return True

    def begin_medium_range(self) -> None:
        if self._advance(LoadingPhase.LOADING_MEDIUM_RANGE):
            self._state.currently_fetching = Timeframe.THIRTY_DAYS

    def begin_extended(self, window: Timeframe) -> bool:
        """Mark `window` as the extended window now being fetched."""
        state = self._state
        if window not in state.extended_queue:
            return False
        if not self._advance(LoadingPhase.LOADING_EXTENDED):
            return False
        state.currently_fetching = window
        state.extended_progress = None
        return True

    def on_extended_loaded(self, window: Timeframe) -> None:
        """Drop `window` from the queue and move on to the next one."""
        state = self._state
        state.extended_queue = [tf for tf in state.extended_queue if tf is not window]
        state.extended_progress = None
        state.days_loaded = max(state.days_loaded, window.days)
        if state.extended_queue:
            self._advance(LoadingPhase.LOADING_EXTENDED)
            state.currently_fetching = state.extended_queue[0]
        else:
            self.complete()

    def complete(self) -> None:
        self._advance(LoadingPhase.COMPLETE)
        self._state.currently_fetching = None
        self._state.extended_queue = []
        self._state.extended_progress = None

    def update_days_loaded(self, days: int) -> None:
        """Raise the loaded depth; crossing 14 days sets the silent milestone."""
        state = self._state
        state.days_loaded = max(state.days_loaded, days)
        if state.days_loaded >= Milestone.FOURTEEN_DAYS.days:
            state.milestones.add(Milestone.FOURTEEN_DAYS)

    def update_extended_progress(self, progress: MonthProgress) -> None:
        self._state.extended_progress = progress

    def mark_cache_hit(self) -> None:
        self._state.cache_hit = True

    def fail(self, error: Exception) -> None:
        """Set the error overlay without touching loaded data."""
        self._state.error = error
        logger.warning(
            "loading_failed",
            phase=self._state.phase.value,
            error=str(error),
        )

    def clear_error(self) -> None:
        self._state.error = None

    def _advance(self, phase: LoadingPhase) -> bool:
        """Move forward to `phase`; refuse any move backwards."""
        current = self._state.phase
        if phase.rank < current.rank:
            logger.debug(
                "phase_regression_ignored",
                current=current.value,
                requested=phase.value,
            )
            return False
        self._state.phase = phase
        return True

    # ──────────────────────────────────────────────
    # Observable outputs
    # ──────────────────────────────────────────────

    def current_phase(self) -> LoadingPhase:
        if self._state.error is not None:
            return LoadingPhase.ERROR
        return self._state.phase

    def currently_fetching_window(self) -> Timeframe | None:
        """The single window to show progress on, if any."""
        if self._state.error is not None:
            return None
        if self._state.phase is LoadingPhase.LOADING_SHORT_RANGE:
            return Timeframe.SEVEN_DAYS
        return self._state.currently_fetching

    def loading_windows(self) -> list[Timeframe]:
        states = self.timeframe_states()
        return [tf for tf in ALL_TIMEFRAMES if states[tf] is WindowState.LOADING]

    def available_windows(self) -> list[Timeframe]:
        states = self.timeframe_states()
        return [tf for tf in ALL_TIMEFRAMES if states[tf] is WindowState.AVAILABLE]

    def disabled_windows(self) -> list[Timeframe]:
        states = self.timeframe_states()
        return [tf for tf in ALL_TIMEFRAMES if states[tf] is WindowState.DISABLED]

    def timeframe_states(self) -> dict[Timeframe, WindowState]:
        """Per-window presentation state for the current phase.

        While the error overlay is set, windows that were loading are
        reported as disabled; everything already loaded stays available.
        """
        state = self._state
        phase = state.phase
        states: dict[Timeframe, WindowState] = {}

        for tf in ALL_TIMEFRAMES:
            if phase is LoadingPhase.IDLE:
                value = WindowState.DISABLED
            elif phase is LoadingPhase.LOADING_SHORT_RANGE:
                value = WindowState.LOADING if tf in SHORT_TIMEFRAMES else WindowState.DISABLED
            elif phase in (LoadingPhase.SHORT_RANGE_LOADED, LoadingPhase.LOADING_MEDIUM_RANGE):
                if tf in SHORT_TIMEFRAMES:
                    value = WindowState.AVAILABLE
                elif tf is Timeframe.THIRTY_DAYS:
                    value = WindowState.LOADING
                else:
                    value = WindowState.DISABLED
            elif phase in (LoadingPhase.MEDIUM_RANGE_LOADED, LoadingPhase.LOADING_EXTENDED):
                if tf is state.currently_fetching:
                    value = WindowState.LOADING
                elif tf in state.extended_queue:
                    value = WindowState.DISABLED
                else:
                    value = WindowState.AVAILABLE
            else:
                value = WindowState.AVAILABLE

            if state.error is not None and value is WindowState.LOADING:
                value = WindowState.DISABLED
            states[tf] = value

        return states

    def has_comparison_data(self, window: Timeframe) -> bool:
        """Whether the previous period of `window` is loaded for comparison."""
        if window is Timeframe.ONE_DAY:
            return self._state.days_loaded >= 2
        if window is Timeframe.SEVEN_DAYS:
            return Milestone.FOURTEEN_DAYS in self._state.milestones
        return False

    def has_completed_initial_load(self) -> bool:
        return self._state.phase not in (LoadingPhase.IDLE, LoadingPhase.LOADING_SHORT_RANGE)
