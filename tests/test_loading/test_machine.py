"""Tests for LoadingStateMachine transitions, guards, and window states."""

import pytest

from funding_history.exceptions import TransportError
from funding_history.loading.machine import LoadingPhase, LoadingStateMachine, WindowState
from funding_history.models import Milestone, Timeframe

WALLET = "WalletAAAA1111111111111111111111111111111111"
OTHER = "WalletBBBB2222222222222222222222222222222222"

T = Timeframe


@pytest.fixture()
def machine() -> LoadingStateMachine:
    machine = LoadingStateMachine()
    machine.reset(WALLET)
    return machine


class TestFreshLoad:
    def test_idle_disables_everything(self) -> None:
        machine = LoadingStateMachine()

        assert machine.current_phase() is LoadingPhase.IDLE
        assert machine.disabled_windows() == list(Timeframe)
        assert machine.currently_fetching_window() is None

    def test_short_range_loading(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()

        assert machine.current_phase() is LoadingPhase.LOADING_SHORT_RANGE
        assert machine.loading_windows() == [T.ONE_DAY, T.SEVEN_DAYS]
        assert machine.disabled_windows() == [T.THIRTY_DAYS, T.THREE_MONTHS, T.SIX_MONTHS, T.ONE_YEAR]
        assert machine.currently_fetching_window() is T.SEVEN_DAYS
        assert machine.has_completed_initial_load() is False

    def test_seven_day_milestone_unlocks_short_windows(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()

        assert machine.on_milestone(WALLET, Milestone.SEVEN_DAYS) is True

        assert machine.current_phase() is LoadingPhase.SHORT_RANGE_LOADED
        assert machine.available_windows() == [T.ONE_DAY, T.SEVEN_DAYS]
        assert machine.loading_windows() == [T.THIRTY_DAYS]
        assert machine.has_completed_initial_load() is True

    def test_full_sequence_to_complete(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.on_milestone(WALLET, Milestone.SEVEN_DAYS)
        machine.begin_medium_range()
        assert machine.current_phase() is LoadingPhase.LOADING_MEDIUM_RANGE

        machine.on_milestone(WALLET, Milestone.THIRTY_DAYS)
        assert machine.current_phase() is LoadingPhase.MEDIUM_RANGE_LOADED
        assert machine.state.extended_queue == [T.THREE_MONTHS, T.SIX_MONTHS, T.ONE_YEAR]
        assert machine.loading_windows() == [T.THREE_MONTHS]

        machine.begin_extended(T.THREE_MONTHS)
        machine.on_extended_loaded(T.THREE_MONTHS)
        assert machine.current_phase() is LoadingPhase.LOADING_EXTENDED
        assert machine.currently_fetching_window() is T.SIX_MONTHS
        states = machine.timeframe_states()
        assert states[T.THREE_MONTHS] is WindowState.AVAILABLE
        assert states[T.SIX_MONTHS] is WindowState.LOADING
        assert states[T.ONE_YEAR] is WindowState.DISABLED

        machine.begin_extended(T.SIX_MONTHS)
        machine.on_extended_loaded(T.SIX_MONTHS)
        machine.begin_extended(T.ONE_YEAR)
        machine.on_extended_loaded(T.ONE_YEAR)

        assert machine.current_phase() is LoadingPhase.COMPLETE
        assert machine.available_windows() == list(Timeframe)
        assert machine.currently_fetching_window() is None


class TestMilestoneGuards:
    def test_repeated_milestone_is_ignored(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.on_milestone(WALLET, Milestone.SEVEN_DAYS)

        assert machine.on_milestone(WALLET, Milestone.SEVEN_DAYS) is False

    def test_milestone_for_other_wallet_is_ignored(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()

        assert machine.on_milestone(OTHER, Milestone.SEVEN_DAYS) is False
        assert machine.current_phase() is LoadingPhase.LOADING_SHORT_RANGE

    def test_late_thirty_day_signal_keeps_extended_queue(
        self, machine: LoadingStateMachine
    ) -> None:
        machine.start_from_cache(45)
        machine.begin_extended(T.THREE_MONTHS)
        machine.on_extended_loaded(T.THREE_MONTHS)

        assert machine.on_milestone(WALLET, Milestone.THIRTY_DAYS) is False

        assert machine.current_phase() is LoadingPhase.LOADING_EXTENDED
        assert machine.state.extended_queue == [T.SIX_MONTHS, T.ONE_YEAR]
        assert machine.currently_fetching_window() is T.SIX_MONTHS

    def test_earlier_milestone_never_rewinds(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.on_milestone(WALLET, Milestone.THIRTY_DAYS)
        machine.begin_extended(T.THREE_MONTHS)

        machine.on_milestone(WALLET, Milestone.SEVEN_DAYS)

        assert machine.current_phase() is LoadingPhase.LOADING_EXTENDED
        assert machine.currently_fetching_window() is T.THREE_MONTHS

    def test_phase_is_monotonic_until_reset(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.complete()

        machine.begin_medium_range()
        machine.start_fresh()

        assert machine.current_phase() is LoadingPhase.COMPLETE

        machine.reset(WALLET)
        assert machine.current_phase() is LoadingPhase.IDLE


class TestResumeFromCache:
    def test_thirty_days_cached_skips_to_extended(self, machine: LoadingStateMachine) -> None:
        machine.start_from_cache(100, [T.THREE_MONTHS])

        assert machine.current_phase() is LoadingPhase.MEDIUM_RANGE_LOADED
        assert machine.state.cache_hit is True
        assert machine.state.extended_queue == [T.SIX_MONTHS, T.ONE_YEAR]
        states = machine.timeframe_states()
        assert states[T.THREE_MONTHS] is WindowState.AVAILABLE
        assert states[T.SIX_MONTHS] is WindowState.LOADING
        assert states[T.ONE_YEAR] is WindowState.DISABLED

    def test_everything_cached_is_complete(self, machine: LoadingStateMachine) -> None:
        machine.start_from_cache(400, [T.THREE_MONTHS, T.SIX_MONTHS, T.ONE_YEAR])

        assert machine.current_phase() is LoadingPhase.COMPLETE
        assert machine.disabled_windows() == []

    def test_week_cached_waits_for_thirty_days(self, machine: LoadingStateMachine) -> None:
        machine.start_from_cache(10)

        assert machine.current_phase() is LoadingPhase.SHORT_RANGE_LOADED
        assert machine.currently_fetching_window() is T.THIRTY_DAYS
        assert machine.state.milestones == {Milestone.SEVEN_DAYS}

    def test_shallow_cache_starts_short_range(self, machine: LoadingStateMachine) -> None:
        machine.start_from_cache(3)

        assert machine.current_phase() is LoadingPhase.LOADING_SHORT_RANGE


class TestErrorOverlay:
    def test_error_keeps_underlying_phase_and_data(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.on_milestone(WALLET, Milestone.SEVEN_DAYS)
        error = TransportError()

        machine.fail(error)

        assert machine.current_phase() is LoadingPhase.ERROR
        assert machine.state.phase is LoadingPhase.SHORT_RANGE_LOADED
        assert machine.state.error is error
        assert machine.available_windows() == [T.ONE_DAY, T.SEVEN_DAYS]
        assert machine.loading_windows() == []
        assert machine.currently_fetching_window() is None

    def test_clear_error_resumes(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.fail(TransportError())

        machine.clear_error()

        assert machine.current_phase() is LoadingPhase.LOADING_SHORT_RANGE
        assert machine.loading_windows() == [T.ONE_DAY, T.SEVEN_DAYS]


class TestComparisonData:
    def test_one_day_needs_two_days(self, machine: LoadingStateMachine) -> None:
        machine.update_days_loaded(1)
        assert machine.has_comparison_data(T.ONE_DAY) is False

        machine.update_days_loaded(2)
        assert machine.has_comparison_data(T.ONE_DAY) is True

    def test_seven_days_needs_fourteen_day_milestone(self, machine: LoadingStateMachine) -> None:
        machine.start_fresh()
        machine.on_milestone(WALLET, Milestone.SEVEN_DAYS)
        assert machine.has_comparison_data(T.SEVEN_DAYS) is False

        machine.on_milestone(WALLET, Milestone.FOURTEEN_DAYS)

        assert machine.has_comparison_data(T.SEVEN_DAYS) is True
        assert machine.current_phase() is LoadingPhase.SHORT_RANGE_LOADED

    def test_days_loaded_never_decreases(self, machine: LoadingStateMachine) -> None:
        machine.update_days_loaded(20)
        machine.update_days_loaded(5)

        assert machine.state.days_loaded == 20
        assert Milestone.FOURTEEN_DAYS in machine.state.milestones
