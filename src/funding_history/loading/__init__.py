"""Loading state machine and per-wallet session orchestration."""

from funding_history.loading.machine import (
    LoadingPhase,
    LoadingState,
    LoadingStateMachine,
    WindowState,
)
from funding_history.loading.session import FundingSession

__all__ = [
    "FundingSession",
    "LoadingPhase",
    "LoadingState",
    "LoadingStateMachine",
    "WindowState",
]
