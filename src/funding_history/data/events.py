"""Fetch progress events.

Every fetch variant reports through a single listener that receives a
tagged union of frozen event dataclasses. Callers can consume events
directly (queue, log, state machine) or wrap named callbacks with
FetchCallbacks.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from funding_history.data.models import FundingRecord
from funding_history.models import Milestone


class ProgressPhase(str, Enum):
    """Stage of a month-by-month fetch."""

    CHECKING_CACHE = "checking-cache"
    FETCHING = "fetching"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CacheHit:
    """The request was fully served from cache; no network call was made."""

    wallet: str


@dataclass(frozen=True)
class MilestoneReached:
    wallet: str
    milestone: Milestone


@dataclass(frozen=True)
class RecordsUpdated:
    """Partial (or final) records available for display."""

    wallet: str
    records: list[FundingRecord]
    days_loaded: int


@dataclass(frozen=True)
class MonthProgress:
    wallet: str
    months_satisfied: int
    months_total: int
    phase: ProgressPhase


@dataclass(frozen=True)
class FetchCompleted:
    wallet: str
    records: list[FundingRecord]


@dataclass(frozen=True)
class FetchFailed:
    wallet: str
    error: Exception


FetchEvent = Union[
    CacheHit,
    MilestoneReached,
    RecordsUpdated,
    MonthProgress,
    FetchCompleted,
    FetchFailed,
]

EventListener = Callable[[FetchEvent], Awaitable[None] | None]


async def emit(listener: EventListener | None, event: FetchEvent) -> None:
    """Deliver an event to a sync or async listener."""
    if listener is None:
        return
    result = listener(event)
    if inspect.isawaitable(result):
        await result


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class FetchCallbacks:
    """Adapter from the event union onto named callbacks.

    Any callback may be omitted, and each may be a plain function or a
    coroutine function.

    Usage:
        callbacks = FetchCallbacks(on_milestone=print, on_complete=show)
        await fetcher.fetch_incremental(wallet, callbacks)
    """

    on_milestone: Callable[[Milestone], Any] | None = None
    on_records: Callable[[list[FundingRecord], int], Any] | None = None
    on_progress: Callable[[MonthProgress], Any] | None = None
    on_complete: Callable[[list[FundingRecord]], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None
    on_cache_hit: Callable[[], Any] | None = None

    async def __call__(self, event: FetchEvent) -> None:
        if isinstance(event, MilestoneReached):
            await _call(self.on_milestone, event.milestone)
        elif isinstance(event, RecordsUpdated):
            await _call(self.on_records, event.records, event.days_loaded)
        elif isinstance(event, MonthProgress):
            await _call(self.on_progress, event)
        elif isinstance(event, FetchCompleted):
            await _call(self.on_complete, event.records)
        elif isinstance(event, FetchFailed):
            await _call(self.on_error, event.error)
        elif isinstance(event, CacheHit):
            await _call(self.on_cache_hit)
