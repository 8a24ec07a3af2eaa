"""Shared test fixtures for funding history acquisition."""

from collections.abc import AsyncIterator
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from funding_history.config import CacheSettings, FetchSettings
from funding_history.data.database import CacheDatabase
from funding_history.data.policy import CachePolicy
from funding_history.data.store import FundingCacheStore

# 2026-03-31 12:00 UTC. A 90-day window starts 2025-12-31 12:00 (Dec through Mar).
NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc).timestamp()


class FakeClock:
    """Settable clock injected wherever the code reads the current time."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache_settings(tmp_path) -> CacheSettings:
    return CacheSettings(db_path=str(tmp_path / "cache.db"))


@pytest.fixture
def fetch_settings() -> FetchSettings:
    return FetchSettings()


@pytest_asyncio.fixture
async def database(cache_settings: CacheSettings, clock: FakeClock) -> AsyncIterator[CacheDatabase]:
    async with CacheDatabase(
        cache_settings.db_path,
        max_bytes=cache_settings.max_bytes,
        clock=clock,
    ) as db:
        yield db


@pytest.fixture
def policy(clock: FakeClock) -> CachePolicy:
    return CachePolicy(freshness_seconds=300, clock=clock)


@pytest.fixture
def store(database: CacheDatabase, policy: CachePolicy) -> FundingCacheStore:
    return FundingCacheStore(database, policy)
