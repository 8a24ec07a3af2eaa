"""Funding payment persistence and fetch layer.

Provides record models, the SQLite-backed key-value cache, freshness
policy, cache-gap resolution, deduplicated month-bucket store, fetch
events, and the incremental fetch pipeline.
"""

from funding_history.data.database import CacheDatabase
from funding_history.data.events import FetchCallbacks
from funding_history.data.fetcher import FundingFetcher
from funding_history.data.models import DayIndex, FundingRecord, MonthBucket
from funding_history.data.policy import CachePolicy
from funding_history.data.store import FundingCacheStore

__all__ = [
    "CacheDatabase",
    "CachePolicy",
    "DayIndex",
    "FetchCallbacks",
    "FundingCacheStore",
    "FundingFetcher",
    "FundingRecord",
    "MonthBucket",
]
