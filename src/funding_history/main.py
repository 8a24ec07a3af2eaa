"""Diagnostic entry point: load one wallet's funding history end to end.

Usage:
    python -m funding_history.main <wallet>

Component wiring order (in _build_components):
1. AppSettings (configuration)
2. Logging setup
3. CacheDatabase (SQLite key-value cache)
4. CachePolicy + FundingCacheStore
5. DriftDataClient (httpx)
6. FundingFetcher
7. FundingSession (loading state machine)
"""

import asyncio
import sys
from decimal import Decimal
from typing import Any

from funding_history.api.drift_client import DriftDataClient
from funding_history.config import AppSettings
from funding_history.data.database import CacheDatabase
from funding_history.data.events import FetchEvent, FetchFailed, MonthProgress
from funding_history.data.fetcher import FundingFetcher
from funding_history.data.policy import CachePolicy
from funding_history.data.store import FundingCacheStore
from funding_history.loading.session import FundingSession
from funding_history.logging import get_logger, setup_logging
from funding_history.models import ALL_TIMEFRAMES


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build the dependency graph from settings. Nothing is connected yet."""
    database = CacheDatabase(settings.cache.db_path, max_bytes=settings.cache.max_bytes)
    policy = CachePolicy(freshness_seconds=settings.cache.freshness_seconds)
    store = FundingCacheStore(
        database,
        policy,
        wallet_key_length=settings.cache.wallet_key_length,
    )
    client = DriftDataClient(settings.api)
    fetcher = FundingFetcher(client, store, settings.fetch)
    return {
        "database": database,
        "store": store,
        "client": client,
        "fetcher": fetcher,
    }


def _log_event(event: FetchEvent) -> None:
    logger = get_logger("funding_history.main")
    if isinstance(event, MonthProgress):
        logger.info(
            "month_progress",
            satisfied=event.months_satisfied,
            total=event.months_total,
            phase=event.phase.value,
        )
    elif isinstance(event, FetchFailed):
        logger.warning("fetch_failed", error=str(event.error))


async def run(wallet: str) -> None:
    """Load `wallet` through every window and log a per-window summary."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("funding_history.main")

    # 3-6. Build components
    components = _build_components(settings)
    database: CacheDatabase = components["database"]
    client: DriftDataClient = components["client"]

    try:
        await database.connect()

        # 7. Load the wallet
        session = FundingSession(
            components["fetcher"],
            components["store"],
            settings.fetch,
            listener=_log_event,
        )
        await session.select_wallet(wallet)

        machine = session.machine
        for window in ALL_TIMEFRAMES:
            records = session.records_for(window)
            total = sum((r.funding_payment for r in records), Decimal("0"))
            logger.info(
                "window_summary",
                window=window.value,
                records=len(records),
                total_funding=str(total),
                state=machine.timeframe_states()[window].value,
            )
        logger.info(
            "session_finished",
            phase=machine.current_phase().value,
            days_loaded=machine.state.days_loaded,
            cache_hit=machine.state.cache_hit,
        )
    finally:
        await client.close()
        await database.close()


def main() -> None:
    """Synchronous entry point."""
    if len(sys.argv) != 2:
        print("usage: python -m funding_history.main <wallet>", file=sys.stderr)
        sys.exit(2)
    asyncio.run(run(sys.argv[1]))


if __name__ == "__main__":
    main()
