"""Async SQLite key-value database backing the funding cache.

Uses aiosqlite for non-blocking access with WAL mode. Behaves like a
per-origin key-value store: string keys, JSON string values, and a hard
capacity ceiling in bytes that rejects writes with QuotaError.
"""

import os
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Self

import aiosqlite

from funding_history.exceptions import QuotaError
from funding_history.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    kind TEXT NOT NULL,
    value TEXT NOT NULL,
    size INTEGER NOT NULL,
    updated_at REAL NOT NULL,
    accessed_at REAL NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_cache_kind_accessed
    ON cache_entries(kind, accessed_at);
"""


@dataclass
class CacheEntryInfo:
    """Metadata for one stored key, used by eviction."""

    key: str
    kind: str
    size: int
    accessed_at: float


class CacheDatabase:
    """Async SQLite key-value store with a byte-capacity ceiling.

    Usage:
        async with CacheDatabase("data/funding_cache.db", max_bytes=5_000_000) as db:
            await db.put("drift:day-index:abcd1234", "day-index", "{...}")
            raw = await db.get("drift:day-index:abcd1234")
    """

    def __init__(
        self,
        db_path: str = "data/funding_cache.db",
        max_bytes: int = 5_000_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db_path = db_path
        self._max_bytes = max_bytes
        self._clock = clock
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    async def connect(self) -> None:
        """Open the connection, configure pragmas, and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._create_tables()
        await self._ensure_schema_version()

        logger.info("cache_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("cache_db_closed", db_path=self._db_path)

    async def _create_tables(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)

    # ──────────────────────────────────────────────
    # Key-value access
    # ──────────────────────────────────────────────

    async def get(self, key: str) -> str | None:
        """Return the stored value for key, touching its access time."""
        cursor = await self.db.execute(
            "SELECT value FROM cache_entries WHERE key = ?", (key,)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        await self.db.execute(
            "UPDATE cache_entries SET accessed_at = ? WHERE key = ?",
            (self._clock(), key),
        )
        await self.db.commit()
        return row[0]

    async def put(self, key: str, kind: str, value: str) -> None:
        """Insert or replace a value. Raises QuotaError past max_bytes.

        The size of the entry being replaced does not count against the
        ceiling, so shrinking or same-size rewrites always fit.
        """
        size = len(value.encode("utf-8"))
        cursor = await self.db.execute(
            "SELECT COALESCE(SUM(size), 0) FROM cache_entries WHERE key != ?",
            (key,),
        )
        used = (await cursor.fetchone())[0]
        if used + size > self._max_bytes:
            raise QuotaError(
                f"Writing {size} bytes to {key} exceeds cache capacity "
                f"({used}/{self._max_bytes} bytes used)"
            )

        now = self._clock()
        await self.db.execute(
            "INSERT OR REPLACE INTO cache_entries "
            "(key, kind, value, size, updated_at, accessed_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (key, kind, value, size, now, now),
        )
        await self.db.commit()

    async def delete(self, key: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM cache_entries WHERE key = ?", (key,)
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns the number removed."""
        cursor = await self.db.execute(
            "DELETE FROM cache_entries WHERE substr(key, 1, ?) = ?",
            (len(prefix), prefix),
        )
        await self.db.commit()
        return cursor.rowcount

    async def entries(
        self,
        kind: str | None = None,
        prefix: str | None = None,
    ) -> list[CacheEntryInfo]:
        """List entry metadata, least recently accessed first."""
        conditions: list[str] = []
        params: list = []

        if kind is not None:
            conditions.append("kind = ?")
            params.append(kind)
        if prefix is not None:
            conditions.append("substr(key, 1, ?) = ?")
            params.extend([len(prefix), prefix])

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await self.db.execute(
            f"SELECT key, kind, size, accessed_at FROM cache_entries {where} "
            f"ORDER BY accessed_at ASC, key ASC",
            params,
        )
        rows = await cursor.fetchall()
        return [
            CacheEntryInfo(key=row[0], kind=row[1], size=row[2], accessed_at=row[3])
            for row in rows
        ]

    async def usage(self) -> int:
        """Total bytes currently stored."""
        cursor = await self.db.execute(
            "SELECT COALESCE(SUM(size), 0) FROM cache_entries"
        )
        return (await cursor.fetchone())[0]

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
