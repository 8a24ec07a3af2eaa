"""Data models for funding payment records and their cache containers.

CRITICAL: All monetary values use Decimal. Never use float for payments or sizes.
Decimals are persisted as strings and restored as Decimal on read.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class FundingRecord:
    """A single funding payment event for one account.

    Immutable once emitted by the exchange. Identity is the transaction
    signature plus the record's index within that transaction.
    """

    ts: int  # Unix seconds
    tx_sig: str
    tx_sig_index: int
    market_index: int
    funding_payment: Decimal
    base_asset_amount: Decimal
    slot: int = 0
    user: str = ""
    user_authority: str = ""

    @property
    def identity(self) -> tuple[str, int]:
        return (self.tx_sig, self.tx_sig_index)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "FundingRecord":
        """Build a record from the Data API's camelCase JSON."""
        return cls(
            ts=int(raw["ts"]),
            tx_sig=raw["txSig"],
            tx_sig_index=int(raw.get("txSigIndex", 0)),
            market_index=int(raw["marketIndex"]),
            funding_payment=Decimal(str(raw["fundingPayment"])),
            base_asset_amount=Decimal(str(raw.get("baseAssetAmount", "0"))),
            slot=int(raw.get("slot", 0)),
            user=raw.get("user", ""),
            user_authority=raw.get("userAuthority", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the cache, keeping Decimals as strings."""
        return {
            "ts": self.ts,
            "txSig": self.tx_sig,
            "txSigIndex": self.tx_sig_index,
            "marketIndex": self.market_index,
            "fundingPayment": str(self.funding_payment),
            "baseAssetAmount": str(self.base_asset_amount),
            "slot": self.slot,
            "user": self.user,
            "userAuthority": self.user_authority,
        }


class BucketKind(str, Enum):
    """Cache entity types that are bucketed by calendar month."""

    FUNDING_MONTH = "funding"
    CANDLE_MONTH = "candles"  # owned by the price layer; evicted first


@dataclass
class MonthBucket:
    """All known records for one wallet and calendar month.

    `closed` marks a month that was fully fetched after it ended; such a
    bucket is immutable and never re-fetched. `fetched_at` is 0 when the
    month has only been partially written. `persisted` is False when the
    cache quota forced the write to be skipped; it is never serialized.
    """

    wallet: str
    kind: BucketKind
    year: int
    month: int
    records: list[FundingRecord] = field(default_factory=list)
    fetched_at: float = 0.0
    closed: bool = False
    persisted: bool = field(default=True, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.records],
            "fetchedAt": self.fetched_at,
            "isComplete": self.closed,
        }

    @classmethod
    def from_dict(
        cls,
        wallet: str,
        kind: BucketKind,
        year: int,
        month: int,
        raw: dict[str, Any],
    ) -> "MonthBucket":
        return cls(
            wallet=wallet,
            kind=kind,
            year=year,
            month=month,
            records=[FundingRecord.from_api(r) for r in raw.get("records", [])],
            fetched_at=float(raw.get("fetchedAt", 0)),
            closed=bool(raw.get("isComplete", False)),
        )


@dataclass
class DayIndex:
    """Per-wallet summary of cache coverage, used for O(1) gap detection."""

    newest_date: date
    oldest_date: date
    refreshed_at: float  # Unix seconds of the last successful refresh

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastFetchedDate": self.newest_date.isoformat(),
            "oldestCachedDate": self.oldest_date.isoformat(),
            "fetchedAt": self.refreshed_at,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "DayIndex":
        return cls(
            newest_date=date.fromisoformat(raw["lastFetchedDate"]),
            oldest_date=date.fromisoformat(raw["oldestCachedDate"]),
            refreshed_at=float(raw["fetchedAt"]),
        )


@dataclass
class CacheState:
    """Coverage summary for a wallet, derived from its DayIndex."""

    has_cache: bool
    oldest_date: date | None = None
    newest_date: date | None = None
    days_covered: int = 0
