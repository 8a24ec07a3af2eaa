"""Collapse repeated fetches of the same funding event into one record."""

from collections.abc import Iterable

from funding_history.data.models import FundingRecord


def dedupe(records: Iterable[FundingRecord]) -> list[FundingRecord]:
    """Drop records whose (tx_sig, tx_sig_index) was already seen.

    First occurrence wins; relative order of the survivors is preserved.
    """
    seen: set[tuple[str, int]] = set()
    unique: list[FundingRecord] = []
    for record in records:
        key = record.identity
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def newest_first(records: Iterable[FundingRecord]) -> list[FundingRecord]:
    """Deduplicate and sort by timestamp, most recent first."""
    return sorted(dedupe(records), key=lambda r: r.ts, reverse=True)
