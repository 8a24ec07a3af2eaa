"""API response types."""

from dataclasses import dataclass, field

from funding_history.data.models import FundingRecord


@dataclass
class FundingPage:
    """One page from the paginated funding payments endpoint."""

    records: list[FundingRecord] = field(default_factory=list)
    next_page: str | None = None

    @property
    def oldest_ts(self) -> int | None:
        if not self.records:
            return None
        return min(r.ts for r in self.records)
