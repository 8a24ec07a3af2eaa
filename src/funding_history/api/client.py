"""Abstract funding API client interface.

Defines the contract for the remote read-only API. The fetcher depends only
on this interface, keeping HTTP details isolated in the concrete client.
"""

from abc import ABC, abstractmethod

from funding_history.api.types import FundingPage
from funding_history.data.models import FundingRecord


class FundingApiClient(ABC):
    """Abstract base class for funding payment API clients."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying HTTP resources."""
        ...

    @abstractmethod
    async def fetch_funding_page(
        self,
        wallet: str,
        page_token: str | None = None,
    ) -> FundingPage:
        """Fetch one page of funding payments, newest first.

        Pagination is NOT handled here -- callers iterate with the returned
        next_page token until it is None.
        """
        ...

    @abstractmethod
    async def fetch_funding_month(
        self,
        wallet: str,
        year: int,
        month: int,
    ) -> list[FundingRecord]:
        """Fetch the complete funding record set for one calendar month."""
        ...
