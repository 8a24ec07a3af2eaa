"""Custom exceptions for funding history acquisition.

All fetch-layer and cache-layer exceptions live here to avoid circular
imports between the API client, the store, and the loading session.
"""

RATE_LIMIT_MESSAGE = "Too many requests. Please try again in a few minutes."


class FundingHistoryError(Exception):
    """Base exception for all funding history errors."""


class FetchError(FundingHistoryError):
    """Raised when the remote API cannot deliver a page or month."""


class TransportError(FetchError):
    """Raised when the API is unreachable, blocked, or rate limited.

    Network failures and HTTP 403/429 responses are surfaced uniformly with
    RATE_LIMIT_MESSAGE so callers need not distinguish the root cause.
    """

    def __init__(self, message: str = RATE_LIMIT_MESSAGE) -> None:
        super().__init__(message)


class UpstreamError(FetchError):
    """Raised on a non-2xx response that does not look like rate limiting."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EmptyHistoryError(FundingHistoryError):
    """Raised when every strategy, including the twelve-month probe, found nothing."""

    def __init__(self, wallet: str) -> None:
        super().__init__(f"No funding history found for {wallet}")
        self.wallet = wallet


class QuotaError(FundingHistoryError):
    """Raised by the cache database when a write would exceed its capacity.

    Absorbed by FundingCacheStore (evict, retry, then skip); never propagated
    to fetch callers.
    """
