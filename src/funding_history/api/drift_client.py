"""Drift Data API client implementation via httpx async.

Wraps httpx.AsyncClient with the two funding payment endpoints and maps
transport and HTTP failures onto the TransportError / UpstreamError split.
No retries happen here; retry policy belongs to the caller.
"""

from typing import Any

import httpx

from funding_history.api.client import FundingApiClient
from funding_history.api.types import FundingPage
from funding_history.config import ApiSettings
from funding_history.data.models import FundingRecord
from funding_history.exceptions import TransportError, UpstreamError
from funding_history.logging import get_logger, short_wallet

logger = get_logger(__name__)

# Status codes the API uses when it blocks or throttles a caller.
RATE_LIMIT_STATUSES = frozenset({403, 429})

_RATE_LIMIT_HINTS = ("failed to fetch", "network", "cors", "403", "forbidden", "connection")


def is_rate_limit_like(error: Exception) -> bool:
    """Heuristic: does this failure look like blocking rather than a bad request?

    Outright network failures (connect, read, timeout, proxy) count, as does
    any error whose text mentions a block. Protocol or URL errors do not.
    """
    if isinstance(error, (httpx.NetworkError, httpx.TimeoutException, httpx.ProxyError)):
        return True
    message = str(error).lower()
    return any(hint in message for hint in _RATE_LIMIT_HINTS)


class DriftDataClient(FundingApiClient):
    """Concrete client for https://data.api.drift.trade using httpx async."""

    def __init__(
        self,
        settings: ApiSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=httpx.Timeout(settings.request_timeout),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        """Close the pooled HTTP connections."""
        await self._client.aclose()
        logger.info("drift_client_closed")

    async def fetch_funding_page(
        self,
        wallet: str,
        page_token: str | None = None,
    ) -> FundingPage:
        params = {"page": page_token} if page_token else None
        data = await self._get_json(f"/user/{wallet}/fundingPayments", params)
        records = self._parse_records(data)
        next_page = (data.get("meta") or {}).get("nextPage") or None
        logger.debug(
            "funding_page_fetched",
            wallet=short_wallet(wallet),
            records=len(records),
            has_next=next_page is not None,
        )
        return FundingPage(records=records, next_page=next_page)

    async def fetch_funding_month(
        self,
        wallet: str,
        year: int,
        month: int,
    ) -> list[FundingRecord]:
        data = await self._get_json(f"/user/{wallet}/fundingPayments/{year}/{month}")
        records = self._parse_records(data)
        logger.debug(
            "funding_month_fetched",
            wallet=short_wallet(wallet),
            month=f"{year}-{month:02d}",
            records=len(records),
        )
        return records

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    async def _get_json(
        self,
        path: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            if is_rate_limit_like(e):
                logger.warning("drift_request_blocked", path=path, error=str(e))
                raise TransportError() from e
            raise UpstreamError(f"Drift API request failed: {e}") from e

        if response.status_code in RATE_LIMIT_STATUSES:
            logger.warning("drift_rate_limited", path=path, status=response.status_code)
            raise TransportError()
        if response.is_error:
            raise UpstreamError(
                f"Drift API error: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(
                "Drift API returned invalid JSON", status_code=response.status_code
            ) from e

        if not isinstance(data, dict) or data.get("success") is False:
            raise UpstreamError(
                "Drift API reported an unsuccessful response",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _parse_records(data: dict[str, Any]) -> list[FundingRecord]:
        try:
            return [FundingRecord.from_api(raw) for raw in data.get("records") or []]
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise UpstreamError(f"Malformed funding record: {e}") from e
