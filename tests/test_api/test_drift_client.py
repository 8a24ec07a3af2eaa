"""Tests for DriftDataClient -- endpoint paths, pagination, and error mapping.

Uses httpx.MockTransport so no network is touched.
"""

import json
from decimal import Decimal

import httpx
import pytest

from funding_history.api.drift_client import DriftDataClient, is_rate_limit_like
from funding_history.config import ApiSettings
from funding_history.exceptions import RATE_LIMIT_MESSAGE, TransportError, UpstreamError

WALLET = "WalletAAAA1111111111111111111111111111111111"

RAW_RECORD = {
    "ts": 1774958400,
    "txSig": "5xSig",
    "txSigIndex": 2,
    "slot": 312345678,
    "user": "subaccount",
    "userAuthority": WALLET,
    "marketIndex": 1,
    "fundingPayment": "-0.012345",
    "baseAssetAmount": "12.5",
}


def _client(handler) -> DriftDataClient:
    return DriftDataClient(ApiSettings(), transport=httpx.MockTransport(handler))


def _json(status: int, body: dict) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(body).encode())


class TestFundingPage:
    @pytest.mark.asyncio()
    async def test_parses_records_and_next_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json(200, {"success": True, "records": [RAW_RECORD], "meta": {"nextPage": "tok"}})

        client = _client(handler)
        page = await client.fetch_funding_page(WALLET)
        await client.close()

        assert seen[0].url.path == f"/user/{WALLET}/fundingPayments"
        assert "page" not in seen[0].url.params
        assert page.next_page == "tok"
        record = page.records[0]
        assert record.identity == ("5xSig", 2)
        assert record.funding_payment == Decimal("-0.012345")
        assert record.base_asset_amount == Decimal("12.5")
        assert record.user_authority == WALLET
        assert page.oldest_ts == 1774958400

    @pytest.mark.asyncio()
    async def test_sends_page_token(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json(200, {"success": True, "records": [], "meta": {"nextPage": None}})

        client = _client(handler)
        page = await client.fetch_funding_page(WALLET, "tok")
        await client.close()

        assert seen[0].url.params["page"] == "tok"
        assert page.next_page is None
        assert page.records == []
        assert page.oldest_ts is None


class TestFundingMonth:
    @pytest.mark.asyncio()
    async def test_requests_month_path(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return _json(200, {"success": True, "records": [RAW_RECORD]})

        client = _client(handler)
        records = await client.fetch_funding_month(WALLET, 2026, 3)
        await client.close()

        assert seen[0].url.path == f"/user/{WALLET}/fundingPayments/2026/3"
        assert len(records) == 1


class TestErrorMapping:
    @pytest.mark.asyncio()
    @pytest.mark.parametrize("status", [403, 429])
    async def test_blocking_statuses_are_transport_errors(self, status: int) -> None:
        client = _client(lambda request: httpx.Response(status))

        with pytest.raises(TransportError) as exc_info:
            await client.fetch_funding_page(WALLET)
        await client.close()

        assert str(exc_info.value) == RATE_LIMIT_MESSAGE

    @pytest.mark.asyncio()
    async def test_server_error_is_upstream_error(self) -> None:
        client = _client(lambda request: httpx.Response(500))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_funding_month(WALLET, 2026, 3)
        await client.close()

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio()
    async def test_unsuccessful_body_is_upstream_error(self) -> None:
        client = _client(lambda request: _json(200, {"success": False, "records": []}))

        with pytest.raises(UpstreamError):
            await client.fetch_funding_page(WALLET)
        await client.close()

    @pytest.mark.asyncio()
    async def test_invalid_json_is_upstream_error(self) -> None:
        client = _client(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(UpstreamError):
            await client.fetch_funding_page(WALLET)
        await client.close()

    @pytest.mark.asyncio()
    async def test_malformed_record_is_upstream_error(self) -> None:
        bad = {k: v for k, v in RAW_RECORD.items() if k != "txSig"}
        client = _client(lambda request: _json(200, {"success": True, "records": [bad]}))

        with pytest.raises(UpstreamError):
            await client.fetch_funding_page(WALLET)
        await client.close()

    @pytest.mark.asyncio()
    async def test_connection_failure_is_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler)

        with pytest.raises(TransportError):
            await client.fetch_funding_page(WALLET)
        await client.close()


class TestRateLimitHeuristic:
    def test_network_errors_count(self) -> None:
        request = httpx.Request("GET", "https://data.api.drift.trade/")

        assert is_rate_limit_like(httpx.ReadTimeout("slow", request=request)) is True
        assert is_rate_limit_like(httpx.ConnectError("down", request=request)) is True

    def test_message_hints_count(self) -> None:
        assert is_rate_limit_like(RuntimeError("Failed to fetch")) is True
        assert is_rate_limit_like(RuntimeError("HTTP 403 Forbidden")) is True

    def test_other_errors_do_not(self) -> None:
        assert is_rate_limit_like(ValueError("unexpected field")) is False
