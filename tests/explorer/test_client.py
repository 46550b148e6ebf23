"""Tests for the explorer client."""

import time
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from transfer_ledger.errors import MalformedResponseError, UpstreamError
from transfer_ledger.explorer.client import ExplorerClient, RateLimiter

BASE_URL = "https://explorer.example/v2/api"


def _response(*, status: int = 200, json_body: Any = None, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_body)
    response.text = AsyncMock(return_value=text)
    return response


def _session_returning(response: MagicMock) -> MagicMock:
    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session = MagicMock()
    session.get = MagicMock(return_value=ctx)
    session.close = AsyncMock()
    return session


def _session_raising(exc: Exception) -> MagicMock:
    session = MagicMock()
    session.get = MagicMock(side_effect=exc)
    session.close = AsyncMock()
    return session


def _client(session: MagicMock) -> ExplorerClient:
    return ExplorerClient(
        "test-key",
        base_url=BASE_URL,
        session=session,
        max_requests_per_second=1000,
    )


class TestRateLimiter:
    @pytest.mark.asyncio
    async def test_acquire_no_wait_first_call(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start < 0.05

    @pytest.mark.asyncio
    async def test_acquire_enforces_rate(self) -> None:
        limiter = RateLimiter(max_requests_per_second=10)
        await limiter.acquire()
        start = time.monotonic()
        await limiter.acquire()
        assert time.monotonic() - start >= 0.08


class TestFetchTransferPage:
    @pytest.mark.asyncio
    async def test_builds_tokentx_query(self, make_entry, token_address, holder_address) -> None:
        body = {"status": "1", "message": "OK", "result": [make_entry(1, 100)]}
        session = _session_returning(_response(json_body=body))
        client = _client(session)

        page = await client.fetch_transfer_page(
            1284,
            token_address,
            holder_address,
            start_block=100,
            end_block=200,
            page_size=10_000,
        )

        assert page.status == "1"
        assert len(page.entries) == 1
        args, kwargs = session.get.call_args
        assert args[0] == BASE_URL
        assert kwargs["params"] == {
            "chainid": 1284,
            "module": "account",
            "action": "tokentx",
            "contractaddress": token_address,
            "address": holder_address,
            "startblock": 100,
            "endblock": 200,
            "page": 1,
            "offset": 10_000,
            "sort": "asc",
            "apikey": "test-key",
        }

    @pytest.mark.asyncio
    async def test_no_transactions_envelope_is_returned(self, token_address, holder_address) -> None:
        body = {"status": "0", "message": "No transactions found", "result": []}
        client = _client(_session_returning(_response(json_body=body)))

        page = await client.fetch_transfer_page(
            1284, token_address, holder_address, start_block=0, end_block=10
        )

        assert page.is_no_transactions is True

    @pytest.mark.asyncio
    async def test_http_error_raises_upstream_error(self, token_address, holder_address) -> None:
        client = _client(_session_returning(_response(status=502, text="Bad Gateway")))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_transfer_page(
                1284, token_address, holder_address, start_block=0, end_block=10
            )

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_rate_limit_envelope_raises_upstream_error(
        self, token_address, holder_address
    ) -> None:
        body = {
            "status": "0",
            "message": "NOTOK",
            "result": "Max calls per sec rate limit reached (5/sec)",
        }
        client = _client(_session_returning(_response(json_body=body)))

        with pytest.raises(UpstreamError) as exc_info:
            await client.fetch_transfer_page(
                1284, token_address, holder_address, start_block=0, end_block=10
            )

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self, token_address, holder_address) -> None:
        client = _client(_session_raising(aiohttp.ClientConnectionError("refused")))

        with pytest.raises(UpstreamError):
            await client.fetch_transfer_page(
                1284, token_address, holder_address, start_block=0, end_block=10
            )

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self, token_address, holder_address) -> None:
        client = _client(_session_raising(TimeoutError()))

        with pytest.raises(UpstreamError):
            await client.fetch_transfer_page(
                1284, token_address, holder_address, start_block=0, end_block=10
            )

    @pytest.mark.asyncio
    async def test_non_json_body_raises_upstream_error(self, token_address, holder_address) -> None:
        response = _response()
        response.json = AsyncMock(side_effect=ValueError("Expecting value"))
        client = _client(_session_returning(response))

        with pytest.raises(UpstreamError):
            await client.fetch_transfer_page(
                1284, token_address, holder_address, start_block=0, end_block=10
            )


class TestFetchCurrentBlockHeight:
    @pytest.mark.asyncio
    async def test_parses_hex_quantity(self) -> None:
        body = {"jsonrpc": "2.0", "id": 83, "result": "0x5f5e100"}
        session = _session_returning(_response(json_body=body))
        client = _client(session)

        height = await client.fetch_current_block_height(1284)

        assert height == 100_000_000
        _, kwargs = session.get.call_args
        assert kwargs["params"]["module"] == "proxy"
        assert kwargs["params"]["action"] == "eth_blockNumber"
        assert kwargs["params"]["chainid"] == 1284

    @pytest.mark.asyncio
    @pytest.mark.parametrize("result", [None, "12345", "0xnothex", 12345])
    async def test_malformed_result(self, result: Any) -> None:
        body = {"jsonrpc": "2.0", "id": 83, "result": result}
        client = _client(_session_returning(_response(json_body=body)))

        with pytest.raises(MalformedResponseError):
            await client.fetch_current_block_height(1284)

    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        body = {"status": "0", "message": "NOTOK", "result": "Max rate limit reached"}
        client = _client(_session_returning(_response(json_body=body)))

        with pytest.raises(UpstreamError):
            await client.fetch_current_block_height(1284)


class TestSessionOwnership:
    @pytest.mark.asyncio
    async def test_injected_session_not_closed(self) -> None:
        session = _session_returning(_response(json_body={}))
        async with _client(session):
            pass
        session.close.assert_not_awaited()
