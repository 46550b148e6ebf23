"""Etherscan-style explorer client with rate limiting.

Provides the two upstream queries the ingestion loop needs:
- A paginated token-transfer history query (``account/tokentx``)
- The current chain height (``proxy/eth_blockNumber``)

Transport failures surface as ``UpstreamError`` so callers can retry them;
envelope interpretation (e.g. "No transactions found") is left to callers.
"""

import asyncio
import logging
import time
from types import TracebackType
from typing import Any

import aiohttp
from web3 import Web3

from transfer_ledger.errors import MalformedResponseError, UpstreamError
from transfer_ledger.explorer.models import PageResult

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_BASE_URL = "https://api.etherscan.io/v2/api"
DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_MAX_REQUESTS_PER_SECOND = 5.0

RATE_LIMIT_MARKERS = ("rate limit", "max calls per sec")


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND) -> None:
        """Initialize the rate limiter.

        Args:
            max_requests_per_second: Maximum requests allowed per second.
        """
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


def _is_rate_limited(data: dict[str, Any]) -> bool:
    if str(data.get("status", "")) != "0":
        return False
    text = f"{data.get('message', '')} {data.get('result', '')}".lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


class ExplorerClient:
    """Async client for an Etherscan v2 compatible explorer API.

    Example:
        ```python
        async with ExplorerClient(api_key="...") as explorer:
            height = await explorer.fetch_current_block_height(1284)
            page = await explorer.fetch_transfer_page(
                1284, token, holder,
                start_block=0, end_block=height, page=1, page_size=10_000,
            )
        ```
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: aiohttp.ClientSession | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
    ) -> None:
        """Initialize the explorer client.

        Args:
            api_key: Explorer API key, sent as ``apikey``.
            base_url: API endpoint.
            session: Optional externally owned aiohttp session. When omitted
                the client creates one lazily and closes it in ``aclose()``.
            request_timeout_seconds: Total timeout per request.
            max_requests_per_second: Client-side rate limit.
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=request_timeout_seconds)
        self._rate_limiter = RateLimiter(max_requests_per_second)

    async def __aenter__(self) -> "ExplorerClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _get(self, params: dict[str, Any]) -> Any:
        """Issue one GET and return the decoded JSON body.

        Raises:
            UpstreamError: On connection errors, timeouts, non-2xx responses
                or bodies that are not JSON.
        """
        await self._rate_limiter.acquire()
        query = {**params, "apikey": self._api_key}
        action = f"{params.get('module')}/{params.get('action')}"
        logger.debug("Explorer request %s %s", action, params)

        session = self._get_session()
        try:
            async with session.get(self._base_url, params=query) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    raise UpstreamError(
                        f"Explorer {action} returned HTTP {response.status}: {body[:200]}",
                        status_code=response.status,
                    )
                try:
                    return await response.json(content_type=None)
                except ValueError as e:
                    raise UpstreamError(f"Explorer {action} returned a non-JSON body: {e}") from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Explorer {action} request failed: {e}") from e
        except TimeoutError as e:
            raise UpstreamError(f"Explorer {action} request timed out") from e

    async def fetch_transfer_page(
        self,
        chain_id: int,
        contract_address: str,
        address: str,
        *,
        start_block: int,
        end_block: int,
        page: int = 1,
        page_size: int = 10_000,
        sort: str = "asc",
    ) -> PageResult:
        """Fetch one page of token transfers for a holder.

        Args:
            chain_id: Explorer chain ID.
            contract_address: Token contract.
            address: Holder/participant address.
            start_block: First block (inclusive).
            end_block: Last block (inclusive).
            page: 1-based page index.
            page_size: Rows per page (``offset``).
            sort: ``"asc"`` or ``"desc"``.

        Returns:
            The status/message/result envelope, uninterpreted.

        Raises:
            UpstreamError: On transport failure or explorer rate limiting.
            MalformedResponseError: If the body is not a JSON object.
        """
        data = await self._get(
            {
                "chainid": chain_id,
                "module": "account",
                "action": "tokentx",
                "contractaddress": contract_address,
                "address": address,
                "startblock": start_block,
                "endblock": end_block,
                "page": page,
                "offset": page_size,
                "sort": sort,
            }
        )
        if isinstance(data, dict) and _is_rate_limited(data):
            raise UpstreamError(f"Explorer rate limit: {data.get('result')}", status_code=429)
        return PageResult.from_dict(data)

    async def fetch_current_block_height(self, chain_id: int) -> int:
        """Fetch the latest block number via the explorer's proxy endpoint.

        Raises:
            UpstreamError: On transport failure or explorer rate limiting.
            MalformedResponseError: If the result is not a hex quantity.
        """
        data = await self._get(
            {
                "chainid": chain_id,
                "module": "proxy",
                "action": "eth_blockNumber",
            }
        )
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
        if _is_rate_limited(data):
            raise UpstreamError(f"Explorer rate limit: {data.get('result')}", status_code=429)

        result = data.get("result")
        if not isinstance(result, str) or not result.startswith("0x"):
            raise MalformedResponseError(f"Unexpected eth_blockNumber result: {result!r}")
        try:
            return Web3.to_int(hexstr=result)
        except ValueError as e:
            raise MalformedResponseError(f"Unexpected eth_blockNumber result: {result!r}") from e

    async def aclose(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None
