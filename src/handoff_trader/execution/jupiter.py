"""Jupiter swap aggregator client (quote and swap build)."""

from __future__ import annotations

import base64
import binascii
import logging
from types import TracebackType
from typing import Any

import aiohttp

from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://quote-api.jup.ag/v6"
DEFAULT_TIMEOUT_SECONDS = 10.0
REQUIRED_QUOTE_FIELDS = ("inAmount", "outAmount", "routePlan")


class JupiterError(Exception):
    """Base exception for Jupiter client errors."""


class NoRouteError(JupiterError):
    """Raised when a quote comes back without a usable route."""


class JupiterClient:
    """Thin async wrapper around ``GET /quote`` and ``POST /swap``.

    Every request takes a slot from the dispatcher's ``DETAIL`` bucket, the
    budget shared with the Helius detail API.
    """

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: aiohttp.ClientSession | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._dispatcher = dispatcher or Dispatcher()
        self._session = session
        self._owns_session = session is None

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> JupiterClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def quote(
        self,
        *,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
    ) -> dict[str, Any]:
        """Request a quote.

        Args:
            input_mint: Mint being sold.
            output_mint: Mint being bought.
            amount: Input amount in raw subunits.
            slippage_bps: Slippage tolerance in basis points.

        Returns:
            The raw quote response, to be passed back to ``swap_transaction``.

        Raises:
            NoRouteError: If the response has no route or is missing amounts.
            JupiterError: On HTTP or transport failure.
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        data = await self._request("GET", "/quote", params=params)

        if not isinstance(data, dict):
            raise NoRouteError(f"Unexpected quote response: {data!r}")
        missing = [f for f in REQUIRED_QUOTE_FIELDS if f not in data]
        if missing or not data.get("routePlan"):
            reason = data.get("error") or f"missing {', '.join(missing) or 'routePlan'}"
            raise NoRouteError(f"No route {input_mint} -> {output_mint} for {amount}: {reason}")
        return data

    async def swap_transaction(self, quote: dict[str, Any], user_public_key: str) -> bytes:
        """Build the swap transaction for a quote.

        Returns:
            Serialized, unsigned ``VersionedTransaction`` bytes.
        """
        payload = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        data = await self._request("POST", "/swap", json=payload)

        if not isinstance(data, dict) or not data.get("swapTransaction"):
            raise JupiterError(f"Swap response missing swapTransaction: {data!r}")
        try:
            return base64.b64decode(data["swapTransaction"])
        except (binascii.Error, TypeError) as e:
            raise JupiterError(f"swapTransaction is not valid base64: {e}") from e

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._session is None:
            await self.connect()
        session = self._session
        if session is None:
            raise JupiterError("Jupiter session is not open")

        await self._dispatcher.acquire(LimiterId.DETAIL)
        url = f"{self._api_url}{path}"
        try:
            async with session.request(method, url, **kwargs) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    if path == "/quote" and isinstance(body, dict) and body.get("errorCode"):
                        raise NoRouteError(f"Jupiter quote rejected: {body}")
                    raise JupiterError(f"Jupiter {path} failed: status={response.status} body={body}")
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise JupiterError(f"Jupiter {path} request failed: {e}") from e
        return body
