"""Helius enhanced-transaction API client with rate limiting and retry logic."""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any

import aiohttp

from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.helius.xyz"
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class HeliusClientError(Exception):
    """Base exception for Helius client errors."""


class HeliusRequestError(HeliusClientError):
    """Raised when Helius rejects a request outright (non-retryable)."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RetryError(HeliusClientError):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


class _TransientError(Exception):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"HTTP {status}: {body[:200]}")
        self.status = status


class HeliusClient:
    """Async client for ``POST /v0/transactions``.

    Every HTTP attempt takes a slot from the dispatcher's ``DETAIL`` bucket.

    Example:
        ```python
        async with HeliusClient(api_key, dispatcher=dispatcher) as client:
            record = await client.get_transaction(signature)
        ```
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        dispatcher: Dispatcher | None = None,
        session: aiohttp.ClientSession | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Helius API key.
            base_url: API host, without trailing slash.
            dispatcher: Shared rate-limit dispatcher; a private one is created if omitted.
            session: Optional externally owned aiohttp session.
            timeout_seconds: Total timeout per HTTP attempt.
            max_retries: Retries after the first attempt on transient failures.
            retry_base_delay: Base backoff delay (doubles each retry).
        """
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._dispatcher = dispatcher or Dispatcher()
        self._session = session
        self._owns_session = session is None
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    async def connect(self) -> None:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self._timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HeliusClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def transactions_url(self) -> str:
        return f"{self._base_url}/v0/transactions/"

    async def get_transaction(self, signature: str) -> dict[str, Any] | None:
        """Fetch the enhanced record for one signature.

        Returns:
            The record, or None if Helius returned an empty list.

        Raises:
            HeliusRequestError: On a non-retryable HTTP error.
            RetryError: When transient failures exhaust all attempts.
        """
        records = await self.get_transactions([signature])
        return records[0] if records else None

    async def get_transactions(self, signatures: list[str]) -> list[dict[str, Any]]:
        """Fetch enhanced records for several signatures in one call."""
        if not signatures:
            return []
        payload = {"transactions": list(signatures)}
        data = await self._post_with_retry(payload)
        if not isinstance(data, list):
            raise HeliusRequestError(f"Unexpected transaction payload type: {type(data).__name__}")
        return [record for record in data if isinstance(record, dict)]

    async def _post_with_retry(self, payload: dict[str, Any]) -> Any:
        last_exception: Exception | None = None

        for attempt in range(self._max_retries + 1):
            await self._dispatcher.acquire(LimiterId.DETAIL)
            try:
                return await self._post(payload)
            except (aiohttp.ClientError, TimeoutError, _TransientError) as e:
                last_exception = e
                if attempt == self._max_retries:
                    break
                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "Helius request attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                    attempt + 1,
                    self._max_retries + 1,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)

        raise RetryError(
            f"All {self._max_retries + 1} attempts failed for {self.transactions_url}",
            last_exception=last_exception,
        )

    async def _post(self, payload: dict[str, Any]) -> Any:
        if self._session is None:
            await self.connect()
        session = self._session
        if session is None:
            raise HeliusClientError("Helius session is not open")

        async with session.post(
            self.transactions_url,
            params={"api-key": self._api_key},
            json=payload,
        ) as response:
            if response.status in RETRY_STATUS_CODES:
                raise _TransientError(response.status, await response.text())
            if response.status >= 400:
                body = await response.text()
                raise HeliusRequestError(
                    f"Helius request failed: status={response.status} body={body[:200]}",
                    status=response.status,
                )
            try:
                return await response.json(content_type=None)
            except ValueError as e:
                raise HeliusRequestError(f"Invalid JSON from Helius: {e}") from e
