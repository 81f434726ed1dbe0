"""Token metadata lookups: mint decimals, freeze authority, SOL price.

This module provides a token-info client with:
- Mint account reads over Solana RPC (jsonParsed)
- Redis caching of immutable mint facts
- Rate limiting through the shared dispatcher
- Jupiter price lookups (best effort)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import aiohttp
from redis.asyncio import Redis
from solana.rpc.async_api import AsyncClient
from solders.pubkey import Pubkey

from handoff_trader.ingestor.models import NATIVE_DECIMALS, NATIVE_MINT, to_decimal
from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600
DEFAULT_PRICE_URL = "https://price.jup.ag/v6/price"
DEFAULT_PRICE_TIMEOUT_SECONDS = 10.0


class TokenInfoError(Exception):
    """Raised when mint information cannot be determined."""


@dataclass(frozen=True)
class MintInfo:
    """Facts about a mint that matter for trading it."""

    mint: str
    decimals: int
    freeze_authority: str | None = None
    mint_authority: str | None = None

    @property
    def is_freezable(self) -> bool:
        return self.freeze_authority is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "mint": self.mint,
            "decimals": self.decimals,
            "freeze_authority": self.freeze_authority,
            "mint_authority": self.mint_authority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MintInfo:
        return cls(
            mint=str(data["mint"]),
            decimals=int(data["decimals"]),
            freeze_authority=data.get("freeze_authority"),
            mint_authority=data.get("mint_authority"),
        )


class TokenInfoClient:
    """Looks up mint accounts and prices.

    Example:
        ```python
        info = TokenInfoClient(AsyncClient(rpc_url), dispatcher=dispatcher)
        if await info.is_freezable(mint):
            ...
        ```
    """

    def __init__(
        self,
        rpc: AsyncClient,
        *,
        dispatcher: Dispatcher | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        price_url: str = DEFAULT_PRICE_URL,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the token-info client.

        Args:
            rpc: Solana async RPC client.
            dispatcher: Shared rate-limit dispatcher; RPC reads take an ``RPC``
                slot and price lookups a ``DETAIL`` slot.
            redis: Optional Redis client for caching mint facts.
            cache_ttl_seconds: Cache TTL in seconds.
            price_url: Jupiter price endpoint.
            session: Optional aiohttp session for price requests.
        """
        self._rpc = rpc
        self._dispatcher = dispatcher or Dispatcher()
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._price_url = price_url
        self._session = session
        self._owns_session = session is None
        self._mint_cache: dict[str, MintInfo] = {}
        self._cache_prefix = "token_info:"

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
        self._session = None

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        """Set value in cache."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def get_mint_info(self, mint: str) -> MintInfo:
        """Read the mint account.

        Raises:
            TokenInfoError: If the account is missing, not a mint, or the RPC fails.
        """
        if mint == NATIVE_MINT:
            return MintInfo(mint=mint, decimals=NATIVE_DECIMALS)
        if mint in self._mint_cache:
            return self._mint_cache[mint]

        cache_key = f"{self._cache_prefix}mint:{mint}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            try:
                info = MintInfo.from_dict(json.loads(cached))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Ignoring corrupt cached mint info for %s: %s", mint, e)
            else:
                self._mint_cache[mint] = info
                return info

        info = await self._fetch_mint_info(mint)
        self._mint_cache[mint] = info
        await self._set_cached(cache_key, json.dumps(info.to_dict()))
        return info

    async def _fetch_mint_info(self, mint: str) -> MintInfo:
        try:
            pubkey = Pubkey.from_string(mint)
        except ValueError as e:
            raise TokenInfoError(f"Invalid mint address {mint!r}") from e

        await self._dispatcher.acquire(LimiterId.RPC)
        try:
            resp = await self._rpc.get_account_info_json_parsed(pubkey)
        except Exception as e:
            raise TokenInfoError(f"getAccountInfo failed for {mint}: {e}") from e

        account = getattr(resp, "value", None)
        if account is None:
            raise TokenInfoError(f"Mint account {mint} not found")

        parsed = getattr(account.data, "parsed", None)
        if not isinstance(parsed, dict) or parsed.get("type") not in (None, "mint"):
            raise TokenInfoError(f"Account {mint} is not a parsed mint")
        info = parsed.get("info") or {}
        if "decimals" not in info:
            raise TokenInfoError(f"Mint {mint} has no decimals field")

        return MintInfo(
            mint=mint,
            decimals=int(info["decimals"]),
            freeze_authority=info.get("freezeAuthority"),
            mint_authority=info.get("mintAuthority"),
        )

    async def is_freezable(self, mint: str) -> bool:
        """Whether the mint still has a freeze authority."""
        info = await self.get_mint_info(mint)
        return info.is_freezable

    async def get_decimals(self, mint: str) -> int:
        info = await self.get_mint_info(mint)
        return info.decimals

    async def get_price(self, mint: str) -> Decimal | None:
        """Price of one token in SOL, or None if unavailable."""
        if mint == NATIVE_MINT:
            return Decimal(1)
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=DEFAULT_PRICE_TIMEOUT_SECONDS)
            )
            self._owns_session = True

        params = {"ids": mint, "vsToken": NATIVE_MINT}
        await self._dispatcher.acquire(LimiterId.DETAIL)
        try:
            async with self._session.get(self._price_url, params=params) as response:
                if response.status >= 400:
                    logger.warning("Price lookup for %s failed: status=%d", mint, response.status)
                    return None
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            logger.warning("Price lookup for %s failed: %s", mint, e)
            return None

        entry = (body.get("data") or {}).get(mint) if isinstance(body, dict) else None
        if not isinstance(entry, dict):
            return None
        return to_decimal(entry.get("price"))
