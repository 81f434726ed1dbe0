"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from handoff_trader.config import Settings
from handoff_trader.ingestor.models import NATIVE_MINT

SELLER = "SELLER"
DISTRIB = "DISTRIB"
BOT = "BOT"
TOKEN = "Tx"


@pytest.fixture
def seller() -> str:
    return SELLER


@pytest.fixture
def distrib() -> str:
    return DISTRIB


@pytest.fixture
def token() -> str:
    return TOKEN


@pytest.fixture
def token_info() -> MagicMock:
    """Token-info client whose mints are never freezable."""
    info = MagicMock()
    info.is_freezable = AsyncMock(return_value=False)
    info.get_decimals = AsyncMock(return_value=6)
    info.get_price = AsyncMock(return_value=Decimal("0.0001"))
    info.close = AsyncMock()
    return info


@pytest.fixture
def make_seed_record() -> Callable[..., dict[str, Any]]:
    """Factory for SWAP records in the flattened webhook shape."""

    def _make(
        *,
        signature: str = "sig-seed",
        account: str = SELLER,
        lamports: int = 150_000_000_000,
        mint: str = TOKEN,
    ) -> dict[str, Any]:
        return {
            "type": "SWAP",
            "signature": signature,
            "timestamp": 1_700_000_000,
            "nativeInput": {"account": account, "amount": lamports},
            "tokenOutputs": [{"mint": mint}],
        }

    return _make


@pytest.fixture
def make_transfer_record() -> Callable[..., dict[str, Any]]:
    """Factory for TRANSFER records carrying one token transfer."""

    def _make(
        from_address: str,
        to_address: str,
        *,
        signature: str,
        mint: str = TOKEN,
        amount: float = 1000.0,
    ) -> dict[str, Any]:
        return {
            "type": "TRANSFER",
            "signature": signature,
            "timestamp": 1_700_000_100,
            "tokenTransfers": [
                {
                    "fromUserAccount": from_address,
                    "toUserAccount": to_address,
                    "tokenAmount": amount,
                    "mint": mint,
                }
            ],
            "nativeTransfers": [],
        }

    return _make


@pytest.fixture
def make_native_transfer_record() -> Callable[..., dict[str, Any]]:
    def _make(from_address: str, to_address: str, *, signature: str, lamports: int) -> dict[str, Any]:
        return {
            "type": "TRANSFER",
            "signature": signature,
            "timestamp": 1_700_000_200,
            "tokenTransfers": [],
            "nativeTransfers": [
                {"fromUserAccount": from_address, "toUserAccount": to_address, "amount": lamports}
            ],
        }

    return _make


@pytest.fixture
def mock_settings(tmp_path: Path) -> MagicMock:
    """Create mock settings for testing."""
    helius = MagicMock()
    helius.api_key = MagicMock()
    helius.api_key.get_secret_value.return_value = "test-key"
    helius.ws_url = "wss://mainnet.helius-rpc.com"
    helius.api_url = "https://api.helius.xyz"
    helius.ping_interval_seconds = 25
    helius.max_reconnect_delay_seconds = 60

    solana = MagicMock()
    solana.rpc_url = "https://api.mainnet-beta.solana.com"
    solana.confirm_timeout_seconds = 120.0

    jupiter = MagicMock()
    jupiter.api_url = "https://quote-api.jup.ag/v6"
    jupiter.price_url = "https://price.jup.ag/v6/price"
    jupiter.timeout_seconds = 10.0

    wallets = MagicMock()
    wallets.seller = SELLER
    wallets.distrib = DISTRIB
    wallets.private_key = None
    wallets.profit_address = None

    strategy = MagicMock()
    strategy.seed_target_sol = Decimal("150")
    strategy.seed_tolerance_sol = Decimal("0.5")
    strategy.buy_delay_min_seconds = 0.0
    strategy.buy_delay_max_seconds = 0.0
    strategy.sell_after_receipts = 2
    strategy.discovery_amount_sol = Decimal("105")

    trade = MagicMock()
    trade.buy_pct = Decimal("100")
    trade.sell_pct = Decimal("100")
    trade.slippage_bps = 500
    trade.fee_reserve_sol = Decimal("0.01")
    trade.max_attempts = 3
    trade.retry_delay_seconds = 0.0
    trade.sweep_reserve_sol = None

    rate_limit = MagicMock()
    rate_limit.detail_per_second = 100.0
    rate_limit.rpc_per_second = 100.0
    rate_limit.normalize_concurrency = 2

    dedup = MagicMock()
    dedup.retention_seconds = 60.0

    redis = MagicMock()
    redis.url = None
    redis.token_info_ttl_seconds = 3600

    audit = MagicMock()
    audit.enabled = False
    audit.transactions_path = tmp_path / "transactions.log"
    audit.detailed_info_path = tmp_path / "detailed_info.log"

    settings = MagicMock(spec=Settings)
    settings.helius = helius
    settings.solana = solana
    settings.jupiter = jupiter
    settings.wallets = wallets
    settings.strategy = strategy
    settings.trade = trade
    settings.rate_limit = rate_limit
    settings.dedup = dedup
    settings.redis = redis
    settings.audit = audit
    settings.webhook_host = "127.0.0.1"
    settings.webhook_port = 3000
    settings.dry_run = False
    return settings


@pytest.fixture
def native_mint() -> str:
    return NATIVE_MINT
