"""Data ingestion layer - Solana transaction notifications to canonical events."""

from handoff_trader.ingestor.dedup import Deduplicator
from handoff_trader.ingestor.helius_client import (
    HeliusClient,
    HeliusClientError,
    RetryError,
)
from handoff_trader.ingestor.models import (
    NATIVE_MINT,
    CanonicalTransfer,
    LogNotification,
    Mint,
    Other,
    Swap,
    SwapLeg,
    Transfer,
    TransferKind,
)
from handoff_trader.ingestor.normalizer import TransactionNormalizer, normalize_record
from handoff_trader.ingestor.rate_limit import Dispatcher, LimiterId

__all__ = [
    "NATIVE_MINT",
    "CanonicalTransfer",
    "Deduplicator",
    "Dispatcher",
    "HeliusClient",
    "HeliusClientError",
    "LimiterId",
    "LogNotification",
    "Mint",
    "Other",
    "RetryError",
    "Swap",
    "SwapLeg",
    "TransactionNormalizer",
    "Transfer",
    "TransferKind",
    "normalize_record",
]
