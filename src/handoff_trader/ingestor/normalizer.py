"""Conversion of Helius enhanced-transaction records into canonical events.

Only the first token (or native) transfer of a ``TRANSFER`` record is
canonicalized. Records carrying several transfers are reduced to index 0.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from handoff_trader.ingestor.audit import AuditLog
from handoff_trader.ingestor.helius_client import HeliusClient, HeliusClientError
from handoff_trader.ingestor.models import (
    NATIVE_MINT,
    CanonicalTransfer,
    Mint,
    Other,
    Swap,
    SwapLeg,
    Transfer,
    lamports_to_sol,
    parse_timestamp,
    scale_amount,
    to_decimal,
)

logger = logging.getLogger(__name__)


def _first(items: Any) -> dict[str, Any] | None:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _token_amount(entry: dict[str, Any]) -> Decimal | None:
    raw = entry.get("rawTokenAmount")
    if isinstance(raw, dict):
        try:
            decimals = int(raw.get("decimals", 0))
        except (TypeError, ValueError):
            decimals = 0
        return scale_amount(raw.get("tokenAmount"), decimals)
    return to_decimal(entry.get("tokenAmount"))


def _token_leg(entry: dict[str, Any] | None, *, account_keys: tuple[str, ...]) -> SwapLeg | None:
    if entry is None or not entry.get("mint"):
        return None
    account = next((entry[k] for k in account_keys if entry.get(k)), None)
    return SwapLeg(token=str(entry["mint"]), amount=_token_amount(entry), account=account)


def _native_leg(entry: Any) -> SwapLeg | None:
    if not isinstance(entry, dict):
        return None
    return SwapLeg(
        token=NATIVE_MINT,
        amount=lamports_to_sol(entry.get("amount")),
        account=entry.get("account"),
    )


def _swap_section(record: dict[str, Any]) -> dict[str, Any]:
    events = record.get("events")
    if isinstance(events, dict) and isinstance(events.get("swap"), dict):
        return events["swap"]
    # Some producers flatten the swap fields onto the record itself.
    return record


def _normalize_swap(record: dict[str, Any], signature: str, timestamp: datetime) -> Swap:
    swap = _swap_section(record)
    inner = _first(swap.get("innerSwaps")) or {}

    input_leg = (
        _token_leg(_first(swap.get("tokenInputs")), account_keys=("userAccount", "fromUserAccount"))
        or _token_leg(_first(inner.get("tokenInputs")), account_keys=("fromUserAccount", "userAccount"))
        or _native_leg(swap.get("nativeInput"))
    )
    output_leg = (
        _token_leg(_first(swap.get("tokenOutputs")), account_keys=("userAccount", "toUserAccount"))
        or _token_leg(_first(inner.get("tokenOutputs")), account_keys=("toUserAccount", "userAccount"))
        or _native_leg(swap.get("nativeOutput"))
    )

    fee_payer = record.get("feePayer")
    if input_leg is not None and input_leg.account is None and fee_payer:
        input_leg = SwapLeg(token=input_leg.token, amount=input_leg.amount, account=fee_payer)
    if output_leg is not None and output_leg.account is None and fee_payer:
        output_leg = SwapLeg(token=output_leg.token, amount=output_leg.amount, account=fee_payer)

    return Swap(signature=signature, timestamp=timestamp, input=input_leg, output=output_leg)


def _normalize_transfer(record: dict[str, Any], signature: str, timestamp: datetime) -> Transfer | Other:
    token_transfer = _first(record.get("tokenTransfers"))
    if token_transfer is not None and token_transfer.get("mint"):
        return Transfer(
            signature=signature,
            timestamp=timestamp,
            from_address=token_transfer.get("fromUserAccount"),
            to_address=token_transfer.get("toUserAccount"),
            token=str(token_transfer["mint"]),
            amount=_token_amount(token_transfer),
        )

    native_transfer = _first(record.get("nativeTransfers"))
    if native_transfer is not None:
        return Transfer(
            signature=signature,
            timestamp=timestamp,
            from_address=native_transfer.get("fromUserAccount"),
            to_address=native_transfer.get("toUserAccount"),
            token=NATIVE_MINT,
            amount=lamports_to_sol(native_transfer.get("amount")),
        )

    return Other(signature=signature, timestamp=timestamp, raw_type=str(record.get("type", "TRANSFER")))


def _normalize_mint(record: dict[str, Any], signature: str, timestamp: datetime) -> Mint | Other:
    token_transfer = _first(record.get("tokenTransfers"))
    if token_transfer is None or not token_transfer.get("mint"):
        return Other(signature=signature, timestamp=timestamp, raw_type=str(record.get("type")))
    return Mint(
        signature=signature,
        timestamp=timestamp,
        token=str(token_transfer["mint"]),
        to_address=token_transfer.get("toUserAccount"),
        amount=_token_amount(token_transfer),
    )


def normalize_record(record: dict[str, Any]) -> list[CanonicalTransfer]:
    """Convert one enhanced-transaction record into canonical events.

    Args:
        record: A Helius enhanced-transaction object (or a webhook item of
            the same shape).

    Returns:
        A single-element list for every recognizable record. A swap's input
        and output legs travel together on the one ``Swap`` event.
    """
    signature = str(record.get("signature") or "")
    timestamp = parse_timestamp(record.get("timestamp"))
    raw_type = str(record.get("type") or "UNKNOWN").upper()

    event: CanonicalTransfer
    if raw_type == "SWAP":
        event = _normalize_swap(record, signature, timestamp)
    elif raw_type == "TRANSFER":
        event = _normalize_transfer(record, signature, timestamp)
    elif raw_type == "TOKEN_MINT":
        event = _normalize_mint(record, signature, timestamp)
    else:
        event = Other(signature=signature, timestamp=timestamp, raw_type=raw_type)
    return [event]


class TransactionNormalizer:
    """Fetches detail records by signature and normalizes them."""

    def __init__(self, client: HeliusClient, *, audit: AuditLog | None = None) -> None:
        self._client = client
        self._audit = audit

    async def normalize(self, signature: str) -> list[CanonicalTransfer] | None:
        """Fetch and normalize one transaction.

        Returns:
            Canonical events, or None when the fetch failed or returned
            nothing. Callers treat None as a skip.
        """
        try:
            record = await self._client.get_transaction(signature)
        except HeliusClientError as e:
            logger.warning("Detail lookup failed for %s: %s", signature, e)
            return None

        if not record:
            logger.info("Empty detail payload for %s, skipping", signature)
            return None

        if self._audit is not None:
            self._audit.write_detail(record)

        return normalize_record(record)
