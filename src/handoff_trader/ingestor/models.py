"""Data models for the ingestor module.

Canonical events are a small tagged union (``Swap | Transfer | Mint | Other``).
Each variant carries only the fields that make sense for it, so consumers
dispatch on ``isinstance`` (or ``kind``) instead of probing optional keys.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, TypeAlias

# Wrapped SOL mint; used as the identifier of the native asset everywhere.
NATIVE_MINT = "So11111111111111111111111111111111111111112"
NATIVE_DECIMALS = 9
LAMPORTS_PER_SOL = 10**NATIVE_DECIMALS

_INSTRUCTION_RE = re.compile(r"Instruction:\s*(\w+)")


class TransferKind(str, Enum):
    """Canonical event kinds."""

    SWAP = "SWAP"
    TRANSFER = "TRANSFER"
    MINT = "MINT"
    OTHER = "OTHER"


def to_decimal(value: Any) -> Decimal | None:
    """Convert a JSON number or numeric string to Decimal, or None if unusable."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def scale_amount(raw: Any, decimals: int) -> Decimal | None:
    """Convert a raw integer amount in subunits to a decimal amount.

    Args:
        raw: Integer (or integer string) amount in the smallest unit.
        decimals: Declared decimal count of the asset.

    Returns:
        The scaled amount, or None if ``raw`` is not numeric.
    """
    amount = to_decimal(raw)
    if amount is None:
        return None
    return amount / (Decimal(10) ** decimals)


def lamports_to_sol(lamports: Any) -> Decimal | None:
    return scale_amount(lamports, NATIVE_DECIMALS)


def parse_timestamp(value: Any) -> datetime:
    """Parse a unix-seconds timestamp, falling back to now."""
    seconds = to_decimal(value)
    if seconds is None:
        return datetime.now(UTC)
    return datetime.fromtimestamp(float(seconds), tz=UTC)


@dataclass(frozen=True)
class SwapLeg:
    """One side of a swap: who sent or received what."""

    token: str
    amount: Decimal | None = None
    account: str | None = None

    @property
    def is_native(self) -> bool:
        return self.token == NATIVE_MINT


@dataclass(frozen=True)
class Swap:
    """A swap with an optional input leg and an optional output leg."""

    signature: str
    timestamp: datetime
    input: SwapLeg | None = None
    output: SwapLeg | None = None
    kind: TransferKind = field(default=TransferKind.SWAP, init=False)

    def legs(self) -> tuple[SwapLeg, ...]:
        """Return the present legs, input first."""
        return tuple(leg for leg in (self.input, self.output) if leg is not None)

    @property
    def from_address(self) -> str | None:
        """The account that initiated the swap."""
        for leg in self.legs():
            if leg.account:
                return leg.account
        return None

    @property
    def native_input_amount(self) -> Decimal | None:
        """Native amount spent, or None if the input is not the native asset."""
        if self.input is None or not self.input.is_native:
            return None
        return self.input.amount

    @property
    def output_token(self) -> str | None:
        """Token received, or None if the output is missing or native."""
        if self.output is None or self.output.is_native:
            return None
        return self.output.token

    def involves(self, token: str) -> bool:
        return any(leg.token == token for leg in self.legs())


@dataclass(frozen=True)
class Transfer:
    """A single movement of one asset between two addresses."""

    signature: str
    timestamp: datetime
    from_address: str | None
    to_address: str | None
    token: str
    amount: Decimal | None = None
    kind: TransferKind = field(default=TransferKind.TRANSFER, init=False)

    @property
    def is_native(self) -> bool:
        return self.token == NATIVE_MINT


@dataclass(frozen=True)
class Mint:
    """Creation of new token supply."""

    signature: str
    timestamp: datetime
    token: str
    to_address: str | None = None
    amount: Decimal | None = None
    kind: TransferKind = field(default=TransferKind.MINT, init=False)


@dataclass(frozen=True)
class Other:
    """Any record the pattern logic has no use for; only the raw type is kept."""

    signature: str
    timestamp: datetime
    raw_type: str
    kind: TransferKind = field(default=TransferKind.OTHER, init=False)


CanonicalTransfer: TypeAlias = Swap | Transfer | Mint | Other


@dataclass(frozen=True)
class LogNotification:
    """A ``logsNotification`` pushed by the logs websocket."""

    signature: str
    logs: tuple[str, ...] = ()
    slot: int | None = None
    failed: bool = False
    subscription: int | None = None

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> LogNotification:
        """Create a LogNotification from a JSON-RPC notification.

        Raises:
            KeyError: If the message carries no signature.
        """
        params = data.get("params") or {}
        result = params.get("result") or {}
        value = result.get("value") or {}
        context = result.get("context") or {}

        signature = value["signature"]
        slot = context.get("slot")
        return cls(
            signature=str(signature),
            logs=tuple(str(line) for line in (value.get("logs") or [])),
            slot=int(slot) if slot is not None else None,
            failed=value.get("err") is not None,
            subscription=params.get("subscription"),
        )

    def instruction_kinds(self) -> tuple[str, ...]:
        """Classify the program instructions mentioned in the logs.

        Returns:
            Distinct kinds among ``Transfer``, ``Swap``, ``MintTo`` and
            ``Burn`` in order of first appearance; unrecognized instructions
            are reported as ``Other``.
        """
        kinds: list[str] = []
        for line in self.logs:
            match = _INSTRUCTION_RE.search(line)
            if not match:
                continue
            name = match.group(1)
            if name.startswith("Transfer"):
                kind = "Transfer"
            elif "Swap" in name or "Route" in name:
                kind = "Swap"
            elif name.startswith("MintTo"):
                kind = "MintTo"
            elif name.startswith("Burn"):
                kind = "Burn"
            else:
                kind = "Other"
            if kind not in kinds:
                kinds.append(kind)
        return tuple(kinds)
