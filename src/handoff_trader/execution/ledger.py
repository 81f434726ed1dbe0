"""In-memory PnL ledger of confirmed fills."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum


class FillType(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class TransactionRecord:
    """One confirmed fill. Never mutated after it is appended."""

    type: FillType
    token: str
    token_amount: Decimal
    sol_amount: Decimal
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    tx_signature: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "type": self.type.value,
            "token": self.token,
            "token_amount": str(self.token_amount),
            "sol_amount": str(self.sol_amount),
            "timestamp": self.timestamp.isoformat(),
            "tx_signature": self.tx_signature,
        }


@dataclass(frozen=True)
class PnLReport:
    """Realized profit for one token.

    Attributes:
        token: Mint the report covers.
        sol_spent: Total SOL paid across buys.
        sol_received: Total SOL received across sells.
        pnl: ``sol_received - sol_spent``.
        pnl_percentage: ``pnl / sol_spent * 100``.
        buys: Number of buy records.
        sells: Number of sell records.
    """

    token: str
    sol_spent: Decimal
    sol_received: Decimal
    pnl: Decimal
    pnl_percentage: Decimal
    buys: int
    sells: int

    def to_dict(self) -> dict[str, object]:
        return {
            "token": self.token,
            "sol_spent": str(self.sol_spent),
            "sol_received": str(self.sol_received),
            "pnl": str(self.pnl),
            "pnl_percentage": str(self.pnl_percentage),
            "buys": self.buys,
            "sells": self.sells,
        }


class PnLLedger:
    """Token -> ordered fills, with realized PnL aggregation."""

    def __init__(self) -> None:
        self._records: dict[str, list[TransactionRecord]] = defaultdict(list)

    def record_fill(
        self,
        type: FillType | str,
        token: str,
        token_amount: Decimal,
        sol_amount: Decimal,
        *,
        tx_signature: str | None = None,
    ) -> TransactionRecord:
        """Append a fill and return the stored record."""
        record = TransactionRecord(
            type=FillType(type),
            token=token,
            token_amount=Decimal(token_amount),
            sol_amount=Decimal(sol_amount),
            tx_signature=tx_signature,
        )
        self._records[token].append(record)
        return record

    def records(self, token: str) -> tuple[TransactionRecord, ...]:
        return tuple(self._records.get(token, ()))

    def tokens(self) -> list[str]:
        return [token for token, records in self._records.items() if records]

    def __len__(self) -> int:
        return sum(len(records) for records in self._records.values())

    def compute_pnl(self, token: str) -> PnLReport | None:
        """Aggregate fills for ``token``.

        Returns:
            The report, or None when no buy has been recorded (or the buys
            cost nothing), since there is no basis to measure against.
        """
        records = self._records.get(token, [])
        buys = [r for r in records if r.type is FillType.BUY]
        sells = [r for r in records if r.type is FillType.SELL]
        if not buys:
            return None

        sol_spent = sum((r.sol_amount for r in buys), Decimal(0))
        sol_received = sum((r.sol_amount for r in sells), Decimal(0))
        if sol_spent == 0:
            return None

        pnl = sol_received - sol_spent
        return PnLReport(
            token=token,
            sol_spent=sol_spent,
            sol_received=sol_received,
            pnl=pnl,
            pnl_percentage=pnl / sol_spent * 100,
            buys=len(buys),
            sells=len(sells),
        )
