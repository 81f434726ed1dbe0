"""Tests for the PnL ledger."""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from handoff_trader.execution.ledger import FillType, PnLLedger


class TestPnLLedger:
    """Tests for PnLLedger."""

    def test_round_trip_profit(self) -> None:
        ledger = PnLLedger()
        ledger.record_fill(FillType.BUY, "Tx", Decimal("1000"), Decimal("1.0"))
        ledger.record_fill(FillType.SELL, "Tx", Decimal("1000"), Decimal("1.2"))

        report = ledger.compute_pnl("Tx")

        assert report is not None
        assert report.sol_spent == Decimal("1.0")
        assert report.sol_received == Decimal("1.2")
        assert report.pnl == Decimal("0.2")
        assert report.pnl_percentage == Decimal("20")
        assert report.buys == 1
        assert report.sells == 1

    def test_loss(self) -> None:
        ledger = PnLLedger()
        ledger.record_fill("buy", "Tx", Decimal(10), Decimal("2"))
        ledger.record_fill("sell", "Tx", Decimal(10), Decimal("1.5"))

        report = ledger.compute_pnl("Tx")

        assert report is not None
        assert report.pnl == Decimal("-0.5")
        assert report.pnl_percentage == Decimal("-25")

    def test_no_buys(self) -> None:
        ledger = PnLLedger()
        ledger.record_fill(FillType.SELL, "Tx", Decimal(1), Decimal(1))

        assert ledger.compute_pnl("Tx") is None
        assert ledger.compute_pnl("unknown") is None

    def test_open_position(self) -> None:
        ledger = PnLLedger()
        ledger.record_fill(FillType.BUY, "Tx", Decimal(1), Decimal("0.5"))

        report = ledger.compute_pnl("Tx")

        assert report is not None
        assert report.sol_received == 0
        assert report.pnl == Decimal("-0.5")

    def test_tokens_tracked_separately(self) -> None:
        ledger = PnLLedger()
        ledger.record_fill(FillType.BUY, "Ta", Decimal(1), Decimal(1))
        ledger.record_fill(FillType.BUY, "Tb", Decimal(1), Decimal(2))
        ledger.record_fill(FillType.SELL, "Tb", Decimal(1), Decimal(3))

        assert ledger.tokens() == ["Ta", "Tb"]
        assert len(ledger) == 3
        assert len(ledger.records("Tb")) == 2
        assert ledger.compute_pnl("Ta").sells == 0  # type: ignore[union-attr]

    def test_records_immutable(self) -> None:
        ledger = PnLLedger()
        record = ledger.record_fill(FillType.BUY, "Tx", Decimal(1), Decimal(1), tx_signature="sig")

        with pytest.raises(FrozenInstanceError):
            record.sol_amount = Decimal(2)  # type: ignore[misc]
        assert record.to_dict()["tx_signature"] == "sig"

    def test_invalid_fill_type(self) -> None:
        ledger = PnLLedger()

        with pytest.raises(ValueError):
            ledger.record_fill("hold", "Tx", Decimal(1), Decimal(1))
