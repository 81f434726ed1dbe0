"""Tests for ingestor data models."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from handoff_trader.ingestor.models import (
    NATIVE_MINT,
    LogNotification,
    Swap,
    SwapLeg,
    Transfer,
    TransferKind,
    lamports_to_sol,
    parse_timestamp,
    scale_amount,
    to_decimal,
)

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TestAmountHelpers:
    """Tests for numeric conversion helpers."""

    def test_to_decimal(self) -> None:
        assert to_decimal("1.5") == Decimal("1.5")
        assert to_decimal(3) == Decimal(3)
        assert to_decimal(None) is None
        assert to_decimal(True) is None
        assert to_decimal("abc") is None

    def test_scale_amount(self) -> None:
        assert scale_amount(1_500_000, 6) == Decimal("1.5")
        assert scale_amount("42", 0) == Decimal(42)
        assert scale_amount(None, 6) is None

    def test_lamports_to_sol(self) -> None:
        assert lamports_to_sol(150_000_000_000) == Decimal(150)

    def test_parse_timestamp(self) -> None:
        parsed = parse_timestamp(1_700_000_000)
        assert parsed == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)

    def test_parse_timestamp_fallback(self) -> None:
        parsed = parse_timestamp(None)
        assert parsed.tzinfo is not None


class TestSwap:
    """Tests for the Swap variant."""

    def test_seed_shape(self) -> None:
        """Test a native-in, token-out swap exposes the seed fields."""
        swap = Swap(
            signature="sig",
            timestamp=NOW,
            input=SwapLeg(token=NATIVE_MINT, amount=Decimal(150), account="SELLER"),
            output=SwapLeg(token="Tx"),
        )

        assert swap.kind is TransferKind.SWAP
        assert swap.from_address == "SELLER"
        assert swap.native_input_amount == Decimal(150)
        assert swap.output_token == "Tx"
        assert swap.involves("Tx")
        assert not swap.involves("Other")
        assert len(swap.legs()) == 2

    def test_token_input_has_no_native_amount(self) -> None:
        swap = Swap(
            signature="sig",
            timestamp=NOW,
            input=SwapLeg(token="Tx", amount=Decimal(10), account="BOT"),
            output=SwapLeg(token=NATIVE_MINT, amount=Decimal(1)),
        )

        assert swap.native_input_amount is None
        assert swap.output_token is None

    def test_missing_legs(self) -> None:
        swap = Swap(signature="sig", timestamp=NOW)

        assert swap.legs() == ()
        assert swap.from_address is None
        assert swap.output_token is None

    def test_frozen(self) -> None:
        """Test that Swap is immutable."""
        swap = Swap(signature="sig", timestamp=NOW)
        with pytest.raises(AttributeError):
            swap.signature = "other"  # type: ignore[misc]


class TestTransfer:
    """Tests for the Transfer variant."""

    def test_native_flag(self) -> None:
        native = Transfer("s", NOW, "A", "B", NATIVE_MINT, Decimal(1))
        token = Transfer("s", NOW, "A", "B", "Tx", Decimal(1))

        assert native.is_native
        assert not token.is_native
        assert token.kind is TransferKind.TRANSFER


class TestLogNotification:
    """Tests for LogNotification model."""

    def test_from_websocket_message(self) -> None:
        data = {
            "jsonrpc": "2.0",
            "method": "logsNotification",
            "params": {
                "result": {
                    "context": {"slot": 5208469},
                    "value": {
                        "signature": "5h6xBEauJ3PK6SWCZ1PGjBvj8vDdWG3KpwATGy1ARAXFSDwt8GFXM7W5Ncn16wmqokgpiKRLuS83KUxyZyv2sUYv",
                        "err": None,
                        "logs": [
                            "Program TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA invoke [1]",
                            "Program log: Instruction: TransferChecked",
                        ],
                    },
                },
                "subscription": 24040,
            },
        }

        notification = LogNotification.from_websocket_message(data)

        assert notification.signature.startswith("5h6xBEau")
        assert notification.slot == 5208469
        assert notification.subscription == 24040
        assert notification.failed is False
        assert len(notification.logs) == 2

    def test_failed_transaction(self) -> None:
        data = {
            "params": {
                "result": {"value": {"signature": "sig", "err": {"InstructionError": [0, "Custom"]}}},
            }
        }

        notification = LogNotification.from_websocket_message(data)

        assert notification.failed is True
        assert notification.slot is None

    def test_missing_signature(self) -> None:
        with pytest.raises(KeyError):
            LogNotification.from_websocket_message({"params": {"result": {"value": {}}}})

    def test_instruction_kinds(self) -> None:
        notification = LogNotification(
            signature="sig",
            logs=(
                "Program log: Instruction: Route",
                "Program log: Instruction: TransferChecked",
                "Program log: Instruction: Transfer",
                "Program log: Instruction: MintTo",
                "Program log: Instruction: Burn",
                "Program log: Instruction: InitializeAccount3",
                "Program consumed 1234 compute units",
            ),
        )

        assert notification.instruction_kinds() == ("Swap", "Transfer", "MintTo", "Burn", "Other")
