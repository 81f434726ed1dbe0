"""Tests for the seed/handoff pattern state machine."""

import random
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from handoff_trader.detector.models import (
    ActionKind,
    CyclePhase,
    CycleState,
    WatchedAddressSet,
)
from handoff_trader.detector.pattern import PatternStateMachine
from handoff_trader.ingestor.models import NATIVE_MINT, Other, Swap, SwapLeg, Transfer
from handoff_trader.ingestor.normalizer import normalize_record
from handoff_trader.profiler.token_info import TokenInfoError

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)
SELLER = "SELLER"
DISTRIB = "DISTRIB"
BOT = "BOT"
TOKEN = "Tx"


def seed_swap(amount: str = "150", account: str = SELLER, token: str = TOKEN, sig: str = "seed") -> Swap:
    return Swap(
        signature=sig,
        timestamp=NOW,
        input=SwapLeg(token=NATIVE_MINT, amount=Decimal(amount), account=account),
        output=SwapLeg(token=token),
    )


def transfer(src: str, dst: str, token: str = TOKEN, sig: str = "t", amount: str = "1000") -> Transfer:
    return Transfer(
        signature=sig,
        timestamp=NOW,
        from_address=src,
        to_address=dst,
        token=token,
        amount=Decimal(amount),
    )


@pytest.fixture
def watched() -> WatchedAddressSet:
    return WatchedAddressSet({"SELLER": SELLER, "DISTRIB": DISTRIB, "BOT": BOT})


@pytest.fixture
def machine(watched: WatchedAddressSet, token_info: MagicMock) -> PatternStateMachine:
    return PatternStateMachine(CycleState(), watched, token_info, rng=random.Random(7))


async def advance_to_buy_pending(machine: PatternStateMachine) -> list:
    await machine.process(seed_swap())
    await machine.process(transfer(SELLER, DISTRIB, sig="h1"))
    return await machine.process(transfer(DISTRIB, SELLER, sig="h2"))


class TestSeedDetection:
    """Tests for the Idle -> SeedDetected transition."""

    @pytest.mark.asyncio
    async def test_seed_swap_starts_cycle(self, machine: PatternStateMachine) -> None:
        actions = await machine.process(seed_swap())

        assert [(a.kind, a.token) for a in actions] == [(ActionKind.REPORT_TOKEN, TOKEN)]
        assert machine.state.candidate_token == TOKEN
        assert machine.state.phase is CyclePhase.SEED_DETECTED

    @pytest.mark.asyncio
    async def test_webhook_scenario(self, machine: PatternStateMachine) -> None:
        """Test the flattened webhook swap record end to end."""
        record = {
            "type": "SWAP",
            "nativeInput": {"account": SELLER, "amount": 150_000_000_000},
            "tokenOutputs": [{"mint": TOKEN}],
        }

        await machine.process_many(normalize_record(record))

        assert machine.state.candidate_token == TOKEN
        assert machine.state.phase is CyclePhase.SEED_DETECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["149.5", "150.5", "150.2"])
    async def test_tolerance_band_inclusive(self, machine: PatternStateMachine, amount: str) -> None:
        await machine.process(seed_swap(amount))

        assert machine.state.candidate_token == TOKEN

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["149.4", "150.6", "10"])
    async def test_outside_band_ignored(self, machine: PatternStateMachine, amount: str) -> None:
        await machine.process(seed_swap(amount))

        assert machine.state.is_idle

    @pytest.mark.asyncio
    async def test_other_account_ignored(self, machine: PatternStateMachine) -> None:
        await machine.process(seed_swap(account=DISTRIB))

        assert machine.state.is_idle

    @pytest.mark.asyncio
    async def test_freezable_token_aborts(self, machine: PatternStateMachine, token_info: MagicMock) -> None:
        token_info.is_freezable.return_value = True

        actions = await machine.process(seed_swap())

        assert actions == []
        assert machine.state.is_idle
        assert machine.state.is_consistent()

    @pytest.mark.asyncio
    async def test_lookup_failure_aborts(self, machine: PatternStateMachine, token_info: MagicMock) -> None:
        token_info.is_freezable.side_effect = TokenInfoError("rpc down")

        await machine.process(seed_swap())

        assert machine.state.is_idle
        assert machine.state.is_consistent()

    @pytest.mark.asyncio
    async def test_repeat_seed_is_noop(self, machine: PatternStateMachine, token_info: MagicMock) -> None:
        await machine.process(seed_swap())
        await machine.process(transfer(SELLER, DISTRIB))

        await machine.process(seed_swap(sig="seed-2"))

        assert machine.state.phase is CyclePhase.AWAITING_DISTRIBUTION
        token_info.is_freezable.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_seed_for_other_token_ignored_while_active(self, machine: PatternStateMachine) -> None:
        await machine.process(seed_swap())

        await machine.process(seed_swap(token="Ty", sig="seed-2"))

        assert machine.state.candidate_token == TOKEN


class TestHandoff:
    """Tests for the SELLER <-> DISTRIB handoff."""

    @pytest.mark.asyncio
    async def test_full_handoff_schedules_one_buy(self, machine: PatternStateMachine) -> None:
        actions = await advance_to_buy_pending(machine)

        assert len(actions) == 1
        assert actions[0].kind is ActionKind.SCHEDULE_BUY
        assert actions[0].token == TOKEN
        assert 30 <= actions[0].delay_seconds <= 50
        assert machine.state.phase is CyclePhase.BUY_PENDING
        assert machine.state.seller_handoff_observed
        assert machine.state.distributing_in_progress

    @pytest.mark.asyncio
    async def test_duplicate_return_schedules_nothing(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)

        actions = await machine.process(transfer(DISTRIB, SELLER, sig="h3"))

        assert actions == []

    @pytest.mark.asyncio
    async def test_return_before_handoff_ignored(self, machine: PatternStateMachine) -> None:
        await machine.process(seed_swap())

        actions = await machine.process(transfer(DISTRIB, SELLER))

        assert actions == []
        assert machine.state.phase is CyclePhase.SEED_DETECTED

    @pytest.mark.asyncio
    async def test_wrong_token_leaves_state(self, machine: PatternStateMachine) -> None:
        await machine.process(seed_swap())
        before = machine.state.to_dict()

        await machine.process(transfer(SELLER, DISTRIB, token="Ty"))
        await machine.process(transfer(DISTRIB, "SOMEONE"))
        await machine.process(Other(signature="o", timestamp=NOW, raw_type="NFT_SALE"))

        assert machine.state.to_dict() == before

    @pytest.mark.asyncio
    async def test_transfers_while_idle_ignored(self, machine: PatternStateMachine) -> None:
        actions = await machine.process(transfer(SELLER, DISTRIB))

        assert actions == []
        assert machine.state.is_idle

    @pytest.mark.asyncio
    async def test_delay_window_respected(self, watched: WatchedAddressSet, token_info: MagicMock) -> None:
        machine = PatternStateMachine(
            CycleState(), watched, token_info, buy_delay_min=1.0, buy_delay_max=2.0
        )

        actions = await advance_to_buy_pending(machine)

        assert 1.0 <= actions[0].delay_seconds <= 2.0


class TestPosition:
    """Tests for buy confirmation, receipts and the sell."""

    @pytest.mark.asyncio
    async def test_two_receipts_trigger_one_sell(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)
        assert await machine.confirm_buy(TOKEN)
        assert machine.state.phase is CyclePhase.HOLDING_POSITION

        first = await machine.process(transfer("X", SELLER, sig="r1"))
        second = await machine.process(transfer("Y", SELLER, sig="r2"))
        third = await machine.process(transfer("Z", SELLER, sig="r3"))

        assert first == []
        assert [a.kind for a in second] == [ActionKind.SELL]
        assert third == []
        assert machine.state.phase is CyclePhase.SELL_PENDING

    @pytest.mark.asyncio
    async def test_sell_confirmation_resets(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)
        await machine.confirm_buy(TOKEN)
        await machine.process(transfer("X", SELLER, sig="r1"))
        await machine.process(transfer("Y", SELLER, sig="r2"))

        assert await machine.confirm_sell(TOKEN)

        assert machine.state.is_idle
        assert machine.state.is_consistent()

    @pytest.mark.asyncio
    async def test_receipts_before_buy_not_counted(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)

        await machine.process(transfer("X", SELLER, sig="r1"))

        assert machine.state.received_count == 0

    @pytest.mark.asyncio
    async def test_bot_swap_confirms_buy(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)
        bot_swap = Swap(
            signature="bot",
            timestamp=NOW,
            input=SwapLeg(token=NATIVE_MINT, amount=Decimal(1), account=BOT),
            output=SwapLeg(token=TOKEN, account=BOT),
        )

        await machine.process(bot_swap)

        assert machine.state.bought_confirmed
        assert machine.state.phase is CyclePhase.HOLDING_POSITION

    @pytest.mark.asyncio
    async def test_confirm_buy_for_stale_token(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)

        assert await machine.confirm_buy("Ty") is False
        assert machine.state.phase is CyclePhase.BUY_PENDING

    @pytest.mark.asyncio
    async def test_is_buy_pending_and_abort(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)
        assert await machine.is_buy_pending(TOKEN)

        assert await machine.abort(TOKEN, "test")

        assert await machine.is_buy_pending(TOKEN) is False
        assert machine.state.is_consistent()
        assert await machine.abort(TOKEN, "again") is False

    @pytest.mark.asyncio
    async def test_new_cycle_after_reset(self, machine: PatternStateMachine) -> None:
        await advance_to_buy_pending(machine)
        await machine.abort(None, "test")

        await machine.process(seed_swap(token="Ty", sig="seed-2"))

        assert machine.state.candidate_token == "Ty"


class TestDiscovery:
    """Tests for wallet discovery."""

    @pytest.mark.asyncio
    async def test_discovery_transfer_subscribes_once(self, machine: PatternStateMachine) -> None:
        event = transfer(SELLER, "NEW", token=NATIVE_MINT, amount="105")

        first = await machine.process(event)
        second = await machine.process(transfer(DISTRIB, "NEW", token=NATIVE_MINT, amount="105", sig="t2"))

        assert [a.kind for a in first] == [ActionKind.SUBSCRIBE]
        assert first[0].address == "NEW"
        assert second == []
        assert machine.watched.role_of("NEW") == "WALLET_1"

    @pytest.mark.asyncio
    async def test_other_amounts_not_discovered(self, machine: PatternStateMachine) -> None:
        actions = await machine.process(transfer(SELLER, "NEW", token=NATIVE_MINT, amount="104.9"))

        assert actions == []
        assert "NEW" not in machine.watched

    @pytest.mark.asyncio
    async def test_discovery_disabled(self, watched: WatchedAddressSet, token_info: MagicMock) -> None:
        machine = PatternStateMachine(CycleState(), watched, token_info, discovery_amount=None)

        actions = await machine.process(transfer(SELLER, "NEW", token=NATIVE_MINT, amount="105"))

        assert actions == []


class TestConstruction:
    def test_invalid_delay_window(self, watched: WatchedAddressSet) -> None:
        with pytest.raises(ValueError):
            PatternStateMachine(CycleState(), watched, AsyncMock(), buy_delay_min=10, buy_delay_max=5)

    def test_invalid_receipts(self, watched: WatchedAddressSet) -> None:
        with pytest.raises(ValueError):
            PatternStateMachine(CycleState(), watched, AsyncMock(), sell_after_receipts=0)
