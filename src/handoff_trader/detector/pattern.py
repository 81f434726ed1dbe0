"""Seed / handoff pattern detection.

This module provides the PatternStateMachine that correlates canonical
events into buy and sell triggers. The cycle it tracks is:

1. SELLER swaps roughly the seed size of SOL into a token (the candidate).
2. SELLER hands the candidate to DISTRIB.
3. DISTRIB hands it back to SELLER: a buy is scheduled after a random delay.
4. The buy is confirmed.
5. SELLER receives the candidate a configured number of times: sell.
6. The sell is confirmed and the cycle resets.

The machine only advances on exact matches of role, direction and token;
anything else leaves the state untouched.
"""

from __future__ import annotations

import asyncio
import logging
import random
from decimal import Decimal

from handoff_trader.detector.models import (
    ActionKind,
    CyclePhase,
    CycleState,
    PatternAction,
    WatchedAddressSet,
)
from handoff_trader.ingestor.models import CanonicalTransfer, Swap, Transfer
from handoff_trader.profiler.token_info import TokenInfoClient, TokenInfoError

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_SEED_TARGET = Decimal("150")
DEFAULT_SEED_TOLERANCE = Decimal("0.5")
DEFAULT_BUY_DELAY_MIN = 30.0
DEFAULT_BUY_DELAY_MAX = 50.0
DEFAULT_SELL_AFTER_RECEIPTS = 2
DEFAULT_DISCOVERY_AMOUNT = Decimal("105")


class PatternStateMachine:
    """Advances a CycleState from canonical events.

    All mutation happens under one asyncio lock, because the freeze-authority
    lookup suspends in the middle of the Idle -> SeedDetected transition.

    Example:
        ```python
        machine = PatternStateMachine(CycleState(), watched, token_info)
        for action in await machine.process(event):
            ...
        ```
    """

    def __init__(
        self,
        state: CycleState,
        watched: WatchedAddressSet,
        token_info: TokenInfoClient,
        *,
        seed_target: Decimal = DEFAULT_SEED_TARGET,
        seed_tolerance: Decimal = DEFAULT_SEED_TOLERANCE,
        buy_delay_min: float = DEFAULT_BUY_DELAY_MIN,
        buy_delay_max: float = DEFAULT_BUY_DELAY_MAX,
        sell_after_receipts: int = DEFAULT_SELL_AFTER_RECEIPTS,
        discovery_amount: Decimal | None = DEFAULT_DISCOVERY_AMOUNT,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the state machine.

        Args:
            state: Cycle state owned by the caller.
            watched: Role to address mapping.
            token_info: Used for the freeze-authority check on seed swaps.
            seed_target: Native input size of a qualifying seed swap.
            seed_tolerance: Half-width of the accepted seed size band.
            buy_delay_min: Lower bound of the buy jitter window, in seconds.
            buy_delay_max: Upper bound of the buy jitter window, in seconds.
            sell_after_receipts: SELLER receipts of the candidate that trigger the sell.
            discovery_amount: Native transfer size that marks a wallet to watch;
                None disables discovery.
            rng: Random source for the jitter delay.
        """
        if buy_delay_max < buy_delay_min:
            raise ValueError("buy_delay_max must be >= buy_delay_min")
        if sell_after_receipts < 1:
            raise ValueError("sell_after_receipts must be >= 1")
        self._state = state
        self._watched = watched
        self._token_info = token_info
        self._seed_low = seed_target - seed_tolerance
        self._seed_high = seed_target + seed_tolerance
        self._buy_delay_min = buy_delay_min
        self._buy_delay_max = buy_delay_max
        self._sell_after_receipts = sell_after_receipts
        self._discovery_amount = discovery_amount
        self._rng = rng or random.Random()
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CycleState:
        return self._state

    @property
    def watched(self) -> WatchedAddressSet:
        return self._watched

    async def process(self, event: CanonicalTransfer) -> list[PatternAction]:
        """Feed one canonical event and return the actions it triggers."""
        async with self._lock:
            actions: list[PatternAction] = []
            if isinstance(event, Swap):
                await self._on_swap(event, actions)
            elif isinstance(event, Transfer):
                self._discover(event, actions)
                self._on_transfer(event, actions)
            return actions

    async def process_many(self, events: list[CanonicalTransfer]) -> list[PatternAction]:
        """Feed events in order and collect every resulting action."""
        actions: list[PatternAction] = []
        for event in events:
            actions.extend(await self.process(event))
        return actions

    def is_seed_swap(self, swap: Swap) -> bool:
        return self.seed_token(swap) is not None

    def seed_token(self, swap: Swap) -> str | None:
        """Token bought by ``swap`` if it is a seed swap, else None."""
        seller = self._watched.seller
        if seller is None or swap.from_address != seller:
            return None
        amount = swap.native_input_amount
        if amount is None or not (self._seed_low <= amount <= self._seed_high):
            return None
        return swap.output_token

    async def _on_swap(self, swap: Swap, actions: list[PatternAction]) -> None:
        state = self._state

        token = self.seed_token(swap)
        if token is not None:
            if state.candidate_token == token:
                logger.debug("Repeat seed swap for %s ignored", token)
                return
            if not state.is_idle:
                logger.info(
                    "Seed swap for %s ignored, cycle for %s still active",
                    token,
                    state.candidate_token,
                )
                return
            await self._start_cycle(token, swap.signature, actions)
            return

        if state.phase is CyclePhase.BUY_PENDING and state.candidate_token is not None:
            bot = self._watched.bot
            if bot is not None and swap.from_address == bot and swap.involves(state.candidate_token):
                self._mark_bought(state.candidate_token, source=f"swap {swap.signature}")

    async def _start_cycle(self, token: str, signature: str, actions: list[PatternAction]) -> None:
        state = self._state
        state.begin(token)
        logger.info("Seed swap detected: token=%s sig=%s", token, signature)

        try:
            freezable = await self._token_info.is_freezable(token)
        except TokenInfoError as e:
            logger.warning("Freeze-authority lookup failed for %s, aborting cycle: %s", token, e)
            state.reset()
            return

        if freezable:
            logger.warning("Token %s has a freeze authority, aborting cycle", token)
            state.reset()
            return

        state.phase = CyclePhase.SEED_DETECTED
        actions.append(PatternAction(ActionKind.REPORT_TOKEN, token=token))

    def _on_transfer(self, transfer: Transfer, actions: list[PatternAction]) -> None:
        state = self._state
        token = state.candidate_token
        if token is None or transfer.token != token:
            return

        seller = self._watched.seller
        distrib = self._watched.distrib

        if state.phase is CyclePhase.SEED_DETECTED:
            if transfer.from_address == seller and transfer.to_address == distrib:
                state.seller_handoff_observed = True
                state.phase = CyclePhase.AWAITING_DISTRIBUTION
                logger.info("Handoff SELLER -> DISTRIB observed for %s", token)
            return

        if state.phase in (CyclePhase.AWAITING_DISTRIBUTION, CyclePhase.BUY_PENDING):
            if transfer.from_address != distrib or transfer.to_address != seller:
                return
            if state.distributing_in_progress:
                logger.debug("Duplicate DISTRIB -> SELLER for %s ignored", token)
                return
            state.distributing_in_progress = True
            state.phase = CyclePhase.BUY_PENDING
            delay = self._rng.uniform(self._buy_delay_min, self._buy_delay_max)
            logger.info("Handoff DISTRIB -> SELLER observed for %s, buying in %.1fs", token, delay)
            actions.append(PatternAction(kind=ActionKind.SCHEDULE_BUY, token=token, delay_seconds=delay))
            return

        if state.phase is CyclePhase.HOLDING_POSITION and transfer.to_address == seller:
            state.received_count += 1
            logger.info(
                "SELLER received %s (%d/%d)",
                token,
                state.received_count,
                self._sell_after_receipts,
            )
            if state.received_count >= self._sell_after_receipts:
                state.phase = CyclePhase.SELL_PENDING
                actions.append(PatternAction(kind=ActionKind.SELL, token=token))

    def _discover(self, transfer: Transfer, actions: list[PatternAction]) -> None:
        if self._discovery_amount is None or not transfer.is_native:
            return
        if transfer.amount != self._discovery_amount or not transfer.to_address:
            return
        role = self._watched.discover(transfer.to_address)
        if role is None:
            return
        logger.info("Discovered %s at %s", role, transfer.to_address)
        actions.append(PatternAction(kind=ActionKind.SUBSCRIBE, address=transfer.to_address))

    def _mark_bought(self, token: str, *, source: str) -> None:
        state = self._state
        state.bought_confirmed = True
        state.phase = CyclePhase.HOLDING_POSITION
        logger.info("Buy of %s confirmed (%s)", token, source)

    async def confirm_buy(self, token: str) -> bool:
        """Record a confirmed buy. Returns False if the cycle moved on."""
        async with self._lock:
            if self._state.candidate_token != token or self._state.phase is not CyclePhase.BUY_PENDING:
                return False
            self._mark_bought(token, source="engine")
            return True

    async def confirm_sell(self, token: str) -> bool:
        """Record a confirmed sell and reset the cycle."""
        async with self._lock:
            state = self._state
            if state.candidate_token != token or state.phase is not CyclePhase.SELL_PENDING:
                return False
            state.sold_confirmed = True
            logger.info("Sell of %s confirmed, cycle complete", token)
            state.reset()
            return True

    async def is_buy_pending(self, token: str) -> bool:
        """Whether a scheduled buy for ``token`` is still wanted."""
        async with self._lock:
            return self._state.candidate_token == token and self._state.phase is CyclePhase.BUY_PENDING

    async def abort(self, token: str | None, reason: str) -> bool:
        """Reset the cycle if it is still tracking ``token`` (any cycle if None)."""
        async with self._lock:
            state = self._state
            if state.is_idle or (token is not None and state.candidate_token != token):
                return False
            logger.warning("Aborting cycle for %s: %s", state.candidate_token, reason)
            state.reset()
            return True
