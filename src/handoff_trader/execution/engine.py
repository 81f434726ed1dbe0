"""Trade execution: sizing, quoting, signing, confirmation, retries, fills.

This module provides the TradeExecutionEngine class that turns a buy or
sell trigger into a confirmed Jupiter swap and records the fill in the
PnL ledger.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from handoff_trader.execution.jupiter import JupiterClient, JupiterError, NoRouteError
from handoff_trader.execution.ledger import FillType, PnLLedger, TransactionRecord
from handoff_trader.execution.wallet import (
    ConfirmationTimeoutError,
    SolanaWallet,
    TransactionFailedError,
    WalletError,
)
from handoff_trader.ingestor.models import LAMPORTS_PER_SOL, NATIVE_DECIMALS, NATIVE_MINT, scale_amount
from handoff_trader.profiler.token_info import TokenInfoClient, TokenInfoError

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_FEE_RESERVE_SOL = Decimal("0.01")
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 5.0


class TradeSizeError(Exception):
    """Raised when the computed trade amount is not positive."""


@dataclass(frozen=True)
class TradeResult:
    """Outcome of one ``trade`` call.

    Attributes:
        success: Whether the swap was confirmed (or quoted, in dry-run mode).
        tx_signature: Signature of the confirmed swap, if one was sent.
        attempts: Attempts used, including the successful one.
        error: Last error message on failure.
        record: Ledger record appended for the fill, if any.
    """

    success: bool
    tx_signature: str | None = None
    attempts: int = 0
    error: str | None = None
    record: TransactionRecord | None = None


@dataclass(frozen=True)
class SubmittedSwap:
    """A signed swap sent to the cluster, with the fill it was quoted at."""

    token: str
    is_buy: bool
    signature: str
    token_amount: Decimal
    sol_amount: Decimal

    @property
    def side(self) -> str:
        return "buy" if self.is_buy else "sell"


class TradeExecutionEngine:
    """Executes buys and sells through Jupiter with bounded retries.

    A swap whose confirmation times out is not resubmitted blindly: later
    attempts keep watching its signature and only build a new swap once it
    is known to have failed or expired.

    Example:
        ```python
        engine = TradeExecutionEngine(jupiter, wallet, token_info, ledger)
        result = await engine.trade(mint, Decimal("100"), is_buy=True, slippage_bps=500)
        if not result.success:
            ...
        ```
    """

    def __init__(
        self,
        jupiter: JupiterClient,
        wallet: SolanaWallet,
        token_info: TokenInfoClient,
        ledger: PnLLedger,
        *,
        fee_reserve_sol: Decimal = DEFAULT_FEE_RESERVE_SOL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        sweep_address: str | None = None,
        sweep_reserve_sol: Decimal | None = None,
        dry_run: bool = False,
    ) -> None:
        """Initialize the engine.

        Args:
            jupiter: Quote and swap-build client.
            wallet: Signing wallet.
            token_info: Used for mint decimals.
            ledger: Receives confirmed fills.
            fee_reserve_sol: SOL kept back from buys for network fees.
            max_attempts: Attempts per trade before giving up.
            retry_delay_seconds: Fixed delay between attempts.
            sweep_address: Where surplus SOL goes after a sell (None disables).
            sweep_reserve_sol: Balance left behind by the sweep.
            dry_run: Quote only; never sign, submit or record.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._jupiter = jupiter
        self._wallet = wallet
        self._token_info = token_info
        self._ledger = ledger
        self._fee_reserve_lamports = int(fee_reserve_sol * LAMPORTS_PER_SOL)
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay_seconds
        self._sweep_address = sweep_address
        self._sweep_reserve_sol = sweep_reserve_sol
        self._dry_run = dry_run

    @property
    def ledger(self) -> PnLLedger:
        return self._ledger

    async def trade(
        self,
        token: str,
        size_pct: Decimal,
        is_buy: bool,
        slippage_bps: int,
    ) -> TradeResult:
        """Buy ``token`` with SOL or sell it for SOL.

        Args:
            token: Mint to trade.
            size_pct: Percentage (0-100] of spendable SOL (buy) or held tokens (sell).
            is_buy: Direction.
            slippage_bps: Slippage tolerance in basis points.

        Returns:
            A TradeResult. ``success=False`` after exhausting attempts, or
            immediately when there is nothing to trade or no route exists.
        """
        side = "buy" if is_buy else "sell"
        last_error: Exception | None = None
        pending: SubmittedSwap | None = None

        for attempt in range(1, self._max_attempts + 1):
            try:
                if pending is not None and not await self._landed(pending):
                    pending = None
                if pending is None:
                    submitted = await self._submit(token, Decimal(size_pct), is_buy, slippage_bps)
                    if submitted is None:
                        return TradeResult(success=True, attempts=attempt)
                    pending = submitted
                    await self._wallet.confirm(pending.signature)
                return await self._complete(pending, attempt)
            except (TradeSizeError, NoRouteError) as e:
                logger.warning("%s of %s rejected: %s", side.capitalize(), token, e)
                return TradeResult(success=False, attempts=attempt, error=str(e))
            except (JupiterError, WalletError, TokenInfoError) as e:
                last_error = e
                if isinstance(e, TransactionFailedError) and pending is not None:
                    self._wallet.forget(pending.signature)
                    pending = None
                logger.warning(
                    "%s of %s attempt %d/%d failed: %s",
                    side.capitalize(),
                    token,
                    attempt,
                    self._max_attempts,
                    e,
                )
                if attempt < self._max_attempts:
                    await asyncio.sleep(self._retry_delay)

        if pending is not None:
            logger.error(
                "%s of %s left unconfirmed after %d attempts; %s may still land",
                side.capitalize(),
                token,
                self._max_attempts,
                pending.signature,
            )
        else:
            logger.error(
                "%s of %s failed after %d attempts: %s", side.capitalize(), token, self._max_attempts, last_error
            )
        return TradeResult(
            success=False,
            tx_signature=pending.signature if pending else None,
            attempts=self._max_attempts,
            error=str(last_error) if last_error else None,
        )

    async def _trade_amount(self, token: str, size_pct: Decimal, is_buy: bool) -> int:
        if is_buy:
            balance = await self._wallet.get_sol_balance()
            spendable = balance - self._fee_reserve_lamports
        else:
            spendable = await self._wallet.get_token_balance(token)
        amount = int(Decimal(spendable) * size_pct / 100)
        if amount <= 0:
            raise TradeSizeError(f"nothing to {'spend' if is_buy else 'sell'} (available={spendable})")
        return amount

    async def _submit(
        self,
        token: str,
        size_pct: Decimal,
        is_buy: bool,
        slippage_bps: int,
    ) -> SubmittedSwap | None:
        """Quote, build, sign and send one swap. Returns None in dry-run mode."""
        amount = await self._trade_amount(token, size_pct, is_buy)
        input_mint, output_mint = (NATIVE_MINT, token) if is_buy else (token, NATIVE_MINT)

        quote = await self._jupiter.quote(
            input_mint=input_mint,
            output_mint=output_mint,
            amount=amount,
            slippage_bps=slippage_bps,
        )
        decimals = await self._token_info.get_decimals(token)
        token_amount, sol_amount = self._fill_amounts(quote, decimals, is_buy)

        if self._dry_run:
            logger.info(
                "[dry-run] %s %s: %s tokens for %s SOL",
                "buy" if is_buy else "sell",
                token,
                token_amount,
                sol_amount,
            )
            return None

        tx_bytes = await self._jupiter.swap_transaction(quote, self._wallet.public_key)
        signature = await self._wallet.sign_and_send(tx_bytes)
        logger.info("Submitted %s of %s: %s", "buy" if is_buy else "sell", token, signature)
        return SubmittedSwap(
            token=token,
            is_buy=is_buy,
            signature=signature,
            token_amount=token_amount,
            sol_amount=sol_amount,
        )

    async def _landed(self, swap: SubmittedSwap) -> bool:
        """Settle a swap whose confirmation timed out on an earlier attempt.

        Returns:
            True once it is confirmed, False when it failed on chain or
            expired without landing.

        Raises:
            ConfirmationTimeoutError: While it is unconfirmed but can still land.
        """
        try:
            await self._wallet.confirm(swap.signature)
            return True
        except TransactionFailedError as e:
            logger.warning("Earlier %s of %s failed on chain: %s", swap.side, swap.token, e)
        except ConfirmationTimeoutError:
            if not await self._wallet.is_expired(swap.signature):
                raise
            # Final status read: it may have landed just before expiring.
            try:
                await self._wallet.confirm(swap.signature, timeout_seconds=0)
                return True
            except (TransactionFailedError, ConfirmationTimeoutError):
                logger.warning("Earlier %s of %s expired without landing: %s", swap.side, swap.token, swap.signature)
        self._wallet.forget(swap.signature)
        return False

    async def _complete(self, swap: SubmittedSwap, attempt: int) -> TradeResult:
        self._wallet.forget(swap.signature)
        record = self._ledger.record_fill(
            FillType.BUY if swap.is_buy else FillType.SELL,
            swap.token,
            swap.token_amount,
            swap.sol_amount,
            tx_signature=swap.signature,
        )
        logger.info(
            "Confirmed %s of %s: %s tokens, %s SOL (%s)",
            record.type.value,
            swap.token,
            swap.token_amount,
            swap.sol_amount,
            swap.signature,
        )

        if not swap.is_buy:
            report = self._ledger.compute_pnl(swap.token)
            if report is None:
                logger.info("PnL for %s: no buy data", swap.token)
            else:
                logger.info(
                    "PnL for %s: %s SOL (%.2f%%) spent=%s received=%s",
                    swap.token,
                    report.pnl,
                    report.pnl_percentage,
                    report.sol_spent,
                    report.sol_received,
                )
            await self.sweep()

        return TradeResult(success=True, tx_signature=swap.signature, attempts=attempt, record=record)

    @staticmethod
    def _fill_amounts(quote: dict[str, object], decimals: int, is_buy: bool) -> tuple[Decimal, Decimal]:
        in_amount = quote.get("inAmount")
        out_amount = quote.get("outAmount")
        if is_buy:
            sol = scale_amount(in_amount, NATIVE_DECIMALS)
            tokens = scale_amount(out_amount, decimals)
        else:
            tokens = scale_amount(in_amount, decimals)
            sol = scale_amount(out_amount, NATIVE_DECIMALS)
        if sol is None or tokens is None:
            raise NoRouteError(f"Quote amounts are not numeric: in={in_amount} out={out_amount}")
        return tokens, sol

    async def sweep(self) -> str | None:
        """Move SOL above the reserve to the profit address.

        Returns:
            The transfer signature, or None when disabled, nothing to move,
            or the transfer failed (failures are logged only).
        """
        if not self._sweep_address or self._sweep_reserve_sol is None:
            return None
        try:
            balance = await self._wallet.get_sol_balance()
            surplus = balance - int(self._sweep_reserve_sol * LAMPORTS_PER_SOL)
            if surplus <= 0:
                logger.debug("No surplus to sweep (balance=%d lamports)", balance)
                return None
            signature = await self._wallet.transfer_sol(self._sweep_address, surplus)
        except WalletError as e:
            logger.warning("Profit sweep failed: %s", e)
            return None
        logger.info("Swept %d lamports to %s: %s", surplus, self._sweep_address, signature)
        return signature
