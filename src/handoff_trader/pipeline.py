"""Main pipeline orchestrator for Handoff Trader.

This module provides the Pipeline class that wires together all components
and manages the event flow from ingestion to trade execution.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
import random
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from redis.asyncio import Redis
from solana.rpc.async_api import AsyncClient

from handoff_trader.config import Settings, get_settings
from handoff_trader.detector.models import (
    ActionKind,
    CycleState,
    PatternAction,
    PendingBuy,
    Role,
    WatchedAddressSet,
)
from handoff_trader.detector.pattern import PatternStateMachine
from handoff_trader.execution.engine import TradeExecutionEngine
from handoff_trader.execution.jupiter import JupiterClient
from handoff_trader.execution.ledger import PnLLedger
from handoff_trader.execution.wallet import SolanaWallet, load_keypair
from handoff_trader.ingestor.audit import AuditLog
from handoff_trader.ingestor.dedup import Deduplicator
from handoff_trader.ingestor.helius_client import HeliusClient
from handoff_trader.ingestor.logs_websocket import LogsStreamHandler, build_stream_url
from handoff_trader.ingestor.models import CanonicalTransfer, LogNotification
from handoff_trader.ingestor.normalizer import TransactionNormalizer, normalize_record
from handoff_trader.ingestor.rate_limit import Dispatcher
from handoff_trader.ingestor.webhook_server import WebhookServer
from handoff_trader.profiler.token_info import TokenInfoClient

logger = logging.getLogger(__name__)

Transport = Literal["websocket", "webhook"]


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    notifications_received: int = 0
    duplicates_skipped: int = 0
    transactions_normalized: int = 0
    events_processed: int = 0
    buys_executed: int = 0
    sells_executed: int = 0
    trades_failed: int = 0
    stale_buys_skipped: int = 0
    errors: int = 0
    last_event_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for Handoff Trader.

    Owns the cycle state, the watched addresses and the ledger, and passes
    them to the state machine and the execution engine.

    Pipeline flow:
        Notification → Deduplicator → Normalizer → State Machine → Execution Engine → Ledger

    Example:
        ```python
        from handoff_trader.config import get_settings
        from handoff_trader.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        transport: Transport = "websocket",
        token_info: TokenInfoClient | None = None,
        engine: TradeExecutionEngine | None = None,
        normalizer: TransactionNormalizer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, quote trades without sending them. Overrides settings.dry_run.
            transport: ``websocket`` (Helius logs stream) or ``webhook`` (HTTP ingress).
            token_info: Prebuilt token-info client (built from settings if omitted).
            engine: Prebuilt execution engine (built from settings if omitted).
            normalizer: Prebuilt normalizer (built from settings if omitted).
            rng: Random source for the buy jitter.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._transport = transport

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Context owned by this instance
        self._cycle = CycleState()
        self._watched = WatchedAddressSet()
        if self._settings.wallets.seller:
            self._watched.add(Role.SELLER, self._settings.wallets.seller)
        if self._settings.wallets.distrib:
            self._watched.add(Role.DISTRIB, self._settings.wallets.distrib)
        self._ledger = PnLLedger()
        self._dedup = Deduplicator(self._settings.dedup.retention_seconds)
        self._dispatcher = Dispatcher(
            detail_per_second=self._settings.rate_limit.detail_per_second,
            rpc_per_second=self._settings.rate_limit.rpc_per_second,
        )
        self._audit: AuditLog | None = None
        if self._settings.audit.enabled:
            self._audit = AuditLog(
                self._settings.audit.transactions_path,
                self._settings.audit.detailed_info_path,
            )
        self._rng = rng

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._rpc: AsyncClient | None = None
        self._helius: HeliusClient | None = None
        self._jupiter: JupiterClient | None = None
        self._token_info = token_info
        self._owns_token_info = token_info is None
        self._engine = engine
        self._normalizer = normalizer
        self._machine: PatternStateMachine | None = None
        self._stream: LogsStreamHandler | None = None
        self._webhook: WebhookServer | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._workers: list[asyncio.Task[None]] = []
        self._stream_task: asyncio.Task[None] | None = None
        self._trade_tasks: set[asyncio.Task[None]] = set()
        self._pending_buy: PendingBuy | None = None

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def cycle(self) -> CycleState:
        return self._cycle

    @property
    def watched(self) -> WatchedAddressSet:
        return self._watched

    @property
    def ledger(self) -> PnLLedger:
        if self._engine is not None:
            return self._engine.ledger
        return self._ledger

    @property
    def pending_buy(self) -> PendingBuy | None:
        return self._pending_buy

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline (transport=%s, dry_run=%s)...", self._transport, self._dry_run)

        try:
            await self._initialize_components()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._stop_background_services()
            await self._cleanup()
            self._state = PipelineState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    def _rpc_client(self) -> AsyncClient:
        if self._rpc is None:
            self._rpc = AsyncClient(self._settings.solana.rpc_url)
        return self._rpc

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if settings.redis.url:
            self._redis = Redis.from_url(settings.redis.url)
            logger.debug("Redis cache enabled")

        if self._token_info is None:
            self._token_info = TokenInfoClient(
                self._rpc_client(),
                dispatcher=self._dispatcher,
                redis=self._redis,
                cache_ttl_seconds=settings.redis.token_info_ttl_seconds,
                price_url=settings.jupiter.price_url,
            )

        if self._engine is None:
            keypair = None
            if settings.wallets.private_key:
                keypair = load_keypair(settings.wallets.private_key.get_secret_value())
            wallet = SolanaWallet(
                self._rpc_client(),
                keypair,
                dispatcher=self._dispatcher,
                confirm_timeout_seconds=settings.solana.confirm_timeout_seconds,
            )
            if wallet.has_signer:
                self._watched.add(Role.BOT, wallet.public_key)
            self._jupiter = JupiterClient(
                api_url=settings.jupiter.api_url,
                timeout_seconds=settings.jupiter.timeout_seconds,
                dispatcher=self._dispatcher,
            )
            self._engine = TradeExecutionEngine(
                self._jupiter,
                wallet,
                self._token_info,
                self._ledger,
                fee_reserve_sol=settings.trade.fee_reserve_sol,
                max_attempts=settings.trade.max_attempts,
                retry_delay_seconds=settings.trade.retry_delay_seconds,
                sweep_address=settings.wallets.profit_address,
                sweep_reserve_sol=settings.trade.sweep_reserve_sol,
                dry_run=self._dry_run,
            )

        if self._normalizer is None and self._transport == "websocket":
            api_key = settings.helius.api_key.get_secret_value() if settings.helius.api_key else ""
            self._helius = HeliusClient(
                api_key,
                base_url=settings.helius.api_url,
                dispatcher=self._dispatcher,
            )
            self._normalizer = TransactionNormalizer(self._helius, audit=self._audit)

        self._machine = PatternStateMachine(
            self._cycle,
            self._watched,
            self._token_info,
            seed_target=settings.strategy.seed_target_sol,
            seed_tolerance=settings.strategy.seed_tolerance_sol,
            buy_delay_min=settings.strategy.buy_delay_min_seconds,
            buy_delay_max=settings.strategy.buy_delay_max_seconds,
            sell_after_receipts=settings.strategy.sell_after_receipts,
            discovery_amount=settings.strategy.discovery_amount_sol,
            rng=self._rng,
        )

        logger.info("Watching %d addresses: %s", len(self._watched), dict(self._watched.items()))

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._transport == "webhook":
            self._webhook = WebhookServer(
                on_records=self.handle_records,
                host=self._settings.webhook_host,
                port=self._settings.webhook_port,
            )
            await self._webhook.start()
            return

        for i in range(self._settings.rate_limit.normalize_concurrency):
            self._workers.append(asyncio.create_task(self._normalize_worker(), name=f"normalize-{i}"))

        api_key = self._settings.helius.api_key.get_secret_value() if self._settings.helius.api_key else ""
        self._stream = LogsStreamHandler(
            url=build_stream_url(self._settings.helius.ws_url, api_key),
            addresses=set(self._watched.addresses()),
            on_notification=self.handle_notification,
            ping_interval=self._settings.helius.ping_interval_seconds,
            max_reconnect_delay=self._settings.helius.max_reconnect_delay_seconds,
        )
        logger.debug("Starting logs stream...")
        self._stream_task = asyncio.create_task(self._stream.start())

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._webhook:
            await self._webhook.stop()
            self._webhook = None

        if self._stream:
            logger.debug("Stopping logs stream...")
            await self._stream.stop()

        if self._stream_task:
            self._stream_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stream_task
            self._stream_task = None

        tasks = [*self._workers, *self._trade_tasks]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers.clear()
        self._trade_tasks.clear()
        self._pending_buy = None

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._helius:
            await self._helius.close()
            self._helius = None

        if self._jupiter:
            await self._jupiter.close()
            self._jupiter = None

        if self._token_info and self._owns_token_info:
            await self._token_info.close()

        if self._rpc:
            await self._rpc.close()
            self._rpc = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def handle_notification(self, notification: LogNotification) -> None:
        """Queue a websocket notification for normalization."""
        self._stats.notifications_received += 1
        if self._audit is not None:
            self._audit.write_notification(dataclasses.asdict(notification))

        if notification.failed:
            logger.debug("Skipping failed transaction %s", notification.signature)
            return
        if not self._dedup.should_process(notification.signature):
            self._stats.duplicates_skipped += 1
            return

        logger.debug(
            "Notification %s (%s)",
            notification.signature,
            ", ".join(notification.instruction_kinds()) or "no instructions",
        )
        await self._queue.put(notification.signature)

    async def handle_records(self, records: list[dict[str, Any]]) -> None:
        """Process webhook records inline.

        Raises:
            Exception: Whatever processing raised, after counting it, so the
                webhook can answer 500.
        """
        self._stats.notifications_received += 1
        if self._audit is not None:
            self._audit.write_notification(records)

        signature = ""
        try:
            for record in records:
                signature = str(record.get("signature") or "")
                if signature and not self._dedup.should_process(signature):
                    self._stats.duplicates_skipped += 1
                    signature = ""
                    continue
                if self._audit is not None:
                    self._audit.write_detail(record)
                events = normalize_record(record)
                self._stats.transactions_normalized += 1
                await self.process_events(events)
                signature = ""
        except Exception as e:
            # A record that failed stays redeliverable.
            if signature:
                self._dedup.discard(signature)
            self._stats.errors += 1
            self._stats.last_error = str(e)
            raise

    async def _normalize_worker(self) -> None:
        while True:
            signature = await self._queue.get()
            try:
                if self._normalizer is None:
                    raise RuntimeError("Pipeline components are not initialized")
                events = await self._normalizer.normalize(signature)
                if events is None:
                    continue
                self._stats.transactions_normalized += 1
                await self.process_events(events)
            except Exception as e:
                self._stats.errors += 1
                self._stats.last_error = str(e)
                logger.exception("Error processing %s", signature)
            finally:
                self._queue.task_done()

    async def process_events(self, events: list[CanonicalTransfer]) -> None:
        """Feed events to the state machine in order and act on the results."""
        if self._machine is None:
            raise RuntimeError("Pipeline components are not initialized")
        for event in events:
            actions = await self._machine.process(event)
            self._stats.events_processed += 1
            self._stats.last_event_time = datetime.now(UTC)
            for action in actions:
                await self._dispatch(action)

    async def _dispatch(self, action: PatternAction) -> None:
        if action.kind is ActionKind.SUBSCRIBE and action.address:
            if self._stream is not None:
                await self._stream.add_address(action.address)
            return

        if action.kind is ActionKind.SCHEDULE_BUY and action.token:
            if self._pending_buy is not None:
                logger.warning("Buy for %s already pending, not scheduling another", self._pending_buy.token)
                return
            pending = PendingBuy(token=action.token)
            pending.task = self._spawn(self._run_buy(pending, action.delay_seconds))
            self._pending_buy = pending
            return

        if action.kind is ActionKind.SELL and action.token:
            self._spawn(self._run_sell(action.token))
            return

        if action.kind is ActionKind.REPORT_TOKEN and action.token:
            self._spawn(self._report_token(action.token))

    def _trading_components(self) -> tuple[PatternStateMachine, TradeExecutionEngine]:
        if self._machine is None or self._engine is None:
            raise RuntimeError("Pipeline components are not initialized")
        return self._machine, self._engine

    async def _report_token(self, token: str) -> None:
        if self._token_info is None:
            return
        price = await self._token_info.get_price(token)
        if price is None:
            logger.info("Candidate %s: price unavailable", token)
        else:
            logger.info("Candidate %s: %s SOL per token", token, price)

    def _spawn(self, coro: Any) -> asyncio.Task[None]:
        task: asyncio.Task[None] = asyncio.create_task(coro)
        self._trade_tasks.add(task)
        task.add_done_callback(self._trade_tasks.discard)
        return task

    async def _run_buy(self, pending: PendingBuy, delay: float) -> None:
        machine, engine = self._trading_components()
        token = pending.token
        try:
            await asyncio.sleep(delay)
            if not await machine.is_buy_pending(token):
                self._stats.stale_buys_skipped += 1
                logger.info("Scheduled buy for %s is stale, skipping", token)
                return

            trade = self._settings.trade
            result = await engine.trade(token, trade.buy_pct, True, trade.slippage_bps)
            pending.retry_count = max(0, result.attempts - 1)
            if result.success:
                self._stats.buys_executed += 1
                await machine.confirm_buy(token)
            else:
                self._stats.trades_failed += 1
                await machine.abort(token, f"buy failed: {result.error}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Buy task for %s crashed", token)
            await machine.abort(token, "buy task crashed")
        finally:
            if self._pending_buy is pending:
                self._pending_buy = None

    async def _run_sell(self, token: str) -> None:
        machine, engine = self._trading_components()
        try:
            trade = self._settings.trade
            result = await engine.trade(token, trade.sell_pct, False, trade.slippage_bps)
            if result.success:
                self._stats.sells_executed += 1
                await machine.confirm_sell(token)
            else:
                self._stats.trades_failed += 1
                await machine.abort(token, f"sell failed: {result.error}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Sell task for %s crashed", token)
            await machine.abort(token, "sell task crashed")

    async def wait_for_trades(self) -> None:
        """Wait until every spawned buy, sell and token report has finished."""
        while self._trade_tasks:
            await asyncio.gather(*list(self._trade_tasks), return_exceptions=True)

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
