"""Helius ``logsSubscribe`` WebSocket client.

One subscription is opened per watched address (``mentions`` filter,
``finalized`` commitment). Addresses added while connected are subscribed
live; after a reconnect every known address is subscribed again.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from handoff_trader.ingestor.models import LogNotification

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 25  # seconds
DEFAULT_MAX_RECONNECT_DELAY = 60  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
DEFAULT_COMMITMENT = "finalized"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    notifications_received: int = 0
    subscriptions_confirmed: int = 0
    reconnect_count: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class StreamError(Exception):
    """Base exception for logs stream errors."""


class StreamConnectionError(StreamError):
    """Raised when connection to WebSocket fails."""


NotificationCallback = Callable[[LogNotification], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def build_stream_url(ws_url: str, api_key: str) -> str:
    return f"{ws_url.rstrip('/')}/?api-key={api_key}"


class LogsStreamHandler:
    """WebSocket client for Helius log notifications."""

    def __init__(
        self,
        *,
        url: str,
        addresses: set[str] | None = None,
        on_notification: NotificationCallback | None = None,
        on_state_change: StateCallback | None = None,
        commitment: str = DEFAULT_COMMITMENT,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        self._url = url
        self._on_notification = on_notification
        self._on_state_change = on_state_change
        self._commitment = commitment
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None

        self._addresses_lock = asyncio.Lock()
        self._addresses: set[str] = set(addresses or ())
        self._pending_subscribe: set[str] = set()
        self._request_id = 0
        # request id -> address, until the server answers with a subscription id
        self._inflight: dict[int, str] = {}
        self._subscriptions: dict[int, str] = {}

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def addresses(self) -> frozenset[str]:
        return frozenset(self._addresses)

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Logs stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def add_address(self, address: str) -> None:
        """Watch another address; subscribed on the live connection if there is one."""
        if not address:
            return
        async with self._addresses_lock:
            if address in self._addresses:
                return
            self._addresses.add(address)
            self._pending_subscribe.add(address)
        logger.info("Queued logs subscription for %s", address)

    def _next_id(self) -> int:
        self._request_id += 1
        return self._request_id

    async def _subscribe(self, ws: ClientConnection, address: str) -> None:
        request_id = self._next_id()
        msg = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "logsSubscribe",
            "params": [{"mentions": [address]}, {"commitment": self._commitment}],
        }
        self._inflight[request_id] = address
        await ws.send(json.dumps(msg))

    async def _send_subscription_messages(self, ws: ClientConnection) -> None:
        async with self._addresses_lock:
            subscribe = sorted(self._pending_subscribe)
            self._pending_subscribe.clear()
        for address in subscribe:
            await self._subscribe(ws, address)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await websockets.connect(
                self._url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
            )
        except Exception as e:
            self._stats.last_error = str(e)
            raise StreamConnectionError(f"Failed to connect to logs stream: {e}") from e

        self._inflight.clear()
        self._subscriptions.clear()
        async with self._addresses_lock:
            addresses = sorted(self._addresses)
            self._pending_subscribe.clear()
        for address in addresses:
            await self._subscribe(ws, address)

        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        logger.info("Connected to logs stream, subscribing %d addresses", len(addresses))
        return ws

    async def _handle_message(self, message: str) -> None:
        try:
            data: dict[str, Any] = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on logs stream")
            return
        if not isinstance(data, dict):
            return

        if data.get("method") == "logsNotification":
            try:
                notification = LogNotification.from_websocket_message(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Failed to parse logs notification: %s", e)
                return
            self._stats.notifications_received += 1
            self._stats.last_message_time = time.time()
            if self._on_notification:
                await self._on_notification(notification)
            return

        request_id = data.get("id")
        if isinstance(request_id, int) and request_id in self._inflight:
            address = self._inflight.pop(request_id)
            if "error" in data:
                logger.error("logsSubscribe for %s rejected: %s", address, data["error"])
                return
            subscription_id = data.get("result")
            if isinstance(subscription_id, int):
                self._subscriptions[subscription_id] = address
            self._stats.subscriptions_confirmed += 1
            logger.info("Subscribed to logs for %s (subscription=%s)", address, subscription_id)
            return

        logger.debug("Ignoring logs-stream message: %r", data.get("method"))

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    message = None

                if isinstance(message, str):
                    await self._handle_message(message)
                elif message is not None:
                    logger.debug("Ignoring non-text logs-stream message")

                await self._send_subscription_messages(ws)
        except websockets.ConnectionClosed as e:
            logger.warning("Logs stream connection closed: %s", e)
            raise

    async def start(self) -> None:
        if self._running:
            raise RuntimeError("Logs stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay = self._initial_reconnect_delay
        while self._running and self._stop_event and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                delay = self._initial_reconnect_delay
                await self._listen(self._ws)
            except Exception as e:
                if not self._running:
                    break
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                await self._set_state(ConnectionState.RECONNECTING)
                logger.warning("Logs stream error: %s; reconnecting in %ss", e, delay)
                await asyncio.sleep(delay)
                delay = min(self._max_reconnect_delay, delay * 2)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
