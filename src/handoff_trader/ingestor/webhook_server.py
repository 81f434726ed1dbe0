"""HTTP ingress for Helius enhanced-transaction webhooks."""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

RecordsCallback = Callable[[list[dict[str, Any]]], Awaitable[None]]


class WebhookServer:
    """aiohttp application exposing ``POST /webhook`` and ``GET /health``.

    The callback receives the posted array of transaction records. A
    callback failure is answered with 500; the server keeps serving.
    """

    def __init__(
        self,
        *,
        on_records: RecordsCallback,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
    ) -> None:
        self._on_records = on_records
        self._host = host
        self._port = port
        self._runner: web.AppRunner | None = None
        self.requests_received = 0
        self.requests_failed = 0

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/webhook", self.webhook_handler)
        app.router.add_get("/health", self.health_handler)
        return app

    async def webhook_handler(self, request: web.Request) -> web.Response:
        self.requests_received += 1
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "invalid json body"}, status=400)

        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            return web.json_response({"error": "expected an array of transactions"}, status=400)

        records = [item for item in payload if isinstance(item, dict)]
        try:
            await self._on_records(records)
        except Exception:
            self.requests_failed += 1
            logger.exception("Webhook processing failed")
            return web.json_response({"error": "internal error"}, status=500)

        return web.json_response({"ok": True, "processed": len(records)})

    async def health_handler(self, request: web.Request) -> web.Response:
        return web.json_response({"status": "ok"})

    async def start(self) -> None:
        if self._runner is not None:
            raise RuntimeError("Webhook server already running")
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        logger.info("Webhook server listening on %s:%d", self._host, self._port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Webhook server stopped")
