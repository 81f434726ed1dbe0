"""Tests for the webhook HTTP server."""

from typing import Any
from unittest.mock import AsyncMock

import pytest
from aiohttp import test_utils

from handoff_trader.ingestor.webhook_server import WebhookServer


async def _client(server: WebhookServer) -> test_utils.TestClient:
    client = test_utils.TestClient(test_utils.TestServer(server.create_app()))
    await client.start_server()
    return client


class TestWebhookServer:
    """Tests for WebhookServer."""

    @pytest.mark.asyncio
    async def test_accepts_record_array(self) -> None:
        callback = AsyncMock()
        server = WebhookServer(on_records=callback)
        client = await _client(server)
        records: list[dict[str, Any]] = [{"signature": "a"}, {"signature": "b"}]
        try:
            resp = await client.post("/webhook", json=records)
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 200
        assert body == {"ok": True, "processed": 2}
        callback.assert_awaited_once_with(records)
        assert server.requests_received == 1

    @pytest.mark.asyncio
    async def test_single_object_wrapped(self) -> None:
        callback = AsyncMock()
        server = WebhookServer(on_records=callback)
        client = await _client(server)
        try:
            resp = await client.post("/webhook", json={"signature": "a"})
        finally:
            await client.close()

        assert resp.status == 200
        callback.assert_awaited_once_with([{"signature": "a"}])

    @pytest.mark.asyncio
    async def test_callback_failure_returns_500(self) -> None:
        callback = AsyncMock(side_effect=RuntimeError("boom"))
        server = WebhookServer(on_records=callback)
        client = await _client(server)
        try:
            failed = await client.post("/webhook", json=[{"signature": "a"}])
            health = await client.get("/health")
        finally:
            await client.close()

        assert failed.status == 500
        assert health.status == 200
        assert server.requests_failed == 1

    @pytest.mark.asyncio
    async def test_invalid_json_returns_400(self) -> None:
        callback = AsyncMock()
        server = WebhookServer(on_records=callback)
        client = await _client(server)
        try:
            resp = await client.post(
                "/webhook",
                data="not json",
                headers={"Content-Type": "application/json"},
            )
        finally:
            await client.close()

        assert resp.status == 400
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_array_returns_400(self) -> None:
        callback = AsyncMock()
        server = WebhookServer(on_records=callback)
        client = await _client(server)
        try:
            resp = await client.post("/webhook", json="hello")
        finally:
            await client.close()

        assert resp.status == 400
        callback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_health(self) -> None:
        server = WebhookServer(on_records=AsyncMock())
        client = await _client(server)
        try:
            resp = await client.get("/health")
            body = await resp.json()
        finally:
            await client.close()

        assert resp.status == 200
        assert body == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_stop_without_start(self) -> None:
        server = WebhookServer(on_records=AsyncMock())

        await server.stop()
