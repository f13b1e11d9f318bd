import asyncio
import time

from aiohttp.test_utils import TestClient, TestServer

from presencebot.keepalive import build_app


def test_index_reports_status_and_uptime():
    async def run():
        app = build_app(started_at=time.monotonic() - 90)
        async with TestClient(TestServer(app)) as client:
            resp = await client.get("/")
            assert resp.status == 200
            body = await resp.json()
            assert body["status"] == "ok"
            assert body["uptimeSeconds"] >= 90
            assert body["timestamp"].endswith("+00:00")

    asyncio.run(run())


def test_health_is_no_content():
    async def run():
        async with TestClient(TestServer(build_app())) as client:
            resp = await client.get("/health")
            assert resp.status == 204

    asyncio.run(run())
