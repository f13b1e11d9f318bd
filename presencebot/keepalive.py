from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from aiohttp import web

log = logging.getLogger(__name__)


def build_app(started_at: Optional[float] = None) -> web.Application:
    """Tiny uptime endpoint for hosting platforms that ping the process."""
    started = time.monotonic() if started_at is None else started_at

    async def index(_request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "uptimeSeconds": round(time.monotonic() - started),
                "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            }
        )

    async def health(_request: web.Request) -> web.Response:
        return web.Response(status=204)

    app = web.Application()
    app.router.add_get("/", index)
    app.router.add_get("/health", health)
    return app


class KeepAlive:
    def __init__(self, port: int, host: str = "0.0.0.0") -> None:
        self.port = port
        self.host = host
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        if self._runner is not None:
            return
        runner = web.AppRunner(build_app())
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner
        log.info("Keep-alive server listening on port %s", self.port)

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
