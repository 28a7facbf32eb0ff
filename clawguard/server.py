"""
clawguard/server.py
────────────────────
Live feed and status endpoints over one port.

  ws://<bind>:<port>/live     activity and sequence events as JSON frames
  GET /health                 liveness, uptime, subscriber count
  GET /ready                  200 once the monitor is running, else 503
  GET /metrics                delivery counters and pipeline totals
  GET /sequences              sequence scan over the session logs
  GET /activity?limit=N       newest classified records
"""

from __future__ import annotations

import asyncio
import http
import json
import logging
import signal
import time
import urllib.parse
from typing import Any

from websockets.asyncio.server import ServerConnection, serve
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from clawguard import __version__
from clawguard.config import Config
from clawguard.monitor import ActivityMonitor

logger = logging.getLogger("clawguard.server")

LIVE_PATH = "/live"


def json_response(status: int, data: Any) -> Response:
    body = json.dumps(data, indent=2, default=str).encode()
    headers = Headers([
        ("Content-Type", "application/json"),
        ("Content-Length", str(len(body))),
        ("Connection", "close"),
    ])
    return Response(status, http.HTTPStatus(status).phrase, headers, body)


class ClawGuardServer:

    def __init__(self, config: Config, monitor: ActivityMonitor | None = None):
        self.config = config
        self.monitor = monitor or ActivityMonitor(config)
        self.bind = config.bind
        self.port = config.port
        self._ready = False
        self._start_time = time.time()

    # ── HTTP ─────────────────────────────────────────────────────────────────

    def _health(self) -> dict:
        return {
            "status":      "healthy",
            "version":     __version__,
            "uptime_s":    round(time.time() - self._start_time, 1),
            "bind":        self.bind,
            "port":        self.port,
            "subscribers": self.monitor.fanout.subscriber_count,
        }

    def _metrics(self) -> dict:
        return {**self.monitor.stats(), "uptime_s": round(time.time() - self._start_time, 1)}

    async def process_request(self, connection: ServerConnection, request: Request) -> Response | None:
        url = urllib.parse.urlsplit(request.path)
        path = url.path.rstrip("/") or "/"
        if path == LIVE_PATH:
            return None

        loop = asyncio.get_running_loop()
        try:
            if path == "/health":
                return json_response(200, self._health())
            if path == "/ready":
                if not self._ready:
                    return json_response(503, {"status": "not_ready"})
                return json_response(200, {"status": "ready"})
            if path == "/metrics":
                return json_response(200, self._metrics())
            if path == "/sequences":
                result = await loop.run_in_executor(None, self.monitor.sequences)
                return json_response(200, result)
            if path == "/activity":
                query = urllib.parse.parse_qs(url.query)
                try:
                    limit = max(1, int(query.get("limit", ["50"])[0]))
                except ValueError:
                    return json_response(400, {"error": "limit must be an integer"})
                level = query.get("level", ["low"])[0]
                data = await loop.run_in_executor(None, self.monitor.activity, limit, level)
                return json_response(200, {"activity": data, "count": len(data)})
        except OSError as e:
            logger.error("Request %s failed: %s", path, e)
            return json_response(500, {"error": str(e)})
        return json_response(404, {"error": "not found", "path": path})

    # ── Live feed ────────────────────────────────────────────────────────────

    async def live(self, connection: ServerConnection) -> None:
        queue = self.monitor.fanout.subscribe()
        logger.info("Live client connected | subscribers=%d", self.monitor.fanout.subscriber_count)
        try:
            await connection.send(json.dumps({"type": "hello", "version": __version__}))
            while True:
                message = await queue.get()
                await connection.send(json.dumps(message, default=str))
        except ConnectionClosed:
            pass
        finally:
            self.monitor.fanout.unsubscribe(queue)
            logger.info("Live client disconnected | subscribers=%d",
                        self.monitor.fanout.subscriber_count)

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._start_time = time.time()
        loop = asyncio.get_running_loop()
        self.monitor.fanout.bind(loop)
        self.monitor.start()

        stop_event = asyncio.Event()

        def _handle_signal():
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, _handle_signal)
            except NotImplementedError:
                pass

        try:
            async with serve(self.live, self.bind, self.port, process_request=self.process_request):
                self._ready = True
                logger.info("✅ ClawGuard v%s running on http://%s:%d", __version__, self.bind, self.port)
                logger.info("   Live feed : ws://%s:%d%s", self.bind, self.port, LIVE_PATH)
                logger.info("   HTTP      : /health  /ready  /metrics  /sequences  /activity")
                logger.info("   Sessions  : %s", ", ".join(self.config.sessions_dirs))
                logger.info("   Alerts    : %s", "enabled" if self.monitor.dispatcher.active else "disabled")
                logger.info("   Streaming : %s", self.config.streaming.endpoint
                            if self.monitor.buffer is not None else "disabled")
                await stop_event.wait()
        finally:
            self._ready = False
            await loop.run_in_executor(None, self.monitor.stop)
            self.monitor.fanout.bind(None)
            logger.info("ClawGuard stopped.")

    def run(self) -> None:
        asyncio.run(self.start())
