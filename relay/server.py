"""WebSocket relay server.

Serves, on a single port:

  GET /          — HTML status page
  GET /health    — JSON health document
  ws://host/...  — relay endpoint (any path)

Start with::

    python -m relay
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from http import HTTPStatus
from typing import AsyncIterator
from urllib.parse import urlsplit

from websockets.asyncio.server import Server, ServerConnection
from websockets.asyncio.server import serve as ws_serve
from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Request, Response

from relay.config import RelayConfig
from relay.connection import Connection, WebSocketConnection
from relay.liveness import LivenessMonitor
from relay.registry import ConnectionRegistry
from relay.router import Router
from relay.status import health_payload, render_status_page

logger = logging.getLogger(__name__)


def _respond(
    connection: ServerConnection, status: HTTPStatus, body: str, content_type: str
) -> Response:
    response = connection.respond(status, body)
    del response.headers["Content-Type"]
    response.headers["Content-Type"] = content_type
    return response


class RelayServer:
    """Accept loop and transport event mapping for the relay core."""

    def __init__(
        self,
        config: RelayConfig | None = None,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self.config = config or RelayConfig()
        self.registry = registry or ConnectionRegistry()
        self.router = Router(self.registry, send_timeout=self.config.send_timeout)
        self.connections: set[Connection] = set()
        self.liveness = LivenessMonitor(
            self.live_connections,
            interval=self.config.ping_interval,
            ping_timeout=self.config.send_timeout,
        )
        self._server: Server | None = None
        self._started_at = time.monotonic()

    # ── State ─────────────────────────────────────────────────────

    def live_connections(self) -> list[Connection]:
        return [c for c in self.connections if c.is_open]

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    @property
    def port(self) -> int:
        if self._server is None:
            raise RuntimeError("Server is not running")
        sock = next(iter(self._server.sockets))
        return sock.getsockname()[1]

    # ── Transport events ──────────────────────────────────────────

    async def handler(self, websocket: ServerConnection) -> None:
        """Handle one WebSocket connection from accept to close."""
        conn = WebSocketConnection(websocket)
        self.connections.add(conn)
        logger.info("New connection from %s", conn.remote)
        try:
            async for frame in websocket:
                await self.router.dispatch(conn, frame)
        except ConnectionClosedError as e:
            logger.warning("WebSocket error from %s: %s", conn.remote, e)
        except Exception:
            logger.exception("Error in relay connection %s", conn.remote)
        finally:
            self.connections.discard(conn)
            logger.info(
                "Client disconnected: %s (%s)",
                conn.role.value or "unregistered", conn.remote,
            )
            self.router.disconnect(conn)

    def process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """Answer plain HTTP requests; let WebSocket upgrades through."""
        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None

        path = urlsplit(request.path).path
        if path == "/health":
            body = json.dumps(health_payload(self.registry, self.uptime))
            return _respond(connection, HTTPStatus.OK, body, "application/json")
        if path == "/":
            host = request.headers.get("Host", f"localhost:{self.config.port}")
            secure = request.headers.get("X-Forwarded-Proto", "").lower() == "https"
            page = render_status_page(self.registry, self.uptime, host, secure=secure)
            return _respond(connection, HTTPStatus.OK, page, "text/html; charset=utf-8")
        return _respond(
            connection, HTTPStatus.NOT_FOUND, "Not Found\n", "text/plain; charset=utf-8"
        )

    # ── Lifecycle ─────────────────────────────────────────────────

    @contextlib.asynccontextmanager
    async def serve(self) -> AsyncIterator[RelayServer]:
        """Run the listener and the liveness monitor for the block's duration."""
        async with ws_serve(
            self.handler,
            self.config.host,
            self.config.port,
            process_request=self.process_request,
            ping_interval=None,  # pings are sent by the liveness monitor
            max_size=self.config.max_size,
        ) as server:
            self._server = server
            self._started_at = time.monotonic()
            await self.liveness.start()
            logger.info(
                "Audio relay listening on %s:%d", self.config.host, self.port
            )
            try:
                yield self
            finally:
                await self.liveness.stop()
                self._server = None

    async def run(self, stop: asyncio.Future | None = None) -> None:
        """Serve until *stop* resolves (forever if not given)."""
        if stop is None:
            stop = asyncio.get_running_loop().create_future()
        async with self.serve():
            await stop
        logger.info("Audio relay stopped")
