"""Heartbeat sweep that evicts half-open connections.

Every ``interval`` seconds each live connection is checked: one that did not
answer the previous ping is terminated, every other one is flagged as
pending and pinged again.  A pong clears the flag.  Termination goes through
the transport, so the normal disconnect path removes the connection from the
registry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable

from relay.connection import Connection

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_PING_TIMEOUT = 5.0


class LivenessMonitor:
    """Periodic ping/pong liveness check.

    Args:
        connections: Callable returning the currently open transport
            connections, classified or not.
        interval:    Seconds between sweeps.  Also the pong window.
        ping_timeout: Seconds a ping may wait to be written before it
            counts as missed.  Capped at *interval*.
    """

    def __init__(
        self,
        connections: Callable[[], Iterable[Connection]],
        interval: float = DEFAULT_INTERVAL,
        ping_timeout: float = DEFAULT_PING_TIMEOUT,
    ) -> None:
        if interval <= 0 or ping_timeout <= 0:
            raise ValueError("interval and ping_timeout must be positive")
        self._connections = connections
        self.interval = interval
        self.ping_timeout = min(ping_timeout, interval)
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.debug("Liveness monitor started (every %.1fs)", self.interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def sweep(self) -> int:
        """Run one liveness pass. Returns the number of terminated connections."""
        terminated = 0
        pending = []
        for conn in list(self._connections()):
            if not conn.alive:
                logger.warning("Terminating dead connection %s", conn.remote)
                conn.terminate()
                terminated += 1
                continue
            conn.alive = False
            pending.append(conn)
        # Concurrent and bounded: a peer that stopped reading cannot hold up
        # the others or the next sweep.
        await asyncio.gather(*(self._ping(conn) for conn in pending))
        return terminated

    async def _ping(self, conn: Connection) -> None:
        try:
            sent = await asyncio.wait_for(conn.ping(), self.ping_timeout)
        except asyncio.TimeoutError:
            logger.debug("Ping to %s stalled, counted as missed", conn.remote)
            return
        if not sent:
            logger.debug("Ping to %s failed", conn.remote)

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")
