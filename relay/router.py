"""Routing between the device and the observers.

Routing table (sender role × message kind):

  UNCLASSIFIED  register esp32   → evict old device, become DEVICE, ack
  UNCLASSIFIED  register web     → become OBSERVER, ack
  OBSERVER      control / data   → device (if present and open)
  DEVICE        control / data   → every open observer
  anything else                  → dropped

Delivery failures are absorbed here; the sender never hears about them.
Every send is bounded by ``send_timeout``; a peer that stops reading is
terminated instead of stalling the sender.
"""

from __future__ import annotations

import asyncio
import logging

from relay.connection import Connection
from relay.protocol import (
    ControlMessage,
    DataFrame,
    Message,
    RegisterMessage,
    Role,
    UnknownMessage,
    classify,
    encode_ack,
)
from relay.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_SEND_TIMEOUT = 5.0


class Router:
    """Classifies inbound frames and forwards them per the sender's role.

    Args:
        registry:     The registry shared with the liveness monitor.
        send_timeout: Seconds one delivery may wait on a peer that is not
            reading.  A peer that exceeds it is terminated.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ) -> None:
        if send_timeout <= 0:
            raise ValueError("send_timeout must be positive")
        self.registry = registry
        self.send_timeout = send_timeout

    async def dispatch(self, conn: Connection, frame: str | bytes) -> None:
        """Handle one inbound frame from *conn*."""
        await self.route(conn, classify(frame))

    async def route(self, conn: Connection, message: Message) -> None:
        if isinstance(message, RegisterMessage):
            await self._handle_register(conn, message)
            return

        if conn.role is Role.UNCLASSIFIED or conn not in self.registry:
            logger.debug("Dropping %s from unregistered %s", type(message).__name__, conn.remote)
            return

        if isinstance(message, ControlMessage):
            await self._forward(conn, message.raw)
            logger.debug("Control from %s: %s", conn.role.value, message.cmd)
        elif isinstance(message, DataFrame):
            await self._forward(conn, message.data)
        elif isinstance(message, UnknownMessage):
            logger.debug("Dropping unknown message type %r from %s", message.type, conn.remote)

    def disconnect(self, conn: Connection) -> None:
        """Remove *conn* from the registry. Safe to call repeatedly."""
        if not self.registry.remove(conn):
            return
        if conn.role is Role.DEVICE:
            logger.info("ESP32 disconnected (%s)", conn.remote)
        else:
            logger.info(
                "Web client disconnected (%s). Remaining: %d",
                conn.remote, self.registry.observer_count(),
            )

    # ── Registration ──────────────────────────────────────────────

    async def _handle_register(self, conn: Connection, msg: RegisterMessage) -> None:
        role = msg.role
        if role is None:
            logger.debug("Ignoring registration with unknown client %r from %s", msg.client, conn.remote)
            return
        if conn.role is not Role.UNCLASSIFIED:
            logger.debug(
                "Ignoring re-registration of %s as %s (already %s)",
                conn.remote, role.value, conn.role.value,
            )
            return
        if not conn.is_open:
            return

        conn.assign_role(role)
        if role is Role.DEVICE:
            self.registry.register_device(conn)
            logger.info("ESP32 registered (%s)", conn.remote)
        else:
            self.registry.register_observer(conn)
            logger.info(
                "Web client registered (%s). Total: %d",
                conn.remote, self.registry.observer_count(),
            )
        await self._deliver(conn, encode_ack(role))

    # ── Forwarding ────────────────────────────────────────────────

    async def _forward(self, sender: Connection, payload: str | bytes) -> None:
        if sender.role is Role.OBSERVER:
            await self._to_device(payload)
        elif sender.role is Role.DEVICE:
            await self._to_observers(payload)

    async def _to_device(self, payload: str | bytes) -> None:
        device = self.registry.device
        if device is None or not device.is_open:
            size = len(payload.encode("utf-8") if isinstance(payload, str) else payload)
            logger.debug("No device connected, dropping %d-byte message", size)
            return
        await self._deliver(device, payload)

    async def _to_observers(self, payload: str | bytes) -> None:
        targets = [
            o for o in self.registry.observers_snapshot() if o.is_open
        ]
        # Concurrent, so an observer that stopped reading only delays itself.
        await asyncio.gather(*(self._deliver(o, payload) for o in targets))

    async def _deliver(self, conn: Connection, payload: str | bytes) -> bool:
        """Send with a time limit. A peer that cannot keep up is terminated."""
        try:
            sent = await asyncio.wait_for(conn.send(payload), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Send to %s stalled for %.1fs, terminating", conn.remote, self.send_timeout
            )
            conn.terminate()
            return False
        if not sent:
            logger.debug("Delivery to %s failed", conn.remote)
        return sent
