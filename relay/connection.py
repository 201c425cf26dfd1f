"""Connection abstraction shared by the registry, router and liveness monitor.

The relay core never talks to a socket directly. It holds
:class:`Connection` objects, which carry the per-connection context
(role, liveness flag, remote address) and expose the few transport
operations the core needs.  :class:`WebSocketConnection` adapts a
:mod:`websockets` server connection.
"""

from __future__ import annotations

import abc
import asyncio
import logging

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from relay.protocol import Role

logger = logging.getLogger(__name__)


class RoleAlreadyAssigned(Exception):
    """Raised when a connection that already has a role is given another."""


class Connection(abc.ABC):
    """A bidirectional message channel plus its relay context."""

    def __init__(self, remote: str = "") -> None:
        self.remote = remote
        self.alive = True
        self._role = Role.UNCLASSIFIED

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.remote or '?'} role={self._role.name}>"

    # ── Relay context ──────────────────────────────────────────────

    @property
    def role(self) -> Role:
        return self._role

    def assign_role(self, role: Role) -> None:
        """Classify the connection. Only allowed once."""
        if role is Role.UNCLASSIFIED:
            raise ValueError("Cannot assign the unclassified role")
        if self._role is not Role.UNCLASSIFIED:
            raise RoleAlreadyAssigned(
                f"{self!r} is already registered as {self._role.name}"
            )
        self._role = role

    def mark_alive(self) -> None:
        """Record a liveness response (pong)."""
        self.alive = True

    # ── Transport ──────────────────────────────────────────────────

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        """Whether the channel can currently carry messages."""
        raise NotImplementedError

    @abc.abstractmethod
    async def send(self, payload: str | bytes) -> bool:
        """Send one text or binary message.

        Returns False instead of raising when the channel is closed or the
        write fails.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def ping(self) -> bool:
        """Send a liveness ping. The answer must end in :meth:`mark_alive`."""
        raise NotImplementedError

    @abc.abstractmethod
    def close(self) -> None:
        """Start a normal closing handshake.

        Returns without waiting for the peer; :attr:`is_open` is False from
        this point on.
        """
        raise NotImplementedError

    @abc.abstractmethod
    def terminate(self) -> None:
        """Drop the channel immediately, without a closing handshake."""
        raise NotImplementedError


def _format_address(address) -> str:
    if not address:
        return ""
    if isinstance(address, (tuple, list)) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address)


class WebSocketConnection(Connection):
    """:class:`Connection` backed by a :mod:`websockets` server connection."""

    def __init__(self, websocket: ServerConnection) -> None:
        super().__init__(_format_address(websocket.remote_address))
        self.websocket = websocket
        self._closing: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return self._closing is None and self.websocket.state is State.OPEN

    async def send(self, payload: str | bytes) -> bool:
        if not self.is_open:
            return False
        try:
            await self.websocket.send(payload)
        except ConnectionClosed:
            logger.debug("Send to %s failed: connection closed", self.remote)
            return False
        return True

    async def ping(self) -> bool:
        try:
            pong_waiter = await self.websocket.ping()
        except ConnectionClosed:
            return False
        pong_waiter.add_done_callback(self._on_pong)
        return True

    def _on_pong(self, waiter: asyncio.Future) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self.mark_alive()

    def close(self) -> None:
        if self._closing is None:
            self._closing = asyncio.create_task(self.websocket.close())

    def terminate(self) -> None:
        transport = self.websocket.transport
        if transport is not None:
            transport.abort()
