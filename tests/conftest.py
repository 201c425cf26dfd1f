"""pytest configuration for relay tests."""

from __future__ import annotations

import asyncio
from typing import Callable

import pytest

from relay.connection import Connection


# Configure asyncio mode for pytest-asyncio
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


class FakeConnection(Connection):
    """In-memory connection that records what the relay sends to it.

    With ``stalled=True`` it behaves like a peer that stopped reading: every
    send and ping blocks until the connection is terminated.
    """

    def __init__(
        self,
        remote: str = "fake",
        answers_ping: bool = True,
        on_terminate: Callable[[Connection], None] | None = None,
        stalled: bool = False,
    ) -> None:
        super().__init__(remote)
        self.sent: list[str | bytes] = []
        self.open = True
        self.pings = 0
        self.answers_ping = answers_ping
        self.closed_by: str | None = None
        self._on_terminate = on_terminate
        self.stalled = stalled
        self._released = asyncio.Event()

    @property
    def is_open(self) -> bool:
        return self.open

    async def send(self, payload: str | bytes) -> bool:
        if not self.open:
            return False
        if self.stalled:
            await self._released.wait()
            return False
        self.sent.append(payload)
        return True

    async def ping(self) -> bool:
        if not self.open:
            return False
        self.pings += 1
        if self.stalled:
            await self._released.wait()
            return False
        if self.answers_ping:
            self.mark_alive()
        return True

    def close(self) -> None:
        self.open = False
        self.closed_by = self.closed_by or "close"

    def terminate(self) -> None:
        self.open = False
        self.closed_by = self.closed_by or "terminate"
        self._released.set()
        if self._on_terminate:
            self._on_terminate(self)


@pytest.fixture
def make_conn():
    """Factory for :class:`FakeConnection` instances."""
    def _make(remote: str = "fake", **kwargs) -> FakeConnection:
        return FakeConnection(remote, **kwargs)
    return _make
