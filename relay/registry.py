"""Connection registry — the device slot and the observer set.

The registry only holds lookup references.  It never owns a connection's
lifecycle, with one exception: a device takeover asks the previous device's
transport to close.
"""

from __future__ import annotations

import logging

from relay.connection import Connection

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Tracks at most one device connection and any number of observers.

    All methods are synchronous and must be called from the event loop
    thread; the loop is the only concurrency control.
    """

    def __init__(self) -> None:
        self._device: Connection | None = None
        self._observers: set[Connection] = set()

    # ── Mutations ─────────────────────────────────────────────────

    def register_device(self, conn: Connection) -> Connection | None:
        """Install *conn* as the device, closing any previous device first.

        Returns the evicted connection, if any.
        """
        previous = self._device
        if previous is conn:
            return None
        if previous is not None:
            self._device = None
            logger.info("Evicting previous device %s", previous.remote)
            previous.close()
        self._device = conn
        return previous

    def register_observer(self, conn: Connection) -> None:
        self._observers.add(conn)

    def remove(self, conn: Connection) -> bool:
        """Forget *conn*. Returns False if it was not registered."""
        if conn is self._device:
            self._device = None
            return True
        if conn in self._observers:
            self._observers.discard(conn)
            return True
        return False

    # ── Queries ───────────────────────────────────────────────────

    @property
    def device(self) -> Connection | None:
        return self._device

    def observers_snapshot(self) -> list[Connection]:
        """Copy of the observer set, safe to iterate across awaits."""
        return list(self._observers)

    def is_device_present(self) -> bool:
        return self._device is not None

    def observer_count(self) -> int:
        return len(self._observers)

    def __contains__(self, conn: object) -> bool:
        return conn is self._device or conn in self._observers
