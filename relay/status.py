"""Human-readable status page and machine-readable health document."""

from __future__ import annotations

import html
from typing import Any

from relay.registry import ConnectionRegistry


def health_payload(registry: ConnectionRegistry, uptime: float) -> dict[str, Any]:
    return {
        "status": "ok",
        "esp32Connected": registry.is_device_present(),
        "webClients": registry.observer_count(),
        "uptime": uptime,
    }


_PAGE = """<html>
  <head><title>ESP32 Audio Relay</title></head>
  <body style="font-family: Arial; padding: 20px; background: #f0f0f0;">
    <h1>ESP32 Audio WebSocket Relay</h1>
    <div style="background: white; padding: 20px; border-radius: 10px; margin: 20px 0;">
      <h2>Server Status</h2>
      <p>Server Running</p>
      <p>ESP32 Connected: <strong>{device}</strong></p>
      <p>Web Clients: <strong>{observers}</strong></p>
      <p>Uptime: {uptime} seconds</p>
    </div>
    <div style="background: white; padding: 20px; border-radius: 10px;">
      <h2>Connection Info</h2>
      <p>WebSocket URL: <code>{ws_url}</code></p>
      <p>Refresh page to update stats</p>
    </div>
  </body>
</html>
"""


def render_status_page(
    registry: ConnectionRegistry, uptime: float, host: str, secure: bool = False
) -> str:
    """Render the status page. *host* is the request's Host header."""
    scheme = "wss" if secure else "ws"
    return _PAGE.format(
        device="YES" if registry.is_device_present() else "NO",
        observers=registry.observer_count(),
        uptime=int(uptime),
        ws_url=html.escape(f"{scheme}://{host}"),
    )
