"""Audio Relay — WebSocket relay between one ESP32 device and web observers.

Quickstart::

    python -m relay --port 3000
    # or
    audio-relay --config /etc/audio-relay/config.json

Endpoints register with ``{"type": "register", "client": "esp32" | "web"}``.
After that, JSON control messages and raw binary audio frames are relayed
between the device and every registered web client.
"""

__version__ = "1.0.0"
