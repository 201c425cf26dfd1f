"""Configuration for the relay server."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)

# environment variable → (field, converter)
_ENV_VARS = {
    "PORT": ("port", int),
    "RELAY_HOST": ("host", str),
    "RELAY_PING_INTERVAL": ("ping_interval", float),
    "RELAY_MAX_SIZE": ("max_size", int),
    "RELAY_SEND_TIMEOUT": ("send_timeout", float),
    "RELAY_LOG_LEVEL": ("log_level", str),
}


@dataclass
class RelayConfig:
    """Relay server configuration — defaults, then config.json, then env."""

    host: str = "0.0.0.0"
    port: int = 3000
    ping_interval: float = 30.0  # seconds between liveness sweeps
    max_size: int = 1024 * 1024  # largest accepted frame, bytes
    send_timeout: float = 5.0  # longest wait on a peer that is not reading
    log_level: str = "INFO"

    @classmethod
    def load(cls, path: str | Path) -> RelayConfig:
        path = Path(path)
        if path.exists():
            with open(path) as f:
                data = json.load(f)
            known = {f.name for f in fields(cls)}
            filtered = {k: v for k, v in data.items() if k in known}
            return cls(**filtered)
        logger.warning("Config not found at %s, using defaults", path)
        return cls()

    @classmethod
    def from_env(
        cls, env: Mapping[str, str] | None = None, base: RelayConfig | None = None
    ) -> RelayConfig:
        """Overlay environment variables on *base* (or the defaults)."""
        env = os.environ if env is None else env
        overrides = {}
        for var, (name, convert) in _ENV_VARS.items():
            raw = env.get(var)
            if raw in (None, ""):
                continue
            try:
                overrides[name] = convert(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", var, raw)
        return replace(base or cls(), **overrides)

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.__dict__, f, indent=2)
