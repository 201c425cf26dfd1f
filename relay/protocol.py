"""Wire protocol for the relay.

Every inbound frame is classified exactly once:

  Control (JSON text object with a string ``type``):
    register  → RegisterMessage  (``client`` is ``esp32`` or ``web``)
    control   → ControlMessage   (forwarded as the original text)
    other     → UnknownMessage   (dropped by the router)

  Anything else → DataFrame (opaque bytes, relayed untouched)
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Union


class Role(str, enum.Enum):
    """Role of a connection. The value is the wire name used in ``client``."""

    UNCLASSIFIED = ""
    DEVICE = "esp32"
    OBSERVER = "web"

    @classmethod
    def from_client(cls, client: Any) -> Role | None:
        """Map a ``client`` field to a registrable role, or ``None``."""
        if client == cls.DEVICE.value:
            return cls.DEVICE
        if client == cls.OBSERVER.value:
            return cls.OBSERVER
        return None


@dataclass(frozen=True)
class RegisterMessage:
    client: Any
    raw: str

    @property
    def role(self) -> Role | None:
        return Role.from_client(self.client)


@dataclass(frozen=True)
class ControlMessage:
    raw: str
    payload: dict = field(default_factory=dict, compare=False)

    @property
    def cmd(self) -> Any:
        return self.payload.get("cmd")


@dataclass(frozen=True)
class UnknownMessage:
    type: str
    raw: str


@dataclass(frozen=True)
class DataFrame:
    data: bytes

    def __len__(self) -> int:
        return len(self.data)


Message = Union[RegisterMessage, ControlMessage, UnknownMessage, DataFrame]


def _parse_object(text: str) -> dict | None:
    """Return the decoded JSON object, or ``None`` if *text* is not one."""
    try:
        obj = json.loads(text)
    except (ValueError, RecursionError):
        return None
    if isinstance(obj, dict) and isinstance(obj.get("type"), str):
        return obj
    return None


def classify(frame: str | bytes) -> Message:
    """Classify a raw inbound frame.

    Malformed or non-object JSON is not an error: it is an audio/data frame.
    """
    if isinstance(frame, str):
        text = frame
        data = None
    else:
        data = bytes(frame)
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return DataFrame(data)

    obj = _parse_object(text)
    if obj is None:
        return DataFrame(data if data is not None else text.encode("utf-8"))

    msg_type = obj["type"]
    if msg_type == "register":
        return RegisterMessage(client=obj.get("client"), raw=text)
    if msg_type == "control":
        return ControlMessage(raw=text, payload=obj)
    return UnknownMessage(type=msg_type, raw=text)


def encode_ack(role: Role) -> str:
    """Registration acknowledgment, byte-compatible with the JS relay."""
    return json.dumps(
        {"type": "registered", "client": role.value}, separators=(",", ":")
    )
