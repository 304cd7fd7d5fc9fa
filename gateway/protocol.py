"""
gateway/protocol.py — Gateway Frame Protocol

Typed envelope for every frame exchanged with the real-time gateway.
Every frame is a JSON object:

    {"op": int, "d": any, "s": int | null, "t": str | null}

`s` and `t` are only meaningful on dispatch (op 0) frames.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

from exceptions import ProtocolParseError


# ─────────────────────────────────────────────────────────────────────────────
# Opcodes
# ─────────────────────────────────────────────────────────────────────────────

class Opcode(IntEnum):
    """Gateway opcodes used by the session lifecycle."""

    DISPATCH          = 0    # Server → Client
    HEARTBEAT         = 1    # Both directions
    IDENTIFY          = 2    # Client → Server
    PRESENCE_UPDATE   = 3    # Client → Server
    RESUME            = 6    # Client → Server
    RECONNECT         = 7    # Server → Client
    INVALID_SESSION   = 9    # Server → Client
    HELLO             = 10   # Server → Client
    HEARTBEAT_ACK     = 11   # Server → Client


# Dispatch event names that drive the state machine
EVENT_READY   = "READY"
EVENT_RESUMED = "RESUMED"


# ─────────────────────────────────────────────────────────────────────────────
# Envelope
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class GatewayFrame:
    """
    Universal frame envelope.

    `op` is kept as a plain int so unknown opcodes survive parsing and can be
    logged by the caller instead of failing here.
    """
    op: int
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None

    @property
    def opcode(self) -> Optional[Opcode]:
        """The Opcode member for `op`, or None if this client does not know it."""
        try:
            return Opcode(self.op)
        except ValueError:
            return None

    def to_json(self) -> str:
        """Serialize to the wire format. `s` and `t` are always present."""
        return json.dumps({"op": int(self.op), "d": self.d, "s": self.s, "t": self.t})

    @classmethod
    def from_json(cls, raw: str | bytes) -> "GatewayFrame":
        """
        Parse one inbound frame.

        Raises:
            ProtocolParseError: invalid JSON, a non-object body, or a missing
                                or non-integer `op`, or a non-integer `s`.
        """
        try:
            body = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as e:
            raise ProtocolParseError(f"Frame is not valid JSON: {e}", raw=raw) from e

        if not isinstance(body, dict):
            raise ProtocolParseError(
                f"Frame must be a JSON object, got {type(body).__name__}", raw=raw
            )

        op = body.get("op")
        # bool is an int subclass; reject it explicitly
        if not isinstance(op, int) or isinstance(op, bool):
            raise ProtocolParseError(f"Frame has no integer 'op': {op!r}", raw=raw)

        seq = body.get("s")
        if seq is not None and (not isinstance(seq, int) or isinstance(seq, bool)):
            raise ProtocolParseError(f"Frame has a non-integer 's': {seq!r}", raw=raw)

        event = body.get("t")
        if event is not None and not isinstance(event, str):
            raise ProtocolParseError(f"Frame has a non-string 't': {event!r}", raw=raw)

        return cls(op=op, d=body.get("d"), s=seq, t=event)


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers: Client → Server frames
# ─────────────────────────────────────────────────────────────────────────────

def make_heartbeat(sequence: Optional[int]) -> GatewayFrame:
    """Build a HEARTBEAT frame carrying the last seen sequence (or null)."""
    return GatewayFrame(op=Opcode.HEARTBEAT, d=sequence)


def make_identify(
    token: str,
    properties: dict[str, str],
    presence: dict[str, Any],
    intents: int = 0,
) -> GatewayFrame:
    """Build an IDENTIFY frame with the initial presence embedded."""
    return GatewayFrame(
        op=Opcode.IDENTIFY,
        d={
            "token": token,
            "properties": {
                "os": properties.get("os", "linux"),
                "browser": properties.get("browser", "chrome"),
                "device": properties.get("device", "chrome"),
            },
            "presence": presence,
            "intents": intents,
        },
    )


def make_resume(token: str, session_id: str, sequence: Optional[int]) -> GatewayFrame:
    """Build a RESUME frame reattaching to a previous session."""
    return GatewayFrame(
        op=Opcode.RESUME,
        d={"token": token, "session_id": session_id, "seq": sequence},
    )


def make_presence_update(presence: dict[str, Any]) -> GatewayFrame:
    """Build a PRESENCE_UPDATE frame from a presence payload."""
    return GatewayFrame(op=Opcode.PRESENCE_UPDATE, d=presence)
