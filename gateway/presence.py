"""
gateway/presence.py — Presence Publisher

Builds the presence payload (status + custom-status activity) and sends it
as an opcode-3 frame when the socket is open. The same payload is embedded
in the identify frame for the initial presence.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol

from exceptions import TransportError
from gateway.protocol import GatewayFrame, make_presence_update
from observability.logger import get_logger

log = get_logger(__name__)

# Activity type 4 is a custom status; `name` is fixed by the server.
CUSTOM_STATUS_ACTIVITY_TYPE = 4
CUSTOM_STATUS_ACTIVITY_NAME = "Custom Status"


class PresenceStatus(str, Enum):
    ONLINE    = "online"
    IDLE      = "idle"
    DND       = "dnd"
    INVISIBLE = "invisible"


def build_presence(status: str | PresenceStatus, custom_text: str) -> dict[str, Any]:
    """Presence payload shared by identify and presence updates."""
    return {
        "status": PresenceStatus(status).value,
        "since": 0,
        "activities": [
            {
                "name": CUSTOM_STATUS_ACTIVITY_NAME,
                "type": CUSTOM_STATUS_ACTIVITY_TYPE,
                "state": custom_text,
            }
        ],
        "afk": False,
    }


class FrameSink(Protocol):
    """Anything that can report whether its socket is open and send a frame."""

    @property
    def is_open(self) -> bool: ...

    async def send_frame(self, frame: GatewayFrame) -> None: ...


class PresencePublisher:
    """Sends presence updates through a FrameSink."""

    def __init__(self, sink: FrameSink):
        self._sink = sink

    async def publish(self, status: str | PresenceStatus, custom_text: str) -> bool:
        """
        Send a presence update. Returns True if a frame went out, False if the
        socket was closed (nothing is sent and nothing is raised).

        Raises:
            ValueError: `status` is not a known PresenceStatus.
        """
        frame = make_presence_update(build_presence(status, custom_text))
        if not self._sink.is_open:
            log.debug("presence.skipped", reason="socket closed", status=str(status))
            return False
        try:
            await self._sink.send_frame(frame)
        except TransportError as e:
            log.warning("presence.send_failed", error=str(e))
            return False
        log.info("presence.updated", status=frame.d["status"], custom_status=custom_text)
        return True
