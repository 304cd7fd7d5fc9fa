"""
gateway/ — Real-time Gateway Session

Keeps one authenticated WebSocket session to the gateway alive: endpoint
discovery, handshake, heartbeat, sequence tracking, reconnect with backoff,
and presence updates.
"""

from gateway.protocol import GatewayFrame, Opcode
from gateway.state import ConnectionPhase, ReconnectPolicy, SessionState
from gateway.resolver import EndpointResolver
from gateway.heartbeat import HeartbeatTimer
from gateway.presence import PresencePublisher, PresenceStatus
from gateway.session_manager import GatewaySessionManager

__all__ = [
    "GatewayFrame",
    "Opcode",
    "ConnectionPhase",
    "ReconnectPolicy",
    "SessionState",
    "EndpointResolver",
    "HeartbeatTimer",
    "PresencePublisher",
    "PresenceStatus",
    "GatewaySessionManager",
]
