"""
gateway/state.py — Session State and Reconnect Policy

SessionState is the single mutable record of the current connection
attempt. It is created once at startup, owned by GatewaySessionManager and
mutated only from the event loop that runs the manager.

ReconnectPolicy holds the backoff arithmetic:

    delay_ms(k) = min(base_ms * 2**k, max_ms)

where k is the number of consecutive abnormal closes so far.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ConnectionPhase(str, Enum):
    DISCONNECTED      = "disconnected"
    CONNECTING        = "connecting"
    AWAITING_HELLO    = "awaiting_hello"
    IDENTIFYING       = "identifying"
    READY             = "ready"
    RECONNECT_BACKOFF = "reconnect_backoff"
    TERMINATED        = "terminated"

    @property
    def is_live(self) -> bool:
        """Phases in which a socket is open and frames are being handled."""
        return self in _LIVE_PHASES


_LIVE_PHASES = frozenset({
    ConnectionPhase.CONNECTING,
    ConnectionPhase.AWAITING_HELLO,
    ConnectionPhase.IDENTIFYING,
    ConnectionPhase.READY,
})


@dataclass
class SessionState:
    """Identity of the current connection attempt."""

    token: str = field(repr=False)
    status: str = "online"
    custom_status: str = ""

    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    sequence: Optional[int] = None
    session_id: Optional[str] = None
    resume_gateway_url: Optional[str] = None
    reconnect_attempts: int = 0
    heartbeat_interval_ms: Optional[int] = None
    last_close_code: Optional[int] = None

    def observe_sequence(self, seq: Optional[int]) -> bool:
        """
        Record a dispatch sequence number. Returns False if it was ignored
        (missing, or lower than the one already held).
        """
        if seq is None:
            return False
        if self.sequence is not None and seq < self.sequence:
            return False
        self.sequence = seq
        return True

    def clear_session(self) -> None:
        """Forget the server-issued session so the next handshake is fresh."""
        self.session_id = None
        self.sequence = None
        self.resume_gateway_url = None

    @property
    def can_resume(self) -> bool:
        return self.session_id is not None and self.sequence is not None


@dataclass(frozen=True)
class ReconnectPolicy:
    max_attempts: int = 10
    base_ms: int = 1000
    max_ms: int = 30000
    invalid_session_delay_ms: int = 5000

    def delay_ms(self, attempts: int) -> int:
        """Backoff before the next attempt after `attempts` consecutive failures."""
        if attempts < 0:
            raise ValueError("attempts must be >= 0")
        # Cap the exponent so huge counters never build huge ints.
        return min(self.base_ms * (2 ** min(attempts, 32)), self.max_ms)

    def exhausted(self, attempts: int) -> bool:
        return attempts >= self.max_attempts
