"""
exceptions.py — stayonline Unified Error Hierarchy

All stayonline-specific exceptions live here. Every layer raises typed
subclasses of StayOnlineError — never bare Exception.

Import from here, not from individual modules:
    from exceptions import DiscoveryError, ProtocolParseError

Hierarchy:
    StayOnlineError
    ├── ConfigError
    └── GatewayError
        ├── DiscoveryError
        ├── ProtocolParseError
        ├── TransportError
        ├── SessionError
        └── ExhaustedRetriesError
"""

from __future__ import annotations

from typing import Optional


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class StayOnlineError(Exception):
    """Base class for all stayonline exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────

class ConfigError(StayOnlineError):
    """Raised by validate_all() when one or more config problems are found."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway layer
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(StayOnlineError):
    """Base for gateway connection and protocol errors."""


class DiscoveryError(GatewayError):
    """The discovery endpoint did not yield a usable gateway URL."""

    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"Gateway discovery via {url} failed: {message}")


class ProtocolParseError(GatewayError):
    """An inbound frame could not be parsed into a valid envelope."""

    def __init__(self, message: str, raw: object = None) -> None:
        self.raw = raw
        super().__init__(message)


class TransportError(GatewayError):
    """The socket could not be opened or written to."""


class SessionError(GatewayError):
    """The server asked the client to reconnect or invalidated the session."""

    def __init__(self, opcode: int, message: str, resumable: bool = False) -> None:
        self.opcode = opcode
        self.resumable = resumable
        super().__init__(message)


class ExhaustedRetriesError(GatewayError):
    """The reconnect budget was spent without re-establishing a session."""

    def __init__(self, attempts: int, last_close_code: Optional[int] = None) -> None:
        self.attempts = attempts
        self.last_close_code = last_close_code
        super().__init__(
            f"Gave up after {attempts} reconnection attempts "
            f"(last close code: {last_close_code})"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "StayOnlineError",
    "ConfigError",
    # Gateway
    "GatewayError",
    "DiscoveryError",
    "ProtocolParseError",
    "TransportError",
    "SessionError",
    "ExhaustedRetriesError",
]
