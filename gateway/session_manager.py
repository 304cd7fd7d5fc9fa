"""
gateway/session_manager.py — Gateway Session Manager

Owns the gateway connection for the whole process lifetime: resolves the
endpoint, opens the socket, performs the handshake, runs the heartbeat,
tracks the dispatch sequence, and recovers from dropped connections.

Every inbound event maps to one transition handler:

    socket open         → AWAITING_HELLO
    op 10 Hello         → start heartbeat, identify (or resume) → IDENTIFYING
    op 0  READY/RESUMED → READY, reconnect counter reset
    op 0  any           → sequence updated
    op 11 Heartbeat ACK → beat acknowledged
    op 1  Heartbeat     → beat sent immediately
    op 7  Reconnect     → close, reconnect now
    op 9  Invalid       → close, reconnect after a fixed delay
    socket closed       → backoff reconnect, or TERMINATED when exhausted

All handlers run on one asyncio event loop, so each transition is atomic
with respect to the socket reader, the heartbeat and operator commands.
Reconnect delays are cancellable tasks; shutdown() cancels any pending one
and nothing connects after TERMINATED.

Usage:
    manager = GatewaySessionManager.from_settings(settings)
    await manager.run()          # returns on shutdown(), raises when exhausted
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from exceptions import (
    DiscoveryError,
    ExhaustedRetriesError,
    ProtocolParseError,
    SessionError,
    TransportError,
)
from gateway.heartbeat import HeartbeatTimer
from gateway.presence import PresencePublisher, PresenceStatus, build_presence
from gateway.protocol import (
    EVENT_READY,
    EVENT_RESUMED,
    GatewayFrame,
    Opcode,
    make_heartbeat,
    make_identify,
    make_resume,
)
from gateway.resolver import EndpointResolver, gateway_url
from gateway.state import ConnectionPhase, ReconnectPolicy, SessionState
from observability.logger import get_logger

log = get_logger(__name__)

Connector = Callable[[str], Awaitable[Any]]

# Close codes after which the server will refuse a resume.
_NON_RESUMABLE_CLOSE_CODES = frozenset({4004, 4007, 4009, 4010, 4011, 4012, 4013, 4014})

# Close code used when the client drops a socket but wants the session kept.
_CLOSE_KEEP_SESSION = 4000
_CLOSE_NORMAL = 1000


async def open_websocket(url: str) -> Any:
    """Default connector: a websockets client connection with protocol pings off."""
    try:
        return await websockets.connect(url, max_size=2**24, ping_interval=None)
    except (OSError, asyncio.TimeoutError, WebSocketException) as e:
        raise TransportError(f"Could not open {url}: {type(e).__name__}: {e}") from e


class GatewaySessionManager:
    """
    The gateway session lifecycle state machine.

    The manager is also the FrameSink for its PresencePublisher: `is_open`
    and `send_frame()` are the only way frames reach the socket.
    """

    def __init__(
        self,
        state: SessionState,
        resolver: EndpointResolver,
        *,
        policy: Optional[ReconnectPolicy] = None,
        api_version: int = 9,
        encoding: str = "json",
        client_properties: Optional[dict[str, str]] = None,
        intents: int = 0,
        enforce_heartbeat_ack: bool = True,
        resume_enabled: bool = False,
        connector: Optional[Connector] = None,
    ):
        self.state = state
        self._resolver = resolver
        self._policy = policy or ReconnectPolicy()
        self._api_version = api_version
        self._encoding = encoding
        self._client_properties = client_properties or {}
        self._intents = intents
        self._resume_enabled = resume_enabled
        self._connector = connector or open_websocket

        self._heartbeat = HeartbeatTimer(
            enforce_ack=enforce_heartbeat_ack,
            on_missed_ack=self._on_missed_ack,
        )
        self._presence = PresencePublisher(self)

        self._ws: Any = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._resume_next = False
        self._done = asyncio.Event()
        self._failure: Optional[ExhaustedRetriesError] = None
        self._presence_pending = False
        self._log = log
        self.connections_opened = 0
        self.next_reconnect_delay_ms: Optional[int] = None

    @classmethod
    def from_settings(cls, settings, **overrides) -> "GatewaySessionManager":
        """Build a manager from Settings. `overrides` replace constructor kwargs."""
        gw = settings.gateway
        kwargs: dict[str, Any] = dict(
            policy=ReconnectPolicy(
                max_attempts=gw.max_reconnect_attempts,
                base_ms=gw.backoff_base_ms,
                max_ms=gw.backoff_max_ms,
                invalid_session_delay_ms=gw.invalid_session_delay_ms,
            ),
            api_version=gw.api_version,
            encoding=gw.encoding,
            client_properties=settings.client.model_dump(),
            intents=gw.intents,
            enforce_heartbeat_ack=gw.enforce_heartbeat_ack,
            resume_enabled=gw.resume_enabled,
        )
        kwargs.update(overrides)
        state = SessionState(
            token=settings.token,
            status=settings.status,
            custom_status=settings.custom_status,
        )
        resolver = EndpointResolver(gw.discovery_url, timeout_s=gw.discovery_timeout_s)
        return cls(state, resolver, **kwargs)

    # ─────────────────────────────────────────────────────────────────────────
    # Introspection
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> ConnectionPhase:
        return self.state.phase

    @property
    def heartbeat(self) -> HeartbeatTimer:
        return self._heartbeat

    @property
    def terminated(self) -> bool:
        return self.state.phase is ConnectionPhase.TERMINATED

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ─────────────────────────────────────────────────────────────────────────
    # FrameSink
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self.terminated

    async def send_frame(self, frame: GatewayFrame) -> None:
        """Send one frame on the current socket. Raises TransportError."""
        ws = self._ws
        if ws is None:
            raise TransportError("socket is not open")
        try:
            await ws.send(frame.to_json())
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"send of op {frame.op} failed: {e}") from e

    # ─────────────────────────────────────────────────────────────────────────
    # Public operations
    # ─────────────────────────────────────────────────────────────────────────

    async def connect(self) -> None:
        """
        Resolve the endpoint and open the first socket.

        Raises:
            DiscoveryError: the endpoint could not be resolved (fatal at startup).
        """
        if self.state.phase is not ConnectionPhase.DISCONNECTED:
            self._log.warning("gateway.connect_ignored", phase=self.state.phase.value)
            return
        self.state.phase = ConnectionPhase.CONNECTING
        base = await self._resolver.resolve()
        if self.terminated:
            return
        await self._open(base)

    async def run(self) -> None:
        """
        Connect and keep the session alive until shutdown() or until the
        reconnect budget is spent.

        Raises:
            DiscoveryError:        startup resolution failed.
            ExhaustedRetriesError: reconnect attempts exhausted.
        """
        try:
            await self.connect()
        except DiscoveryError:
            self._terminate()
            raise
        await self._done.wait()
        if self._failure is not None:
            raise self._failure

    async def update_presence(
        self,
        status: Optional[str] = None,
        custom_status: Optional[str] = None,
    ) -> bool:
        """
        Change the desired presence and publish it once the session is READY.
        Before that the new values are kept: the next identify carries them,
        and a change made after identify went out is sent on READY/RESUMED.

        Raises:
            ValueError: unknown status.
        """
        if status is not None:
            self.state.status = PresenceStatus(status).value
        if custom_status is not None:
            self.state.custom_status = custom_status
        if self.state.phase is not ConnectionPhase.READY:
            # op 3 before identify gets the socket closed with 4003
            self._presence_pending = True
            self._log.debug("gateway.presence_deferred", phase=self.state.phase.value)
            return False
        return await self._presence.publish(self.state.status, self.state.custom_status)

    async def shutdown(self) -> None:
        """Stop heartbeat, cancel pending reconnect, close socket. Idempotent."""
        if self.terminated:
            return
        self._log.info("gateway.shutdown", phase=self.state.phase.value)
        self.state.phase = ConnectionPhase.TERMINATED
        self._cancel_reconnect()
        await self._retire_socket(_CLOSE_NORMAL)
        self._terminate()

    async def wait_terminated(self) -> None:
        await self._done.wait()

    # ─────────────────────────────────────────────────────────────────────────
    # Inbound frames
    # ─────────────────────────────────────────────────────────────────────────

    async def handle_message(self, raw: str | bytes) -> None:
        """Classify and apply one inbound frame. Malformed frames are dropped."""
        if self.terminated:
            return
        try:
            frame = GatewayFrame.from_json(raw)
        except ProtocolParseError as e:
            self._log.warning("gateway.frame_malformed", error=str(e))
            return

        op = frame.opcode
        if op is Opcode.DISPATCH:
            await self._on_dispatch(frame)
        elif op is Opcode.HELLO:
            await self._on_hello(frame)
        elif op is Opcode.HEARTBEAT_ACK:
            self._heartbeat.ack()
            self._log.debug("gateway.heartbeat_ack", latency_ms=self._heartbeat.latency_ms)
        elif op is Opcode.HEARTBEAT:
            self._log.debug("gateway.heartbeat_requested")
            await self._send_heartbeat()
        elif op is Opcode.RECONNECT:
            await self._recover(
                SessionError(int(Opcode.RECONNECT), "server requested a reconnect", resumable=True),
                delay_ms=0,
            )
        elif op is Opcode.INVALID_SESSION:
            await self._recover(
                SessionError(
                    int(Opcode.INVALID_SESSION),
                    "server invalidated the session",
                    resumable=frame.d is True,
                ),
                delay_ms=self._policy.invalid_session_delay_ms,
            )
        else:
            self._log.debug("gateway.frame_ignored", op=frame.op)

    async def _on_hello(self, frame: GatewayFrame) -> None:
        if self.state.phase is not ConnectionPhase.AWAITING_HELLO:
            self._log.warning("gateway.hello_unexpected", phase=self.state.phase.value)
            return
        interval = frame.d.get("heartbeat_interval") if isinstance(frame.d, dict) else None
        if not isinstance(interval, int) or isinstance(interval, bool) or interval <= 0:
            self._log.warning("gateway.hello_invalid", payload=frame.d)
            return

        self.state.heartbeat_interval_ms = interval
        self._heartbeat.start(interval, self._send_heartbeat)
        self.state.phase = ConnectionPhase.IDENTIFYING
        self._log.info("gateway.hello", heartbeat_interval_ms=interval)

        resume, self._resume_next = self._resume_next and self.state.can_resume, False
        if resume:
            frame_out = make_resume(self.state.token, self.state.session_id, self.state.sequence)
        else:
            frame_out = make_identify(
                self.state.token,
                self._client_properties,
                build_presence(self.state.status, self.state.custom_status),
                intents=self._intents,
            )
        try:
            await self.send_frame(frame_out)
        except TransportError as e:
            self._log.warning("gateway.handshake_send_failed", error=str(e))
            return
        if resume:
            self._log.info("gateway.resuming", session_id=self.state.session_id, seq=self.state.sequence)
        else:
            self._presence_pending = False
            self._log.info("gateway.identified", status=self.state.status)

    async def _on_dispatch(self, frame: GatewayFrame) -> None:
        if frame.s is not None and not self.state.observe_sequence(frame.s):
            self._log.debug("gateway.sequence_stale", seq=frame.s, current=self.state.sequence)

        if frame.t == EVENT_READY:
            d = frame.d if isinstance(frame.d, dict) else {}
            self.state.session_id = d.get("session_id")
            self.state.resume_gateway_url = d.get("resume_gateway_url")
            self._bind_log()
            await self._established()
            user = d.get("user") or {}
            self._log.info(
                "gateway.ready",
                session_id=self.state.session_id,
                username=user.get("username") if isinstance(user, dict) else None,
            )
        elif frame.t == EVENT_RESUMED:
            await self._established()
            self._log.info("gateway.resumed", session_id=self.state.session_id, seq=self.state.sequence)

    async def _established(self) -> None:
        self.state.reconnect_attempts = 0
        self.state.phase = ConnectionPhase.READY
        if self._presence_pending:
            self._presence_pending = False
            await self._presence.publish(self.state.status, self.state.custom_status)

    def _bind_log(self) -> None:
        """Rebind connection fields on the manager and heartbeat loggers."""
        values = {"connection": self.connections_opened, "session_id": self.state.session_id}
        self._log = log.bind(**values)
        self._heartbeat.bind_log(**values)

    async def _send_heartbeat(self) -> None:
        if not self.is_open:
            return
        try:
            await self.send_frame(make_heartbeat(self.state.sequence))
        except TransportError as e:
            self._log.warning("gateway.heartbeat_send_failed", error=str(e))
            return
        self._heartbeat.sent()
        self._log.debug("gateway.heartbeat_sent", seq=self.state.sequence)

    # ─────────────────────────────────────────────────────────────────────────
    # Socket lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    async def _open(self, base_url: str) -> None:
        """Open a socket on `base_url`; a failure follows the close path."""
        if self.terminated:
            return
        if self._ws is not None:
            await self._retire_socket(_CLOSE_NORMAL)

        self.state.phase = ConnectionPhase.CONNECTING
        if not self._resume_next:
            self.state.clear_session()

        url = gateway_url(base_url, self._api_version, self._encoding)
        try:
            ws = await self._connector(url)
        except TransportError as e:
            self._log.warning("gateway.open_failed", error=str(e))
            await self.handle_close(None, str(e))
            return

        if self.terminated:
            # shutdown() ran while the handshake was in flight
            await ws.close()
            return

        self._ws = ws
        self.connections_opened += 1
        self._bind_log()
        self.state.phase = ConnectionPhase.AWAITING_HELLO
        self._log.info("gateway.connected", url=url, attempt=self.state.reconnect_attempts)
        self._reader = asyncio.create_task(self._read_loop(ws), name="gateway-reader")

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                try:
                    await self.handle_message(raw)
                except TransportError as e:
                    self._log.warning("gateway.transport_error", error=str(e))
                except Exception as e:
                    self._log.exception("gateway.frame_handler_failed", error=str(e))
        except ConnectionClosed:
            pass
        except OSError as e:
            self._log.warning("gateway.transport_error", error=str(e))

        # A socket this manager retired itself has already been dealt with.
        if ws is not self._ws:
            return
        await self.handle_close(getattr(ws, "close_code", None), getattr(ws, "close_reason", ""))

    async def handle_close(self, code: Optional[int], reason: str = "") -> None:
        """
        The current socket closed without this manager asking for it, or could
        not be opened. Schedules a backoff reconnect or terminates.
        """
        if self.terminated:
            return
        self._ws = None
        self._reader = None
        self._heartbeat.stop()
        self.state.last_close_code = code
        self._log.warning("gateway.closed", code=code, reason=reason or None)

        self._resume_next = (
            self._resume_enabled
            and self.state.can_resume
            and code not in _NON_RESUMABLE_CLOSE_CODES
        )

        attempts = self.state.reconnect_attempts
        if self._policy.exhausted(attempts):
            self._log.error(
                "gateway.retries_exhausted",
                attempts=attempts,
                max_attempts=self._policy.max_attempts,
            )
            self._cancel_reconnect()
            self._terminate(ExhaustedRetriesError(attempts, code))
            return

        delay_ms = self._policy.delay_ms(attempts)
        self.state.reconnect_attempts = attempts + 1
        self._schedule_reconnect(delay_ms)

    async def _recover(self, err: SessionError, delay_ms: int) -> None:
        """Server-signalled reconnect (op 7) or invalid session (op 9)."""
        self._log.warning(
            "gateway.session_error",
            opcode=err.opcode,
            error=str(err),
            resumable=err.resumable,
            delay_ms=delay_ms,
        )
        self._resume_next = self._resume_enabled and err.resumable and self.state.can_resume
        await self._retire_socket(_CLOSE_KEEP_SESSION if self._resume_next else _CLOSE_NORMAL)
        if self.terminated:
            return
        self._schedule_reconnect(delay_ms)

    async def _on_missed_ack(self) -> None:
        """Heartbeat watchdog: the last beat was never acknowledged."""
        if not self.state.phase.is_live:
            return
        self._log.warning("gateway.zombie_connection", interval_ms=self.state.heartbeat_interval_ms)
        await self._retire_socket(_CLOSE_KEEP_SESSION)
        await self.handle_close(_CLOSE_KEEP_SESSION, "heartbeat not acknowledged")

    async def _retire_socket(self, code: int) -> None:
        """Detach and close the current socket; its close event is then ignored."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        self._heartbeat.stop()
        if ws is not None:
            try:
                await ws.close(code=code)
            except (OSError, WebSocketException) as e:
                self._log.debug("gateway.close_failed", error=str(e))
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()

    # ─────────────────────────────────────────────────────────────────────────
    # Reconnect scheduling
    # ─────────────────────────────────────────────────────────────────────────

    def _schedule_reconnect(self, delay_ms: int) -> None:
        self._cancel_reconnect()
        self.state.phase = ConnectionPhase.RECONNECT_BACKOFF
        self.next_reconnect_delay_ms = delay_ms
        self._log.info(
            "gateway.reconnect_scheduled",
            delay_ms=delay_ms,
            attempts=self.state.reconnect_attempts,
            resume=self._resume_next,
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay_ms), name="gateway-reconnect"
        )

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _reconnect_after(self, delay_ms: int) -> None:
        if delay_ms > 0:
            await asyncio.sleep(delay_ms / 1000.0)
        if self.terminated:
            return
        try:
            await self._reconnect()
        except Exception as e:
            # Unexpected errors count as a failed attempt.
            self._log.exception("gateway.reconnect_failed", error=str(e))
            await self.handle_close(None, f"{type(e).__name__}: {e}")

    async def _reconnect(self) -> None:
        if self._resume_next and self.state.resume_gateway_url:
            base = self.state.resume_gateway_url
        else:
            try:
                base = await self._resolver.resolve()
            except DiscoveryError as e:
                self._log.warning("gateway.discovery_failed", error=str(e))
                await self.handle_close(None, str(e))
                return
        if self.terminated:
            return
        await self._open(base)

    def _terminate(self, failure: Optional[ExhaustedRetriesError] = None) -> None:
        self.state.phase = ConnectionPhase.TERMINATED
        self._heartbeat.stop()
        self._failure = failure
        self._done.set()
