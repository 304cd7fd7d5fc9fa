"""
gateway/heartbeat.py — Heartbeat Timer

Runs the keep-alive beat at the interval dictated by the server's Hello
frame, and tracks whether the most recent beat was acknowledged.

The timer owns no socket. Each tick awaits the `on_tick` coroutine supplied
to start(); the session manager uses it to send an opcode-1 frame carrying
the current sequence and then calls sent().

Ack watchdog: when `enforce_ack` is on and a tick comes due while the
previous beat is still unacknowledged, the timer calls `on_missed_ack`
instead of `on_tick` and stops itself. The connection is a zombie at that
point; the session manager closes it and reconnects.

Usage:
    timer = HeartbeatTimer(on_missed_ack=manager_zombie_handler)
    timer.start(41250, send_heartbeat)
    ...
    timer.ack()      # on opcode 11
    timer.stop()     # idempotent
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Optional

from observability.logger import get_logger

log = get_logger(__name__)

TickFn = Callable[[], Awaitable[None]]


class HeartbeatTimer:
    """Repeating, cancellable keep-alive timer with ack tracking."""

    def __init__(
        self,
        enforce_ack: bool = True,
        on_missed_ack: Optional[TickFn] = None,
    ):
        self._enforce_ack = enforce_ack
        self._on_missed_ack = on_missed_ack
        self._task: Optional[asyncio.Task] = None
        self._interval_ms: Optional[int] = None
        self._acknowledged = True
        self._last_sent_at: Optional[float] = None
        self._last_ack_at: Optional[float] = None
        self.beats_sent = 0
        self._log = log

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self, interval_ms: int, on_tick: TickFn) -> None:
        """
        Begin firing `on_tick` every `interval_ms`. The first beat fires one
        full interval after start. Restarting replaces the running loop.
        """
        if interval_ms <= 0:
            raise ValueError(f"heartbeat interval must be positive, got {interval_ms}")

        self.stop()
        self._interval_ms = interval_ms
        self._acknowledged = True
        self._task = asyncio.create_task(
            self._loop(interval_ms / 1000.0, on_tick), name="heartbeat"
        )
        self._log.info("heartbeat.started", interval_ms=interval_ms)

    def stop(self) -> None:
        """Cancel the timer. Calling stop() when already stopped is a no-op."""
        task, self._task = self._task, None
        if task is None:
            return
        # Stopped from inside a tick: the loop sees it is detached and returns.
        if task is not asyncio.current_task() and not task.done():
            task.cancel()
        self._log.debug("heartbeat.stopped")

    def bind_log(self, **values) -> None:
        """Attach connection fields to every log line the timer emits from now on."""
        self._log = log.bind(**values)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval_ms(self) -> Optional[int]:
        return self._interval_ms

    # ── Ack tracking ──────────────────────────────────────────────────────────

    def sent(self) -> None:
        """Record that a beat went out and is awaiting acknowledgement."""
        self._acknowledged = False
        self._last_sent_at = time.monotonic()
        self.beats_sent += 1

    def ack(self) -> None:
        """Record a Heartbeat ACK from the server."""
        self._acknowledged = True
        self._last_ack_at = time.monotonic()

    @property
    def acknowledged(self) -> bool:
        """True if the most recent beat has been acknowledged (or none was sent)."""
        return self._acknowledged

    @property
    def latency_ms(self) -> Optional[float]:
        """Round trip of the last acknowledged beat, if known."""
        if self._last_sent_at is None or self._last_ack_at is None:
            return None
        if self._last_ack_at < self._last_sent_at:
            return None
        return round((self._last_ack_at - self._last_sent_at) * 1000, 1)

    # ── Loop ──────────────────────────────────────────────────────────────────

    async def _loop(self, interval_s: float, on_tick: TickFn) -> None:
        me = asyncio.current_task()
        while True:
            await asyncio.sleep(interval_s)
            if self._task is not me:
                return

            if self._enforce_ack and not self._acknowledged and self._on_missed_ack:
                self._log.warning(
                    "heartbeat.ack_missed",
                    interval_ms=self._interval_ms,
                    beats_sent=self.beats_sent,
                )
                self._task = None
                await self._on_missed_ack()
                return

            try:
                await on_tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # A failed send is followed by the socket's close event,
                # which drives recovery; keep beating until stopped.
                self._log.error("heartbeat.tick_failed", error=str(e), error_type=type(e).__name__)

            if self._task is not me:
                return
