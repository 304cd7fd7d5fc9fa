"""
tests/unit/test_heartbeat.py — Heartbeat Timer Tests

Covers:
  - stop() is idempotent
  - ticks fire no more than once per interval
  - the ack watchdog fires on a missed ack and stops the timer
  - acknowledged beats keep the timer running
  - stopping from inside a tick ends the loop cleanly
"""

from __future__ import annotations

import asyncio

import pytest

from gateway.heartbeat import HeartbeatTimer


class TestLifecycle:
    def test_stop_when_never_started(self):
        timer = HeartbeatTimer()
        timer.stop()
        timer.stop()
        assert timer.running is False

    @pytest.mark.asyncio
    async def test_stop_twice(self):
        timer = HeartbeatTimer()

        async def tick():
            pass

        timer.start(1000, tick)
        assert timer.running is True
        timer.stop()
        timer.stop()
        await asyncio.sleep(0)
        assert timer.running is False

    @pytest.mark.asyncio
    async def test_rejects_non_positive_interval(self):
        timer = HeartbeatTimer()

        async def tick():
            pass

        with pytest.raises(ValueError):
            timer.start(0, tick)

    @pytest.mark.asyncio
    async def test_restart_replaces_interval(self):
        timer = HeartbeatTimer()

        async def tick():
            pass

        timer.start(1000, tick)
        timer.start(2000, tick)
        assert timer.interval_ms == 2000
        assert timer.running is True
        timer.stop()


class TestTicks:
    @pytest.mark.asyncio
    async def test_fires_at_most_once_per_interval(self):
        timer = HeartbeatTimer(enforce_ack=False)
        ticks = []
        loop = asyncio.get_running_loop()

        async def tick():
            ticks.append(loop.time())

        timer.start(20, tick)
        await asyncio.sleep(0.11)
        timer.stop()

        assert 1 <= len(ticks) <= 6
        gaps = [b - a for a, b in zip(ticks, ticks[1:])]
        # Small tolerance for clock granularity.
        assert all(gap >= 0.018 for gap in gaps)

    @pytest.mark.asyncio
    async def test_first_tick_waits_one_interval(self):
        timer = HeartbeatTimer()
        ticks = []

        async def tick():
            ticks.append(1)

        timer.start(200, tick)
        await asyncio.sleep(0.02)
        timer.stop()
        assert ticks == []

    @pytest.mark.asyncio
    async def test_tick_errors_do_not_stop_timer(self):
        timer = HeartbeatTimer(enforce_ack=False)
        calls = []

        async def tick():
            calls.append(1)
            raise RuntimeError("send failed")

        timer.start(10, tick)
        await asyncio.sleep(0.06)
        assert timer.running is True
        timer.stop()
        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_from_inside_tick(self):
        timer = HeartbeatTimer()
        calls = []

        async def tick():
            calls.append(1)
            timer.stop()
            await asyncio.sleep(0)

        timer.start(10, tick)
        await asyncio.sleep(0.06)
        assert calls == [1]
        assert timer.running is False


class TestAckWatchdog:
    @pytest.mark.asyncio
    async def test_missed_ack_triggers_callback(self):
        missed = asyncio.Event()

        async def on_missed():
            missed.set()

        timer = HeartbeatTimer(enforce_ack=True, on_missed_ack=on_missed)
        beats = []

        async def tick():
            beats.append(1)
            timer.sent()

        timer.start(10, tick)
        await asyncio.wait_for(missed.wait(), timeout=1.0)
        assert beats == [1]
        assert timer.running is False
        assert timer.acknowledged is False

    @pytest.mark.asyncio
    async def test_acked_beats_keep_running(self):
        missed = []

        async def on_missed():
            missed.append(1)

        timer = HeartbeatTimer(enforce_ack=True, on_missed_ack=on_missed)
        beats = []

        async def tick():
            beats.append(1)
            timer.sent()
            timer.ack()

        timer.start(10, tick)
        await asyncio.sleep(0.08)
        timer.stop()
        assert missed == []
        assert len(beats) >= 3

    @pytest.mark.asyncio
    async def test_watchdog_disabled(self):
        missed = []

        async def on_missed():
            missed.append(1)

        timer = HeartbeatTimer(enforce_ack=False, on_missed_ack=on_missed)

        async def tick():
            timer.sent()

        timer.start(10, tick)
        await asyncio.sleep(0.05)
        timer.stop()
        assert missed == []

    def test_ack_state_and_latency(self):
        timer = HeartbeatTimer()
        assert timer.acknowledged is True
        assert timer.latency_ms is None
        timer.sent()
        assert timer.acknowledged is False
        assert timer.beats_sent == 1
        timer.ack()
        assert timer.acknowledged is True
        assert timer.latency_ms is not None
        assert timer.latency_ms >= 0
