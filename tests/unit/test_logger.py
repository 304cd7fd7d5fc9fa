"""
tests/unit/test_logger.py — Structured Logging Tests
"""

from __future__ import annotations

import json

import pytest

from gateway.protocol import Opcode
from gateway_fakes import hello, ready
from observability.logger import get_logger, setup_logging


def _records(log_dir):
    lines = (log_dir / "stayonline.log").read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines if line.strip()]


def test_file_receives_json_lines(tmp_path):
    setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
    get_logger("tests.logger").info("sample.event", value=3)

    record = _records(tmp_path)[-1]
    assert record["event"] == "sample.event"
    assert record["value"] == 3
    assert record["level"] == "info"
    assert record["logger"] == "tests.logger"
    assert "timestamp" in record


def test_level_filters_file_output(tmp_path):
    setup_logging(level="WARNING", log_dir=tmp_path, console_output=False)
    log = get_logger("tests.logger")
    log.info("sample.quiet")
    log.warning("sample.loud")

    events = [r["event"] for r in _records(tmp_path)]
    assert "sample.quiet" not in events
    assert "sample.loud" in events


def test_initial_values_bound(tmp_path):
    setup_logging(level="INFO", log_dir=tmp_path, console_output=False)
    get_logger("tests.logger", component="heartbeat").info("sample.bound")

    record = _records(tmp_path)[-1]
    assert record["component"] == "heartbeat"


@pytest.mark.asyncio
async def test_heartbeat_lines_carry_session(tmp_path, make_manager, wait_until):
    setup_logging(level="DEBUG", log_dir=tmp_path, console_output=False)
    manager, connector, _ = make_manager(enforce_heartbeat_ack=False)
    await manager.connect()
    await manager.handle_message(json.dumps(hello(20)))
    await manager.handle_message(json.dumps(ready(session_id="abc")))
    ws = connector.latest
    await wait_until(lambda: len(ws.frames(Opcode.HEARTBEAT)) >= 1)
    await manager.shutdown()

    records = _records(tmp_path)
    beats = [r for r in records if r["event"] == "gateway.heartbeat_sent"]
    assert beats
    assert all(r["session_id"] == "abc" for r in beats)
    assert all(r["connection"] == 1 for r in beats)

    stopped = [r for r in records if r["event"] == "heartbeat.stopped"]
    assert stopped[-1]["session_id"] == "abc"
