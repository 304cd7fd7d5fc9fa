"""
Gateway test fixtures built on the fakes in gateway_fakes.py.
"""

from __future__ import annotations

import asyncio

import pytest

from gateway.session_manager import GatewaySessionManager
from gateway.state import SessionState
from gateway_fakes import TOKEN, FakeConnector, FakeResolver


@pytest.fixture
def make_manager():
    """Factory: returns (manager, connector, resolver) wired to fakes."""

    def _make(**kwargs):
        resolver = kwargs.pop("resolver", None) or FakeResolver()
        connector = kwargs.pop("connector", None) or FakeConnector()
        state = kwargs.pop("state", None) or SessionState(
            token=TOKEN, status="online", custom_status="24/7 Online"
        )
        manager = GatewaySessionManager(state, resolver, connector=connector, **kwargs)
        return manager, connector, resolver

    return _make


@pytest.fixture
def wait_until():
    """Poll a predicate on the running loop until it holds or a timeout hits."""

    async def _wait(predicate, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait

