"""
tests/unit/test_resolver.py — Endpoint Resolver Tests

The discovery endpoint is served by httpx.MockTransport; nothing leaves
the process.
"""

from __future__ import annotations

import httpx
import pytest

from exceptions import DiscoveryError
from gateway.resolver import EndpointResolver, gateway_url

DISCOVERY = "https://discovery.test/api/v9/gateway"


def _resolver(handler) -> EndpointResolver:
    return EndpointResolver(DISCOVERY, transport=httpx.MockTransport(handler))


class TestResolve:
    @pytest.mark.asyncio
    async def test_returns_url_field(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"url": "wss://gateway.discord.gg"})

        url = await _resolver(handler).resolve()
        assert url == "wss://gateway.discord.gg"
        assert seen[0].method == "GET"
        assert str(seen[0].url) == DISCOVERY

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        resolver = _resolver(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(DiscoveryError, match="HTTP 503"):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(DiscoveryError, match="ConnectError"):
            await _resolver(handler).resolve()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        resolver = _resolver(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(DiscoveryError, match="invalid JSON"):
            await resolver.resolve()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [{}, {"url": ""}, {"url": 5}, ["wss://x"]])
    async def test_missing_url_field(self, body):
        resolver = _resolver(lambda request: httpx.Response(200, json=body))
        with pytest.raises(DiscoveryError, match="no 'url'"):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_error_names_discovery_url(self):
        resolver = _resolver(lambda request: httpx.Response(500))
        with pytest.raises(DiscoveryError) as exc_info:
            await resolver.resolve()
        assert exc_info.value.url == DISCOVERY


class TestGatewayUrl:
    def test_appends_version_and_encoding(self):
        assert gateway_url("wss://gateway.discord.gg") == "wss://gateway.discord.gg?v=9&encoding=json"

    def test_keeps_path(self):
        assert gateway_url("wss://gw.test/socket/", 10, "json") == "wss://gw.test/socket/?v=10&encoding=json"

    def test_replaces_existing_params(self):
        url = gateway_url("wss://gw.test?v=6&compress=zlib-stream")
        assert url == "wss://gw.test?v=9&compress=zlib-stream&encoding=json"
