"""
gateway/resolver.py — Gateway Endpoint Resolver

One HTTP GET against the discovery endpoint, returning the WebSocket URL
found in the `url` field of the JSON body. Retries are the caller's job.

Usage:
    resolver = EndpointResolver("https://discord.com/api/v9/gateway")
    base = await resolver.resolve()
    ws_url = gateway_url(base, version=9, encoding="json")
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

from exceptions import DiscoveryError
from observability.logger import get_logger

log = get_logger(__name__)

_HEADERS = {"Accept": "application/json", "User-Agent": "stayonline/1.0"}


class EndpointResolver:
    """
    Resolves the current gateway URL from a discovery endpoint.

    `transport` is passed straight to httpx.AsyncClient; tests supply an
    httpx.MockTransport.
    """

    def __init__(
        self,
        discovery_url: str,
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._discovery_url = discovery_url
        self._timeout = timeout_s
        self._transport = transport

    @property
    def discovery_url(self) -> str:
        return self._discovery_url

    async def resolve(self) -> str:
        """
        Fetch and return the gateway WebSocket URL.

        Raises:
            DiscoveryError: network failure, non-2xx status, invalid JSON,
                            or a body without a usable `url` field.
        """
        try:
            async with httpx.AsyncClient(
                headers=_HEADERS,
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.get(self._discovery_url)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                self._discovery_url, f"HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(self._discovery_url, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            # response.json() raises json.JSONDecodeError, a ValueError
            raise DiscoveryError(self._discovery_url, f"invalid JSON body: {e}") from e

        url = body.get("url") if isinstance(body, dict) else None
        if not isinstance(url, str) or not url.strip():
            raise DiscoveryError(self._discovery_url, "response has no 'url' field")

        log.debug("resolver.resolved", url=url)
        return url


def gateway_url(base: str, version: int = 9, encoding: str = "json") -> str:
    """Append the protocol version and encoding query parameters to `base`."""
    parts = urlsplit(base)
    query = dict(parse_qsl(parts.query))
    query.update({"v": str(version), "encoding": encoding})
    return urlunsplit(parts._replace(query=urlencode(query)))
