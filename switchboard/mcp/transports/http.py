"""Shared pieces of the HTTP-based transports.

Both HTTP transports use one ``httpx.AsyncClient`` per connection, ask the
token provider for a fresh bearer token on every connect, and read
``text/event-stream`` bodies through ``httpx_sse``.

Once the channel is established, a request that cannot reach the provider
(a transport error, HTTP 401 or any 5xx) closes the channel, so the
supervisor sees the loss of liveness and reconnects.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import httpx

from switchboard.config.providers import ProviderConfig
from switchboard.exceptions import AuthorizationError
from switchboard.mcp.exceptions import ConnectError
from switchboard.mcp.transports.base import Transport

TokenProvider = Callable[[], Awaitable[str]]

EVENT_STREAM = "text/event-stream"


class HTTPTransport(Transport):
    """Base for transports that reach the provider through a URL."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        token_provider: TokenProvider | None = None,
        connect_timeout: float = 30.0,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config.name)
        self.config = config
        self.url = config.url or ""
        self.connect_timeout = connect_timeout
        self._token_provider = token_provider
        self._http_transport = http_transport
        self._client: httpx.AsyncClient | None = None

    async def _build_client(self) -> httpx.AsyncClient:
        headers = dict(self.config.headers)
        if self._token_provider is not None:
            try:
                token = await self._token_provider()
            except AuthorizationError as e:
                raise ConnectError(self.name, e.message) from e
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=httpx.Timeout(self.connect_timeout, read=None),
            transport=self._http_transport,
        )
        return self._client

    def _check_status(self, response: httpx.Response, action: str) -> None:
        status = response.status_code
        if status == 401:
            raise self._lost(f"{action}: unauthorized (HTTP 401)")
        if status >= 500:
            raise self._lost(f"{action}: HTTP {status}")
        if status >= 400:
            raise ConnectError(self.name, f"{action}: HTTP {status}")

    def _lost(self, reason: str) -> ConnectError:
        """Build the error for an unreachable provider, closing an established channel with it."""
        error = ConnectError(self.name, reason)
        if self._connected:
            self._mark_closed(error)
        return error

    async def _close_client(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()
