"""Server-push transport: long-lived event stream plus POSTed requests.

Connect opens ``GET <url>`` as ``text/event-stream``. The provider's first
``endpoint`` event names the URL outbound messages are POSTed to; every
later ``message`` event carries one JSON-RPC message.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog
from httpx_sse import EventSource, ServerSentEvent

from switchboard.enums import TransportKind
from switchboard.mcp.exceptions import ConnectError
from switchboard.mcp.transports.http import EVENT_STREAM, HTTPTransport

log = structlog.get_logger(__name__)


class SSETransport(HTTPTransport):
    """Transport for providers exposing the HTTP+SSE protocol."""

    kind = TransportKind.SSE

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.endpoint: str | None = None
        self._response: httpx.Response | None = None
        self._events: AsyncIterator[ServerSentEvent] | None = None

    async def _open(self) -> None:
        client = await self._build_client()
        request = client.build_request("GET", self.url, headers={"Accept": EVENT_STREAM})
        try:
            self._response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            raise ConnectError(self.name, f"Cannot open event stream: {e}") from e
        self._check_status(self._response, "Event stream")

        self._events = EventSource(self._response).aiter_sse()
        try:
            async for event in self._events:
                if event.event == "endpoint":
                    self.endpoint = self._resolve_endpoint(event.data.strip())
                    break
        except httpx.HTTPError as e:
            raise ConnectError(self.name, f"Event stream failed: {e}") from e
        if self.endpoint is None:
            raise ConnectError(self.name, "Event stream closed before announcing an endpoint")

        log.info("sse_endpoint_received", provider=self.name, endpoint=self.endpoint)
        self._spawn(self._read_events(), "mcp-sse")

    def _resolve_endpoint(self, announced: str) -> str:
        base = httpx.URL(self.url)
        endpoint = base.join(announced)
        if (endpoint.scheme, endpoint.host, endpoint.port) != (base.scheme, base.host, base.port):
            raise ConnectError(self.name, f"Endpoint {endpoint} is not on the origin of {self.url}")
        return str(endpoint)

    async def _read_events(self) -> None:
        assert self._events is not None
        try:
            async for event in self._events:
                if event.event == "message":
                    await self._handle_frame(event.data)
                    if self.closed.is_set():
                        return
        except httpx.HTTPError as e:
            self._mark_closed(ConnectError(self.name, f"Event stream lost: {e}"))
            return
        self._mark_closed(ConnectError(self.name, "Event stream ended"))

    async def _write(self, message: dict[str, Any]) -> None:
        if self._client is None or self.endpoint is None:
            raise ConnectError(self.name, "Not connected")
        try:
            response = await self._client.post(self.endpoint, json=message)
        except httpx.HTTPError as e:
            raise self._lost(f"POST failed: {e}") from e
        self._check_status(response, "POST")

    async def _shutdown(self) -> None:
        await self._cancel_tasks()
        response, self._response = self._response, None
        if response is not None:
            await response.aclose()
        self._events = None
        await self._close_client()
