"""Bidirectional streaming HTTP transport.

Every outbound message is POSTed to the provider URL. The reply is either a
JSON body (a single message or a batch) or an event stream carrying the
response plus any notifications sent along the way. The ``Mcp-Session-Id``
header handed out with the ``initialize`` reply is echoed on every later
request, and an optional ``GET`` stream carries unsolicited notifications.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from httpx_sse import EventSource

from switchboard.enums import TransportKind
from switchboard.mcp import messages
from switchboard.mcp.exceptions import ConnectError
from switchboard.mcp.transports.http import EVENT_STREAM, HTTPTransport

log = structlog.get_logger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
PROTOCOL_HEADER = "MCP-Protocol-Version"


class StreamableHTTPTransport(HTTPTransport):
    """Transport for providers exposing the streamable HTTP protocol."""

    kind = TransportKind.STREAMABLE_HTTP

    def __init__(self, *args: Any, listen: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.listen = listen
        self.session_id: str | None = None

    async def _open(self) -> None:
        await self._build_client()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": f"application/json, {EVENT_STREAM}"}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        if self.protocol_version:
            headers[PROTOCOL_HEADER] = self.protocol_version
        return headers

    async def _write(self, message: dict[str, Any]) -> None:
        if self._client is None:
            raise ConnectError(self.name, "Not connected")
        request_id = message.get("id") if messages.is_request(message) else None

        try:
            async with self._client.stream("POST", self.url, json=message, headers=self._headers()) as response:
                if response.status_code == 404 and self.session_id:
                    raise self._lost("Session expired (HTTP 404)")
                self._check_status(response, "POST")

                session_id = response.headers.get(SESSION_HEADER)
                if session_id and session_id != self.session_id:
                    self.session_id = session_id
                    log.debug("mcp_session_id_assigned", provider=self.name, session_id=session_id)

                if response.status_code == 202:
                    return
                content_type = response.headers.get("content-type", "")
                if content_type.startswith(EVENT_STREAM):
                    async for event in EventSource(response).aiter_sse():
                        if event.event != "message":
                            continue
                        await self._handle_frame(event.data)
                        if self.closed.is_set() or self._answered(request_id):
                            return
                else:
                    body = await response.aread()
                    if body.strip():
                        await self._handle_frame(body)
        except httpx.HTTPError as e:
            raise self._lost(f"POST failed: {e}") from e

    def _answered(self, request_id: Any) -> bool:
        pending = self._pending.get(request_id) if request_id is not None else None
        return pending is None or pending.future.done()

    async def on_initialized(self) -> None:
        if self.listen:
            self._spawn(self._listen(), "mcp-http-listen")

    async def _listen(self) -> None:
        """Consume the optional standalone GET stream for notifications.

        A provider without one answers 405. Losing an established stream
        closes the channel.
        """
        assert self._client is not None
        headers = self._headers()
        headers["Accept"] = EVENT_STREAM
        try:
            async with self._client.stream("GET", self.url, headers=headers) as response:
                if response.status_code == 405:
                    log.debug("mcp_listen_stream_unsupported", provider=self.name)
                    return
                content_type = response.headers.get("content-type", "")
                if response.status_code >= 400 or not content_type.startswith(EVENT_STREAM):
                    log.warning("mcp_listen_stream_rejected", provider=self.name, status=response.status_code)
                    return
                async for event in EventSource(response).aiter_sse():
                    if event.event == "message":
                        await self._handle_frame(event.data)
                        if self.closed.is_set():
                            return
            log.debug("mcp_listen_stream_ended", provider=self.name)
        except httpx.HTTPError as e:
            self._mark_closed(ConnectError(self.name, f"Listen stream lost: {e}"))

    async def _shutdown(self) -> None:
        await self._cancel_tasks()
        if self._client is not None and self.session_id:
            try:
                await self._client.delete(self.url, headers=self._headers())
            except httpx.HTTPError as e:
                log.debug("mcp_session_delete_failed", provider=self.name, error=str(e))
        self.session_id = None
        await self._close_client()
