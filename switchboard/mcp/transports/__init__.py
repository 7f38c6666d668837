"""Transport adapters for reaching MCP providers.

All transports share the ``Transport`` contract: ``connect``, ``send``
(returns the correlated result), ``notify``, ``on_message`` and ``close``.
"""

from __future__ import annotations

import httpx

from switchboard.config.providers import ProviderConfig
from switchboard.enums import TransportKind
from switchboard.mcp.transports.base import PendingCall, Transport
from switchboard.mcp.transports.http import HTTPTransport, TokenProvider
from switchboard.mcp.transports.resolve import resolve_command
from switchboard.mcp.transports.sse import SSETransport
from switchboard.mcp.transports.stdio import StdioTransport
from switchboard.mcp.transports.streamable_http import StreamableHTTPTransport


def create_transport(
    config: ProviderConfig,
    *,
    token_provider: TokenProvider | None = None,
    connect_timeout: float = 30.0,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Transport:
    """Build the transport matching ``config.transport``.

    Args:
        config: Provider definition.
        token_provider: Coroutine function returning a bearer token; called
            by the HTTP transports before every connect.
        connect_timeout: HTTP connect timeout in seconds.
        http_transport: Optional httpx transport (used by tests).
    """
    if config.transport is TransportKind.STDIO:
        return StdioTransport(config)
    if config.transport is TransportKind.SSE:
        return SSETransport(
            config,
            token_provider=token_provider,
            connect_timeout=connect_timeout,
            http_transport=http_transport,
        )
    return StreamableHTTPTransport(
        config,
        token_provider=token_provider,
        connect_timeout=connect_timeout,
        http_transport=http_transport,
    )


__all__ = [
    "HTTPTransport",
    "PendingCall",
    "SSETransport",
    "StdioTransport",
    "StreamableHTTPTransport",
    "TokenProvider",
    "Transport",
    "create_transport",
    "resolve_command",
]
