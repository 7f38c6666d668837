"""Exception hierarchy for MCP connections and tool invocation.

Transport-level failures (``OSError``, ``httpx.HTTPError``, malformed JSON)
are translated into this taxonomy at the transport boundary so callers only
ever see the classes below.

Exception Hierarchy:
    MCPError (base)
    ├── ToolNotFoundError - Tool name not in the catalog
    ├── InvalidTransitionError - Illegal session state change
    └── MCPProviderError - Errors tied to one provider
        ├── ConnectError - Spawn/handshake failure (retried with backoff)
        ├── ProtocolError - Malformed message (connection torn down)
        ├── CallTimeoutError - No response within the call budget
        ├── OwnerUnavailableError - Owning session is not ready
        └── ProviderError - JSON-RPC error returned by the provider
"""

from __future__ import annotations

from typing import Any


class MCPError(Exception):
    """Base exception for all MCP-related errors."""

    pass


class ToolNotFoundError(MCPError):
    """Tool name is not present in the flat catalog.

    Attributes:
        tool_name: The name that failed to resolve.
    """

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Unknown tool '{tool_name}'")


class InvalidTransitionError(MCPError):
    """A session was asked to move along an edge the state machine lacks."""

    def __init__(self, provider_name: str, current: str, target: str) -> None:
        self.provider_name = provider_name
        self.current = current
        self.target = target
        super().__init__(f"MCP provider '{provider_name}': invalid transition {current} -> {target}")


class MCPProviderError(MCPError):
    """Errors tied to a single provider.

    Attributes:
        provider_name: The name of the provider that encountered the error.
    """

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"MCP provider '{provider_name}': {message}")


class ConnectError(MCPProviderError):
    """Process spawn, HTTP connect, or MCP handshake failure."""

    pass


class ProtocolError(MCPProviderError):
    """Malformed JSON-RPC traffic from the provider."""

    pass


class CallTimeoutError(MCPProviderError):
    """Request did not receive a response within its timeout.

    Attributes:
        request_id: Correlation id of the abandoned request.
    """

    def __init__(self, provider_name: str, message: str, request_id: int | None = None) -> None:
        self.request_id = request_id
        super().__init__(provider_name, message)


class OwnerUnavailableError(MCPProviderError):
    """The session owning a tool is not in the READY state."""

    pass


class ProviderError(MCPProviderError):
    """JSON-RPC error object returned by the provider.

    Attributes:
        code: JSON-RPC error code.
        data: Optional ``data`` member of the error object.
    """

    def __init__(self, provider_name: str, code: int | str, message: str, data: Any = None) -> None:
        self.code = code
        self.data = data
        super().__init__(provider_name, f"[{code}] {message}")
