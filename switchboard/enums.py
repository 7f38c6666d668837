"""Enumerations for switchboard transports and session states."""

from enum import Enum


class TransportKind(str, Enum):
    """Ways of reaching an MCP tool provider.

    - stdio: local child process speaking JSON-RPC over stdin/stdout
    - sse: server-push event stream, outbound messages via HTTP POST
    - streamable-http: bidirectional streaming HTTP on a single endpoint
    """

    STDIO = "stdio"
    SSE = "sse"
    STREAMABLE_HTTP = "streamable-http"

    def __str__(self) -> str:
        return self.value


class SessionState(str, Enum):
    """Connection states of a provider session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    RECONNECTING = "reconnecting"
    DISABLED = "disabled"
    CLOSED = "closed"

    def __str__(self) -> str:
        return self.value


class DisabledReason(str, Enum):
    """Why a session sits in the DISABLED state."""

    USER = "user"
    FAILURE = "failure"

    def __str__(self) -> str:
        return self.value
