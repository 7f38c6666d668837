"""MCP (Model Context Protocol) connection management for switchboard.

This package keeps one session per configured MCP provider alive, merges
the tools they advertise into a single flat catalog, and routes tool calls
back to the provider that owns each tool.

Modules:
    transports: Stdio, SSE and streamable HTTP adapters.
    session: Per-provider session and its state machine.
    registry: Session registry and the flat tool catalog.
    supervisor: Connect, reconnect, enable/disable and config diffing.
    router: Tool invocation with timeouts and output limits.
    exceptions: Exception hierarchy for MCP operations.

Example:
    Connecting providers and calling a tool::

        from switchboard.config import SwitchboardSettings
        from switchboard.mcp import ConnectionSupervisor, ToolRouter

        settings = SwitchboardSettings.load("~/.config/switchboard/settings.json")

        async with ConnectionSupervisor(settings.policy) as supervisor:
            await supervisor.apply(settings.providers)
            await supervisor.wait_ready(timeout=30)

            router = ToolRouter(supervisor.registry, settings.policy)
            for tool in router.get_available_tools():
                print(f"{tool.name} ({tool.provider})")
"""

from switchboard.mcp.exceptions import (
    CallTimeoutError,
    ConnectError,
    InvalidTransitionError,
    MCPError,
    MCPProviderError,
    OwnerUnavailableError,
    ProtocolError,
    ProviderError,
    ToolNotFoundError,
)
from switchboard.mcp.models import StateChange, ToolDescriptor, ToolResult
from switchboard.mcp.registry import SessionRegistry
from switchboard.mcp.router import ToolRouter, render_content, truncate_output
from switchboard.mcp.session import Session, is_valid_transition
from switchboard.mcp.supervisor import ConnectionSupervisor

__all__ = [
    # Lifecycle
    "ConnectionSupervisor",
    "Session",
    "SessionRegistry",
    "is_valid_transition",
    # Invocation
    "ToolRouter",
    "render_content",
    "truncate_output",
    # Models
    "StateChange",
    "ToolDescriptor",
    "ToolResult",
    # Exceptions
    "MCPError",
    "MCPProviderError",
    "ToolNotFoundError",
    "InvalidTransitionError",
    "ConnectError",
    "ProtocolError",
    "CallTimeoutError",
    "OwnerUnavailableError",
    "ProviderError",
]
