"""Value objects shared by the registry, router and supervisor."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from switchboard.enums import DisabledReason, SessionState


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """A tool advertised by a provider.

    Attributes:
        name: Tool name as advertised (and as exposed in the catalog).
        description: Human-readable description for the model.
        input_schema: JSON Schema of the tool arguments.
        provider: Name of the owning session, resolved through the registry.
    """

    name: str
    description: str
    input_schema: dict[str, Any]
    provider: str

    @classmethod
    def from_mcp(cls, provider: str, tool: dict[str, Any]) -> ToolDescriptor:
        """Build a descriptor from one entry of a ``tools/list`` result."""
        schema = tool.get("inputSchema") or {"type": "object", "properties": {}}
        return cls(
            name=tool["name"],
            description=tool.get("description") or "",
            input_schema=schema,
            provider=provider,
        )

    def to_openai(self) -> dict[str, Any]:
        """Render as an OpenAI-compatible function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Normalized outcome of a tool call.

    Attributes:
        tool_name: The invoked tool.
        provider: Provider that served the call.
        content: Text rendering of the result content blocks.
        is_error: The provider flagged the result as a tool-level error.
        truncated: Content was cut to the configured output limit.
        original_size: Size in bytes of the content before truncation.
    """

    tool_name: str
    provider: str
    content: str
    is_error: bool = False
    truncated: bool = False
    original_size: int = 0


@dataclass(frozen=True, slots=True)
class StateChange:
    """Event published whenever a session changes state."""

    provider: str
    previous: SessionState
    current: SessionState
    retry_count: int = 0
    error: str | None = None
    disabled_reason: DisabledReason | None = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
