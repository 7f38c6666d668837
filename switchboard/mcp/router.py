"""Tool invocation routing.

The ToolRouter is the only entry point the completion loop uses to run
tools. It resolves the owning session through the registry, fails fast when
that session is not READY, dispatches ``tools/call`` under a per-call
timeout, and normalizes the result into a bounded text ``ToolResult``.
"""

from __future__ import annotations

import json
from typing import Any

import structlog

from switchboard.config.providers import ConnectionPolicy
from switchboard.enums import SessionState
from switchboard.mcp.exceptions import OwnerUnavailableError
from switchboard.mcp.models import ToolDescriptor, ToolResult
from switchboard.mcp.registry import SessionRegistry

log = structlog.get_logger(__name__)

TRUNCATION_MARKER = "\n\n[output truncated: {shown} of {total} bytes shown]"


def render_content(result: dict[str, Any]) -> str:
    """Flatten MCP content blocks into text.

    Text blocks are joined with newlines; other block types are rendered
    as compact JSON, with image payloads summarized instead of inlined.
    """
    blocks = result.get("content")
    if blocks is None:
        structured = result.get("structuredContent")
        return json.dumps(structured, separators=(",", ":")) if structured is not None else ""
    if not isinstance(blocks, list):
        return str(blocks)

    parts: list[str] = []
    for block in blocks:
        if not isinstance(block, dict):
            parts.append(json.dumps(block, separators=(",", ":")))
            continue
        kind = block.get("type")
        if kind == "text":
            parts.append(str(block.get("text", "")))
        elif kind in ("image", "audio"):
            data = block.get("data") or ""
            parts.append(f"[{kind}: {block.get('mimeType', 'unknown')}, {len(data)} base64 chars]")
        elif kind == "resource" and isinstance(block.get("resource"), dict) and "text" in block["resource"]:
            parts.append(str(block["resource"]["text"]))
        else:
            parts.append(json.dumps(block, separators=(",", ":")))
    return "\n".join(parts)


def truncate_output(text: str, limit: int) -> tuple[str, bool, int]:
    """Bound ``text`` to ``limit`` UTF-8 bytes, marker included.

    Returns:
        Tuple of (text, truncated, original size in bytes).
    """
    encoded = text.encode("utf-8")
    total = len(encoded)
    if total <= limit:
        return text, False, total

    # Reserve room for the widest marker; the real one is never longer.
    reserve = len(TRUNCATION_MARKER.format(shown=limit, total=total).encode("utf-8"))
    head = encoded[: max(0, limit - reserve)].decode("utf-8", errors="ignore")
    shown = len(head.encode("utf-8"))
    return head + TRUNCATION_MARKER.format(shown=shown, total=total), True, total


class ToolRouter:
    """Dispatches tool calls to the provider that owns each tool.

    Example:
        >>> router = ToolRouter(supervisor.registry, settings.policy)
        >>> result = await router.invoke("fetch", {"url": "https://example.com"})
        >>> print(result.content)
    """

    def __init__(self, registry: SessionRegistry, policy: ConnectionPolicy | None = None) -> None:
        self.registry = registry
        self.policy = policy or ConnectionPolicy()

    def get_available_tools(self) -> list[ToolDescriptor]:
        """Snapshot of the flat catalog for the completion request."""
        return self.registry.list_tools()

    def to_openai_tools(self) -> list[dict[str, Any]]:
        """Catalog rendered as OpenAI-compatible function definitions."""
        return [tool.to_openai() for tool in self.get_available_tools()]

    async def invoke(
        self,
        tool_name: str,
        arguments: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> ToolResult:
        """Run a tool on its owning provider.

        Args:
            tool_name: Name from the flat catalog.
            arguments: Tool arguments (defaults to an empty object).
            timeout: Per-call timeout; ``policy.call_timeout`` when omitted.

        Returns:
            ToolResult with the rendered, size-bounded content.

        Raises:
            ToolNotFoundError: The name is not in the catalog.
            OwnerUnavailableError: The owning session is not READY.
            CallTimeoutError: No response within the timeout.
            ProviderError: The provider returned a JSON-RPC error.
            ProtocolError: The result was not an object; the connection is
                dropped and the session reconnects.
        """
        descriptor, session = self.registry.resolve(tool_name)
        if session.state is not SessionState.READY:
            raise OwnerUnavailableError(session.name, f"Session is {session.state.value}")

        call_timeout = timeout if timeout is not None else self.policy.call_timeout
        log.debug("tool_invoke", tool=tool_name, provider=session.name)
        result = await session.call_tool(descriptor.name, arguments or {}, timeout=call_timeout)

        content, truncated, size = truncate_output(render_content(result), self.policy.tool_output_limit)
        if truncated:
            log.info(
                "tool_output_truncated",
                tool=tool_name,
                provider=session.name,
                size=size,
                limit=self.policy.tool_output_limit,
            )
        is_error = bool(result.get("isError", False))
        if is_error:
            log.warning("tool_reported_error", tool=tool_name, provider=session.name)

        return ToolResult(
            tool_name=tool_name,
            provider=session.name,
            content=content,
            is_error=is_error,
            truncated=truncated,
            original_size=size,
        )
