"""Provider sessions and their connection state machine.

A Session is bound to one enabled ProviderConfig and exclusively owns at
most one transport at a time. Its state only moves along the edges in
``TRANSITIONS``; READY -> DISABLED is additionally restricted to explicit
user disables, so a healthy session is never disabled by failure without
first passing through RECONNECTING.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from switchboard.config.providers import ProviderConfig
from switchboard.enums import DisabledReason, SessionState
from switchboard.mcp import messages
from switchboard.mcp.exceptions import (
    ConnectError,
    InvalidTransitionError,
    MCPProviderError,
    OwnerUnavailableError,
    ProtocolError,
)
from switchboard.mcp.models import StateChange, ToolDescriptor
from switchboard.mcp.transports.base import Transport

log = structlog.get_logger(__name__)

S = SessionState

TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    S.IDLE: frozenset({S.CONNECTING, S.DISABLED, S.CLOSED}),
    S.CONNECTING: frozenset({S.READY, S.RECONNECTING, S.DISABLED, S.CLOSED}),
    S.READY: frozenset({S.RECONNECTING, S.DISABLED, S.CLOSED}),
    S.RECONNECTING: frozenset({S.CONNECTING, S.DISABLED, S.CLOSED}),
    S.DISABLED: frozenset({S.IDLE, S.CLOSED}),
    S.CLOSED: frozenset(),
}

TOOLS_CHANGED = "notifications/tools/list_changed"

TransportFactory = Callable[[ProviderConfig], Transport]
StateListener = Callable[[StateChange], None]


def is_valid_transition(
    current: SessionState,
    target: SessionState,
    reason: DisabledReason | None = None,
) -> bool:
    """Whether ``current -> target`` is an edge of the state machine."""
    if target not in TRANSITIONS[current]:
        return False
    if current is S.READY and target is S.DISABLED:
        return reason is DisabledReason.USER
    return True


class Session:
    """Runtime connection state for one provider.

    Attributes:
        config: The immutable provider definition.
        name: Provider name.
        position: Index in the configuration list (catalog ordering).
        state: Current connection state.
        tools: Last advertised tools, keyed by name.
        last_error: Most recent connection or protocol error.
        retry_count: Consecutive failed connect attempts.
        disabled_reason: Why the session is DISABLED, if it is.
        lock: Serializes supervisor operations on this session.
    """

    def __init__(self, config: ProviderConfig, *, position: int = 0) -> None:
        self.config = config
        self.name = config.name
        self.position = position
        self.state = SessionState.IDLE
        self.transport: Transport | None = None
        self.tools: dict[str, ToolDescriptor] = {}
        self.server_info: dict[str, Any] = {}
        self.capabilities: dict[str, Any] = {}
        self.last_error: str | None = None
        self.retry_count = 0
        self.disabled_reason: DisabledReason | None = None
        self.lock = asyncio.Lock()
        self.task: asyncio.Task[None] | None = None
        self.listener: StateListener | None = None
        self.on_tools_changed: Callable[[Session], None] | None = None

    def __repr__(self) -> str:
        return f"Session(name={self.name!r}, state={self.state.value})"

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self.transport is not None and self.transport.is_connected

    # === State machine ===

    def transition(
        self,
        target: SessionState,
        *,
        error: str | None = None,
        reason: DisabledReason | None = None,
    ) -> StateChange:
        """Move to ``target`` and publish the change.

        Raises:
            InvalidTransitionError: If the edge does not exist.
        """
        if not is_valid_transition(self.state, target, reason):
            raise InvalidTransitionError(self.name, self.state.value, target.value)

        previous = self.state
        self.state = target
        if target is SessionState.DISABLED:
            self.disabled_reason = reason or DisabledReason.USER
        elif target is SessionState.IDLE:
            self.disabled_reason = None

        change = StateChange(
            provider=self.name,
            previous=previous,
            current=target,
            retry_count=self.retry_count,
            error=error,
            disabled_reason=self.disabled_reason if target is SessionState.DISABLED else None,
        )
        log.info(
            "session_state_changed",
            provider=self.name,
            previous=previous.value,
            state=target.value,
            retry_count=self.retry_count,
            error=error,
        )
        if self.listener is not None:
            self.listener(change)
        return change

    # === Connection ===

    async def open(self, transport_factory: TransportFactory, *, timeout: float) -> None:
        """Connect, perform the MCP handshake and fetch the tool list.

        Any previous transport is released first, so the session never holds
        two connections.

        Raises:
            ConnectError: Connect or handshake failed or timed out.
            ProtocolError: The provider sent malformed data.
        """
        await self.release()
        try:
            transport = transport_factory(self.config)
        except Exception as e:
            raise ConnectError(self.name, f"Cannot create transport: {e}") from e
        self.transport = transport
        transport.on_message(self._on_notification)

        try:
            await asyncio.wait_for(self._handshake(transport, timeout), timeout=timeout)
        except TimeoutError:
            raise ConnectError(self.name, f"Handshake timed out after {timeout}s") from None
        except (ConnectError, ProtocolError):
            raise
        except MCPProviderError as e:
            raise ConnectError(self.name, f"Handshake failed: {e}") from e
        except OSError as e:
            raise ConnectError(self.name, f"Handshake failed: {e}") from e

    async def _handshake(self, transport: Transport, timeout: float) -> None:
        await transport.connect()
        result = await transport.send("initialize", messages.initialize_params(), timeout=timeout)
        if "protocolVersion" not in result:
            raise ProtocolError(self.name, "initialize result lacks protocolVersion")
        transport.protocol_version = str(result["protocolVersion"])
        self.server_info = result.get("serverInfo") or {}
        self.capabilities = result.get("capabilities") or {}
        await transport.notify("notifications/initialized")
        await transport.on_initialized()
        await self.refresh_tools(timeout=timeout)
        log.info(
            "session_initialized",
            provider=self.name,
            server=self.server_info.get("name"),
            protocol=transport.protocol_version,
            tools=len(self.tools),
        )

    async def refresh_tools(self, *, timeout: float) -> dict[str, ToolDescriptor]:
        """Query ``tools/list`` (following pagination) and store the result.

        Raises:
            ProtocolError: If the listing is malformed.
            OwnerUnavailableError: If there is no transport.
        """
        transport = self.transport
        if transport is None:
            raise OwnerUnavailableError(self.name, "No transport")

        tools: dict[str, ToolDescriptor] = {}
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else {}
            result = await transport.send("tools/list", params, timeout=timeout)
            listed = result.get("tools", [])
            if not isinstance(listed, list):
                raise ProtocolError(self.name, "tools/list result 'tools' must be a list")
            for raw in listed:
                if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
                    raise ProtocolError(self.name, f"Malformed tool entry: {raw!r}")
                descriptor = ToolDescriptor.from_mcp(self.name, raw)
                tools[descriptor.name] = descriptor
            cursor = result.get("nextCursor")
            if not cursor:
                break

        self.tools = tools
        return tools

    async def call_tool(self, tool_name: str, arguments: dict[str, Any], *, timeout: float) -> dict[str, Any]:
        """Dispatch ``tools/call`` through the owned transport."""
        if not self.is_ready or self.transport is None:
            raise OwnerUnavailableError(self.name, f"Session is {self.state.value}")
        return await self.transport.send(
            "tools/call",
            {"name": tool_name, "arguments": arguments},
            timeout=timeout,
        )

    async def ping(self, *, timeout: float) -> None:
        if self.transport is None:
            raise OwnerUnavailableError(self.name, "No transport")
        await self.transport.send("ping", None, timeout=timeout)

    async def release(self) -> None:
        """Close and drop the transport, if any."""
        transport, self.transport = self.transport, None
        if transport is not None:
            await transport.close()

    def _on_notification(self, message: dict[str, Any]) -> None:
        method = message.get("method")
        if method == TOOLS_CHANGED:
            log.info("provider_tools_changed", provider=self.name)
            if self.on_tools_changed is not None:
                self.on_tools_changed(self)
        elif method == "notifications/message":
            params = message.get("params") or {}
            log.info("provider_log", provider=self.name, level=params.get("level"), data=params.get("data"))
        else:
            log.debug("provider_notification", provider=self.name, method=method)

    def snapshot(self) -> dict[str, Any]:
        """Plain summary for status displays."""
        return {
            "name": self.name,
            "transport": self.config.transport.value,
            "state": self.state.value,
            "tools": sorted(self.tools),
            "retry_count": self.retry_count,
            "last_error": self.last_error,
            "disabled_reason": self.disabled_reason.value if self.disabled_reason else None,
        }
