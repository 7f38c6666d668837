"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from switchboard.config.providers import ConnectionPolicy, ProviderConfig
from switchboard.enums import TransportKind
from switchboard.mcp import messages
from switchboard.mcp.exceptions import ConnectError
from switchboard.mcp.transports.base import Transport


def make_tool(name: str, description: str = "") -> dict[str, Any]:
    """Create a ``tools/list`` entry."""
    return {
        "name": name,
        "description": description or f"{name} tool",
        "inputSchema": {"type": "object", "properties": {}},
    }


def stdio_config(name: str, **overrides: Any) -> ProviderConfig:
    """Create a stdio ProviderConfig for testing."""
    fields: dict[str, Any] = {"name": name, "command": "mcp-server", "args": (name,)}
    fields.update(overrides)
    return ProviderConfig(**fields)


class FakeTransport(Transport):
    """In-memory transport answering like a well-behaved MCP provider.

    Attributes:
        tools: Tools returned by ``tools/list``.
        fail_connect: Raise ConnectError from ``connect``.
        answer_calls: When False, ``tools/call`` requests are never answered.
        answer_pings: When False, ``ping`` requests are never answered.
        call_results: Results keyed by tool name for ``tools/call``.
        sent: Every message written by the client.
    """

    kind = TransportKind.STDIO

    def __init__(
        self,
        name: str,
        *,
        tools: list[dict[str, Any]] | None = None,
        fail_connect: bool = False,
        answer_calls: bool = True,
        answer_pings: bool = True,
        call_results: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(name)
        self.tools = tools if tools is not None else [make_tool(f"{name}_tool")]
        self.fail_connect = fail_connect
        self.answer_calls = answer_calls
        self.answer_pings = answer_pings
        self.call_results = call_results or {}
        self.sent: list[dict[str, Any]] = []
        self.shutdown_count = 0

    async def _open(self) -> None:
        if self.fail_connect:
            raise ConnectError(self.name, "Connection refused")

    async def _write(self, message: dict[str, Any]) -> None:
        self.sent.append(message)
        if not messages.is_request(message):
            return
        result = self._reply(message["method"], message.get("params") or {})
        if result is not None:
            await self._handle_frame(messages.encode(messages.build_result(message["id"], result)))

    def _reply(self, method: str, params: dict[str, Any]) -> dict[str, Any] | None:
        if method == "initialize":
            return {
                "protocolVersion": messages.PROTOCOL_VERSION,
                "serverInfo": {"name": self.name, "version": "1.0"},
                "capabilities": {"tools": {"listChanged": True}},
            }
        if method == "tools/list":
            return {"tools": self.tools}
        if method == "tools/call":
            if not self.answer_calls:
                return None
            default = {"content": [{"type": "text", "text": f"{params['name']} ok"}]}
            return self.call_results.get(params["name"], default)
        if method == "ping":
            return {} if self.answer_pings else None
        return None

    async def _shutdown(self) -> None:
        self.shutdown_count += 1
        await self._cancel_tasks()

    def drop(self, reason: str = "Provider exited with code 1") -> None:
        """Simulate the provider going away."""
        self._mark_closed(ConnectError(self.name, reason))

    def sent_methods(self) -> list[str]:
        return [m["method"] for m in self.sent if "method" in m]


class TransportFactory:
    """Transport factory recording every transport it creates.

    Per-provider behavior is set through ``options``; ``failures`` counts
    down the number of connect attempts that should fail.
    """

    def __init__(self) -> None:
        self.options: dict[str, dict[str, Any]] = {}
        self.failures: dict[str, int] = {}
        self.created: dict[str, list[FakeTransport]] = {}

    def __call__(self, config: ProviderConfig) -> FakeTransport:
        options = dict(self.options.get(config.name, {}))
        remaining = self.failures.get(config.name, 0)
        if remaining:
            self.failures[config.name] = remaining - 1
            options["fail_connect"] = True
        transport = FakeTransport(config.name, **options)
        self.created.setdefault(config.name, []).append(transport)
        return transport

    def latest(self, name: str) -> FakeTransport:
        return self.created[name][-1]


@pytest.fixture
def fast_policy() -> ConnectionPolicy:
    """Connection policy with near-zero backoff."""
    return ConnectionPolicy(
        max_retries=5,
        backoff_base=0.001,
        backoff_max=0.005,
        jitter=0.0,
        connect_timeout=2.0,
        call_timeout=2.0,
    )


@pytest.fixture
def transport_factory() -> TransportFactory:
    return TransportFactory()
