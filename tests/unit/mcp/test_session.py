"""Unit tests for provider sessions and the state machine."""

from __future__ import annotations

import pytest
from conftest import FakeTransport, TransportFactory, make_tool, stdio_config

from switchboard.enums import DisabledReason, SessionState
from switchboard.mcp.exceptions import ConnectError, InvalidTransitionError, OwnerUnavailableError, ProtocolError
from switchboard.mcp.models import StateChange
from switchboard.mcp.session import TRANSITIONS, Session, is_valid_transition

S = SessionState


class TestTransitions:
    """Tests for the transition table."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.IDLE, S.CONNECTING),
            (S.CONNECTING, S.READY),
            (S.CONNECTING, S.RECONNECTING),
            (S.READY, S.RECONNECTING),
            (S.RECONNECTING, S.CONNECTING),
            (S.RECONNECTING, S.DISABLED),
            (S.DISABLED, S.IDLE),
            (S.READY, S.CLOSED),
        ],
    )
    def test_valid_edges(self, current: SessionState, target: SessionState) -> None:
        assert is_valid_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (S.IDLE, S.READY),
            (S.DISABLED, S.CONNECTING),
            (S.READY, S.CONNECTING),
            (S.CLOSED, S.IDLE),
        ],
    )
    def test_invalid_edges(self, current: SessionState, target: SessionState) -> None:
        assert not is_valid_transition(current, target)

    def test_closed_is_terminal(self) -> None:
        assert TRANSITIONS[S.CLOSED] == frozenset()

    def test_ready_to_disabled_requires_user(self) -> None:
        """A healthy session can only be disabled explicitly."""
        assert is_valid_transition(S.READY, S.DISABLED, DisabledReason.USER)
        assert not is_valid_transition(S.READY, S.DISABLED, DisabledReason.FAILURE)
        assert not is_valid_transition(S.READY, S.DISABLED)

    def test_transition_publishes_change(self) -> None:
        """transition should update state and call the listener."""
        session = Session(stdio_config("alpha"))
        changes: list[StateChange] = []
        session.listener = changes.append

        session.transition(S.CONNECTING)
        session.transition(S.DISABLED, error="boom", reason=DisabledReason.FAILURE)

        assert session.state is S.DISABLED
        assert session.disabled_reason is DisabledReason.FAILURE
        assert [(c.previous, c.current) for c in changes] == [(S.IDLE, S.CONNECTING), (S.CONNECTING, S.DISABLED)]
        assert changes[-1].error == "boom"
        assert changes[-1].disabled_reason is DisabledReason.FAILURE

    def test_invalid_transition_raises(self) -> None:
        session = Session(stdio_config("alpha"))

        with pytest.raises(InvalidTransitionError):
            session.transition(S.READY)
        assert session.state is S.IDLE

    def test_idle_clears_disabled_reason(self) -> None:
        session = Session(stdio_config("alpha"))
        session.transition(S.DISABLED, reason=DisabledReason.USER)

        session.transition(S.IDLE)

        assert session.disabled_reason is None


class TestOpen:
    """Tests for connect, handshake and tool discovery."""

    @pytest.mark.asyncio
    async def test_handshake_sequence(self, transport_factory: TransportFactory) -> None:
        """open should initialize, notify and list tools in order."""
        session = Session(stdio_config("alpha"))

        await session.open(transport_factory, timeout=1.0)
        transport = transport_factory.latest("alpha")

        assert transport.sent_methods() == ["initialize", "notifications/initialized", "tools/list"]
        assert transport.sent[0]["params"]["protocolVersion"] == "2025-03-26"
        assert list(session.tools) == ["alpha_tool"]
        assert session.tools["alpha_tool"].provider == "alpha"
        assert session.server_info["name"] == "alpha"
        assert transport.protocol_version == "2025-03-26"

    @pytest.mark.asyncio
    async def test_paginated_tool_listing(self) -> None:
        """tools/list pages should be followed through nextCursor."""

        class PagedTransport(FakeTransport):
            def _reply(self, method: str, params: dict) -> dict | None:
                if method == "tools/list":
                    if params.get("cursor") == "page-2":
                        return {"tools": [make_tool("b")]}
                    return {"tools": [make_tool("a")], "nextCursor": "page-2"}
                return super()._reply(method, params)

        session = Session(stdio_config("alpha"))

        await session.open(lambda config: PagedTransport(config.name), timeout=1.0)

        assert sorted(session.tools) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_malformed_tool_entry_is_protocol_error(self, transport_factory: TransportFactory) -> None:
        transport_factory.options["alpha"] = {"tools": [{"description": "no name"}]}
        session = Session(stdio_config("alpha"))

        with pytest.raises(ProtocolError):
            await session.open(transport_factory, timeout=1.0)

    @pytest.mark.asyncio
    async def test_connect_failure(self, transport_factory: TransportFactory) -> None:
        transport_factory.failures["alpha"] = 1
        session = Session(stdio_config("alpha"))

        with pytest.raises(ConnectError, match="Connection refused"):
            await session.open(transport_factory, timeout=1.0)

    @pytest.mark.asyncio
    async def test_handshake_timeout(self) -> None:
        """An unanswered initialize should fail as ConnectError."""

        class SilentTransport(FakeTransport):
            def _reply(self, method: str, params: dict) -> dict | None:
                return None

        session = Session(stdio_config("alpha"))

        with pytest.raises(ConnectError):
            await session.open(lambda config: SilentTransport(config.name), timeout=0.05)

    @pytest.mark.asyncio
    async def test_reopen_releases_previous_transport(self, transport_factory: TransportFactory) -> None:
        """A session should never hold two transports."""
        session = Session(stdio_config("alpha"))

        await session.open(transport_factory, timeout=1.0)
        first = transport_factory.latest("alpha")
        await session.open(transport_factory, timeout=1.0)

        assert first.shutdown_count == 1
        assert session.transport is transport_factory.latest("alpha")


class TestCalls:
    """Tests for tool calls and notifications."""

    @pytest.mark.asyncio
    async def test_call_requires_ready(self, transport_factory: TransportFactory) -> None:
        session = Session(stdio_config("alpha"))
        await session.open(transport_factory, timeout=1.0)

        with pytest.raises(OwnerUnavailableError):
            await session.call_tool("alpha_tool", {}, timeout=1.0)

    @pytest.mark.asyncio
    async def test_call_dispatches_tools_call(self, transport_factory: TransportFactory) -> None:
        session = Session(stdio_config("alpha"))
        await session.open(transport_factory, timeout=1.0)
        session.transition(S.CONNECTING)
        session.transition(S.READY)

        result = await session.call_tool("alpha_tool", {"q": 1}, timeout=1.0)

        assert result == {"content": [{"type": "text", "text": "alpha_tool ok"}]}
        assert transport_factory.latest("alpha").sent[-1]["params"] == {"name": "alpha_tool", "arguments": {"q": 1}}

    @pytest.mark.asyncio
    async def test_list_changed_notification_triggers_callback(self, transport_factory: TransportFactory) -> None:
        session = Session(stdio_config("alpha"))
        refreshed: list[Session] = []
        session.on_tools_changed = refreshed.append
        await session.open(transport_factory, timeout=1.0)

        await transport_factory.latest("alpha")._handle_frame(
            '{"jsonrpc":"2.0","method":"notifications/tools/list_changed"}'
        )

        assert refreshed == [session]

    @pytest.mark.asyncio
    async def test_snapshot(self, transport_factory: TransportFactory) -> None:
        session = Session(stdio_config("alpha"))
        await session.open(transport_factory, timeout=1.0)

        snapshot = session.snapshot()

        assert snapshot["name"] == "alpha"
        assert snapshot["transport"] == "stdio"
        assert snapshot["tools"] == ["alpha_tool"]
        assert snapshot["disabled_reason"] is None
