"""Unit tests for MCP exception hierarchy."""

from __future__ import annotations

import pytest

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


class TestExceptionHierarchy:
    """Tests for the exception class hierarchy."""

    def test_mcp_error_is_base_exception(self) -> None:
        """MCPError should be the base for all MCP exceptions."""
        assert issubclass(ToolNotFoundError, MCPError)
        assert issubclass(InvalidTransitionError, MCPError)
        assert issubclass(MCPProviderError, MCPError)

    @pytest.mark.parametrize(
        "exc_class",
        [ConnectError, ProtocolError, CallTimeoutError, OwnerUnavailableError, ProviderError],
    )
    def test_provider_error_subclasses(self, exc_class: type[Exception]) -> None:
        """Errors tied to one provider should be catchable as MCPProviderError."""
        assert issubclass(exc_class, MCPProviderError)

    def test_tool_not_found_is_not_provider_error(self) -> None:
        assert not issubclass(ToolNotFoundError, MCPProviderError)


class TestMessages:
    """Tests for exception messages and context attributes."""

    def test_provider_error_names_provider(self) -> None:
        error = ConnectError("files", "Command not found: mcp-files")

        assert error.provider_name == "files"
        assert str(error) == "MCP provider 'files': Command not found: mcp-files"

    def test_tool_not_found(self) -> None:
        error = ToolNotFoundError("search")

        assert error.tool_name == "search"
        assert str(error) == "Unknown tool 'search'"

    def test_provider_error_carries_code_and_data(self) -> None:
        error = ProviderError("search", -32602, "Invalid params", data={"field": "q"})

        assert error.code == -32602
        assert error.data == {"field": "q"}
        assert "[-32602] Invalid params" in str(error)

    def test_call_timeout_request_id(self) -> None:
        error = CallTimeoutError("search", "tools/call timed out after 5s", request_id=12)

        assert error.request_id == 12

    def test_invalid_transition(self) -> None:
        error = InvalidTransitionError("files", "idle", "ready")

        assert (error.current, error.target) == ("idle", "ready")
        assert "invalid transition idle -> ready" in str(error)

    def test_can_be_caught_as_exception(self) -> None:
        """MCP errors should be catchable as a generic Exception."""
        with pytest.raises(Exception) as exc_info:
            raise OwnerUnavailableError("files", "Session is reconnecting")

        assert isinstance(exc_info.value, MCPError)
