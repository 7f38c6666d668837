"""MCP provider configuration models.

This module defines Pydantic models describing the tool providers the
supervisor connects to, and the connection policy applied to all of them.

Example:
    YAML configuration format::

        providers:
          - name: filesystem
            transport: stdio
            command: npx
            args: ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
          - name: search
            transport: streamable-http
            url: https://mcp.example.com/mcp
            headers:
              X-Team: "${TEAM_ID}"
            oauth:
              client_id: switchboard-desktop
              scopes: ["tools.read"]
        policy:
          max_retries: 5
          tool_output_limit: 8000
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from switchboard.enums import TransportKind


class OAuthConfig(BaseModel):
    """OAuth authorization-code settings for a provider.

    Endpoints left unset are discovered from the provider's
    ``/.well-known/oauth-authorization-server`` document.
    """

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., description="OAuth client identifier")
    client_secret: str | None = Field(default=None, description="Client secret for confidential clients")
    authorization_url: str | None = Field(default=None, description="Authorization endpoint")
    token_url: str | None = Field(default=None, description="Token endpoint")
    scopes: tuple[str, ...] = Field(default=(), description="Scopes to request")
    redirect_port: int = Field(default=8422, ge=1024, le=65535, description="Loopback port for the redirect")


class ProviderConfig(BaseModel):
    """Configuration for a single MCP tool provider.

    Instances are immutable; a changed definition is a new value and the
    supervisor restarts the session bound to it.

    Attributes:
        name: Unique provider name.
        transport: How to reach the provider.
        command: Executable for stdio providers.
        args: Command-line arguments for stdio providers.
        env: Extra environment variables for stdio providers (read-only).
        cwd: Working directory for stdio providers.
        url: Endpoint for the HTTP transports.
        headers: Extra HTTP headers for the HTTP transports (read-only).
        oauth: OAuth settings when the provider requires authorization.
        enabled: Whether the provider should be connected.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique provider name")
    transport: TransportKind = Field(default=TransportKind.STDIO, description="Transport kind")
    command: str | None = Field(default=None, description="Executable to spawn (stdio)")
    args: tuple[str, ...] = Field(default=(), description="Command-line arguments (stdio)")
    env: Mapping[str, str] = Field(
        default_factory=dict, validate_default=True, description="Extra environment variables (stdio)"
    )
    cwd: str | None = Field(default=None, description="Working directory (stdio)")
    url: str | None = Field(default=None, description="Endpoint URL (sse, streamable-http)")
    headers: Mapping[str, str] = Field(default_factory=dict, validate_default=True, description="Extra HTTP headers")
    oauth: OAuthConfig | None = Field(default=None, description="OAuth settings")
    enabled: bool = Field(default=True, description="Whether the provider is enabled")

    @field_validator("env", "headers", mode="after")
    @classmethod
    def freeze_mapping(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        """Store mappings read-only, like every other field."""
        return MappingProxyType(dict(value))

    @field_serializer("env", "headers")
    def dump_mapping(self, value: Mapping[str, str]) -> dict[str, str]:
        return dict(value)

    @model_validator(mode="after")
    def validate_transport_params(self) -> ProviderConfig:
        """Require the parameters each transport needs."""
        if self.transport is TransportKind.STDIO:
            if not self.command:
                raise ValueError(f"provider '{self.name}': command is required for stdio transport")
        else:
            if not self.url:
                raise ValueError(f"provider '{self.name}': url is required for {self.transport} transport")
            if not (self.url.startswith("http://") or self.url.startswith("https://")):
                raise ValueError(f"provider '{self.name}': url must start with http:// or https://, got: {self.url}")
        return self


class ConnectionPolicy(BaseModel):
    """Timeouts, retry and output limits shared by every session."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=5, ge=1, description="Consecutive failed connects before disabling")
    backoff_base: float = Field(default=1.0, ge=0.0, description="First reconnect delay in seconds")
    backoff_max: float = Field(default=60.0, ge=0.0, description="Upper bound for reconnect delay")
    jitter: float = Field(default=0.2, ge=0.0, le=1.0, description="Relative random spread of each delay")
    connect_timeout: float = Field(default=30.0, gt=0.0, description="Budget for connect + handshake")
    heartbeat_interval: float | None = Field(default=None, gt=0.0, description="Seconds between liveness pings")
    call_timeout: float = Field(default=60.0, gt=0.0, description="Per tool call timeout in seconds")
    tool_output_limit: int = Field(default=8000, ge=256, description="Maximum tool result size in bytes")
