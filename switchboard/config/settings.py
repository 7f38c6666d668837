"""
Settings loading using Pydantic for type-safe configuration management.

Two on-disk formats are supported: switchboard's own YAML file, and the
desktop chat client's ``settings.json`` (``mcpServers`` mapping plus the
``disabledMcpServers`` list and ``toolOutputLimit``).
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from switchboard.config.providers import ConnectionPolicy, ProviderConfig
from switchboard.enums import TransportKind
from switchboard.exceptions import ConfigurationError

_TRANSPORT_ALIASES = {
    "stdio": TransportKind.STDIO,
    "sse": TransportKind.SSE,
    "streamablehttp": TransportKind.STREAMABLE_HTTP,
    "streamable-http": TransportKind.STREAMABLE_HTTP,
    "streamable_http": TransportKind.STREAMABLE_HTTP,
    "http": TransportKind.STREAMABLE_HTTP,
}


class SwitchboardSettings(BaseSettings):
    """Top-level settings: providers, connection policy and log level."""

    model_config = SettingsConfigDict(
        env_prefix="SWITCHBOARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    providers: list[ProviderConfig] = Field(default_factory=list, description="Configured MCP providers")
    policy: ConnectionPolicy = Field(default_factory=ConnectionPolicy, description="Connection policy")
    log_level: str = Field(default="INFO", description="Minimum log level")

    def get_provider(self, name: str) -> ProviderConfig | None:
        """Get configuration for a specific provider.

        Args:
            name: Provider name to find.

        Returns:
            The provider configuration, or None if not found.
        """
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    @classmethod
    def load(cls, config_path: str | Path) -> SwitchboardSettings:
        """Load settings, picking the format from the file suffix.

        ``.json`` files are read as desktop client settings, anything else
        as switchboard YAML.
        """
        if Path(config_path).suffix.lower() == ".json":
            return cls.from_client_settings(config_path)
        return cls.from_yaml(config_path)

    @classmethod
    def from_yaml(cls, config_path: str | Path) -> SwitchboardSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            SwitchboardSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        yaml_content = _read_config(config_path)

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        return cls._build(config_dict)

    @classmethod
    def from_client_settings(cls, config_path: str | Path) -> SwitchboardSettings:
        """Load the desktop client's ``settings.json``.

        Each ``mcpServers`` entry becomes a ProviderConfig, in file order.
        Names listed in ``disabledMcpServers`` are loaded with
        ``enabled=False``.

        Raises:
            ConfigurationError: If the file is unreadable or an entry is invalid
        """
        content = _read_config(config_path)
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError("Settings must be a JSON object")

        servers = data.get("mcpServers") or {}
        if not isinstance(servers, dict):
            raise ConfigurationError("mcpServers must be an object keyed by server name")
        disabled = set(data.get("disabledMcpServers") or [])

        providers = [
            _client_entry_to_provider(name, entry, enabled=name not in disabled) for name, entry in servers.items()
        ]

        policy: dict[str, Any] = {}
        if data.get("toolOutputLimit") is not None:
            policy["tool_output_limit"] = data["toolOutputLimit"]

        return cls._build({"providers": providers, "policy": policy})

    @classmethod
    def _build(cls, config_dict: dict[str, Any]) -> SwitchboardSettings:
        try:
            settings = cls(**config_dict)
        except ValidationError as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e
        except TypeError as e:
            raise ConfigurationError(f"Missing or invalid configuration fields: {e}") from e

        names = [p.name for p in settings.providers]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate provider names: {', '.join(duplicates)}")
        return settings

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines (starting with #) are preserved unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            stripped = line.lstrip()
            if stripped.startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))


def _read_config(config_path: str | Path) -> str:
    config_file = Path(config_path)
    if not config_file.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    try:
        return config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e


def _client_entry_to_provider(name: str, entry: Any, *, enabled: bool) -> dict[str, Any]:
    """Translate one ``mcpServers`` entry into ProviderConfig fields.

    An explicit ``transport`` key wins; otherwise ``command`` means stdio and
    ``url`` means sse.
    """
    if not isinstance(entry, dict):
        raise ConfigurationError(f"mcpServers.{name} must be an object")

    raw_transport = entry.get("transport") or entry.get("type")
    if raw_transport:
        transport = _TRANSPORT_ALIASES.get(str(raw_transport).lower())
        if transport is None:
            raise ConfigurationError(f"mcpServers.{name}: unknown transport '{raw_transport}'")
    elif entry.get("command"):
        transport = TransportKind.STDIO
    elif entry.get("url"):
        transport = TransportKind.SSE
    else:
        raise ConfigurationError(f"mcpServers.{name}: needs either 'command' or 'url'")

    fields: dict[str, Any] = {"name": name, "transport": transport, "enabled": enabled}
    for key in ("command", "args", "env", "cwd", "url", "headers", "oauth"):
        if entry.get(key) is not None:
            fields[key] = entry[key]
    return fields
