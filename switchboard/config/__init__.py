"""Configuration for switchboard.

Key Components:
    - SwitchboardSettings: Top-level settings with YAML and settings.json loaders
    - ProviderConfig: Definition of one MCP tool provider
    - ConnectionPolicy: Retry, timeout and output limits
    - OAuthConfig: OAuth settings for providers that require authorization

Example:
    >>> from switchboard.config import SwitchboardSettings
    >>> settings = SwitchboardSettings.load("switchboard.yaml")
    >>> names = [p.name for p in settings.providers]
"""

from switchboard.config.providers import ConnectionPolicy, OAuthConfig, ProviderConfig
from switchboard.config.settings import SwitchboardSettings

__all__ = ["ConnectionPolicy", "OAuthConfig", "ProviderConfig", "SwitchboardSettings"]
