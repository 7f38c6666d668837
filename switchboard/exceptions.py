"""Custom exception hierarchy for switchboard.

This module defines the errors raised outside the MCP connection layer:
configuration loading, credential storage and OAuth authorization. MCP
connection and invocation errors live in ``switchboard.mcp.exceptions``.

Exception Hierarchy:
    SwitchboardError (base)
    ├── ConfigurationError
    ├── CredentialError
    │   ├── BackendNotAvailableError
    │   └── EncryptionError
    └── AuthorizationError

Example Usage:
    >>> from switchboard.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class SwitchboardError(Exception):
    """Base exception for all switchboard errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(SwitchboardError):
    """Configuration-related errors.

    Raised when a settings file is missing or unreadable, is not valid
    YAML/JSON, or describes a provider that fails validation.
    """

    pass


class CredentialError(SwitchboardError):
    """Credential storage errors.

    Attributes:
        message: Human-readable error description
        reference: The credential that failed (e.g., "@keyring:github/oauth_token")
        suggestion: Optional suggestion for resolution
    """

    def __init__(
        self,
        message: str,
        reference: str | None = None,
        suggestion: str | None = None,
    ) -> None:
        """Initialize exception.

        Args:
            message: Error message
            reference: The credential reference that failed
            suggestion: Optional suggestion for resolution
        """
        self.reference = reference
        self.suggestion = suggestion

        full_message = message
        if reference:
            full_message = f"{message} (reference: {reference})"
        if suggestion:
            full_message = f"{full_message}\nSuggestion: {suggestion}"

        super().__init__(full_message)
        # Preserve original message (super sets self.message to full_message)
        self.message = message


class BackendNotAvailableError(CredentialError):
    """Requested backend is not available on this system."""

    pass


class EncryptionError(CredentialError):
    """Encryption or decryption operation failed."""

    pass


class AuthorizationError(SwitchboardError):
    """OAuth authorization failed or requires user interaction.

    Attributes:
        provider: Name of the provider being authorized.
        interaction_required: True when only the interactive browser flow
            can produce a token.
    """

    def __init__(self, provider: str, message: str, *, interaction_required: bool = False) -> None:
        self.provider = provider
        self.interaction_required = interaction_required
        super().__init__(f"Authorization for '{provider}' failed: {message}")
