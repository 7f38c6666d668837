"""CLI commands for switchboard.

The entry point ``switchboard`` lives in ``switchboard.main``; this package
holds command groups registered on it.

Key Commands:
    login / logout (switchboard.cli.auth):
        OAuth token management for HTTP providers. Tokens are stored in the
        OS keyring or in a Fernet-encrypted file.
"""

from switchboard.cli.auth import build_token_store, login_command, logout_command

__all__ = ["build_token_store", "login_command", "logout_command"]
