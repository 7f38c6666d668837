"""OAuth support for HTTP-based MCP providers.

Modules:
    tokens: OAuthToken value object.
    store: Token persistence in the OS keyring or an encrypted file.
    oauth: Authorization-code flow with PKCE and token refresh.
    bridge: AuthBridge handing valid tokens to HTTP transports.
"""

from switchboard.auth.bridge import AuthBridge
from switchboard.auth.oauth import OAuthFlow, pkce_pair
from switchboard.auth.store import EncryptedFileBackend, KeyringBackend, TokenStore
from switchboard.auth.tokens import OAuthToken

__all__ = [
    "AuthBridge",
    "EncryptedFileBackend",
    "KeyringBackend",
    "OAuthFlow",
    "OAuthToken",
    "TokenStore",
    "pkce_pair",
]
