"""Bridge between HTTP transports and stored OAuth credentials."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from switchboard.auth.oauth import OAuthFlow
from switchboard.auth.store import TokenStore
from switchboard.auth.tokens import OAuthToken
from switchboard.config.providers import ProviderConfig
from switchboard.exceptions import AuthorizationError, CredentialError

log = structlog.get_logger(__name__)


class AuthBridge:
    """Supplies valid access tokens to HTTP transports.

    Tokens are loaded from the store, refreshed when they expire within
    ``refresh_skew`` seconds, and obtained through the interactive browser
    flow only when ``interactive`` is set. Concurrent requests for the same
    provider share one refresh.

    Example:
        >>> bridge = AuthBridge(TokenStore(), interactive=False)
        >>> token = await bridge.access_token(provider_config)
    """

    def __init__(
        self,
        store: TokenStore | None = None,
        *,
        interactive: bool = True,
        refresh_skew: float = 60.0,
        flow_factory: Callable[[ProviderConfig], OAuthFlow] = OAuthFlow,
    ) -> None:
        self.store = store or TokenStore()
        self.interactive = interactive
        self.refresh_skew = refresh_skew
        self._flow_factory = flow_factory
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    async def access_token(self, provider: ProviderConfig) -> str:
        """Return an access token valid for at least ``refresh_skew`` seconds.

        Raises:
            AuthorizationError: If no usable token exists and interaction is
                not allowed, or any step of the flow fails.
        """
        async with self._lock(provider.name):
            token = await self._load(provider)
            if token is not None and not token.expires_within(self.refresh_skew):
                return token.access_token

            flow = self._flow_factory(provider)
            if token is not None and token.refresh_token:
                try:
                    token = await flow.refresh(token)
                except AuthorizationError as e:
                    if not e.interaction_required:
                        raise
                    log.warning("oauth_refresh_rejected", provider=provider.name, error=e.message)
                else:
                    await self._save(provider, token)
                    return token.access_token

            if not self.interactive:
                raise AuthorizationError(
                    provider.name,
                    "No valid token; run 'switchboard login' to authorize",
                    interaction_required=True,
                )
            token = await flow.authorize()
            await self._save(provider, token)
            return token.access_token

    async def login(self, provider: ProviderConfig) -> OAuthToken:
        """Run the interactive flow unconditionally and store the result."""
        async with self._lock(provider.name):
            token = await self._flow_factory(provider).authorize()
            await self._save(provider, token)
            return token

    async def logout(self, provider: ProviderConfig) -> bool:
        """Delete stored tokens; returns False if none were stored."""
        try:
            removed = await asyncio.to_thread(self.store.delete, provider.name)
        except CredentialError as e:
            raise AuthorizationError(provider.name, f"Cannot delete stored token: {e.message}") from e
        log.info("oauth_logout", provider=provider.name, removed=removed)
        return removed

    # Store calls block (keyring goes through D-Bus or the Keychain) and run in a worker thread.

    async def _load(self, provider: ProviderConfig) -> OAuthToken | None:
        try:
            return await asyncio.to_thread(self.store.load, provider.name)
        except CredentialError as e:
            raise AuthorizationError(provider.name, f"Cannot read stored token: {e.message}") from e

    async def _save(self, provider: ProviderConfig, token: OAuthToken) -> None:
        try:
            await asyncio.to_thread(self.store.save, provider.name, token)
        except CredentialError as e:
            log.warning("oauth_token_not_persisted", provider=provider.name, error=e.message)
