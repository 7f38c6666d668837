"""Unit tests for the AuthBridge token supplier."""

import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from switchboard.auth.bridge import AuthBridge
from switchboard.auth.store import TokenStore
from switchboard.auth.tokens import OAuthToken
from switchboard.config.providers import OAuthConfig, ProviderConfig
from switchboard.exceptions import AuthorizationError, CredentialError


class MemoryBackend:
    """Dictionary-backed credential backend."""

    name = "memory"
    available = True

    def __init__(self):
        self.values: dict[tuple[str, str], str] = {}
        self.fail_writes = False
        self.threads: list[int] = []

    def get(self, service, key):
        self.threads.append(threading.get_ident())
        return self.values.get((service, key))

    def set(self, service, key, value):
        self.threads.append(threading.get_ident())
        if self.fail_writes:
            raise CredentialError("disk full")
        self.values[(service, key)] = value

    def delete(self, service, key):
        self.threads.append(threading.get_ident())
        return self.values.pop((service, key), None) is not None


@pytest.fixture
def provider():
    return ProviderConfig(
        name="search",
        transport="streamable-http",
        url="https://mcp.example.com/mcp",
        oauth=OAuthConfig(client_id="switchboard-desktop"),
    )


@pytest.fixture
def store():
    return TokenStore(MemoryBackend())


@pytest.fixture
def flow():
    mock = MagicMock()
    mock.refresh = AsyncMock(return_value=OAuthToken("refreshed", "rt2", expires_at=in_seconds(3600)))
    mock.authorize = AsyncMock(return_value=OAuthToken("authorized", "rt3", expires_at=in_seconds(3600)))
    return mock


def in_seconds(seconds: float) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


def make_bridge(store, flow, *, interactive=True) -> AuthBridge:
    return AuthBridge(store, interactive=interactive, flow_factory=lambda provider: flow)


class TestAccessToken:
    @pytest.mark.asyncio
    async def test_valid_stored_token(self, provider, store, flow):
        store.save("search", OAuthToken("stored", expires_at=in_seconds(3600)))

        assert await make_bridge(store, flow).access_token(provider) == "stored"
        flow.refresh.assert_not_awaited()
        flow.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refreshes_near_expiry(self, provider, store, flow):
        """A token inside the refresh skew is refreshed and persisted."""
        store.save("search", OAuthToken("stale", "rt", expires_at=in_seconds(10)))

        assert await make_bridge(store, flow).access_token(provider) == "refreshed"
        assert store.load("search").access_token == "refreshed"
        flow.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_non_interactive_without_token(self, provider, store, flow):
        with pytest.raises(AuthorizationError) as exc_info:
            await make_bridge(store, flow, interactive=False).access_token(provider)

        assert exc_info.value.interaction_required is True
        assert "switchboard login" in exc_info.value.message
        flow.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_interactive_authorizes(self, provider, store, flow):
        assert await make_bridge(store, flow).access_token(provider) == "authorized"
        assert store.load("search").refresh_token == "rt3"

    @pytest.mark.asyncio
    async def test_rejected_refresh_falls_back_to_browser(self, provider, store, flow):
        store.save("search", OAuthToken("stale", "revoked", expires_at=in_seconds(-5)))
        flow.refresh.side_effect = AuthorizationError("search", "invalid_grant", interaction_required=True)

        assert await make_bridge(store, flow).access_token(provider) == "authorized"

    @pytest.mark.asyncio
    async def test_transient_refresh_failure_propagates(self, provider, store, flow):
        store.save("search", OAuthToken("stale", "rt", expires_at=in_seconds(-5)))
        flow.refresh.side_effect = AuthorizationError("search", "HTTP 503")

        with pytest.raises(AuthorizationError, match="HTTP 503"):
            await make_bridge(store, flow).access_token(provider)
        flow.authorize.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unpersisted_token_still_returned(self, provider, store, flow):
        store.backend.fail_writes = True

        assert await make_bridge(store, flow).access_token(provider) == "authorized"


class TestLoginLogout:
    @pytest.mark.asyncio
    async def test_login_always_authorizes(self, provider, store, flow):
        store.save("search", OAuthToken("stored", expires_at=in_seconds(3600)))

        token = await make_bridge(store, flow).login(provider)

        assert token.access_token == "authorized"
        assert store.load("search").access_token == "authorized"

    @pytest.mark.asyncio
    async def test_logout(self, provider, store, flow):
        store.save("search", OAuthToken("stored"))
        bridge = make_bridge(store, flow)

        assert await bridge.logout(provider) is True
        assert await bridge.logout(provider) is False


class TestStoreAccess:
    @pytest.mark.asyncio
    async def test_store_calls_leave_the_event_loop_thread(self, provider, flow):
        """Blocking backend calls should run in a worker thread."""
        backend = MemoryBackend()
        store = TokenStore(backend)
        store.save("search", OAuthToken("stored", expires_at=in_seconds(-10), refresh_token="rt"))
        backend.threads.clear()

        await make_bridge(store, flow).access_token(provider)
        await make_bridge(store, flow).logout(provider)

        assert len(backend.threads) == 3
        assert threading.get_ident() not in backend.threads
