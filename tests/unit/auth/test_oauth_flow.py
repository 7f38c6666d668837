"""Unit tests for the OAuth authorization-code flow."""

import base64
import hashlib
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from switchboard.auth.oauth import OAuthFlow, pkce_pair
from switchboard.auth.tokens import OAuthToken
from switchboard.config.providers import OAuthConfig, ProviderConfig
from switchboard.exceptions import AuthorizationError


def oauth_provider(**oauth_fields) -> ProviderConfig:
    oauth = {"client_id": "switchboard-desktop", "scopes": ("tools.read",), **oauth_fields}
    return ProviderConfig(
        name="search",
        transport="streamable-http",
        url="https://mcp.example.com/mcp",
        oauth=OAuthConfig(**oauth),
    )


class AuthServer:
    """Scripted authorization server behind httpx.MockTransport."""

    def __init__(self, *, metadata: dict | None = None, token_status: int = 200, token_body: dict | None = None):
        self.metadata = metadata
        self.token_status = token_status
        self.token_body = token_body or {
            "access_token": "new-access",
            "refresh_token": "new-refresh",
            "expires_in": 3600,
            "scope": "tools.read",
        }
        self.token_requests: list[dict[str, str]] = []
        self.requested: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requested.append(str(request.url))
        if request.url.path == "/.well-known/oauth-authorization-server":
            if self.metadata is None:
                return httpx.Response(404)
            return httpx.Response(200, json=self.metadata)
        if request.method == "POST":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            self.token_requests.append(form)
            return httpx.Response(self.token_status, json=self.token_body)
        return httpx.Response(404)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def test_pkce_challenge_matches_verifier():
    verifier, challenge = pkce_pair()

    digest = hashlib.sha256(verifier.encode()).digest()
    assert challenge == base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    assert "=" not in challenge


def test_requires_oauth_settings():
    with pytest.raises(ValueError, match="no OAuth settings"):
        OAuthFlow(ProviderConfig(name="plain", transport="sse", url="https://a.example.com/sse"))


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_metadata_document(self):
        server = AuthServer(
            metadata={
                "authorization_endpoint": "https://auth.example.com/oauth/authorize",
                "token_endpoint": "https://auth.example.com/oauth/token",
            }
        )
        flow = OAuthFlow(oauth_provider(), http_transport=server.transport())

        endpoints = await flow.discover()

        assert endpoints == ("https://auth.example.com/oauth/authorize", "https://auth.example.com/oauth/token")
        assert server.requested == ["https://mcp.example.com/.well-known/oauth-authorization-server"]

    @pytest.mark.asyncio
    async def test_fallback_to_origin_paths(self):
        flow = OAuthFlow(oauth_provider(), http_transport=AuthServer().transport())

        assert await flow.discover() == ("https://mcp.example.com/authorize", "https://mcp.example.com/token")

    @pytest.mark.asyncio
    async def test_configured_endpoints_skip_discovery(self):
        server = AuthServer()
        flow = OAuthFlow(
            oauth_provider(authorization_url="https://idp/authorize", token_url="https://idp/token"),
            http_transport=server.transport(),
        )

        assert await flow.discover() == ("https://idp/authorize", "https://idp/token")
        assert server.requested == []


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_browser_flow_exchanges_code(self):
        server = AuthServer()
        opened: list[str] = []
        flow = OAuthFlow(
            oauth_provider(client_secret="s3cret"),
            http_transport=server.transport(),
            open_browser=opened.append,
        )

        def redirect(_server):
            query = parse_qs(urlparse(opened[0]).query)
            return {"code": "auth-code", "state": query["state"][0]}

        with patch("switchboard.auth.oauth._CallbackServer"), patch.object(flow, "_serve", side_effect=redirect):
            token = await flow.authorize()

        query = parse_qs(urlparse(opened[0]).query)
        assert query["client_id"] == ["switchboard-desktop"]
        assert query["code_challenge_method"] == ["S256"]
        assert query["redirect_uri"] == ["http://127.0.0.1:8422/callback"]
        assert query["scope"] == ["tools.read"]

        exchange = server.token_requests[0]
        assert exchange["grant_type"] == "authorization_code"
        assert exchange["code"] == "auth-code"
        assert exchange["client_secret"] == "s3cret"
        assert len(exchange["code_verifier"]) >= 43
        assert token.access_token == "new-access"

    @pytest.mark.asyncio
    async def test_state_mismatch(self):
        flow = OAuthFlow(oauth_provider(), http_transport=AuthServer().transport(), open_browser=lambda url: None)

        with patch("switchboard.auth.oauth._CallbackServer"), patch.object(
            flow, "_serve", return_value={"code": "c", "state": "forged"}
        ):
            with pytest.raises(AuthorizationError, match="State mismatch"):
                await flow.authorize()

    @pytest.mark.asyncio
    async def test_redirect_timeout(self):
        flow = OAuthFlow(oauth_provider(), http_transport=AuthServer().transport(), open_browser=lambda url: None)

        with patch("switchboard.auth.oauth._CallbackServer"), patch.object(flow, "_serve", return_value=None):
            with pytest.raises(AuthorizationError, match="Timed out"):
                await flow.authorize()

    @pytest.mark.asyncio
    async def test_port_in_use(self):
        flow = OAuthFlow(oauth_provider(), http_transport=AuthServer().transport(), open_browser=lambda url: None)

        with patch("switchboard.auth.oauth._CallbackServer", side_effect=OSError("Address already in use")):
            with pytest.raises(AuthorizationError, match="Cannot listen on port 8422"):
                await flow.authorize()


class TestRefresh:
    @pytest.mark.asyncio
    async def test_keeps_refresh_token_when_not_rotated(self):
        server = AuthServer(token_body={"access_token": "fresh", "expires_in": 60})
        flow = OAuthFlow(oauth_provider(), http_transport=server.transport())

        token = await flow.refresh(OAuthToken("stale", "keep-me"))

        assert token.access_token == "fresh"
        assert token.refresh_token == "keep-me"
        assert server.token_requests[0]["grant_type"] == "refresh_token"
        assert server.token_requests[0]["refresh_token"] == "keep-me"

    @pytest.mark.asyncio
    async def test_rejected_grant_requires_interaction(self):
        server = AuthServer(token_status=400, token_body={"error": "invalid_grant"})
        flow = OAuthFlow(oauth_provider(), http_transport=server.transport())

        with pytest.raises(AuthorizationError) as exc_info:
            await flow.refresh(OAuthToken("stale", "revoked"))

        assert exc_info.value.interaction_required is True
        assert "HTTP 400" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_without_refresh_token(self):
        flow = OAuthFlow(oauth_provider(), http_transport=AuthServer().transport())

        with pytest.raises(AuthorizationError) as exc_info:
            await flow.refresh(OAuthToken("stale"))

        assert exc_info.value.interaction_required is True

    @pytest.mark.asyncio
    async def test_server_error_is_not_interaction(self):
        server = AuthServer(token_status=503, token_body={"error": "unavailable"})
        flow = OAuthFlow(oauth_provider(), http_transport=server.transport())

        with pytest.raises(AuthorizationError) as exc_info:
            await flow.refresh(OAuthToken("stale", "rt"))

        assert exc_info.value.interaction_required is False

    @pytest.mark.asyncio
    async def test_malformed_token_response(self):
        server = AuthServer(token_body={"token_type": "Bearer"})
        flow = OAuthFlow(oauth_provider(), http_transport=server.transport())

        with pytest.raises(AuthorizationError, match="Malformed token response"):
            await flow.refresh(OAuthToken("stale", "rt"))
