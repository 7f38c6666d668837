"""OAuth 2.0 authorization-code flow with PKCE for HTTP providers.

The flow discovers the authorization server metadata, opens the user's
browser on the authorization URL, receives the redirect on a loopback HTTP
server, and exchanges the code for tokens. The loopback server blocks, so it
runs in a worker thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import secrets
import time
import webbrowser
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse

import httpx
import structlog

from switchboard.auth.tokens import OAuthToken
from switchboard.config.providers import OAuthConfig, ProviderConfig
from switchboard.exceptions import AuthorizationError
from switchboard.utils.retry import async_retry

log = structlog.get_logger(__name__)

WELL_KNOWN_PATH = "/.well-known/oauth-authorization-server"
CALLBACK_PATH = "/callback"

SUCCESS_PAGE = (
    b"<html><body><h1>Authorization successful</h1>"
    b"<p>You can close this window and return to switchboard.</p></body></html>"
)


def pkce_pair() -> tuple[str, str]:
    """Generate a PKCE ``(verifier, S256 challenge)`` pair."""
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


class _CallbackServer(HTTPServer):
    """Loopback server capturing a single authorization redirect."""

    def __init__(self, port: int) -> None:
        super().__init__(("127.0.0.1", port), _CallbackHandler)
        self.params: dict[str, str] | None = None


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackServer

    def do_GET(self) -> None:
        parsed = urlparse(self.path)
        if parsed.path != CALLBACK_PATH:
            self.send_response(404)
            self.end_headers()
            return

        params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
        self.server.params = params
        if "code" in params:
            self.send_response(200)
            self.send_header("Content-Type", "text/html")
            self.end_headers()
            self.wfile.write(SUCCESS_PAGE)
        else:
            error = params.get("error_description") or params.get("error") or "unknown error"
            self.send_response(400)
            self.send_header("Content-Type", "text/html")
            self.end_headers()
            self.wfile.write(f"<html><body><h1>Authorization failed</h1><p>{error}</p></body></html>".encode())

    def log_message(self, format: str, *args: Any) -> None:
        pass


class OAuthFlow:
    """Authorization-code flow for one provider.

    Usage:
        flow = OAuthFlow(provider_config)
        token = await flow.authorize()
        ...
        token = await flow.refresh(token)
    """

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        open_browser: Callable[[str], Any] = webbrowser.open,
        callback_timeout: float = 300.0,
    ) -> None:
        """Initialize the flow.

        Args:
            provider: Provider with an ``oauth`` block and a URL.
            http_transport: Optional httpx transport (used by tests).
            open_browser: Callable opening the authorization URL.
            callback_timeout: Seconds to wait for the browser redirect.

        Raises:
            ValueError: If the provider has no OAuth settings.
        """
        if provider.oauth is None or provider.url is None:
            raise ValueError(f"Provider '{provider.name}' has no OAuth settings")
        self.provider = provider
        self.oauth: OAuthConfig = provider.oauth
        self.redirect_uri = f"http://127.0.0.1:{self.oauth.redirect_port}{CALLBACK_PATH}"
        self._http_transport = http_transport
        self._open_browser = open_browser
        self._callback_timeout = callback_timeout
        self._endpoints: tuple[str, str] | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._http_transport, timeout=30.0)

    # === Discovery ===

    async def discover(self) -> tuple[str, str]:
        """Resolve ``(authorization_url, token_url)``.

        Configured endpoints win; missing ones come from the authorization
        server metadata, falling back to ``/authorize`` and ``/token`` on the
        provider origin when no metadata is published.
        """
        if self._endpoints is not None:
            return self._endpoints

        authorization_url = self.oauth.authorization_url
        token_url = self.oauth.token_url
        if authorization_url is None or token_url is None:
            origin = _origin(str(self.provider.url))
            metadata = await self._fetch_metadata(origin + WELL_KNOWN_PATH)
            authorization_url = authorization_url or metadata.get("authorization_endpoint") or origin + "/authorize"
            token_url = token_url or metadata.get("token_endpoint") or origin + "/token"

        self._endpoints = (authorization_url, token_url)
        log.debug("oauth_endpoints", provider=self.provider.name, authorize=authorization_url, token=token_url)
        return self._endpoints

    @async_retry(max_attempts=3, backoff_factor=1.5, exceptions=(httpx.TransportError,))
    async def _fetch_metadata(self, url: str) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(url, headers={"Accept": "application/json"})
        if response.status_code >= 400:
            log.debug("oauth_metadata_missing", provider=self.provider.name, status=response.status_code)
            return {}
        try:
            metadata = response.json()
        except ValueError:
            return {}
        return metadata if isinstance(metadata, dict) else {}

    # === Authorization ===

    def build_authorization_url(self, endpoint: str, challenge: str, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self.oauth.client_id,
            "redirect_uri": self.redirect_uri,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
            "state": state,
        }
        if self.oauth.scopes:
            params["scope"] = " ".join(self.oauth.scopes)
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def authorize(self) -> OAuthToken:
        """Run the interactive browser flow and return fresh tokens.

        Raises:
            AuthorizationError: If the user denies access, the state does not
                match, the redirect never arrives, or the exchange fails.
        """
        authorization_url, token_url = await self.discover()
        verifier, challenge = pkce_pair()
        state = secrets.token_urlsafe(24)

        try:
            server = _CallbackServer(self.oauth.redirect_port)
        except OSError as e:
            raise AuthorizationError(
                self.provider.name, f"Cannot listen on port {self.oauth.redirect_port}: {e}"
            ) from e

        try:
            url = self.build_authorization_url(authorization_url, challenge, state)
            log.info("oauth_browser_opened", provider=self.provider.name)
            self._open_browser(url)
            params = await asyncio.to_thread(self._serve, server)
        finally:
            server.server_close()

        if params is None:
            raise AuthorizationError(self.provider.name, "Timed out waiting for the browser redirect")
        if params.get("state") != state:
            raise AuthorizationError(self.provider.name, "State mismatch in authorization redirect")
        if "code" not in params:
            error = params.get("error_description") or params.get("error") or "no code returned"
            raise AuthorizationError(self.provider.name, error)

        data = {
            "grant_type": "authorization_code",
            "code": params["code"],
            "redirect_uri": self.redirect_uri,
            "client_id": self.oauth.client_id,
            "code_verifier": verifier,
        }
        token = await self._token_request(token_url, data)
        log.info("oauth_authorized", provider=self.provider.name, scopes=list(token.scopes))
        return token

    def _serve(self, server: _CallbackServer) -> dict[str, str] | None:
        deadline = time.monotonic() + self._callback_timeout
        while server.params is None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            server.timeout = min(remaining, 1.0)
            server.handle_request()
        return server.params

    # === Token endpoint ===

    async def refresh(self, token: OAuthToken) -> OAuthToken:
        """Exchange the refresh token for a new access token.

        Raises:
            AuthorizationError: If there is no refresh token or the grant is
                rejected (``interaction_required`` is set in both cases).
        """
        if not token.refresh_token:
            raise AuthorizationError(self.provider.name, "No refresh token", interaction_required=True)
        _, token_url = await self.discover()
        data = {
            "grant_type": "refresh_token",
            "refresh_token": token.refresh_token,
            "client_id": self.oauth.client_id,
        }
        if self.oauth.scopes:
            data["scope"] = " ".join(self.oauth.scopes)
        refreshed = await self._token_request(token_url, data, interaction_on_reject=True)
        if refreshed.refresh_token is None:
            refreshed = refreshed.with_refresh_token(token.refresh_token)
        log.info("oauth_token_refreshed", provider=self.provider.name)
        return refreshed

    async def _token_request(
        self,
        token_url: str,
        data: dict[str, str],
        *,
        interaction_on_reject: bool = False,
    ) -> OAuthToken:
        if self.oauth.client_secret:
            data["client_secret"] = self.oauth.client_secret
        try:
            async with self._client() as client:
                response = await client.post(token_url, data=data, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise AuthorizationError(self.provider.name, f"Token request failed: {e}") from e

        if response.status_code >= 400:
            detail = response.text[:200]
            raise AuthorizationError(
                self.provider.name,
                f"Token endpoint returned HTTP {response.status_code}: {detail}",
                interaction_required=interaction_on_reject and response.status_code in (400, 401),
            )
        try:
            return OAuthToken.from_response(response.json())
        except (ValueError, KeyError, TypeError) as e:
            raise AuthorizationError(self.provider.name, f"Malformed token response: {e}") from e
