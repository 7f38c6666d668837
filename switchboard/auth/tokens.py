"""OAuth token value object."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any


@dataclass(frozen=True)
class OAuthToken:
    """OAuth 2.0 token set for one provider.

    Attributes:
        access_token: Bearer token sent to the provider.
        refresh_token: Token for the refresh grant, if issued.
        token_type: Token type (normally ``Bearer``).
        expires_at: Absolute UTC expiry, or None for non-expiring tokens.
        scopes: Granted scopes.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"
    expires_at: datetime | None = None
    scopes: tuple[str, ...] = field(default_factory=tuple)

    def expires_within(self, seconds: float, *, now: datetime | None = None) -> bool:
        """Whether the token expires in less than ``seconds``."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now < timedelta(seconds=seconds)

    def is_expired(self, *, now: datetime | None = None) -> bool:
        return self.expires_within(0, now=now)

    def with_refresh_token(self, refresh_token: str | None) -> OAuthToken:
        return replace(self, refresh_token=refresh_token)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary for storage."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthToken:
        expires_at = None
        if data.get("expires_at"):
            expires_at = datetime.fromisoformat(data["expires_at"])
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type") or "Bearer",
            expires_at=expires_at,
            scopes=tuple(data.get("scopes") or ()),
        )

    @classmethod
    def from_response(cls, payload: dict[str, Any], *, now: datetime | None = None) -> OAuthToken:
        """Build a token from a token endpoint response body.

        Raises:
            KeyError: If the response has no ``access_token``.
        """
        now = now or datetime.now(timezone.utc)
        expires_in = payload.get("expires_in")
        expires_at = now + timedelta(seconds=float(expires_in)) if expires_in is not None else None
        scope = payload.get("scope") or ""
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            token_type=payload.get("token_type") or "Bearer",
            expires_at=expires_at,
            scopes=tuple(scope.split()),
        )
