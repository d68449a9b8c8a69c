# OAuth2 data models.
# Created: 2026-10-17

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pocketgrant.oauth2.errors import ErrorCode


@dataclass(frozen=True)
class OAuthClient:
    """Registered OAuth2 client.

    ``scopes`` maps each scope the client knows about to whether it may
    currently be granted. An empty ``redirect_uris`` list accepts any
    redirect URI the client presents.
    """

    client_id: str
    client_secret: str
    scopes: dict[str, bool] = field(default_factory=dict)
    redirect_uris: list[str] = field(default_factory=list)
    name: str = ""


@dataclass
class AuthorizationCode:
    """Short-lived, single-use authorization code."""

    code: str
    client_id: str
    redirect_uri: str | None
    scopes: list[str]
    expires_at: datetime
    user_id: str | None = None
    used: bool = False
    issued_access_token: str | None = None
    revoked: bool = False  # replayed; nothing may be issued from it any more


@dataclass
class AccessToken:
    """Bearer access token, paired 1:1 with a refresh token when one exists."""

    token: str
    client_id: str
    scopes: list[str]
    expires_at: datetime
    user_id: str | None = None
    refresh_token: str | None = None
    auth_code: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class RefreshToken:
    """Long-lived refresh token. No expiry is enforced here."""

    token: str
    client_id: str
    scopes: list[str]
    access_token: str
    user_id: str | None = None
    auth_code: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class GrantSuccess:
    """Positive result of a code, password or client check."""

    client_id: str
    scopes: list[str] = field(default_factory=list)
    user_id: str | None = None


@dataclass(frozen=True)
class TokenIdentity:
    """Who a verified token speaks for."""

    client_id: str
    user_id: str | None = None
    scopes: list[str] = field(default_factory=list)
    expires_at: datetime | None = None


@dataclass(frozen=True)
class ClientVerdict:
    """Outcome of ``ClientRegistry.verify_client``."""

    ok: bool
    error: ErrorCode | None = None

    @classmethod
    def allow(cls) -> ClientVerdict:
        return cls(ok=True)

    @classmethod
    def deny(cls, error: ErrorCode) -> ClientVerdict:
        return cls(ok=False, error=error)


class Decision(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    DEFERRED = "deferred"  # the hook produced its own response (e.g. login redirect)


@dataclass(frozen=True)
class OwnerDecision:
    """Answer from a resource-owner hook.

    ``response`` is only set for ``DEFERRED`` and is handed back to the host
    untouched. ``user_id`` may accompany ``ALLOWED`` from the login hook.
    """

    decision: Decision
    user_id: str | None = None
    response: Any = None

    @classmethod
    def allowed(cls, user_id: str | None = None) -> OwnerDecision:
        return cls(Decision.ALLOWED, user_id=user_id)

    @classmethod
    def denied(cls) -> OwnerDecision:
        return cls(Decision.DENIED)

    @classmethod
    def deferred(cls, response: Any = None) -> OwnerDecision:
        return cls(Decision.DEFERRED, response=response)


def parse_scopes(scope: str | list[str] | None) -> list[str]:
    """Split a space-delimited scope string, keeping order and dropping repeats."""
    if not scope:
        return []
    items = scope.split() if isinstance(scope, str) else scope
    seen: dict[str, None] = {}
    for item in items:
        if item:
            seen.setdefault(item, None)
    return list(seen)
