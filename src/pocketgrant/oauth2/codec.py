# Token codecs: opaque random strings or signed JWTs.
# Created: 2026-10-17
#
# Both strategies share one contract so the engine never branches on which
# one is configured. Every value they produce is URL-safe as-is.

from __future__ import annotations

import base64
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal, Protocol, runtime_checkable

import jwt

logger = logging.getLogger(__name__)

TokenType = Literal["auth", "access", "refresh"]

_RANDOM_BYTES = 30
_DEFAULT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenClaims:
    """Everything a signed token carries. Opaque tokens carry none of it."""

    client_id: str
    type: TokenType
    scopes: list[str] = field(default_factory=list)
    user_id: str | None = None
    audience: str | None = None  # redirect_uri, for auth codes
    issued_at: int = field(default_factory=lambda: int(time.time()))
    expires_at: int | None = None
    unique_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def expired(self) -> bool:
        return self.expires_at is not None and self.expires_at <= int(time.time())

    def expires_at_datetime(self) -> datetime | None:
        if self.expires_at is None:
            return None
        return datetime.fromtimestamp(self.expires_at, tz=UTC)


@runtime_checkable
class TokenCodec(Protocol):
    """Creates and parses bearer strings."""

    def issue(self, claims: TokenClaims) -> str: ...

    def parse(self, token: str, *, allow_expired: bool = False) -> TokenClaims | None: ...


class OpaqueTokenCodec:
    """Random tokens: 8-byte nanosecond timestamp + 30 random bytes, base64url.

    The claims passed to ``issue`` are not embedded; the grant store is the
    only source of truth, so ``parse`` always returns None.
    """

    def issue(self, claims: TokenClaims) -> str:
        raw = time.time_ns().to_bytes(8, "big") + secrets.token_bytes(_RANDOM_BYTES)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def parse(self, token: str, *, allow_expired: bool = False) -> TokenClaims | None:
        return None


class JWTTokenCodec:
    """Self-contained tokens signed with PyJWT."""

    def __init__(self, secret: str, algorithm: str = _DEFAULT_ALGORITHM):
        if not secret:
            raise ValueError("JWTTokenCodec requires a non-empty secret")
        self._secret = secret
        self.algorithm = algorithm

    def issue(self, claims: TokenClaims) -> str:
        payload: dict[str, Any] = {
            "client": claims.client_id,
            "user_id": claims.user_id,
            "type": claims.type,
            "scopes": list(claims.scopes),
            "iat": claims.issued_at,
            "jti": claims.unique_id,
        }
        if claims.audience is not None:
            payload["aud"] = claims.audience
        if claims.expires_at is not None:
            payload["exp"] = claims.expires_at
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def parse(self, token: str, *, allow_expired: bool = False) -> TokenClaims | None:
        """Verify the signature (and expiry unless *allow_expired*) and return the claims."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "verify_aud": False,
                    "verify_exp": not allow_expired,
                    "require": ["type", "jti"],
                },
            )
        except jwt.ExpiredSignatureError:
            logger.debug("OAuth2: signed token has expired")
            return None
        except jwt.InvalidTokenError as exc:
            logger.debug("OAuth2: signed token rejected: %s", exc)
            return None

        if payload.get("type") not in ("auth", "access", "refresh"):
            return None
        return TokenClaims(
            client_id=str(payload.get("client", "")),
            type=payload["type"],
            scopes=list(payload.get("scopes") or []),
            user_id=payload.get("user_id"),
            audience=payload.get("aud"),
            issued_at=int(payload.get("iat", 0)),
            expires_at=payload.get("exp"),
            unique_id=str(payload["jti"]),
        )
