# Grant store for self-contained signed tokens.
# Created: 2026-10-17
#
# Signed tokens are verified from their own claims; nothing has to be looked
# up to accept one. What cannot be expressed in a signature (one-time code
# use, revocation, pair replacement) is tracked here by token id (jti).

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime

from pocketgrant.oauth2.clients import ClientRegistry
from pocketgrant.oauth2.codec import TokenClaims, TokenCodec
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure
from pocketgrant.oauth2.models import GrantSuccess, TokenIdentity
from pocketgrant.oauth2.storage import GrantStore, missing_scopes

logger = logging.getLogger(__name__)


@dataclass
class _CodeUse:
    expires_at: int | None
    access_jti: str | None = None
    refresh_jti: str | None = None
    revoked: bool = False


@dataclass
class _Issued:
    kind: str  # "access" | "refresh"
    identity: tuple[str, str | None]
    expires_at: int | None
    pair: str | None = None
    family: str | None = None


class SignedGrantStore(GrantStore):
    """Grant store paired with ``JWTTokenCodec``."""

    def __init__(self, clients: ClientRegistry, codec: TokenCodec):
        super().__init__(clients)
        self.codec = codec
        self._lock = threading.RLock()
        self._used_codes: dict[str, _CodeUse] = {}
        self._issued: dict[str, _Issued] = {}
        self._revoked: dict[str, int | None] = {}  # jti → exp, None for refresh tokens
        self._by_identity: dict[tuple[str, str | None], str] = {}

    def store_auth_code(
        self,
        code: str,
        client_id: str,
        expires_at: datetime,
        redirect_uri: str | None,
        scopes: list[str],
        user_id: str | None = None,
    ) -> None:
        # Everything needed to verify the code travels inside it.
        return None

    def verify_auth_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str | None,
    ) -> GrantSuccess | GrantFailure:
        failure = self._check_client(client_id, client_secret)
        if failure is not None:
            return failure

        claims = self.codec.parse(code, allow_expired=True)
        if claims is None or claims.type != "auth":
            return GrantFailure(ErrorCode.INVALID_GRANT, "invalid authorization code")

        with self._lock:
            use = self._used_codes.get(claims.unique_id)
            if use is not None:
                logger.warning("OAuth2: signed authorization code reused, revoking issued tokens")
                use.revoked = True
                # The refresh jti is tracked separately: a purged access entry no longer knows its pair.
                for jti in (use.access_jti, use.refresh_jti):
                    if jti:
                        self._revoke(jti)
                use.access_jti = use.refresh_jti = None
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code already used")

            if claims.client_id != client_id:
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code was not issued to this client")
            if claims.audience and claims.audience != redirect_uri:
                return GrantFailure(ErrorCode.INVALID_GRANT, "redirect_uri mismatch")
            if claims.expired:
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code expired")

            self._used_codes[claims.unique_id] = _CodeUse(expires_at=claims.expires_at)
        return GrantSuccess(client_id=client_id, scopes=list(claims.scopes), user_id=claims.user_id)

    def store_access_token(
        self,
        client_id: str,
        auth_code: str | None,
        access_token: str,
        refresh_token: str | None,
        expires_in: int,
        scopes: list[str] | None = None,
        old_refresh_token: str | None = None,
        user_id: str | None = None,
    ) -> GrantFailure | None:
        access = self.codec.parse(access_token, allow_expired=True)
        if access is None:
            logger.error("OAuth2: refusing to record an access token this codec did not sign")
            return GrantFailure(ErrorCode.SERVER_ERROR, "access token was not issued by this codec")
        refresh = self.codec.parse(refresh_token) if refresh_token else None
        identity = (client_id, user_id if user_id is not None else access.user_id)

        with self._lock:
            family: str | None = None
            if auth_code is not None:
                code_claims = self.codec.parse(auth_code, allow_expired=True)
                family = code_claims.unique_id if code_claims else None
                use = self._used_codes.get(family) if family else None
                if use is not None and use.revoked:
                    logger.warning("OAuth2: signed authorization code was replayed, not issuing tokens")
                    return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code already used")
            elif old_refresh_token is not None:
                old = self.codec.parse(old_refresh_token)
                if old is None or old.unique_id in self._revoked:
                    logger.debug("OAuth2: refresh token is no longer live")
                    return GrantFailure(ErrorCode.INVALID_GRANT, "refresh token already used")
                previous = self._issued.get(old.unique_id)
                family = previous.family if previous else None
                logger.debug("OAuth2: revoking old access tokens (refresh)")
                self._revoke(old.unique_id, old)

            if refresh is not None:
                prior = self._by_identity.get(identity)
                if prior is not None:
                    self._revoke(prior)
                self._issued[refresh.unique_id] = _Issued(
                    kind="refresh",
                    identity=identity,
                    expires_at=None,
                    pair=access.unique_id,
                    family=family,
                )
                self._by_identity[identity] = refresh.unique_id

            self._issued[access.unique_id] = _Issued(
                kind="access",
                identity=identity,
                expires_at=access.expires_at,
                pair=refresh.unique_id if refresh else None,
                family=family,
            )
            if family is not None and family in self._used_codes:
                use = self._used_codes[family]
                use.access_jti = access.unique_id
                use.refresh_jti = refresh.unique_id if refresh else None
        return None

    def verify_access_token(
        self,
        token: str,
        scopes: list[str] | None = None,
        is_refresh: bool = False,
    ) -> TokenIdentity | GrantFailure:
        claims = self.codec.parse(token)
        expected = "refresh" if is_refresh else "access"
        if claims is None or claims.type != expected:
            logger.debug("OAuth2: %s token is invalid or expired", expected)
            return GrantFailure(ErrorCode.INVALID_GRANT, f"invalid {expected} token")

        with self._lock:
            if claims.unique_id in self._revoked:
                logger.debug("OAuth2: %s token has been revoked", expected)
                return GrantFailure(ErrorCode.INVALID_GRANT, f"{expected} token revoked")

        lacking = missing_scopes(claims.scopes, scopes)
        if lacking:
            logger.debug("OAuth2: token does not have scope (%s)", " ".join(lacking))
            return GrantFailure(ErrorCode.INVALID_SCOPE, "token lacks required scope")
        return TokenIdentity(
            client_id=claims.client_id,
            user_id=claims.user_id,
            scopes=list(claims.scopes),
            expires_at=claims.expires_at_datetime(),
        )

    def revoke_access_token(self, token: str) -> bool:
        return self._revoke_token(token, "access")

    def revoke_refresh_token(self, token: str) -> bool:
        return self._revoke_token(token, "refresh")

    def purge_expired(self) -> int:
        now = int(time.time())
        with self._lock:
            codes = [k for k, v in self._used_codes.items() if v.expires_at is not None and v.expires_at <= now]
            for k in codes:
                del self._used_codes[k]
            # An expired signature fails on its own; its denylist entry is dead weight.
            revoked = [k for k, exp in self._revoked.items() if exp is not None and exp <= now]
            for k in revoked:
                del self._revoked[k]
            issued = [
                k for k, v in self._issued.items() if v.expires_at is not None and v.expires_at <= now
            ]
            for k in issued:
                del self._issued[k]
            return len(codes) + len(revoked) + len(issued)

    def _revoke_token(self, token: str, kind: str) -> bool:
        claims = self.codec.parse(token, allow_expired=True)
        if claims is None or claims.type != kind:
            return False
        with self._lock:
            if claims.unique_id in self._revoked:
                return False
            self._revoke(claims.unique_id, claims)
            return True

    def _revoke(self, jti: str, claims: TokenClaims | None = None) -> None:
        """Denylist *jti* and whatever it is paired with."""
        entry = self._issued.pop(jti, None)
        if entry is not None:
            self._revoked[jti] = entry.expires_at
        else:
            self._revoked[jti] = claims.expires_at if claims else None
        if entry is None:
            return
        if entry.kind == "refresh" and self._by_identity.get(entry.identity) == jti:
            del self._by_identity[entry.identity]
        if entry.pair:
            paired = self._issued.pop(entry.pair, None)
            self._revoked[entry.pair] = paired.expires_at if paired else None
            if paired is not None and paired.kind == "refresh":
                if self._by_identity.get(paired.identity) == entry.pair:
                    del self._by_identity[paired.identity]
