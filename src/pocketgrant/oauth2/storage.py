# OAuth2 grant storage: auth codes, access tokens, refresh tokens.
# Created: 2026-10-17
#
# GrantStore is the persistence contract the engine talks to. The default
# InMemoryGrantStore keeps everything behind one lock and can optionally
# persist to a JSON file so tokens survive restarts.

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pocketgrant.oauth2.clients import ClientRegistry
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure
from pocketgrant.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    GrantSuccess,
    RefreshToken,
    TokenIdentity,
)

logger = logging.getLogger(__name__)


def missing_scopes(granted: Iterable[str], requested: Iterable[str] | None) -> list[str]:
    have = set(granted)
    return [s for s in (requested or ()) if s not in have]


def _mask(token: str) -> str:
    return f"{token[:6]}…" if token else "<empty>"


class GrantStore(ABC):
    """Storage contract for codes and tokens.

    All lookups on unknown keys are ordinary negative results
    (``GrantFailure``), never exceptions.
    """

    def __init__(self, clients: ClientRegistry):
        self.clients = clients

    @abstractmethod
    def store_auth_code(
        self,
        code: str,
        client_id: str,
        expires_at: datetime,
        redirect_uri: str | None,
        scopes: list[str],
        user_id: str | None = None,
    ) -> None: ...

    @abstractmethod
    def verify_auth_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str | None,
    ) -> GrantSuccess | GrantFailure: ...

    @abstractmethod
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
        """Install a new token pair.

        Returns a ``GrantFailure`` instead of installing anything when
        *old_refresh_token* is no longer live or *auth_code* has been
        replayed, so a refresh token or code is spent at most once.
        """

    @abstractmethod
    def verify_access_token(
        self,
        token: str,
        scopes: list[str] | None = None,
        is_refresh: bool = False,
    ) -> TokenIdentity | GrantFailure: ...

    @abstractmethod
    def revoke_access_token(self, token: str) -> bool:
        """Revoke an access token and its paired refresh token."""

    @abstractmethod
    def revoke_refresh_token(self, token: str) -> bool:
        """Revoke a refresh token and its paired access token."""

    def purge_expired(self) -> int:
        """Drop expired records. Returns how many were removed."""
        return 0

    def _check_client(self, client_id: str, client_secret: str) -> GrantFailure | None:
        if not client_id or self.clients.get_client(client_id) is None:
            return GrantFailure(ErrorCode.UNAUTHORIZED_CLIENT, "unknown client")
        if self.clients.authenticate(client_id, client_secret) is None:
            return GrantFailure(ErrorCode.UNAUTHORIZED_CLIENT, "client authentication failed")
        return None


class InMemoryGrantStore(GrantStore):
    """Default grant store.

    Every public method runs under a single re-entrant lock, which makes the
    check-and-mark-used step on codes and the revoke-and-replace step on
    refresh atomic.
    """

    def __init__(self, clients: ClientRegistry, persist_path: Path | None = None):
        super().__init__(clients)
        self._lock = threading.RLock()
        self._codes: dict[str, AuthorizationCode] = {}
        self._access: dict[str, AccessToken] = {}
        self._refresh: dict[str, RefreshToken] = {}
        # (client_id, user_id) → the one live refresh token for that identity
        self._by_identity: dict[tuple[str, str | None], str] = {}
        self._persist_path = persist_path
        if persist_path is not None:
            self._load()

    # ---- auth codes -------------------------------------------------------

    def store_auth_code(
        self,
        code: str,
        client_id: str,
        expires_at: datetime,
        redirect_uri: str | None,
        scopes: list[str],
        user_id: str | None = None,
    ) -> None:
        with self._lock:
            if code in self._codes:
                return
            self._codes[code] = AuthorizationCode(
                code=code,
                client_id=client_id,
                redirect_uri=redirect_uri,
                scopes=list(scopes),
                expires_at=expires_at,
                user_id=user_id,
            )
            self._save()

    def verify_auth_code(
        self,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str | None,
    ) -> GrantSuccess | GrantFailure:
        with self._lock:
            failure = self._check_client(client_id, client_secret)
            if failure is not None:
                return failure

            record = self._codes.get(code)
            if record is None:
                return GrantFailure(ErrorCode.INVALID_GRANT, "unknown authorization code")

            if record.used:
                # Reuse means the code leaked: kill whatever it produced.
                logger.warning(
                    "OAuth2: authorization code %s reused, revoking issued tokens", _mask(code)
                )
                record.revoked = True
                self._revoke_family(code)
                record.issued_access_token = None
                self._save()
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code already used")

            if record.client_id != client_id:
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code was not issued to this client")

            if record.redirect_uri and record.redirect_uri != redirect_uri:
                return GrantFailure(ErrorCode.INVALID_GRANT, "redirect_uri mismatch")

            if record.expires_at <= datetime.now(UTC):
                return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code expired")

            record.used = True
            self._save()
            return GrantSuccess(client_id=client_id, scopes=list(record.scopes), user_id=record.user_id)

    # ---- tokens -----------------------------------------------------------

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
        with self._lock:
            family = auth_code
            if auth_code is not None:
                code_record = self._codes.get(auth_code)
                if code_record is not None:
                    if code_record.revoked:
                        logger.warning(
                            "OAuth2: authorization code %s was replayed, not issuing tokens",
                            _mask(auth_code),
                        )
                        return GrantFailure(ErrorCode.INVALID_GRANT, "authorization code already used")
                    if user_id is None:
                        user_id = code_record.user_id
                    if scopes is None:
                        scopes = list(code_record.scopes)
            elif old_refresh_token is not None:
                previous = self._refresh.get(old_refresh_token)
                if previous is None:
                    # Rotated or revoked since it was verified.
                    logger.debug("OAuth2: refresh token %s is no longer live", _mask(old_refresh_token))
                    return GrantFailure(ErrorCode.INVALID_GRANT, "refresh token already used")
                if scopes is None:
                    scopes = list(previous.scopes)
                if user_id is None:
                    user_id = previous.user_id
                family = previous.auth_code
                logger.debug("OAuth2: revoking old access tokens (refresh)")
                self._revoke_refresh(old_refresh_token)

            if refresh_token is not None:
                prior = self._by_identity.get((client_id, user_id))
                if prior is not None:
                    logger.debug("OAuth2: replacing previous token pair for client %s", client_id)
                    self._revoke_refresh(prior)

            now = datetime.now(UTC)
            self._access[access_token] = AccessToken(
                token=access_token,
                client_id=client_id,
                scopes=list(scopes or []),
                expires_at=now + timedelta(seconds=expires_in),
                user_id=user_id,
                refresh_token=refresh_token,
                auth_code=family,
                created_at=now,
            )
            if refresh_token is not None:
                self._refresh[refresh_token] = RefreshToken(
                    token=refresh_token,
                    client_id=client_id,
                    scopes=list(scopes or []),
                    access_token=access_token,
                    user_id=user_id,
                    auth_code=family,
                    created_at=now,
                )
                self._by_identity[(client_id, user_id)] = refresh_token

            if family is not None and family in self._codes:
                self._codes[family].issued_access_token = access_token
            self._save()
            return None

    def verify_access_token(
        self,
        token: str,
        scopes: list[str] | None = None,
        is_refresh: bool = False,
    ) -> TokenIdentity | GrantFailure:
        with self._lock:
            if is_refresh:
                refresh = self._refresh.get(token)
                if refresh is None:
                    logger.debug("OAuth2: refresh token does not exist")
                    return GrantFailure(ErrorCode.INVALID_GRANT, "unknown refresh token")
                granted, identity = refresh.scopes, TokenIdentity(
                    client_id=refresh.client_id,
                    user_id=refresh.user_id,
                    scopes=list(refresh.scopes),
                )
            else:
                access = self._access.get(token)
                if access is None:
                    logger.debug("OAuth2: access token does not exist")
                    return GrantFailure(ErrorCode.INVALID_GRANT, "unknown access token")
                if access.expires_at <= datetime.now(UTC):
                    logger.debug("OAuth2: access token has expired")
                    # The paired refresh token stays usable.
                    del self._access[token]
                    self._save()
                    return GrantFailure(ErrorCode.INVALID_GRANT, "access token expired")
                granted, identity = access.scopes, TokenIdentity(
                    client_id=access.client_id,
                    user_id=access.user_id,
                    scopes=list(access.scopes),
                    expires_at=access.expires_at,
                )

            lacking = missing_scopes(granted, scopes)
            if lacking:
                logger.debug("OAuth2: token does not have scope (%s)", " ".join(lacking))
                return GrantFailure(ErrorCode.INVALID_SCOPE, "token lacks required scope")
            return identity

    def revoke_access_token(self, token: str) -> bool:
        with self._lock:
            revoked = self._revoke_access(token)
            if revoked:
                self._save()
            return revoked

    def revoke_refresh_token(self, token: str) -> bool:
        with self._lock:
            revoked = self._revoke_refresh(token)
            if revoked:
                self._save()
            return revoked

    def purge_expired(self) -> int:
        with self._lock:
            now = datetime.now(UTC)
            codes = [k for k, v in self._codes.items() if v.expires_at <= now]
            for k in codes:
                del self._codes[k]
            tokens = [k for k, v in self._access.items() if v.expires_at <= now]
            for k in tokens:
                del self._access[k]
            removed = len(codes) + len(tokens)
            if removed:
                self._save()
            return removed

    def _revoke_access(self, token: str) -> bool:
        access = self._access.pop(token, None)
        if access is None:
            return False
        if access.refresh_token:
            refresh = self._refresh.pop(access.refresh_token, None)
            if refresh is not None:
                self._forget_identity(refresh)
        return True

    def _revoke_refresh(self, token: str) -> bool:
        refresh = self._refresh.pop(token, None)
        if refresh is None:
            return False
        self._access.pop(refresh.access_token, None)
        self._forget_identity(refresh)
        return True

    def _revoke_family(self, code: str) -> None:
        """Revoke every token descended from *code*, expired access tokens included."""
        for token in [t for t, r in self._refresh.items() if r.auth_code == code]:
            self._revoke_refresh(token)
        for token in [t for t, a in self._access.items() if a.auth_code == code]:
            self._revoke_access(token)

    def _forget_identity(self, refresh: RefreshToken) -> None:
        key = (refresh.client_id, refresh.user_id)
        if self._by_identity.get(key) == refresh.token:
            del self._by_identity[key]

    # ---- persistence ------------------------------------------------------

    def _load(self) -> None:
        """Load codes and tokens from disk on startup."""
        path = self._persist_path
        if path is None or not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            for entry in data.get("codes", []):
                entry["expires_at"] = datetime.fromisoformat(entry["expires_at"])
                code = AuthorizationCode(**entry)
                self._codes[code.code] = code
            for entry in data.get("access_tokens", []):
                entry["expires_at"] = datetime.fromisoformat(entry["expires_at"])
                entry["created_at"] = datetime.fromisoformat(entry["created_at"])
                access = AccessToken(**entry)
                self._access[access.token] = access
            for entry in data.get("refresh_tokens", []):
                entry["created_at"] = datetime.fromisoformat(entry["created_at"])
                refresh = RefreshToken(**entry)
                self._refresh[refresh.token] = refresh
                self._by_identity[(refresh.client_id, refresh.user_id)] = refresh.token
            logger.debug(
                "Loaded %d codes, %d access and %d refresh tokens from %s",
                len(self._codes),
                len(self._access),
                len(self._refresh),
                path,
            )
        except (json.JSONDecodeError, OSError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load OAuth grants from %s: %s", path, exc)

    def _save(self) -> None:
        """Persist codes and tokens to disk."""
        path = self._persist_path
        if path is None:
            return
        data = {
            "codes": [
                {
                    "code": c.code,
                    "client_id": c.client_id,
                    "redirect_uri": c.redirect_uri,
                    "scopes": c.scopes,
                    "expires_at": c.expires_at.isoformat(),
                    "user_id": c.user_id,
                    "used": c.used,
                    "issued_access_token": c.issued_access_token,
                    "revoked": c.revoked,
                }
                for c in self._codes.values()
            ],
            "access_tokens": [
                {
                    "token": a.token,
                    "client_id": a.client_id,
                    "scopes": a.scopes,
                    "expires_at": a.expires_at.isoformat(),
                    "user_id": a.user_id,
                    "refresh_token": a.refresh_token,
                    "auth_code": a.auth_code,
                    "created_at": a.created_at.isoformat(),
                }
                for a in self._access.values()
            ],
            "refresh_tokens": [
                {
                    "token": r.token,
                    "client_id": r.client_id,
                    "scopes": r.scopes,
                    "access_token": r.access_token,
                    "user_id": r.user_id,
                    "auth_code": r.auth_code,
                    "created_at": r.created_at.isoformat(),
                }
                for r in self._refresh.values()
            ],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2))
        try:
            path.chmod(0o600)
        except OSError:
            pass
