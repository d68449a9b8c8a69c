# OAuth2 Authorization Server.
# Created: 2026-10-17
#
# Implements the authorization code grant (RFC 6749 §4.1) with refresh
# tokens, plus the implicit, resource owner password and client credentials
# grants. The engine is framework-agnostic: it takes request parameters and
# returns outcomes the HTTP layer turns into redirects or JSON.

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pocketgrant.oauth2.clients import ClientRegistry, StaticClientRegistry
from pocketgrant.oauth2.codec import JWTTokenCodec, OpaqueTokenCodec, TokenClaims, TokenCodec
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure, invalid_request
from pocketgrant.oauth2.gate import TokenGate
from pocketgrant.oauth2.models import (
    ClientVerdict,
    Decision,
    GrantSuccess,
    OwnerDecision,
    TokenIdentity,
    parse_scopes,
)
from pocketgrant.oauth2.owner import ResourceOwner, StaticResourceOwner
from pocketgrant.oauth2.signed_storage import SignedGrantStore
from pocketgrant.oauth2.storage import GrantStore, InMemoryGrantStore
from pocketgrant.oauth2.utils import append_params, basic_credentials, bearer_token, resolve

if TYPE_CHECKING:
    from pocketgrant.config import Settings

logger = logging.getLogger(__name__)

# Token lifetimes (seconds)
AUTH_CODE_TTL = 600
ACCESS_TOKEN_TTL = 3600

NO_CACHE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_AUTHORIZE_MISSING = (
    "the request was missing one of: client_id, response_type;"
    'or response_type did not equal "code" or "token"'
)
_TOKEN_MISSING = (
    "the request was missing one of: grant_type, client_id, client_secret, "
    "code, redirect_uri, refresh_token;"
    'or grant_type did not equal "authorization_code", "refresh_token", '
    '"password" or "client_credentials"'
)


@dataclass
class AuthorizeOutcome:
    """What the authorize leg wants the HTTP layer to do.

    Exactly one of ``location`` (302), ``body`` (400 JSON) or ``response``
    (a hook's own response, returned verbatim) is meaningful. A deferred
    outcome with no response means the host has nothing left to send.
    """

    status_code: int
    location: str | None = None
    body: dict[str, str] | None = None
    response: Any = None
    deferred: bool = False

    @classmethod
    def redirect(cls, location: str) -> AuthorizeOutcome:
        return cls(status_code=302, location=location)

    @classmethod
    def bad_request(cls, failure: GrantFailure) -> AuthorizeOutcome:
        return cls(status_code=400, body=failure.to_dict(with_uri=True))

    @classmethod
    def defer(cls, response: Any = None) -> AuthorizeOutcome:
        return cls(status_code=200, response=response, deferred=True)


@dataclass
class TokenOutcome:
    """Status, JSON body and headers for the token endpoint."""

    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(default_factory=lambda: dict(NO_CACHE_HEADERS))

    @classmethod
    def error(cls, failure: GrantFailure, *, with_uri: bool = False) -> TokenOutcome:
        return cls(status_code=400, body=failure.to_dict(with_uri=with_uri))


class AuthorizationServer:
    """OAuth2 authorization server."""

    def __init__(
        self,
        clients: ClientRegistry,
        store: GrantStore | None = None,
        codec: TokenCodec | None = None,
        owner: ResourceOwner | None = None,
        *,
        auth_code_ttl: int = AUTH_CODE_TTL,
        access_token_ttl: int = ACCESS_TOKEN_TTL,
    ):
        self.clients = clients
        self.codec = codec or OpaqueTokenCodec()
        self.store = store or InMemoryGrantStore(clients)
        self.owner = owner or StaticResourceOwner(clients)
        self.auth_code_ttl = auth_code_ttl
        self.access_token_ttl = access_token_ttl
        self.gate = TokenGate(self.store)
        self._grants: dict[str, Callable[..., Awaitable[TokenOutcome]]] = {
            "authorization_code": self._authorization_code_grant,
            "refresh_token": self._refresh_token_grant,
            "password": self._password_grant,
            "client_credentials": self._client_credentials_grant,
        }

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> AuthorizationServer:
        """Build a server from configuration.

        A ``jwt_secret`` selects signed tokens and the signed store; otherwise
        tokens are opaque and live in the in-memory store. Any constructor
        argument passed in *overrides* wins.
        """
        clients = overrides.pop("clients", None)
        if clients is None:
            clients = StaticClientRegistry(
                [c.to_client(client_id) for client_id, c in settings.clients.items()]
            )
        codec = overrides.pop("codec", None)
        store = overrides.pop("store", None)
        if codec is None:
            if settings.jwt_secret:
                codec = JWTTokenCodec(settings.jwt_secret, settings.jwt_algorithm)
            else:
                codec = OpaqueTokenCodec()
        if store is None:
            if isinstance(codec, JWTTokenCodec):
                store = SignedGrantStore(clients, codec)
            else:
                store = InMemoryGrantStore(clients, persist_path=settings.persist_path)
        owner = overrides.pop("owner", None) or StaticResourceOwner(clients, settings.users)
        overrides.setdefault("auth_code_ttl", settings.auth_code_ttl)
        overrides.setdefault("access_token_ttl", settings.access_token_ttl)
        return cls(clients, store, codec, owner, **overrides)

    # ---- authorize leg ----------------------------------------------------

    async def authorize(
        self, params: Mapping[str, str | None], context: Any = None
    ) -> AuthorizeOutcome:
        """Handle an authorization request (``response_type`` code or token).

        *context* is passed untouched to the resource-owner hooks; with the
        FastAPI binding it is the ``Request``.
        """
        client_id = params.get("client_id")
        response_type = params.get("response_type")
        redirect_uri = params.get("redirect_uri")
        state = params.get("state")
        scopes = parse_scopes(params.get("scope"))

        if not client_id or response_type not in ("code", "token"):
            return AuthorizeOutcome.bad_request(invalid_request(_AUTHORIZE_MISSING))

        if not redirect_uri:
            redirect_uri = self.clients.default_redirect_uri(client_id)
            if not redirect_uri:
                return AuthorizeOutcome.bad_request(
                    invalid_request("the request was missing redirect_uri")
                )
        elif not self.clients.redirect_uri_allowed(client_id, redirect_uri):
            return AuthorizeOutcome.bad_request(
                invalid_request("redirect_uri is not registered for this client")
            )

        implicit = response_type == "token"
        user_id: str | None = None
        failure: GrantFailure | None = None

        verdict = await resolve(self.clients.verify_client(client_id, scopes, context=context))
        if isinstance(verdict, ClientVerdict) and verdict.ok:
            login = await resolve(self.owner.login_resource_owner(context))
            if not isinstance(login, OwnerDecision):
                failure = GrantFailure(
                    ErrorCode.SERVER_ERROR, "call to login_resource_owner returned unexpected value"
                )
            elif login.decision is not Decision.ALLOWED:
                logger.debug("OAuth2: resource owner not logged in")
                return AuthorizeOutcome.defer(login.response)
            else:
                logger.debug("OAuth2: resource owner is logged in")
                user_id = login.user_id
                consent = await resolve(
                    self.owner.confirm_by_resource_owner(context, client_id, list(scopes))
                )
                decision = consent.decision if isinstance(consent, OwnerDecision) else None
                if decision is Decision.DEFERRED:
                    logger.debug("OAuth2: resource owner to confirm scopes")
                    return AuthorizeOutcome.defer(consent.response)
                if decision is Decision.DENIED:
                    logger.debug("OAuth2: resource owner denied scopes")
                    failure = GrantFailure(ErrorCode.ACCESS_DENIED)
                elif decision is None:
                    failure = GrantFailure(
                        ErrorCode.SERVER_ERROR,
                        "call to confirm_by_resource_owner returned unexpected value",
                    )
        elif isinstance(verdict, ClientVerdict) and verdict.error is not None:
            failure = GrantFailure(verdict.error)
        else:
            failure = GrantFailure(
                ErrorCode.SERVER_ERROR, "call to verify_client returned unexpected value"
            )

        if failure is not None:
            response = failure.to_dict()
        elif implicit:
            response = await self._implicit_token(client_id, scopes, user_id)
        else:
            response = {"code": await self._issue_auth_code(client_id, redirect_uri, scopes, user_id)}

        if state is not None:
            response["state"] = state
        return AuthorizeOutcome.redirect(append_params(redirect_uri, response, fragment=implicit))

    async def _issue_auth_code(
        self, client_id: str, redirect_uri: str, scopes: list[str], user_id: str | None
    ) -> str:
        logger.debug("OAuth2: generating auth code for %s", client_id)
        expires_at = int(time.time()) + self.auth_code_ttl
        code = self.codec.issue(
            TokenClaims(
                client_id=client_id,
                type="auth",
                scopes=scopes,
                user_id=user_id,
                audience=redirect_uri,
                expires_at=expires_at,
            )
        )
        await resolve(
            self.store.store_auth_code(
                code,
                client_id,
                datetime.fromtimestamp(expires_at, tz=UTC),
                redirect_uri,
                scopes,
                user_id,
            )
        )
        return code

    async def _implicit_token(
        self, client_id: str, scopes: list[str], user_id: str | None
    ) -> dict[str, str]:
        # RFC 6749 §4.2: implicit tokens are never refreshable.
        logger.debug("OAuth2: generating implicit access token for %s", client_id)
        access_token = self.codec.issue(
            TokenClaims(
                client_id=client_id,
                type="access",
                scopes=scopes,
                user_id=user_id,
                expires_at=int(time.time()) + self.access_token_ttl,
            )
        )
        stored = await resolve(
            self.store.store_access_token(
                client_id,
                None,
                access_token,
                None,
                self.access_token_ttl,
                scopes,
                None,
                user_id=user_id,
            )
        )
        if isinstance(stored, GrantFailure):
            return stored.to_dict()
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": str(self.access_token_ttl),
        }

    # ---- token leg --------------------------------------------------------

    async def token(
        self, params: Mapping[str, str | None], authorization: str | None = None
    ) -> TokenOutcome:
        """Handle a token request, dispatching on ``grant_type``.

        *authorization* is the raw ``Authorization`` header, which may carry
        HTTP Basic client credentials or a Bearer refresh token.
        """
        grant = self._grants.get(params.get("grant_type") or "")
        if grant is None:
            return TokenOutcome.error(invalid_request(_TOKEN_MISSING), with_uri=True)

        client_id = params.get("client_id")
        client_secret = params.get("client_secret")
        basic = basic_credentials(authorization)
        if basic is not None and not client_id:
            client_id, client_secret = basic
        return await grant(params, client_id, client_secret, authorization)

    async def _authorization_code_grant(self, params, client_id, client_secret, authorization):
        code = params.get("code")
        redirect_uri = params.get("redirect_uri")
        if not code or not redirect_uri:
            return TokenOutcome.error(invalid_request(_TOKEN_MISSING), with_uri=True)

        result = await resolve(
            self.store.verify_auth_code(client_id or "", client_secret or "", code, redirect_uri)
        )
        return await self._issue_tokens(result, "verify_auth_code", auth_code=code)

    async def _refresh_token_grant(self, params, client_id, client_secret, authorization):
        refresh_token = params.get("refresh_token") or bearer_token(authorization)
        if not refresh_token:
            return TokenOutcome.error(invalid_request(_TOKEN_MISSING), with_uri=True)

        identity = await resolve(self.store.verify_access_token(refresh_token, None, True))
        if isinstance(identity, GrantFailure):
            return TokenOutcome.error(identity)
        if not isinstance(identity, TokenIdentity):
            return self._server_error("verify_access_token")
        if client_id and client_id != identity.client_id:
            return TokenOutcome.error(
                GrantFailure(ErrorCode.INVALID_GRANT, "refresh token was not issued to this client")
            )

        # Narrowing is allowed; scopes beyond the refreshed grant are not.
        requested = parse_scopes(params.get("scope"))
        if any(s not in identity.scopes for s in requested):
            return TokenOutcome.error(GrantFailure(ErrorCode.INVALID_SCOPE))
        scopes = requested or list(identity.scopes)

        result = GrantSuccess(client_id=identity.client_id, scopes=scopes, user_id=identity.user_id)
        return await self._issue_tokens(result, "verify_access_token", old_refresh_token=refresh_token)

    async def _password_grant(self, params, client_id, client_secret, authorization):
        username = params.get("username")
        password = params.get("password")
        if not username or not password:
            return TokenOutcome.error(
                invalid_request(
                    "the request was missing one of: client_id, client_secret, username, password"
                ),
                with_uri=True,
            )

        result = await resolve(
            self.owner.verify_user_password(
                username, password, client_id, client_secret, parse_scopes(params.get("scope"))
            )
        )
        return await self._issue_tokens(result, "verify_user_password")

    async def _client_credentials_grant(self, params, client_id, client_secret, authorization):
        if not client_id or not client_secret:
            return TokenOutcome.error(
                invalid_request("the request was missing one of: client_id, client_secret"),
                with_uri=True,
            )

        scopes = parse_scopes(params.get("scope"))
        verdict = await resolve(self.clients.verify_client(client_id, scopes))
        if not isinstance(verdict, ClientVerdict) or not (verdict.ok or verdict.error):
            return self._server_error("verify_client")
        if not verdict.ok:
            return TokenOutcome.error(GrantFailure(verdict.error))
        if self.clients.authenticate(client_id, client_secret) is None:
            return TokenOutcome.error(
                GrantFailure(ErrorCode.UNAUTHORIZED_CLIENT, "client authentication failed")
            )

        # The client acts on its own behalf, so it is also the "user".
        result = GrantSuccess(client_id=client_id, scopes=scopes, user_id=client_id)
        return await self._issue_tokens(result, "verify_client", with_refresh=False)

    async def _issue_tokens(
        self,
        result: Any,
        method: str,
        *,
        auth_code: str | None = None,
        old_refresh_token: str | None = None,
        with_refresh: bool = True,
    ) -> TokenOutcome:
        if isinstance(result, GrantFailure):
            return TokenOutcome.error(result)
        if not isinstance(result, GrantSuccess):
            return self._server_error(method)

        logger.debug("OAuth2: generating access token for %s", result.client_id)
        access_token = self.codec.issue(
            TokenClaims(
                client_id=result.client_id,
                type="access",
                scopes=result.scopes,
                user_id=result.user_id,
                expires_at=int(time.time()) + self.access_token_ttl,
            )
        )
        refresh_token = None
        if with_refresh:
            refresh_token = self.codec.issue(
                TokenClaims(
                    client_id=result.client_id,
                    type="refresh",
                    scopes=result.scopes,
                    user_id=result.user_id,
                )
            )

        stored = await resolve(
            self.store.store_access_token(
                result.client_id,
                auth_code,
                access_token,
                refresh_token,
                self.access_token_ttl,
                list(result.scopes),
                old_refresh_token,
                user_id=result.user_id,
            )
        )
        if isinstance(stored, GrantFailure):
            return TokenOutcome.error(stored)

        body: dict[str, Any] = {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": self.access_token_ttl,
        }
        if refresh_token is not None:
            body["refresh_token"] = refresh_token
        return TokenOutcome(status_code=200, body=body)

    def _server_error(self, method: str) -> TokenOutcome:
        logger.error("OAuth2: call to %s returned unexpected value", method)
        return TokenOutcome.error(
            GrantFailure(ErrorCode.SERVER_ERROR, f"call to {method} returned unexpected value")
        )

    # ---- revocation & resource checks --------------------------------------

    async def revoke(self, token: str, token_type_hint: str | None = None) -> bool:
        """Revoke an access or refresh token (either revokes its pair)."""
        if token_type_hint == "refresh_token":
            attempts = (self.store.revoke_refresh_token, self.store.revoke_access_token)
        else:
            attempts = (self.store.revoke_access_token, self.store.revoke_refresh_token)
        for attempt in attempts:
            if await resolve(attempt(token)):
                return True
        return False

    async def verify_token_and_scope(
        self, authorization: str | None, scopes: list[str] | tuple[str, ...] = ()
    ) -> TokenIdentity | None:
        return await self.gate.authorize(authorization, scopes)
