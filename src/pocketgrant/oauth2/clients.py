# OAuth2 client registry.
# Created: 2026-10-17

from __future__ import annotations

import hmac
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from pocketgrant.oauth2.errors import ErrorCode
from pocketgrant.oauth2.models import ClientVerdict, OAuthClient

logger = logging.getLogger(__name__)


class ClientRegistry(ABC):
    """Answers "does this client exist, with this secret, permitted these scopes?".

    Hosts backed by a database subclass this and implement ``get_client``;
    the checks below then come for free. Implementations must not mutate
    state from any of these methods.
    """

    @abstractmethod
    def get_client(self, client_id: str) -> OAuthClient | None: ...

    def verify_client(
        self, client_id: str, scopes: Iterable[str], context: Any = None
    ) -> ClientVerdict:
        """Check that *client_id* exists and may be granted every scope.

        *context* is the host request on the authorize leg (None on the token
        leg). The default registry ignores it; override to look at headers,
        tenants and the like.
        """
        client = self.get_client(client_id) if client_id else None
        if client is None:
            logger.debug("OAuth2: client (%s) does not exist", client_id)
            return ClientVerdict.deny(ErrorCode.UNAUTHORIZED_CLIENT)

        for scope in scopes:
            if scope not in client.scopes:
                logger.debug("OAuth2: client lacks scope (%s)", scope)
                return ClientVerdict.deny(ErrorCode.INVALID_SCOPE)
            if not client.scopes[scope]:
                logger.debug("OAuth2: client cannot scope (%s)", scope)
                return ClientVerdict.deny(ErrorCode.ACCESS_DENIED)
        return ClientVerdict.allow()

    def authenticate(self, client_id: str | None, client_secret: str | None) -> OAuthClient | None:
        """Return the client if *client_secret* matches, None otherwise."""
        if not client_id:
            return None
        client = self.get_client(client_id)
        if client is None:
            return None
        if not hmac.compare_digest(
            (client_secret or "").encode(), client.client_secret.encode()
        ):
            logger.debug("OAuth2: client (%s) secret mismatch", client_id)
            return None
        return client

    def redirect_uri_allowed(self, client_id: str, redirect_uri: str) -> bool:
        """Exact-string match against the client's registered URIs, if it has any."""
        client = self.get_client(client_id)
        if client is None or not client.redirect_uris:
            return True
        return redirect_uri in client.redirect_uris

    def default_redirect_uri(self, client_id: str) -> str | None:
        client = self.get_client(client_id)
        if client is not None and len(client.redirect_uris) == 1:
            return client.redirect_uris[0]
        return None


class StaticClientRegistry(ClientRegistry):
    """Registry over a fixed set of clients, typically from configuration."""

    def __init__(self, clients: Iterable[OAuthClient] = ()):
        self._clients: dict[str, OAuthClient] = {c.client_id: c for c in clients}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping]) -> StaticClientRegistry:
        """Build from ``{client_id: {"client_secret": ..., "scopes": {...}}}``."""
        clients = []
        for client_id, entry in data.items():
            clients.append(
                OAuthClient(
                    client_id=str(client_id),
                    client_secret=str(entry.get("client_secret", "")),
                    scopes={str(k): bool(v) for k, v in (entry.get("scopes") or {}).items()},
                    redirect_uris=list(entry.get("redirect_uris") or []),
                    name=str(entry.get("name", "")),
                )
            )
        return cls(clients)

    def get_client(self, client_id: str) -> OAuthClient | None:
        return self._clients.get(client_id)

    def __contains__(self, client_id: object) -> bool:
        return client_id in self._clients

    def __len__(self) -> int:
        return len(self._clients)
