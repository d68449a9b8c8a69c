# Resource-owner hooks: login, consent, password verification.
# Created: 2026-10-17
#
# Hosts plug their login UI and session handling in here. Each hook may be
# a plain method or a coroutine; the engine awaits whatever comes back.

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from pocketgrant.oauth2.clients import ClientRegistry
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure
from pocketgrant.oauth2.models import GrantSuccess, OwnerDecision

logger = logging.getLogger(__name__)

PasswordResult = GrantSuccess | GrantFailure


class ResourceOwner:
    """Default hooks: every owner is logged in and consents; no password grant.

    Override ``login_resource_owner`` to send users to a login page: return
    ``OwnerDecision.deferred(RedirectResponse(...))`` and the engine stops and
    hands that response back to the host.
    """

    def login_resource_owner(self, context: Any) -> OwnerDecision | Awaitable[OwnerDecision]:
        return OwnerDecision.allowed()

    def confirm_by_resource_owner(
        self, context: Any, client_id: str, scopes: list[str]
    ) -> OwnerDecision | Awaitable[OwnerDecision]:
        return OwnerDecision.allowed()

    def verify_user_password(
        self,
        username: str,
        password: str,
        client_id: str | None,
        client_secret: str | None,
        scopes: list[str],
    ) -> PasswordResult | Awaitable[PasswordResult]:
        return GrantFailure(ErrorCode.UNAUTHORIZED_CLIENT, "password grant is not enabled")


class StaticResourceOwner(ResourceOwner):
    """Password grant against a fixed ``{username: password}`` table."""

    def __init__(self, clients: ClientRegistry, users: Mapping[str, str] | None = None):
        self.clients = clients
        self.users = dict(users or {})

    def verify_user_password(
        self,
        username: str,
        password: str,
        client_id: str | None,
        client_secret: str | None,
        scopes: list[str],
    ) -> PasswordResult:
        if not self.users:
            return super().verify_user_password(username, password, client_id, client_secret, scopes)

        verdict = self.clients.verify_client(client_id or "", scopes)
        if not verdict.ok:
            return GrantFailure(verdict.error or ErrorCode.UNAUTHORIZED_CLIENT)
        if self.clients.authenticate(client_id, client_secret) is None:
            return GrantFailure(ErrorCode.UNAUTHORIZED_CLIENT, "client authentication failed")

        expected = self.users.get(username)
        if expected is None or not hmac.compare_digest(expected.encode(), password.encode()):
            logger.debug("OAuth2: incorrect username/password for %s", username)
            return GrantFailure(ErrorCode.INVALID_GRANT, "incorrect username or password")
        return GrantSuccess(client_id=client_id or "", scopes=list(scopes), user_id=username)


class CallbackResourceOwner(StaticResourceOwner):
    """Hooks supplied as plain callables, for hosts that prefer functions.

    Any callback left as None falls back to the inherited behaviour.
    """

    def __init__(
        self,
        clients: ClientRegistry,
        *,
        login_resource_owner: Callable[..., Any] | None = None,
        confirm_by_resource_owner: Callable[..., Any] | None = None,
        verify_user_password: Callable[..., Any] | None = None,
        users: Mapping[str, str] | None = None,
    ):
        super().__init__(clients, users)
        self._login = login_resource_owner
        self._confirm = confirm_by_resource_owner
        self._verify_password = verify_user_password

    def login_resource_owner(self, context):
        if self._login is None:
            return super().login_resource_owner(context)
        return self._login(context)

    def confirm_by_resource_owner(self, context, client_id, scopes):
        if self._confirm is None:
            return super().confirm_by_resource_owner(context, client_id, scopes)
        return self._confirm(context, client_id, scopes)

    def verify_user_password(self, username, password, client_id, client_secret, scopes):
        if self._verify_password is None:
            return super().verify_user_password(username, password, client_id, client_secret, scopes)
        return self._verify_password(username, password, client_id, client_secret, scopes)
