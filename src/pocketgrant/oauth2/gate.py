# Token verification gate for protected resources.
# Created: 2026-10-17

from __future__ import annotations

import logging
from collections.abc import Iterable

from pocketgrant.oauth2.errors import GrantFailure
from pocketgrant.oauth2.models import TokenIdentity
from pocketgrant.oauth2.storage import GrantStore
from pocketgrant.oauth2.utils import bearer_token, resolve

logger = logging.getLogger(__name__)


class TokenGate:
    """Answers "may this request touch a resource needing these scopes?".

    Callers only ever see an identity or None; why a token was refused is
    written to the debug log and nowhere else.
    """

    def __init__(self, store: GrantStore):
        self.store = store

    async def authorize(
        self, authorization: str | None, scopes: Iterable[str] = ()
    ) -> TokenIdentity | None:
        token = bearer_token(authorization)
        if token is None:
            logger.debug("OAuth2: no bearer token on request")
            return None

        result = await resolve(self.store.verify_access_token(token, list(scopes), False))
        if isinstance(result, TokenIdentity):
            logger.debug("OAuth2: access token is valid for client %s", result.client_id)
            return result

        reason = result.error.value if isinstance(result, GrantFailure) else "unexpected store result"
        logger.debug("OAuth2: access token rejected (%s)", reason)
        return None
