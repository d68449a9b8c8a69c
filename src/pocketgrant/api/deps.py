# Shared FastAPI dependencies for protected routes.
# Created: 2026-10-17

from __future__ import annotations

from fastapi import HTTPException, Request

from pocketgrant.oauth2.models import TokenIdentity
from pocketgrant.oauth2.server import AuthorizationServer


def get_oauth_server(request: Request) -> AuthorizationServer:
    server = getattr(request.app.state, "oauth_server", None)
    if server is None:
        raise RuntimeError("No AuthorizationServer on app.state; call mount_oauth() first")
    return server


def require_oauth(*scopes: str):
    """FastAPI dependency that checks the bearer token and its scopes.

    Usage::

        @app.get("/api/track_location")
        async def track(identity: TokenIdentity = Depends(require_oauth("track_location"))):
            ...

    Every failure is the same bare 401 so callers cannot tell a missing
    scope from an unknown token.
    """

    async def _check(request: Request) -> TokenIdentity:
        server = get_oauth_server(request)
        identity = await server.verify_token_and_scope(
            request.headers.get("Authorization"), scopes
        )
        if identity is None:
            raise HTTPException(
                status_code=401,
                detail="Unauthorized",
                headers={"WWW-Authenticate": "Bearer"},
            )
        request.state.oauth = identity
        return identity

    return _check
