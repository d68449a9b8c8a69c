# OAuth2 router: authorize, access_token, revoke.
# Created: 2026-10-17

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, ValidationError

from pocketgrant.api.schemas import ErrorResponse, RevokeRequest, TokenRequest, TokenResponse
from pocketgrant.oauth2.errors import invalid_request
from pocketgrant.oauth2.server import NO_CACHE_HEADERS

if TYPE_CHECKING:
    from pocketgrant.config import Settings
    from pocketgrant.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)


async def _read_body(request: Request) -> dict[str, Any]:
    """Form-encoded per RFC 6749; JSON accepted too."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        data = await request.json()
        if not isinstance(data, dict):
            raise ValueError("JSON body must be an object")
        return data
    form = await request.form()
    return {k: v for k, v in form.items() if isinstance(v, str)}


async def _parse(request: Request, schema: type[BaseModel]) -> BaseModel | None:
    try:
        return schema.model_validate(await _read_body(request))
    except (ValueError, ValidationError, json.JSONDecodeError) as exc:
        logger.debug("OAuth2: unreadable request body: %s", exc)
        return None


def create_oauth_router(server: AuthorizationServer, settings: Settings) -> APIRouter:
    """Build the OAuth2 endpoints at the routes named in *settings*."""
    router = APIRouter(tags=["OAuth2"])

    @router.get(settings.authorize_route, responses={400: {"model": ErrorResponse}})
    async def authorize(request: Request):
        """Authorization request (response_type=code or token)."""
        outcome = await server.authorize(dict(request.query_params), context=request)

        if outcome.deferred:
            if isinstance(outcome.response, Response):
                return outcome.response
            # The hook stopped the flow without saying where to go.
            return JSONResponse(status_code=401, content={"detail": "Resource owner login required"})

        if outcome.location is not None:
            return RedirectResponse(outcome.location, status_code=302)
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    @router.post(
        settings.access_token_route,
        responses={200: {"model": TokenResponse}, 400: {"model": ErrorResponse}},
    )
    async def access_token(request: Request):
        """Exchange an authorization code, refresh token, password or client credentials."""
        body = await _parse(request, TokenRequest)
        if body is None:
            failure = invalid_request("the request body could not be parsed")
            return JSONResponse(
                status_code=400,
                content=failure.to_dict(with_uri=True),
                headers=NO_CACHE_HEADERS,
            )

        outcome = await server.token(
            body.model_dump(exclude_none=True),
            authorization=request.headers.get("Authorization"),
        )
        return JSONResponse(
            status_code=outcome.status_code, content=outcome.body, headers=outcome.headers
        )

    @router.post(settings.revoke_route)
    async def revoke_token(request: Request):
        """Revoke an access or refresh token."""
        body = await _parse(request, RevokeRequest)
        if body is None or not body.token:
            return JSONResponse(
                status_code=400,
                content=invalid_request("the request was missing token").to_dict(with_uri=True),
            )
        revoked = await server.revoke(body.token, body.token_type_hint)
        return {"revoked": revoked}

    return router
