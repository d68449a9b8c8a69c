# OAuth2 schemas.
# Created: 2026-10-17

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class TokenRequest(BaseModel):
    """Token endpoint parameters, for every grant type.

    Everything is optional here: missing parameters are reported by the
    engine as ``invalid_request`` rather than as a validation error.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    grant_type: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    refresh_token: str | None = None
    username: str | None = None
    password: str | None = None
    scope: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None


class ErrorResponse(BaseModel):
    error: str
    error_description: str | None = None
    error_uri: str | None = None


class RevokeRequest(BaseModel):
    """Token revocation request."""

    model_config = ConfigDict(extra="ignore")

    token: str | None = None
    token_type_hint: str | None = None


class WhoAmIResponse(BaseModel):
    client_id: str
    user_id: str | None = None
    scopes: list[str]
