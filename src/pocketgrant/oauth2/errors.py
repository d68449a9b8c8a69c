# OAuth2 error taxonomy.
# Created: 2026-10-17

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Standard RFC 6749 error codes surfaced by the server."""

    INVALID_REQUEST = "invalid_request"
    UNAUTHORIZED_CLIENT = "unauthorized_client"
    ACCESS_DENIED = "access_denied"
    INVALID_SCOPE = "invalid_scope"
    INVALID_GRANT = "invalid_grant"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class GrantFailure:
    """Negative result of a store, registry or resource-owner check."""

    error: ErrorCode
    description: str = ""

    def to_dict(self, *, with_uri: bool = False) -> dict[str, str]:
        body = {"error": self.error.value}
        if self.description:
            body["error_description"] = self.description
        if with_uri:
            body.setdefault("error_description", "")
            body["error_uri"] = ""
        return body


def invalid_request(description: str) -> GrantFailure:
    return GrantFailure(ErrorCode.INVALID_REQUEST, description)
