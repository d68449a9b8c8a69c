# Small helpers shared by the engine and the gate.
# Created: 2026-10-17

from __future__ import annotations

import base64
import binascii
import inspect
from typing import Any
from urllib.parse import parse_qsl, unquote_plus, urlencode, urlsplit, urlunsplit


async def resolve(value: Any) -> Any:
    """Await *value* if a hook handed back a coroutine or future."""
    if inspect.isawaitable(value):
        return await value
    return value


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from ``Authorization: Bearer <token>``."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return value.strip() or None


def basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic`` client credentials (RFC 6749 §2.3.1)."""
    if not authorization:
        return None
    scheme, _, value = authorization.strip().partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None
    return unquote_plus(client_id), unquote_plus(client_secret)


def append_params(uri: str, params: dict[str, str], *, fragment: bool = False) -> str:
    """Append *params* to the query string (or fragment) of *uri*."""
    parts = urlsplit(uri)
    if fragment:
        existing = parse_qsl(parts.fragment, keep_blank_values=True)
        return urlunsplit(parts._replace(fragment=urlencode(existing + list(params.items()))))
    existing = parse_qsl(parts.query, keep_blank_values=True)
    return urlunsplit(parts._replace(query=urlencode(existing + list(params.items()))))
