# OAuth2 engine: grants, token codecs, client registry, grant stores.
# Created: 2026-10-17
#
# Framework-agnostic. The FastAPI binding lives in pocketgrant.api.

from pocketgrant.oauth2.clients import ClientRegistry, StaticClientRegistry
from pocketgrant.oauth2.codec import JWTTokenCodec, OpaqueTokenCodec, TokenClaims, TokenCodec
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure
from pocketgrant.oauth2.gate import TokenGate
from pocketgrant.oauth2.models import (
    ClientVerdict,
    Decision,
    GrantSuccess,
    OAuthClient,
    OwnerDecision,
    TokenIdentity,
)
from pocketgrant.oauth2.owner import CallbackResourceOwner, ResourceOwner, StaticResourceOwner
from pocketgrant.oauth2.server import AuthorizationServer
from pocketgrant.oauth2.signed_storage import SignedGrantStore
from pocketgrant.oauth2.storage import GrantStore, InMemoryGrantStore

__all__ = [
    "AuthorizationServer",
    "CallbackResourceOwner",
    "ClientRegistry",
    "ClientVerdict",
    "Decision",
    "ErrorCode",
    "GrantFailure",
    "GrantStore",
    "GrantSuccess",
    "InMemoryGrantStore",
    "JWTTokenCodec",
    "OAuthClient",
    "OpaqueTokenCodec",
    "OwnerDecision",
    "ResourceOwner",
    "SignedGrantStore",
    "StaticClientRegistry",
    "StaticResourceOwner",
    "TokenClaims",
    "TokenCodec",
    "TokenGate",
    "TokenIdentity",
]
