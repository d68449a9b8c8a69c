# Tests for the signed-token grant store.
# Created: 2026-10-17

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from pocketgrant.oauth2.clients import StaticClientRegistry
from pocketgrant.oauth2.codec import JWTTokenCodec, TokenClaims
from pocketgrant.oauth2.errors import ErrorCode, GrantFailure
from pocketgrant.oauth2.models import GrantSuccess, OAuthClient, TokenIdentity
from pocketgrant.oauth2.signed_storage import SignedGrantStore

SECRET = "signed-store-secret-0123456789abcdef01"
REDIRECT = "https://app.example/callback"


@pytest.fixture
def codec():
    return JWTTokenCodec(SECRET)


@pytest.fixture
def store(codec):
    clients = StaticClientRegistry(
        [
            OAuthClient("client-a", "secret-a", {"read": True, "write": True}),
            OAuthClient("client-b", "secret-b", {"read": True}),
        ]
    )
    return SignedGrantStore(clients, codec)


def _issue_code(codec, client_id="client-a", scopes=("read",), ttl=600):
    return codec.issue(
        TokenClaims(
            client_id=client_id,
            type="auth",
            scopes=list(scopes),
            user_id="alice",
            audience=REDIRECT,
            expires_at=int(time.time()) + ttl,
        )
    )


def _issue_pair(codec, scopes=("read",), user_id="alice", ttl=3600):
    access = codec.issue(
        TokenClaims(
            client_id="client-a",
            type="access",
            scopes=list(scopes),
            user_id=user_id,
            expires_at=int(time.time()) + ttl,
        )
    )
    refresh = codec.issue(
        TokenClaims(client_id="client-a", type="refresh", scopes=list(scopes), user_id=user_id)
    )
    return access, refresh


class TestSignedAuthCodes:
    def test_verify_code(self, store, codec):
        code = _issue_code(codec)
        result = store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        assert result == GrantSuccess(client_id="client-a", scopes=["read"], user_id="alice")

    def test_code_single_use(self, store, codec):
        code = _issue_code(codec)
        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        result = store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        assert result.error == ErrorCode.INVALID_GRANT

    def test_redirect_mismatch(self, store, codec):
        code = _issue_code(codec)
        result = store.verify_auth_code("client-a", "secret-a", code, "https://other.example/")
        assert result.error == ErrorCode.INVALID_GRANT

    def test_other_client(self, store, codec):
        code = _issue_code(codec)
        result = store.verify_auth_code("client-b", "secret-b", code, REDIRECT)
        assert result.error == ErrorCode.INVALID_GRANT

    def test_expired_code(self, store, codec):
        code = _issue_code(codec, ttl=-5)
        result = store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        assert result.error == ErrorCode.INVALID_GRANT

    def test_access_token_is_not_a_code(self, store, codec):
        access, _ = _issue_pair(codec)
        result = store.verify_auth_code("client-a", "secret-a", access, REDIRECT)
        assert result.error == ErrorCode.INVALID_GRANT

    def test_reuse_revokes_issued_pair(self, store, codec):
        code = _issue_code(codec)
        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        access, refresh = _issue_pair(codec)
        store.store_access_token("client-a", code, access, refresh, 3600, ["read"], None, "alice")
        assert isinstance(store.verify_access_token(access), TokenIdentity)

        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        assert isinstance(store.verify_access_token(access), GrantFailure)
        assert isinstance(store.verify_access_token(refresh, is_refresh=True), GrantFailure)

    def test_reuse_revokes_refresh_after_purge(self, store, codec):
        code = _issue_code(codec)
        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        access, refresh = _issue_pair(codec, ttl=-5)
        store.store_access_token("client-a", code, access, refresh, 0, ["read"], None, "alice")
        store.purge_expired()

        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        assert isinstance(store.verify_access_token(refresh, is_refresh=True), GrantFailure)

    def test_reuse_before_tokens_stored_blocks_issue(self, store, codec):
        code = _issue_code(codec)
        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)
        store.verify_auth_code("client-a", "secret-a", code, REDIRECT)

        access, refresh = _issue_pair(codec)
        stored = store.store_access_token("client-a", code, access, refresh, 3600, ["read"], None, "alice")
        assert stored.error == ErrorCode.INVALID_GRANT

    def test_code_exchanged_once_under_contention(self, store, codec):
        code = _issue_code(codec)
        barrier = threading.Barrier(8)

        def exchange(_):
            barrier.wait()
            return store.verify_auth_code("client-a", "secret-a", code, REDIRECT)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(exchange, range(8)))
        assert sum(isinstance(r, GrantSuccess) for r in results) == 1


class TestSignedTokens:
    def test_verify_from_claims(self, store, codec):
        access, refresh = _issue_pair(codec, scopes=("read", "write"))
        store.store_access_token("client-a", None, access, refresh, 3600, None, None, "alice")
        identity = store.verify_access_token(access, ["write"])
        assert identity.client_id == "client-a"
        assert identity.user_id == "alice"
        assert identity.scopes == ["read", "write"]

    def test_wrong_type(self, store, codec):
        access, refresh = _issue_pair(codec)
        assert isinstance(store.verify_access_token(refresh), GrantFailure)
        assert isinstance(store.verify_access_token(access, is_refresh=True), GrantFailure)

    def test_missing_scope(self, store, codec):
        access, _ = _issue_pair(codec)
        assert store.verify_access_token(access, ["write"]).error == ErrorCode.INVALID_SCOPE

    def test_expired_access_token(self, store, codec):
        access, refresh = _issue_pair(codec, ttl=-5)
        store.store_access_token("client-a", None, access, refresh, 0, None, None, "alice")
        assert isinstance(store.verify_access_token(access), GrantFailure)
        assert isinstance(store.verify_access_token(refresh, is_refresh=True), TokenIdentity)

    def test_refresh_revokes_old_pair(self, store, codec):
        access, refresh = _issue_pair(codec)
        store.store_access_token("client-a", None, access, refresh, 3600, None, None, "alice")
        new_access, new_refresh = _issue_pair(codec)
        store.store_access_token(
            "client-a", None, new_access, new_refresh, 3600, ["read"], refresh, "alice"
        )
        assert isinstance(store.verify_access_token(access), GrantFailure)
        assert isinstance(store.verify_access_token(refresh, is_refresh=True), GrantFailure)
        assert isinstance(store.verify_access_token(new_access), TokenIdentity)

    def test_refresh_token_spent_once(self, store, codec):
        access, refresh = _issue_pair(codec)
        store.store_access_token("client-a", None, access, refresh, 3600, None, None, "alice")
        first = _issue_pair(codec)
        second = _issue_pair(codec)

        assert store.store_access_token("client-a", None, *first, 3600, ["read"], refresh, "alice") is None
        stored = store.store_access_token("client-a", None, *second, 3600, ["read"], refresh, "alice")
        assert stored.error == ErrorCode.INVALID_GRANT
        assert isinstance(store.verify_access_token(first[0]), TokenIdentity)
        assert isinstance(store.verify_access_token(first[1], is_refresh=True), TokenIdentity)

    def test_new_pair_replaces_previous_for_identity(self, store, codec):
        first = _issue_pair(codec)
        store.store_access_token("client-a", None, *first, 3600, None, None, "alice")
        second = _issue_pair(codec)
        store.store_access_token("client-a", None, *second, 3600, None, None, "alice")
        assert isinstance(store.verify_access_token(first[0]), GrantFailure)
        assert isinstance(store.verify_access_token(second[0]), TokenIdentity)

    def test_revoke(self, store, codec):
        access, refresh = _issue_pair(codec)
        store.store_access_token("client-a", None, access, refresh, 3600, None, None, "alice")
        assert store.revoke_access_token(access) is True
        assert store.revoke_access_token(access) is False
        assert isinstance(store.verify_access_token(refresh, is_refresh=True), GrantFailure)

    def test_revoke_foreign_token(self, store):
        assert store.revoke_refresh_token("not-a-token") is False

    def test_purge_drops_dead_denylist_entries(self, store, codec):
        access, refresh = _issue_pair(codec, ttl=-5)
        store.store_access_token("client-a", None, access, refresh, 0, None, None, "alice")
        store.revoke_access_token(access)
        assert store.purge_expired() >= 1
