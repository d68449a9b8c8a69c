# Tests for the OAuth2 HTTP endpoints and the bearer-token dependency.
# Created: 2026-10-17

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi import Depends, FastAPI
from fastapi.responses import RedirectResponse
from fastapi.testclient import TestClient

from pocketgrant.api import mount_oauth
from pocketgrant.api.deps import require_oauth
from pocketgrant.config import ClientConfig, Settings
from pocketgrant.oauth2.models import OwnerDecision, TokenIdentity
from pocketgrant.oauth2.owner import CallbackResourceOwner
from pocketgrant.oauth2.server import AuthorizationServer

REDIRECT = "https://app.example/callback"


@pytest.fixture
def settings():
    return Settings(
        clients={
            "client-a": ClientConfig(
                client_secret="secret-a",
                scopes={"track_location": True, "read": True, "admin": False},
            ),
        },
        users={"alice": "wonderland"},
    )


@pytest.fixture
def server(settings):
    return AuthorizationServer.from_settings(settings)


@pytest.fixture
def test_app(server, settings):
    app = FastAPI()
    mount_oauth(app, server, settings)

    @app.get("/api/track_location")
    async def track_location(identity: TokenIdentity = Depends(require_oauth("track_location"))):
        return {"client_id": identity.client_id, "user_id": identity.user_id}

    @app.get("/api/admin")
    async def admin(identity: TokenIdentity = Depends(require_oauth("admin"))):
        return {"ok": True}

    return app


@pytest.fixture
def client(test_app):
    return TestClient(test_app)


def _authorize(client, **params):
    params.setdefault("client_id", "client-a")
    params.setdefault("response_type", "code")
    params.setdefault("redirect_uri", REDIRECT)
    return client.get("/oauth/authorize", params=params, follow_redirects=False)


def _code(client, scope="track_location"):
    resp = _authorize(client, scope=scope)
    assert resp.status_code == 302
    return parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]


def _exchange(client, code):
    return client.post(
        "/oauth/access_token",
        data={
            "grant_type": "authorization_code",
            "client_id": "client-a",
            "client_secret": "secret-a",
            "code": code,
            "redirect_uri": REDIRECT,
        },
    )


class TestAuthorizeEndpoint:
    def test_redirects_with_code_and_state(self, client):
        resp = _authorize(client, scope="track_location", state="abc")
        assert resp.status_code == 302
        location = resp.headers["location"]
        assert location.startswith(REDIRECT + "?")
        params = parse_qs(urlsplit(location).query)
        assert params["state"] == ["abc"]
        assert params["code"][0]

    def test_malformed_request_is_400_json(self, client):
        resp = client.get("/oauth/authorize", params={"client_id": "client-a"}, follow_redirects=False)
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "invalid_request"
        assert "error_description" in body
        assert "error_uri" in body

    def test_refusal_goes_to_redirect_uri(self, client):
        resp = _authorize(client, scope="admin", state="s1")
        assert resp.status_code == 302
        params = parse_qs(urlsplit(resp.headers["location"]).query)
        assert params["error"] == ["access_denied"]
        assert params["state"] == ["s1"]

    def test_implicit_grant_uses_fragment(self, client):
        resp = _authorize(client, response_type="token", scope="read")
        assert resp.status_code == 302
        fragment = parse_qs(urlsplit(resp.headers["location"]).fragment)
        assert fragment["token_type"] == ["Bearer"]
        assert fragment["access_token"][0]

    def test_deferred_login_returns_hook_response(self, server, settings):
        deferring = AuthorizationServer.from_settings(
            settings,
            owner=CallbackResourceOwner(
                server.clients,
                login_resource_owner=lambda request: OwnerDecision.deferred(
                    RedirectResponse(f"/login?next={request.url.path}", status_code=303)
                ),
            ),
        )
        app = FastAPI()
        mount_oauth(app, deferring, settings)
        resp = _authorize(TestClient(app))
        assert resp.status_code == 303
        assert resp.headers["location"] == "/login?next=/oauth/authorize"

    def test_deferred_without_response_is_401(self, server, settings):
        deferring = AuthorizationServer.from_settings(
            settings,
            owner=CallbackResourceOwner(
                server.clients,
                login_resource_owner=lambda request: OwnerDecision.deferred(),
            ),
        )
        app = FastAPI()
        mount_oauth(app, deferring, settings)
        assert _authorize(TestClient(app)).status_code == 401


class TestTokenEndpoint:
    def test_code_exchange(self, client):
        resp = _exchange(client, _code(client))
        assert resp.status_code == 200
        body = resp.json()
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 3600
        assert body["access_token"]
        assert body["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"
        assert resp.headers["pragma"] == "no-cache"

    def test_json_body_accepted(self, client):
        code = _code(client)
        resp = client.post(
            "/oauth/access_token",
            json={
                "grant_type": "authorization_code",
                "client_id": "client-a",
                "client_secret": "secret-a",
                "code": code,
                "redirect_uri": REDIRECT,
            },
        )
        assert resp.status_code == 200

    def test_error_response_headers(self, client):
        resp = client.post("/oauth/access_token", data={"grant_type": "authorization_code"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
        assert resp.headers["cache-control"] == "no-store"

    def test_unreadable_json(self, client):
        resp = client.post(
            "/oauth/access_token",
            content=b"{nope",
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_code_replay_revokes_token(self, client):
        code = _code(client)
        first = _exchange(client, code).json()
        replay = _exchange(client, code)
        assert replay.status_code == 400
        assert replay.json()["error"] == "invalid_grant"
        resp = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {first['access_token']}"}
        )
        assert resp.status_code == 401

    def test_refresh(self, client):
        tokens = _exchange(client, _code(client)).json()
        resp = client.post(
            "/oauth/access_token",
            data={"grant_type": "refresh_token", "refresh_token": tokens["refresh_token"]},
        )
        assert resp.status_code == 200
        new_tokens = resp.json()
        assert new_tokens["access_token"] != tokens["access_token"]

        old = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        new = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {new_tokens['access_token']}"}
        )
        assert old.status_code == 401
        assert new.status_code == 200

    def test_password_grant(self, client):
        resp = client.post(
            "/oauth/access_token",
            data={
                "grant_type": "password",
                "client_id": "client-a",
                "client_secret": "secret-a",
                "username": "alice",
                "password": "wonderland",
                "scope": "track_location",
            },
        )
        assert resp.status_code == 200
        me = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {resp.json()['access_token']}"}
        )
        assert me.json() == {"client_id": "client-a", "user_id": "alice"}

    def test_client_credentials(self, client):
        resp = client.post(
            "/oauth/access_token",
            data={
                "grant_type": "client_credentials",
                "client_id": "client-a",
                "client_secret": "secret-a",
                "scope": "read",
            },
        )
        assert resp.status_code == 200
        assert "refresh_token" not in resp.json()


class TestRevokeEndpoint:
    def test_revoke(self, client):
        tokens = _exchange(client, _code(client)).json()
        resp = client.post("/oauth/revoke", data={"token": tokens["access_token"]})
        assert resp.status_code == 200
        assert resp.json() == {"revoked": True}
        check = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert check.status_code == 401

    def test_revoke_unknown(self, client):
        resp = client.post("/oauth/revoke", data={"token": "bogus"})
        assert resp.json() == {"revoked": False}

    def test_revoke_missing_token(self, client):
        resp = client.post("/oauth/revoke", data={})
        assert resp.status_code == 400


class TestRequireOAuth:
    def test_valid_token(self, client):
        tokens = _exchange(client, _code(client)).json()
        resp = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert resp.status_code == 200
        assert resp.json()["client_id"] == "client-a"

    def test_missing_header(self, client):
        resp = client.get("/api/track_location")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_wrong_scheme(self, client):
        resp = client.get("/api/track_location", headers={"Authorization": "Basic abc"})
        assert resp.status_code == 401

    def test_unknown_token(self, client):
        resp = client.get("/api/track_location", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_insufficient_scope_looks_the_same(self, client):
        tokens = _exchange(client, _code(client)).json()
        resp = client.get("/api/admin", headers={"Authorization": f"Bearer {tokens['access_token']}"})
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Unauthorized"}


class TestSignedTokensOverHttp:
    def test_full_flow(self, settings):
        settings = settings.model_copy(update={"jwt_secret": "http-test-secret-0123456789abcdef0123"})
        server = AuthorizationServer.from_settings(settings)
        app = FastAPI()
        mount_oauth(app, server, settings)

        @app.get("/api/track_location")
        async def track(identity: TokenIdentity = Depends(require_oauth("track_location"))):
            return {"user_id": identity.user_id}

        client = TestClient(app)
        tokens = _exchange(client, _code(client)).json()
        assert tokens["access_token"].count(".") == 2
        resp = client.get(
            "/api/track_location", headers={"Authorization": f"Bearer {tokens['access_token']}"}
        )
        assert resp.status_code == 200


class TestNumericClientId:
    @pytest.fixture
    def client(self):
        settings = Settings(
            clients={"1": ClientConfig(client_secret="boo", scopes={"act": True})}
        )
        app = FastAPI()
        mount_oauth(app, AuthorizationServer.from_settings(settings), settings)
        return TestClient(app)

    def test_code_then_token(self, client):
        resp = _authorize(client, client_id="1", scope="act")
        assert resp.status_code == 302
        code = parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]

        resp = client.post(
            "/oauth/access_token",
            data={
                "grant_type": "authorization_code",
                "client_id": "1",
                "client_secret": "boo",
                "code": code,
                "redirect_uri": REDIRECT,
            },
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["expires_in"] == 3600
        assert body["token_type"] == "Bearer"
        assert body["access_token"] and body["refresh_token"]

    def test_unknown_scope_redirects_error_without_code(self, client):
        resp = _authorize(client, client_id="1", scope="sleep")
        params = parse_qs(urlsplit(resp.headers["location"]).query)
        assert params["error"] == ["invalid_scope"]
        assert "code" not in params

    def test_numeric_client_id_in_json_body(self, client):
        code = parse_qs(
            urlsplit(_authorize(client, client_id="1", scope="act").headers["location"]).query
        )["code"][0]
        resp = client.post(
            "/oauth/access_token",
            json={
                "grant_type": "authorization_code",
                "client_id": 1,
                "client_secret": "boo",
                "code": code,
                "redirect_uri": REDIRECT,
            },
        )
        assert resp.status_code == 200

    def test_bogus_grant_type(self, client):
        resp = client.post("/oauth/access_token", data={"grant_type": "bogus"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"
