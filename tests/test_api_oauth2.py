# Tests for the OAuth2 HTTP endpoints.
# Created: 2026-10-19

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from conftest import ALICE, BOB, CAROL
from ohmage_oauth.api.serve import create_api_app
from ohmage_oauth.config import Settings
from ohmage_oauth.security.rate_limiter import RateLimiter

STEPS = "omh:ohmage:stream:steps"


@pytest.fixture
def test_app(server, monkeypatch):
    import ohmage_oauth.api.oauth2.server as server_mod
    import ohmage_oauth.security.rate_limiter as limiter_mod

    monkeypatch.setattr(server_mod, "_server", server)
    monkeypatch.setattr(limiter_mod, "_auth_limiter", RateLimiter(rate=1000.0, capacity=1000))
    return create_api_app(Settings())


@pytest.fixture
def client(test_app):
    return TestClient(test_app, follow_redirects=False)


def _authorize(client, oauth_client, **params):
    params = {"client_id": oauth_client.client_id, "scope": STEPS, **params}
    return client.get("/oauth/authorize", params=params)


def _code_from(resp):
    return parse_qs(urlsplit(resp.headers["location"]).query)["code"][0]


def _respond(client, code, user=ALICE, granted=True):
    return client.post(
        "/oauth/authorization",
        data={
            "email": user[1],
            "password": user[2],
            "code": code,
            "granted": "true" if granted else "false",
        },
    )


def _exchange(client, oauth_client, code, **extra):
    return client.post(
        "/oauth/token",
        data={
            "grant_type": "authorization_code",
            "client_id": oauth_client.client_id,
            "client_secret": oauth_client.secret,
            "code": code,
            **extra,
        },
    )


def _refresh(client, oauth_client, refresh_token):
    return client.post(
        "/oauth/token",
        data={
            "grant_type": "refresh_token",
            "client_id": oauth_client.client_id,
            "client_secret": oauth_client.secret,
            "refresh_token": refresh_token,
        },
    )


def _login(client, user=ALICE):
    resp = client.post("/auth_token", data={"email": user[1], "password": user[2]})
    assert resp.status_code == 200
    return resp.json()["access_token"]


@pytest.fixture
def granted_code(client, oauth_client):
    code = _code_from(_authorize(client, oauth_client, state="s1"))
    assert _respond(client, code).status_code == 302
    return code


# ===================== authorize =====================


class TestAuthorizeEndpoint:
    def test_redirects_to_authorization_page(self, client, oauth_client, server):
        resp = _authorize(client, oauth_client)
        assert resp.status_code == 302
        location = urlsplit(resp.headers["location"])
        assert location.path == "/oauth/Authorize.html"
        code = parse_qs(location.query)["code"][0]
        assert server.storage.get_code(code) is not None

    def test_unknown_client(self, client):
        resp = client.get("/oauth/authorize", params={"client_id": "nope", "scope": STEPS})
        assert resp.status_code == 401
        assert resp.json()["error"] == "authentication_failed"
        assert "WWW-Authenticate" in resp.headers

    def test_unknown_schema(self, client, oauth_client):
        resp = _authorize(client, oauth_client, scope="omh:ohmage:stream:heart")
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "invalid_argument",
            "detail": "The stream is unknown: heart",
        }

    def test_missing_scope(self, client, oauth_client):
        resp = client.get("/oauth/authorize", params={"client_id": oauth_client.client_id})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_argument"

    def test_unsupported_response_type(self, client, oauth_client):
        resp = _authorize(client, oauth_client, response_type="token")
        assert resp.status_code == 400

    def test_redirect_outside_default(self, client, oauth_client):
        resp = _authorize(client, oauth_client, redirect_uri="https://evil.example/cb")
        assert resp.status_code == 400


class TestAuthorizationPage:
    def test_renders_consent_form(self, client, oauth_client):
        code = _code_from(_authorize(client, oauth_client))
        resp = client.get("/oauth/Authorize.html", params={"code": code})
        assert resp.status_code == 200
        assert "text/html" in resp.headers["content-type"]
        assert "Step Tracker" in resp.text
        assert STEPS in resp.text
        assert f'value="{code}"' in resp.text

    def test_escapes_client_fields(self, client, server):
        evil = server.register_client(
            CAROL[0], "<script>x</script>", "", "https://app.example/cb"
        )
        code = _code_from(_authorize(client, evil))
        resp = client.get("/oauth/Authorize.html", params={"code": code})
        assert "<script>x</script>" not in resp.text
        assert "&lt;script&gt;" in resp.text

    def test_unknown_code(self, client):
        resp = client.get("/oauth/Authorize.html", params={"code": "nope"})
        assert resp.status_code == 400


# ===================== authorization response =====================


class TestAuthorizationEndpoint:
    def test_grant_redirects_to_client(self, client, oauth_client):
        code = _code_from(_authorize(client, oauth_client, state="s1"))
        resp = _respond(client, code)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"https://app.example/cb?code={code}&state=s1"

    def test_deny_also_redirects(self, client, oauth_client):
        code = _code_from(_authorize(client, oauth_client))
        resp = _respond(client, code, granted=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == f"https://app.example/cb?code={code}"

    def test_bad_credentials(self, client, oauth_client):
        code = _code_from(_authorize(client, oauth_client))
        resp = client.post(
            "/oauth/authorization",
            data={"email": ALICE[1], "password": "wrong", "code": code, "granted": "true"},
        )
        assert resp.status_code == 401

    def test_conflicting_answer(self, client, granted_code):
        assert _respond(client, granted_code, granted=False).status_code == 400

    def test_other_user(self, client, granted_code):
        assert _respond(client, granted_code, user=BOB).status_code == 400


# ===================== token =====================


class TestTokenEndpoint:
    def test_exchange(self, client, oauth_client, granted_code):
        resp = _exchange(client, oauth_client, granted_code)
        assert resp.status_code == 200
        body = resp.json()
        assert body["user_id"] == ALICE[0]
        assert body["token_type"] == "ohmage"
        assert body["expires_in"] == 30 * 60
        assert body["access_token"] and body["refresh_token"]

    def test_repeat_exchange_identical(self, client, oauth_client, granted_code):
        first = _exchange(client, oauth_client, granted_code).json()
        second = _exchange(client, oauth_client, granted_code).json()
        assert first == second

    def test_wrong_secret(self, client, oauth_client, granted_code):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "client_id": oauth_client.client_id,
                "client_secret": "wrong",
                "code": granted_code,
            },
        )
        assert resp.status_code == 401

    def test_unknown_client_indistinguishable_from_wrong_secret(
        self, client, oauth_client, granted_code
    ):
        details = []
        for client_id in (oauth_client.client_id, "no-such-client"):
            resp = client.post(
                "/oauth/token",
                data={
                    "grant_type": "authorization_code",
                    "client_id": client_id,
                    "client_secret": "wrong",
                    "code": granted_code,
                },
            )
            assert resp.status_code == 401
            details.append(resp.json()["detail"])
        assert details[0] == details[1]

    def test_missing_client_secret(self, client, oauth_client, granted_code):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "client_id": oauth_client.client_id,
                "code": granted_code,
            },
        )
        assert resp.status_code == 401

    def test_unsupported_grant_type(self, client, oauth_client):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "password",
                "client_id": oauth_client.client_id,
                "client_secret": oauth_client.secret,
            },
        )
        assert resp.status_code == 400

    def test_missing_code(self, client, oauth_client):
        resp = client.post(
            "/oauth/token",
            data={
                "grant_type": "authorization_code",
                "client_id": oauth_client.client_id,
                "client_secret": oauth_client.secret,
            },
        )
        assert resp.status_code == 400

    def test_end_to_end_refresh_chain(self, client, oauth_client, granted_code):
        t1 = _exchange(client, oauth_client, granted_code).json()

        t2 = _refresh(client, oauth_client, t1["refresh_token"]).json()
        assert t2["access_token"] != t1["access_token"]
        assert _refresh(client, oauth_client, t1["refresh_token"]).json() == t2

        resp = _refresh(client, oauth_client, t2["refresh_token"])
        assert resp.status_code == 200
        t3 = resp.json()
        assert t3["access_token"] not in (t1["access_token"], t2["access_token"])

        assert _refresh(client, oauth_client, t1["refresh_token"]).status_code == 400

    def test_unknown_refresh_token(self, client, oauth_client):
        assert _refresh(client, oauth_client, "nope").status_code == 400


# ===================== clients =====================


class TestClientEndpoints:
    def test_register_returns_secret_header(self, client, server):
        token = _login(client, CAROL)
        resp = client.post(
            "/oauth/clients",
            json={"name": "App", "description": "d", "redirect_uri": "https://new.example/cb"},
            headers={"Authorization": f"ohmage {token}"},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["owner"] == CAROL[0]
        assert "shared_secret" not in body
        stored = server.get_client(body["client_id"])
        assert resp.headers["shared_secret"] == stored.secret

    def test_register_needs_auth(self, client):
        resp = client.post(
            "/oauth/clients",
            json={"name": "App", "redirect_uri": "https://new.example/cb"},
        )
        assert resp.status_code == 401

    def test_register_validates_body(self, client):
        token = _login(client, CAROL)
        resp = client.post(
            "/oauth/clients",
            json={"name": "", "redirect_uri": "https://new.example/cb"},
            headers={"Authorization": f"ohmage {token}"},
        )
        assert resp.status_code == 400

    def test_list_own_clients(self, client, oauth_client):
        carol = _login(client, CAROL)
        alice = _login(client, ALICE)
        mine = client.get("/oauth/clients", headers={"Authorization": f"ohmage {carol}"})
        theirs = client.get("/oauth/clients", headers={"Authorization": f"Bearer {alice}"})
        assert mine.json() == [oauth_client.client_id]
        assert theirs.json() == []

    def test_get_client_is_public(self, client, oauth_client):
        resp = client.get(f"/oauth/clients/{oauth_client.client_id}")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Step Tracker"
        assert oauth_client.secret not in resp.text

    def test_get_unknown_client(self, client):
        resp = client.get("/oauth/clients/nope")
        assert resp.status_code == 404
        assert resp.json()["error"] == "unknown_entity"


# ===================== responded codes =====================


class TestCodeEndpoints:
    def test_list_and_get(self, client, granted_code):
        token = _login(client)
        headers = {"Authorization": f"ohmage {token}"}
        assert client.get("/oauth/codes", headers=headers).json() == [granted_code]
        body = client.get(f"/oauth/codes/{granted_code}", headers=headers).json()
        assert body["response"]["user_id"] == ALICE[0]
        assert body["scopes"] == [{"type": "stream", "schema_id": "steps", "schema_version": None}]

    def test_get_as_other_user(self, client, granted_code):
        token = _login(client, BOB)
        resp = client.get(
            f"/oauth/codes/{granted_code}", headers={"Authorization": f"ohmage {token}"}
        )
        assert resp.status_code == 403

    def test_get_responded_code_without_auth(self, client, granted_code):
        assert client.get(f"/oauth/codes/{granted_code}").status_code == 401

    def test_get_unknown(self, client):
        assert client.get("/oauth/codes/nope").status_code == 404

    def test_revoke(self, client, oauth_client, granted_code):
        issued = _exchange(client, oauth_client, granted_code).json()
        token = _login(client)
        resp = client.delete(
            f"/oauth/codes/{granted_code}", headers={"Authorization": f"ohmage {token}"}
        )
        assert resp.status_code == 200
        assert _exchange(client, oauth_client, granted_code).status_code == 400
        assert _refresh(client, oauth_client, issued["refresh_token"]).status_code == 400


# ===================== errors and limits =====================


class TestErrorsAndLimits:
    def test_store_failure_is_generic_500(self, client, server, oauth_client, monkeypatch):
        from ohmage_oauth.errors import StoreError

        def boom(code):
            raise StoreError("disk full at /secret/path")

        monkeypatch.setattr(server.storage, "store_code", boom)
        resp = _authorize(client, oauth_client)
        assert resp.status_code == 500
        assert "/secret/path" not in resp.text
        assert resp.json()["error"] == "server_error"

    def test_credential_endpoints_rate_limited(self, client, oauth_client, monkeypatch):
        import ohmage_oauth.security.rate_limiter as limiter_mod

        monkeypatch.setattr(limiter_mod, "_auth_limiter", RateLimiter(rate=0.001, capacity=2))
        assert _authorize(client, oauth_client).status_code == 302
        assert _authorize(client, oauth_client).status_code == 302
        resp = _authorize(client, oauth_client)
        assert resp.status_code == 429
        assert "Retry-After" in resp.headers
