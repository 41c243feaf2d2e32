# Tests for the OAuth2 HTTP endpoints.
# Created: 2026-03-02

import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tokenwarden.api.v1 import mount_v1_routers
from tokenwarden.webhooks.delivery import WebhookDeliveryEngine
from tokenwarden.webhooks.registry import WebhookRegistry

CALLBACK = "https://app.example.test/callback"
USER = {"X-User-Id": "user-1"}


@pytest.fixture
def sent():
    """Webhook requests captured by the mock transport."""
    return []


@pytest.fixture
def engine(store, sent, monkeypatch):
    def handler(request):
        sent.append(request)
        return httpx.Response(200)

    engine = WebhookDeliveryEngine(
        store, WebhookRegistry(store), transport=httpx.MockTransport(handler)
    )
    monkeypatch.setattr("tokenwarden.webhooks.delivery._engine", engine)
    return engine


@pytest.fixture
def client(server, engine, monkeypatch):
    monkeypatch.setattr("tokenwarden.oauth2.server._server", server)
    app = FastAPI()
    mount_v1_routers(app)
    with TestClient(app) as c:
        yield c


def _events(sent):
    return [json.loads(r.content) for r in sent]


def _code(server, client_record, challenge, scope="read"):
    return server.authorize(
        client_id=client_record.client_id,
        user_id="user-1",
        redirect_uri=CALLBACK,
        scope=scope,
        code_challenge=challenge,
        state="st",
    ).code


class TestDiscovery:
    def test_metadata(self, client):
        resp = client.get("/.well-known/oauth-authorization-server")
        assert resp.status_code == 200
        data = resp.json()
        assert data["issuer"] == "https://auth.example.test"
        assert data["token_endpoint"] == "https://auth.example.test/api/v1/oauth/token"
        assert data["code_challenge_methods_supported"] == ["S256"]
        assert "client_credentials" in data["grant_types_supported"]


class TestAuthorizeEndpoint:
    def _params(self, client_record, challenge, **overrides):
        params = {
            "response_type": "code",
            "client_id": client_record.client_id,
            "redirect_uri": CALLBACK,
            "scope": "read",
            "state": "xyz",
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        }
        params.update(overrides)
        return params

    def test_consent_data(self, client, make_client, pkce_pair):
        record, _ = make_client()
        resp = client.get(
            "/api/v1/oauth/authorize",
            params=self._params(record, pkce_pair[1], scope="read write"),
            headers=USER,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["client"]["name"] == "Test App"
        assert data["requested_scopes"] == ["read", "write"]
        assert data["redirect_uri"] == CALLBACK
        assert data["state"] == "xyz"

    def test_requires_user(self, client, make_client, pkce_pair):
        record, _ = make_client()
        resp = client.get("/api/v1/oauth/authorize", params=self._params(record, pkce_pair[1]))
        assert resp.status_code == 401

    def test_unknown_client_is_not_redirected(self, client, pkce_pair):
        resp = client.get(
            "/api/v1/oauth/authorize",
            params={
                "client_id": "twc_unknown",
                "redirect_uri": CALLBACK,
                "scope": "read",
                "code_challenge": pkce_pair[1],
            },
            headers=USER,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_client"

    def test_excess_scope(self, client, make_client, pkce_pair):
        record, _ = make_client(scopes=("read",))
        resp = client.get(
            "/api/v1/oauth/authorize",
            params=self._params(record, pkce_pair[1], scope="read write"),
            headers=USER,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_scope"

    def test_approve(self, client, engine, sent, make_client, pkce_pair):
        record, _ = make_client()
        engine.registry.create(record.id, "https://hooks.test/in", ["authorization.granted"])
        resp = client.post(
            "/api/v1/oauth/authorize",
            json={
                "client_id": record.client_id,
                "redirect_uri": CALLBACK,
                "scope": "read",
                "code_challenge": pkce_pair[1],
                "state": "xyz",
                "approved": True,
            },
            headers=USER,
        )
        assert resp.status_code == 200
        redirect = resp.json()["redirect"]
        assert redirect.startswith(CALLBACK + "?")
        query = parse_qs(urlsplit(redirect).query)
        assert len(query["code"][0]) == 64
        assert query["state"] == ["xyz"]

        [event] = _events(sent)
        assert event["event"] == "authorization.granted"
        assert event["data"] == {"user_id": "user-1", "scopes": ["read"]}

    def test_deny(self, client, engine, sent, make_client, pkce_pair):
        record, _ = make_client()
        engine.registry.create(record.id, "https://hooks.test/in", ["authorization.denied"])
        resp = client.post(
            "/api/v1/oauth/authorize",
            json={
                "client_id": record.client_id,
                "redirect_uri": CALLBACK,
                "scope": "read",
                "code_challenge": pkce_pair[1],
                "state": "xyz",
                "approved": False,
            },
            headers=USER,
        )
        query = parse_qs(urlsplit(resp.json()["redirect"]).query)
        assert query == {"error": ["access_denied"], "state": ["xyz"]}
        assert _events(sent)[0]["event"] == "authorization.denied"


class TestTokenEndpoint:
    def test_code_exchange_with_form_credentials(
        self, client, server, engine, sent, make_client, pkce_pair
    ):
        record, secret = make_client()
        engine.registry.create(record.id, "https://hooks.test/in", ["token.created"])
        verifier, challenge = pkce_pair
        code = _code(server, record, challenge)

        resp = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": CALLBACK,
                "code_verifier": verifier,
                "client_id": record.client_id,
                "client_secret": secret,
            },
        )
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 3600
        assert data["scope"] == "read"
        assert data["refresh_token"]

        [event] = _events(sent)
        assert event["event"] == "token.created"
        assert event["data"]["grant_type"] == "authorization_code"
        assert event["data"]["client_id"] == record.client_id

    def test_code_exchange_with_basic_auth(self, client, server, make_client, pkce_pair):
        record, secret = make_client()
        verifier, challenge = pkce_pair
        code = _code(server, record, challenge)
        resp = client.post(
            "/api/v1/oauth/token",
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": CALLBACK,
                "code_verifier": verifier,
            },
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 200

    def test_code_replay(self, client, server, make_client, pkce_pair):
        record, secret = make_client()
        verifier, challenge = pkce_pair
        form = {
            "grant_type": "authorization_code",
            "code": _code(server, record, challenge),
            "redirect_uri": CALLBACK,
            "code_verifier": verifier,
        }
        auth = (record.client_id, secret)
        assert client.post("/api/v1/oauth/token", data=form, auth=auth).status_code == 200
        resp = client.post("/api/v1/oauth/token", data=form, auth=auth)
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_grant"

    def test_two_auth_methods_rejected(self, client, make_client):
        record, secret = make_client(grant_types=("client_credentials",))
        resp = client.post(
            "/api/v1/oauth/token",
            data={"grant_type": "client_credentials", "client_secret": secret},
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_request"

    def test_bad_secret(self, client, make_client):
        record, _ = make_client(grant_types=("client_credentials",))
        resp = client.post(
            "/api/v1/oauth/token",
            data={"grant_type": "client_credentials"},
            auth=(record.client_id, "wrong"),
        )
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid_client"
        assert resp.headers["www-authenticate"].startswith("Basic")

    def test_missing_and_unknown_grant_type(self, client):
        resp = client.post("/api/v1/oauth/token", data={})
        assert resp.json()["error"] == "invalid_request"
        resp = client.post("/api/v1/oauth/token", data={"grant_type": "password"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupported_grant_type"

    def test_client_credentials_has_no_refresh_token(self, client, make_client):
        record, secret = make_client(grant_types=("client_credentials",))
        resp = client.post(
            "/api/v1/oauth/token",
            data={"grant_type": "client_credentials", "scope": "read"},
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["scope"] == "read"
        assert "refresh_token" not in data

    def test_refresh_rotation(self, client, server, make_client, pkce_pair):
        record, secret = make_client()
        verifier, challenge = pkce_pair
        first = server.exchange_code(
            _code(server, record, challenge), CALLBACK, record.client_id, verifier, secret
        )
        resp = client.post(
            "/api/v1/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first.refresh_token},
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != first.refresh_token

        replay = client.post(
            "/api/v1/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first.refresh_token},
            auth=(record.client_id, secret),
        )
        assert replay.json()["error"] == "invalid_grant"


class TestRevokeAndUserinfo:
    def _tokens(self, server, record, secret):
        from tokenwarden.oauth2.pkce import generate_pkce_pair

        verifier, challenge = generate_pkce_pair()
        return server.exchange_code(
            _code(server, record, challenge), CALLBACK, record.client_id, verifier, secret
        )

    def test_userinfo(self, client, server, make_client):
        record, secret = make_client()
        issued = self._tokens(server, record, secret)
        resp = client.get(
            "/api/v1/oauth/userinfo",
            headers={"Authorization": f"Bearer {issued.access_token}"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"sub": "user-1", "client_id": record.client_id, "scope": "read"}

    def test_userinfo_without_token(self, client):
        resp = client.get("/api/v1/oauth/userinfo")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_revoke_then_userinfo_fails(self, client, server, engine, sent, make_client):
        record, secret = make_client()
        engine.registry.create(record.id, "https://hooks.test/in", ["token.revoked"])
        issued = self._tokens(server, record, secret)

        resp = client.post(
            "/api/v1/oauth/revoke",
            data={"token": issued.access_token, "token_type_hint": "access_token"},
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 200
        assert resp.json() == {}

        resp = client.get(
            "/api/v1/oauth/userinfo",
            headers={"Authorization": f"Bearer {issued.access_token}"},
        )
        assert resp.status_code == 401
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]

        [event] = _events(sent)
        assert event["event"] == "token.revoked"
        assert event["data"]["token_type"] == "access_token"

    def test_revoke_unknown_token_is_200(self, client, sent, make_client):
        record, secret = make_client()
        resp = client.post(
            "/api/v1/oauth/revoke",
            data={"token": "never-issued"},
            auth=(record.client_id, secret),
        )
        assert resp.status_code == 200
        assert resp.json() == {}
        assert sent == []

    def test_revoke_without_anything_is_200(self, client):
        assert client.post("/api/v1/oauth/revoke", data={}).status_code == 200
