# Tests for the webhook subscription endpoints.
# Created: 2026-03-02

import asyncio

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tokenwarden.api.v1 import mount_v1_routers
from tokenwarden.webhooks.delivery import WebhookDeliveryEngine
from tokenwarden.webhooks.registry import WebhookRegistry

OWNER = {"X-User-Id": "user-1"}
STRANGER = {"X-User-Id": "user-2"}
HOOK_URL = "https://hooks.example.test/in"


@pytest.fixture
def engine(store, monkeypatch):
    engine = WebhookDeliveryEngine(
        store,
        WebhookRegistry(store, max_per_client=2),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="thanks")),
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


@pytest.fixture
def oauth_client(make_client):
    record, _ = make_client(owner_id="user-1")
    return record


def _base(record):
    return f"/api/v1/developer/clients/{record.client_id}/webhooks"


def _create(client, record, events=("token.created",), headers=OWNER):
    return client.post(
        _base(record), json={"url": HOOK_URL, "events": list(events)}, headers=headers
    )


class TestWebhookRoutes:
    def test_create_and_list(self, client, oauth_client):
        resp = _create(client, oauth_client)
        assert resp.status_code == 201
        data = resp.json()
        assert len(data["secret"]) == 32
        assert data["events"] == ["token.created"]

        listed = client.get(_base(oauth_client), headers=OWNER).json()
        assert [w["id"] for w in listed] == [data["id"]]
        assert "secret" not in listed[0]

    def test_validation(self, client, oauth_client):
        assert _create(client, oauth_client, events=("nope",)).status_code == 400
        resp = client.post(
            _base(oauth_client), json={"url": "ftp://x.test", "events": ["token.created"]},
            headers=OWNER,
        )
        assert resp.status_code == 400

    def test_quota(self, client, oauth_client):
        assert _create(client, oauth_client).status_code == 201
        assert _create(client, oauth_client).status_code == 201
        assert _create(client, oauth_client).status_code == 403

    def test_other_owner_sees_404(self, client, oauth_client):
        webhook_id = _create(client, oauth_client).json()["id"]
        assert client.get(_base(oauth_client), headers=STRANGER).status_code == 404
        assert _create(client, oauth_client, headers=STRANGER).status_code == 404
        assert (
            client.get(f"{_base(oauth_client)}/{webhook_id}", headers=STRANGER).status_code
            == 404
        )

    def test_webhook_of_another_client_is_404(self, client, make_client, oauth_client):
        other, _ = make_client(owner_id="user-1", name="Second")
        webhook_id = _create(client, oauth_client).json()["id"]
        resp = client.get(f"{_base(other)}/{webhook_id}", headers=OWNER)
        assert resp.status_code == 404

    def test_update(self, client, oauth_client):
        webhook_id = _create(client, oauth_client).json()["id"]
        resp = client.patch(
            f"{_base(oauth_client)}/{webhook_id}",
            json={"events": ["token.revoked"], "is_active": False},
            headers=OWNER,
        )
        assert resp.status_code == 200
        assert resp.json()["events"] == ["token.revoked"]
        assert resp.json()["is_active"] is False

    def test_rotate_secret(self, client, oauth_client, store):
        created = _create(client, oauth_client).json()
        resp = client.post(f"{_base(oauth_client)}/{created['id']}/rotate-secret", headers=OWNER)
        assert resp.status_code == 200
        assert resp.json()["secret"] != created["secret"]
        assert store.get_webhook(created["id"]).secret == resp.json()["secret"]

    def test_delete(self, client, oauth_client):
        webhook_id = _create(client, oauth_client).json()["id"]
        url = f"{_base(oauth_client)}/{webhook_id}"
        assert client.delete(url, headers=OWNER).json() == {"status": "ok"}
        assert client.get(url, headers=OWNER).status_code == 404

    def test_delivery_log(self, client, engine, oauth_client):
        webhook_id = _create(client, oauth_client).json()["id"]

        async def send():
            try:
                await engine.dispatch(oauth_client.id, "token.created", {"n": 1})
            finally:
                await engine.close()

        asyncio.run(send())

        resp = client.get(f"{_base(oauth_client)}/{webhook_id}/deliveries", headers=OWNER)
        assert resp.status_code == 200
        [row] = resp.json()
        assert row["status"] == "delivered"
        assert row["http_status"] == 200
        assert row["response_body"] == "thanks"
        assert row["attempts"] == 1
        assert row["payload"] == {"n": 1}

        limited = client.get(
            f"{_base(oauth_client)}/{webhook_id}/deliveries",
            params={"limit": 0},
            headers=OWNER,
        )
        assert limited.status_code == 422
