# Tests for the in-memory / JSON-file OAuth store.
# Created: 2026-03-02

import threading
from datetime import UTC, datetime, timedelta

import pytest

from tokenwarden.oauth2.models import (
    AccessTokenRecord,
    AuthorizationCode,
    DeliveryStatus,
    OAuthClient,
    RefreshTokenRecord,
    Webhook,
    WebhookDelivery,
)
from tokenwarden.oauth2.storage import FileOAuthStore

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _client(owner="owner-1", client_id="twc_abc"):
    return OAuthClient(
        client_id=client_id,
        owner_id=owner,
        name="App",
        client_secret_hash="x" * 64,
        redirect_uris=["https://app.test/cb"],
        scopes=["read"],
        grant_types=["authorization_code"],
    )


def _code(client_id, expires_at=NOW + timedelta(minutes=10), code_hash="h1"):
    return AuthorizationCode(
        code_hash=code_hash,
        client_id=client_id,
        user_id="user-1",
        redirect_uri="https://app.test/cb",
        scopes=["read"],
        code_challenge="c" * 43,
        code_challenge_method="S256",
        expires_at=expires_at,
    )


class TestClients:
    def test_insert_and_lookup(self, store):
        client = _client()
        assert store.insert_client(client)
        assert store.get_client(client.id).client_id == "twc_abc"
        assert store.get_client_by_client_id("twc_abc").id == client.id
        assert store.get_client_by_client_id("missing") is None

    def test_quota_is_enforced_per_owner(self, store):
        assert store.insert_client(_client(client_id="a"), max_per_owner=2)
        assert store.insert_client(_client(client_id="b"), max_per_owner=2)
        assert not store.insert_client(_client(client_id="c"), max_per_owner=2)
        assert store.insert_client(_client(owner="other", client_id="d"), max_per_owner=2)
        assert len(store.list_clients("owner-1")) == 2

    def test_duplicate_client_id_rejected(self, store):
        store.insert_client(_client())
        with pytest.raises(ValueError):
            store.insert_client(_client())

    def test_returned_records_are_copies(self, store):
        client = _client()
        store.insert_client(client)
        fetched = store.get_client(client.id)
        fetched.scopes.append("write")
        assert store.get_client(client.id).scopes == ["read"]

    def test_delete_cascades(self, store):
        client = _client()
        store.insert_client(client)
        store.insert_code(_code(client.id))
        access = AccessTokenRecord(
            token_hash="a1", client_id=client.id, scopes=["read"], expires_at=NOW
        )
        store.insert_access_token(access)
        store.insert_refresh_token(
            RefreshTokenRecord(
                token_hash="r1",
                access_token_id=access.id,
                client_id=client.id,
                scopes=["read"],
                expires_at=NOW,
            )
        )
        hook = Webhook(
            client_id=client.id, url="https://h.test", secret="s", events=["token.created"]
        )
        store.insert_webhook(hook)

        assert store.delete_client(client.id)
        assert store.get_client_by_client_id("twc_abc") is None
        assert store.get_code_by_hash("h1") is None
        assert store.get_access_token_by_hash("a1") is None
        assert store.get_refresh_token_by_hash("r1") is None
        assert store.get_webhook(hook.id) is None
        assert not store.delete_client(client.id)


class TestConditionalUpdates:
    def test_mark_code_used_only_once(self, store):
        code = _code("client")
        store.insert_code(code)
        assert store.mark_code_used(code.id, NOW)
        assert not store.mark_code_used(code.id, NOW)
        assert store.get_code_by_hash("h1").used_at == NOW

    def test_mark_code_used_single_winner_across_threads(self, store):
        code = _code("client")
        store.insert_code(code)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(store.mark_code_used(code.id, NOW))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_revoke_refresh_token_only_once(self, store):
        record = RefreshTokenRecord(
            token_hash="r", access_token_id="a", client_id="c", scopes=[], expires_at=NOW
        )
        store.insert_refresh_token(record)
        assert store.revoke_refresh_token(record.id, NOW)
        assert not store.revoke_refresh_token(record.id, NOW)
        assert not store.revoke_refresh_token("missing", NOW)

    def test_claim_delivery_requires_expected_retry_time(self, store):
        due = NOW - timedelta(seconds=1)
        delivery = WebhookDelivery(
            webhook_id="w", event="token.created", payload={}, status=DeliveryStatus.FAILED,
            next_retry_at=due,
        )
        store.insert_delivery(delivery)
        lease = NOW + timedelta(minutes=1)
        assert store.claim_delivery(delivery.id, due, lease)
        assert not store.claim_delivery(delivery.id, due, lease)
        claimed = store.get_delivery(delivery.id)
        assert claimed.status == DeliveryStatus.PENDING
        assert claimed.next_retry_at == lease


class TestSweeps:
    def test_delete_dead_codes(self, store):
        store.insert_code(_code("c", code_hash="live"))
        store.insert_code(_code("c", expires_at=NOW - timedelta(seconds=1), code_hash="expired"))
        used = _code("c", code_hash="used")
        store.insert_code(used)
        store.mark_code_used(used.id, NOW)

        assert store.delete_dead_codes(NOW) == 2
        assert store.get_code_by_hash("live") is not None
        assert store.delete_dead_codes(NOW) == 0

    def test_delete_dead_tokens(self, store):
        live = AccessTokenRecord(
            token_hash="live", client_id="c", scopes=[], expires_at=NOW + timedelta(hours=1)
        )
        expired = AccessTokenRecord(
            token_hash="old", client_id="c", scopes=[], expires_at=NOW - timedelta(seconds=1)
        )
        revoked = AccessTokenRecord(
            token_hash="rev", client_id="c", scopes=[], expires_at=NOW + timedelta(hours=1)
        )
        for record in (live, expired, revoked):
            store.insert_access_token(record)
        store.revoke_access_token(revoked.id, NOW)

        assert store.delete_dead_access_tokens(NOW) == 2
        assert store.get_access_token_by_hash("live") is not None

    def test_delete_deliveries_keeps_in_flight_rows(self, store):
        old = NOW - timedelta(days=40)
        done = WebhookDelivery(
            webhook_id="w", event="e", payload={}, status=DeliveryStatus.DELIVERED, created_at=old
        )
        failing = WebhookDelivery(
            webhook_id="w", event="e", payload={}, status=DeliveryStatus.FAILED, created_at=old
        )
        recent = WebhookDelivery(
            webhook_id="w", event="e", payload={}, status=DeliveryStatus.ABANDONED, created_at=NOW
        )
        for d in (done, failing, recent):
            store.insert_delivery(d)

        assert store.delete_deliveries_before(NOW - timedelta(days=30)) == 1
        assert store.get_delivery(done.id) is None
        assert store.get_delivery(failing.id) is not None
        assert store.get_delivery(recent.id) is not None


class TestPersistence:
    def test_state_survives_reload(self, tmp_path):
        first = FileOAuthStore(tmp_path)
        client = _client()
        first.insert_client(client)
        code = _code(client.id)
        first.insert_code(code)
        first.mark_code_used(code.id, NOW)

        second = FileOAuthStore(tmp_path)
        assert second.get_client_by_client_id("twc_abc").name == "App"
        assert second.get_code_by_hash("h1").used_at == NOW

    def test_files_are_owner_only(self, tmp_path):
        store = FileOAuthStore(tmp_path)
        store.insert_client(_client())
        mode = (tmp_path / "clients.json").stat().st_mode & 0o777
        assert mode == 0o600

    def test_corrupt_file_is_ignored(self, tmp_path):
        (tmp_path / "clients.json").write_text("{not json")
        store = FileOAuthStore(tmp_path)
        assert store.list_clients("owner-1") == []
