"""In-memory OAuth store with optional JSON persistence.

Created: 2026-03-02

Storage layout when a data directory is configured::

    <data_dir>/
    ├── clients.json
    ├── codes.json
    ├── access_tokens.json
    ├── refresh_tokens.json
    ├── webhooks.json
    └── deliveries.json

Every read and write goes through one re-entrant lock, so the conditional
updates (mark_code_used, revoke_*, claim_delivery) are atomic for all
threads of the process. Records go in and come out as deep copies; nothing
outside the store can alias its state. Files are written atomically (temp
file + rename) with owner-only permissions.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from tokenwarden import lifecycle
from tokenwarden.oauth2.models import (
    TERMINAL_DELIVERY_STATUSES,
    AccessTokenRecord,
    AuthorizationCode,
    DeliveryStatus,
    OAuthClient,
    RefreshTokenRecord,
    Webhook,
    WebhookDelivery,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLLECTIONS: dict[str, type] = {
    "clients": OAuthClient,
    "codes": AuthorizationCode,
    "access_tokens": AccessTokenRecord,
    "refresh_tokens": RefreshTokenRecord,
    "webhooks": Webhook,
    "deliveries": WebhookDelivery,
}


class FileOAuthStore:
    """Thread-safe OAuth store.

    Args:
        data_dir: Directory for JSON files. ``None`` keeps everything in memory.
    """

    def __init__(self, data_dir: Path | None = None):
        self._data_dir = Path(data_dir) if data_dir is not None else None
        self._lock = threading.RLock()

        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessTokenRecord] = {}
        self._refresh_tokens: dict[str, RefreshTokenRecord] = {}
        self._webhooks: dict[str, Webhook] = {}
        self._deliveries: dict[str, WebhookDelivery] = {}

        # Unique indexes
        self._client_id_index: dict[str, str] = {}  # public client_id -> id
        self._code_index: dict[str, str] = {}  # code_hash -> id
        self._access_index: dict[str, str] = {}  # token_hash -> id
        self._refresh_index: dict[str, str] = {}  # token_hash -> id
        self._refresh_by_access: dict[str, str] = {}  # access_token_id -> refresh id

        if self._data_dir is not None:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            self._load_all()

    # =========================================================================
    # Persistence
    # =========================================================================

    def _table(self, name: str) -> dict[str, Any]:
        return getattr(self, f"_{name}")

    def _load_all(self) -> None:
        assert self._data_dir is not None
        for name, model in _COLLECTIONS.items():
            path = self._data_dir / f"{name}.json"
            if not path.exists():
                continue
            try:
                rows = json.loads(path.read_text(encoding="utf-8"))
                table = self._table(name)
                for row in rows:
                    record = model.from_dict(row)
                    table[record.id] = record
            except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
                logger.error("Failed to load %s: %s", path, exc)

        for client in self._clients.values():
            self._client_id_index[client.client_id] = client.id
        for code in self._codes.values():
            self._code_index[code.code_hash] = code.id
        for token in self._access_tokens.values():
            self._access_index[token.token_hash] = token.id
        for refresh in self._refresh_tokens.values():
            self._refresh_index[refresh.token_hash] = refresh.id
            self._refresh_by_access[refresh.access_token_id] = refresh.id

        logger.debug(
            "Loaded OAuth store from %s (%d clients, %d access tokens)",
            self._data_dir,
            len(self._clients),
            len(self._access_tokens),
        )

    def _persist(self, *names: str) -> None:
        if self._data_dir is None:
            return
        for name in names:
            path = self._data_dir / f"{name}.json"
            temp_path = path.with_suffix(".tmp")
            rows = [record.to_dict() for record in self._table(name).values()]
            try:
                temp_path.write_text(json.dumps(rows, indent=2), encoding="utf-8")
                temp_path.chmod(0o600)
                temp_path.replace(path)
            except OSError as exc:
                logger.error("Error saving %s: %s", path, exc)
                if temp_path.exists():
                    temp_path.unlink()

    @staticmethod
    def _copy(record: T | None) -> T | None:
        return copy.deepcopy(record) if record is not None else None

    def _delete_where(
        self, name: str, predicate: Callable[[Any], bool], on_delete: Callable[[Any], None]
    ) -> int:
        table = self._table(name)
        doomed = [record for record in table.values() if predicate(record)]
        for record in doomed:
            del table[record.id]
            on_delete(record)
        if doomed:
            self._persist(name)
        return len(doomed)

    # =========================================================================
    # Clients
    # =========================================================================

    def insert_client(self, client: OAuthClient, max_per_owner: int | None = None) -> bool:
        with self._lock:
            if client.client_id in self._client_id_index:
                raise ValueError(f"Duplicate client_id {client.client_id}")
            if max_per_owner is not None:
                owned = sum(1 for c in self._clients.values() if c.owner_id == client.owner_id)
                if owned >= max_per_owner:
                    return False
            self._clients[client.id] = copy.deepcopy(client)
            self._client_id_index[client.client_id] = client.id
            self._persist("clients")
            return True

    def get_client(self, id: str) -> OAuthClient | None:
        with self._lock:
            return self._copy(self._clients.get(id))

    def get_client_by_client_id(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            id = self._client_id_index.get(client_id)
            return self._copy(self._clients.get(id)) if id else None

    def list_clients(self, owner_id: str) -> list[OAuthClient]:
        with self._lock:
            clients = [copy.deepcopy(c) for c in self._clients.values() if c.owner_id == owner_id]
        return sorted(clients, key=lambda c: c.created_at, reverse=True)

    def save_client(self, client: OAuthClient) -> None:
        with self._lock:
            if client.id not in self._clients:
                raise KeyError(client.id)
            self._clients[client.id] = copy.deepcopy(client)
            self._persist("clients")

    def delete_client(self, id: str) -> bool:
        with self._lock:
            client = self._clients.pop(id, None)
            if client is None:
                return False
            self._client_id_index.pop(client.client_id, None)

            for code in [c for c in self._codes.values() if c.client_id == id]:
                del self._codes[code.id]
                self._code_index.pop(code.code_hash, None)
            for token in [t for t in self._access_tokens.values() if t.client_id == id]:
                self._drop_access(token)
            for refresh in [r for r in self._refresh_tokens.values() if r.client_id == id]:
                self._drop_refresh(refresh)
            for webhook in [w for w in self._webhooks.values() if w.client_id == id]:
                self._drop_webhook(webhook)

            self._persist(*_COLLECTIONS)
            return True

    # =========================================================================
    # Authorization codes
    # =========================================================================

    def insert_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.id] = copy.deepcopy(code)
            self._code_index[code.code_hash] = code.id
            self._persist("codes")

    def get_code_by_hash(self, code_hash: str) -> AuthorizationCode | None:
        with self._lock:
            id = self._code_index.get(code_hash)
            return self._copy(self._codes.get(id)) if id else None

    def mark_code_used(self, id: str, used_at: datetime) -> bool:
        with self._lock:
            code = self._codes.get(id)
            if code is None or code.used_at is not None:
                return False
            code.used_at = used_at
            self._persist("codes")
            return True

    def delete_dead_codes(self, now: datetime) -> int:
        with self._lock:
            return self._delete_where(
                "codes",
                lambda c: c.used_at is not None or c.is_expired(now),
                lambda c: self._code_index.pop(c.code_hash, None),
            )

    # =========================================================================
    # Access tokens
    # =========================================================================

    def _drop_access(self, token: AccessTokenRecord) -> None:
        self._access_tokens.pop(token.id, None)
        self._access_index.pop(token.token_hash, None)

    def insert_access_token(self, record: AccessTokenRecord) -> None:
        with self._lock:
            self._access_tokens[record.id] = copy.deepcopy(record)
            self._access_index[record.token_hash] = record.id
            self._persist("access_tokens")

    def get_access_token(self, id: str) -> AccessTokenRecord | None:
        with self._lock:
            return self._copy(self._access_tokens.get(id))

    def get_access_token_by_hash(self, token_hash: str) -> AccessTokenRecord | None:
        with self._lock:
            id = self._access_index.get(token_hash)
            return self._copy(self._access_tokens.get(id)) if id else None

    def revoke_access_token(self, id: str, revoked_at: datetime) -> bool:
        with self._lock:
            token = self._access_tokens.get(id)
            if token is None or token.revoked_at is not None:
                return False
            token.revoked_at = revoked_at
            self._persist("access_tokens")
            return True

    def delete_dead_access_tokens(self, now: datetime) -> int:
        with self._lock:
            return self._delete_where(
                "access_tokens",
                lambda t: t.revoked or t.is_expired(now),
                lambda t: self._access_index.pop(t.token_hash, None),
            )

    # =========================================================================
    # Refresh tokens
    # =========================================================================

    def _drop_refresh(self, refresh: RefreshTokenRecord) -> None:
        self._refresh_tokens.pop(refresh.id, None)
        self._refresh_index.pop(refresh.token_hash, None)
        if self._refresh_by_access.get(refresh.access_token_id) == refresh.id:
            del self._refresh_by_access[refresh.access_token_id]

    def insert_refresh_token(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            self._refresh_tokens[record.id] = copy.deepcopy(record)
            self._refresh_index[record.token_hash] = record.id
            self._refresh_by_access[record.access_token_id] = record.id
            self._persist("refresh_tokens")

    def get_refresh_token_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        with self._lock:
            id = self._refresh_index.get(token_hash)
            return self._copy(self._refresh_tokens.get(id)) if id else None

    def get_refresh_token_for_access(self, access_token_id: str) -> RefreshTokenRecord | None:
        with self._lock:
            id = self._refresh_by_access.get(access_token_id)
            return self._copy(self._refresh_tokens.get(id)) if id else None

    def revoke_refresh_token(self, id: str, revoked_at: datetime) -> bool:
        with self._lock:
            refresh = self._refresh_tokens.get(id)
            if refresh is None or refresh.revoked_at is not None:
                return False
            refresh.revoked_at = revoked_at
            self._persist("refresh_tokens")
            return True

    def delete_dead_refresh_tokens(self, now: datetime) -> int:
        with self._lock:
            doomed = [
                r for r in self._refresh_tokens.values() if r.revoked or r.is_expired(now)
            ]
            for refresh in doomed:
                self._drop_refresh(refresh)
            if doomed:
                self._persist("refresh_tokens")
            return len(doomed)

    # =========================================================================
    # Webhooks
    # =========================================================================

    def _drop_webhook(self, webhook: Webhook) -> None:
        self._webhooks.pop(webhook.id, None)
        for delivery in [d for d in self._deliveries.values() if d.webhook_id == webhook.id]:
            del self._deliveries[delivery.id]

    def insert_webhook(self, webhook: Webhook, max_per_client: int | None = None) -> bool:
        with self._lock:
            if max_per_client is not None:
                existing = sum(
                    1 for w in self._webhooks.values() if w.client_id == webhook.client_id
                )
                if existing >= max_per_client:
                    return False
            self._webhooks[webhook.id] = copy.deepcopy(webhook)
            self._persist("webhooks")
            return True

    def get_webhook(self, id: str) -> Webhook | None:
        with self._lock:
            return self._copy(self._webhooks.get(id))

    def list_webhooks(self, client_id: str) -> list[Webhook]:
        with self._lock:
            hooks = [copy.deepcopy(w) for w in self._webhooks.values() if w.client_id == client_id]
        return sorted(hooks, key=lambda w: w.created_at)

    def save_webhook(self, webhook: Webhook) -> None:
        with self._lock:
            if webhook.id not in self._webhooks:
                raise KeyError(webhook.id)
            self._webhooks[webhook.id] = copy.deepcopy(webhook)
            self._persist("webhooks")

    def delete_webhook(self, id: str) -> bool:
        with self._lock:
            webhook = self._webhooks.get(id)
            if webhook is None:
                return False
            self._drop_webhook(webhook)
            self._persist("webhooks", "deliveries")
            return True

    # =========================================================================
    # Deliveries
    # =========================================================================

    def insert_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self._deliveries[delivery.id] = copy.deepcopy(delivery)
            self._persist("deliveries")

    def get_delivery(self, id: str) -> WebhookDelivery | None:
        with self._lock:
            return self._copy(self._deliveries.get(id))

    def save_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            # The webhook may have been deleted mid-attempt; drop the result.
            if delivery.id not in self._deliveries:
                return
            self._deliveries[delivery.id] = copy.deepcopy(delivery)
            self._persist("deliveries")

    def list_deliveries(self, webhook_id: str, limit: int = 50) -> list[WebhookDelivery]:
        with self._lock:
            rows = [
                copy.deepcopy(d) for d in self._deliveries.values() if d.webhook_id == webhook_id
            ]
        rows.sort(key=lambda d: d.created_at, reverse=True)
        return rows[:limit]

    def list_due_deliveries(self, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        with self._lock:
            rows = [
                copy.deepcopy(d)
                for d in self._deliveries.values()
                if d.status in (DeliveryStatus.PENDING, DeliveryStatus.FAILED)
                and d.next_retry_at is not None
                and d.next_retry_at <= now
            ]
        rows.sort(key=lambda d: d.next_retry_at)
        return rows[:limit]

    def claim_delivery(
        self, id: str, expected_retry_at: datetime | None, lease_until: datetime
    ) -> bool:
        with self._lock:
            delivery = self._deliveries.get(id)
            if delivery is None:
                return False
            if delivery.status not in (DeliveryStatus.PENDING, DeliveryStatus.FAILED):
                return False
            if delivery.next_retry_at != expected_retry_at:
                return False
            delivery.status = DeliveryStatus.PENDING
            delivery.next_retry_at = lease_until
            self._persist("deliveries")
            return True

    def delete_deliveries_before(self, cutoff: datetime) -> int:
        with self._lock:
            return self._delete_where(
                "deliveries",
                lambda d: d.status in TERMINAL_DELIVERY_STATUSES and d.created_at < cutoff,
                lambda d: None,
            )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_store: FileOAuthStore | None = None


def get_oauth_store() -> FileOAuthStore:
    global _store
    if _store is None:
        from tokenwarden.config import get_settings

        settings = get_settings()
        _store = FileOAuthStore(settings.get_data_dir() if settings.persist else None)
        lifecycle.register("oauth_store", reset=reset_oauth_store)
    return _store


def reset_oauth_store() -> None:
    global _store
    _store = None
