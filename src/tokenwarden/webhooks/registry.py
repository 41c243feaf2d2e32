# Webhook Registry: per-client subscriptions.
# Created: 2026-03-02
#
# Secrets are 32 alphanumerics, returned once by create() / rotate_secret()
# and never included in list or get responses.

from __future__ import annotations

import logging
from datetime import UTC, datetime
from urllib.parse import urlsplit

from tokenwarden.oauth2.constants import WEBHOOK_SECRET_LENGTH
from tokenwarden.oauth2.credentials import generate_random_string
from tokenwarden.oauth2.errors import QuotaExceededError, WebhookValidationError
from tokenwarden.oauth2.models import Webhook
from tokenwarden.oauth2.protocol import OAuthStoreProtocol
from tokenwarden.webhooks.events import WEBHOOK_EVENTS

logger = logging.getLogger(__name__)


def _validate_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise WebhookValidationError(f"Webhook URL must be an absolute http(s) URL: {url}")
    return url


def _validate_events(events: list[str]) -> list[str]:
    if not events:
        raise WebhookValidationError("At least one event is required")
    unknown = sorted(set(events) - WEBHOOK_EVENTS)
    if unknown:
        raise WebhookValidationError(f"Unknown events: {', '.join(unknown)}")
    return list(dict.fromkeys(events))


class WebhookRegistry:
    """CRUD over webhook subscriptions, always scoped to one client."""

    def __init__(self, store: OAuthStoreProtocol, max_per_client: int = 5):
        self.store = store
        self.max_per_client = max_per_client

    def create(self, client_id: str, url: str, events: list[str]) -> tuple[Webhook, str]:
        """Subscribe *client_id* (internal id). Returns ``(webhook, secret)``."""
        webhook = Webhook(
            client_id=client_id,
            url=_validate_url(url),
            events=_validate_events(events),
            secret=generate_random_string(WEBHOOK_SECRET_LENGTH),
        )
        if not self.store.insert_webhook(webhook, max_per_client=self.max_per_client):
            raise QuotaExceededError(
                f"Maximum of {self.max_per_client} webhooks per client reached",
                limit=self.max_per_client,
            )
        logger.info("Created webhook %s for client %s", webhook.id, client_id)
        return webhook, webhook.secret

    def list_for_client(self, client_id: str) -> list[Webhook]:
        return self.store.list_webhooks(client_id)

    def get(self, id: str, client_id: str) -> Webhook | None:
        webhook = self.store.get_webhook(id)
        if webhook is None or webhook.client_id != client_id:
            return None
        return webhook

    def update(
        self,
        id: str,
        client_id: str,
        *,
        url: str | None = None,
        events: list[str] | None = None,
        is_active: bool | None = None,
    ) -> Webhook | None:
        webhook = self.get(id, client_id)
        if webhook is None:
            return None
        if url is not None:
            webhook.url = _validate_url(url)
        if events is not None:
            webhook.events = _validate_events(events)
        if is_active is not None:
            webhook.is_active = is_active
        webhook.updated_at = datetime.now(UTC)
        self.store.save_webhook(webhook)
        return webhook

    def rotate_secret(self, id: str, client_id: str) -> str | None:
        webhook = self.get(id, client_id)
        if webhook is None:
            return None
        webhook.secret = generate_random_string(WEBHOOK_SECRET_LENGTH)
        webhook.updated_at = datetime.now(UTC)
        self.store.save_webhook(webhook)
        logger.info("Rotated secret for webhook %s", webhook.id)
        return webhook.secret

    def delete(self, id: str, client_id: str) -> bool:
        if self.get(id, client_id) is None:
            return False
        return self.store.delete_webhook(id)

    def subscribers(self, client_id: str, event: str) -> list[Webhook]:
        """Active subscriptions of *client_id* that want *event*."""
        return [
            w for w in self.store.list_webhooks(client_id) if w.is_active and w.subscribes_to(event)
        ]
