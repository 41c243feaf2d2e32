# Webhook event names.
# Created: 2026-03-02

from enum import Enum


class WebhookEvent(str, Enum):
    TOKEN_CREATED = "token.created"
    TOKEN_REVOKED = "token.revoked"
    CLIENT_UPDATED = "client.updated"
    CLIENT_DELETED = "client.deleted"
    AUTHORIZATION_GRANTED = "authorization.granted"
    AUTHORIZATION_DENIED = "authorization.denied"


WEBHOOK_EVENTS: frozenset[str] = frozenset(e.value for e in WebhookEvent)
