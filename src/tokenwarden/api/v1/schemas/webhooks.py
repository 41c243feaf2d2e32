# Webhook subscription schemas.
# Created: 2026-03-02

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from tokenwarden.oauth2.models import Webhook, WebhookDelivery


class CreateWebhookRequest(BaseModel):
    url: str = Field(..., min_length=1, max_length=2048)
    events: list[str] = Field(..., min_length=1)


class UpdateWebhookRequest(BaseModel):
    url: str | None = Field(default=None, min_length=1, max_length=2048)
    events: list[str] | None = Field(default=None, min_length=1)
    is_active: bool | None = None


class WebhookInfo(BaseModel):
    """Webhook as listed (secret never included)."""

    id: str
    url: str
    events: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_webhook(cls, webhook: Webhook) -> WebhookInfo:
        return cls(
            id=webhook.id,
            url=webhook.url,
            events=webhook.events,
            is_active=webhook.is_active,
            created_at=webhook.created_at,
            updated_at=webhook.updated_at,
        )


class WebhookCreatedResponse(WebhookInfo):
    """Returned once at creation: includes the signing secret."""

    secret: str


class WebhookSecretResponse(BaseModel):
    id: str
    secret: str


class DeliveryInfo(BaseModel):
    id: str
    event: str
    status: str
    http_status: int | None = None
    response_body: str | None = None
    attempts: int
    payload: dict[str, Any]
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime

    @classmethod
    def from_delivery(cls, delivery: WebhookDelivery) -> DeliveryInfo:
        return cls(
            id=delivery.id,
            event=delivery.event,
            status=delivery.status.value,
            http_status=delivery.http_status,
            response_body=delivery.response_body,
            attempts=delivery.attempts,
            payload=delivery.payload,
            next_retry_at=delivery.next_retry_at,
            delivered_at=delivery.delivered_at,
            created_at=delivery.created_at,
        )
