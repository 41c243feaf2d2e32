# Webhooks router: per-client subscriptions, secrets and delivery log.
# Created: 2026-03-02

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from tokenwarden.api.deps import require_user
from tokenwarden.api.v1.clients import owned_client
from tokenwarden.api.v1.schemas.common import StatusResponse
from tokenwarden.api.v1.schemas.webhooks import (
    CreateWebhookRequest,
    DeliveryInfo,
    UpdateWebhookRequest,
    WebhookCreatedResponse,
    WebhookInfo,
    WebhookSecretResponse,
)
from tokenwarden.oauth2.errors import QuotaExceededError, WebhookValidationError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Webhooks"])

_BASE = "/developer/clients/{client_id}/webhooks"


def _engine():
    from tokenwarden.webhooks.delivery import get_delivery_engine

    return get_delivery_engine()


def _owned_webhook(client_id: str, webhook_id: str, owner_id: str):
    client = owned_client(client_id, owner_id)
    webhook = _engine().registry.get(webhook_id, client.id)
    if webhook is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return client, webhook


@router.get(_BASE, response_model=list[WebhookInfo])
async def list_webhooks(client_id: str, owner_id: str = Depends(require_user)):
    client = owned_client(client_id, owner_id)
    return [WebhookInfo.from_webhook(w) for w in _engine().registry.list_for_client(client.id)]


@router.post(_BASE, response_model=WebhookCreatedResponse, status_code=201)
async def create_webhook(
    client_id: str, body: CreateWebhookRequest, owner_id: str = Depends(require_user)
):
    """Subscribe a URL. The signing secret is returned only in this response."""
    client = owned_client(client_id, owner_id)
    try:
        webhook, secret = _engine().registry.create(client.id, body.url, body.events)
    except QuotaExceededError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except WebhookValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    info = WebhookInfo.from_webhook(webhook)
    return WebhookCreatedResponse(**info.model_dump(), secret=secret)


@router.get(_BASE + "/{webhook_id}", response_model=WebhookInfo)
async def get_webhook(client_id: str, webhook_id: str, owner_id: str = Depends(require_user)):
    _, webhook = _owned_webhook(client_id, webhook_id, owner_id)
    return WebhookInfo.from_webhook(webhook)


@router.patch(_BASE + "/{webhook_id}", response_model=WebhookInfo)
async def update_webhook(
    client_id: str,
    webhook_id: str,
    body: UpdateWebhookRequest,
    owner_id: str = Depends(require_user),
):
    client, _ = _owned_webhook(client_id, webhook_id, owner_id)
    try:
        webhook = _engine().registry.update(
            webhook_id,
            client.id,
            url=body.url,
            events=body.events,
            is_active=body.is_active,
        )
    except WebhookValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if webhook is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return WebhookInfo.from_webhook(webhook)


@router.delete(_BASE + "/{webhook_id}", response_model=StatusResponse)
async def delete_webhook(client_id: str, webhook_id: str, owner_id: str = Depends(require_user)):
    client, _ = _owned_webhook(client_id, webhook_id, owner_id)
    if not _engine().registry.delete(webhook_id, client.id):
        raise HTTPException(status_code=404, detail="Webhook not found")
    return StatusResponse()


@router.post(_BASE + "/{webhook_id}/rotate-secret", response_model=WebhookSecretResponse)
async def rotate_webhook_secret(
    client_id: str, webhook_id: str, owner_id: str = Depends(require_user)
):
    client, _ = _owned_webhook(client_id, webhook_id, owner_id)
    secret = _engine().registry.rotate_secret(webhook_id, client.id)
    if secret is None:
        raise HTTPException(status_code=404, detail="Webhook not found")
    return WebhookSecretResponse(id=webhook_id, secret=secret)


@router.get(_BASE + "/{webhook_id}/deliveries", response_model=list[DeliveryInfo])
async def list_deliveries(
    client_id: str,
    webhook_id: str,
    limit: int = Query(50, ge=1, le=200),
    owner_id: str = Depends(require_user),
):
    """Most recent deliveries first."""
    _owned_webhook(client_id, webhook_id, owner_id)
    return [DeliveryInfo.from_delivery(d) for d in _engine().list_deliveries(webhook_id, limit)]
