# Developer clients router: register and manage OAuth clients.
# Created: 2026-03-02
#
# All routes act on behalf of the authenticated owner (require_user) and are
# addressed by the public client_id. Another owner's client is a 404.

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from tokenwarden.api.deps import require_user
from tokenwarden.api.v1.schemas.clients import (
    ClientCreatedResponse,
    ClientInfo,
    ClientSecretResponse,
)
from tokenwarden.api.v1.schemas.common import StatusResponse
from tokenwarden.oauth2.clients import ClientRegistration, ClientUpdate
from tokenwarden.oauth2.errors import ClientValidationError, QuotaExceededError
from tokenwarden.oauth2.models import OAuthClient
from tokenwarden.webhooks.events import WebhookEvent

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Developer Clients"])


def _registry():
    from tokenwarden.oauth2.server import get_oauth_server

    return get_oauth_server().clients


def owned_client(client_id: str, owner_id: str) -> OAuthClient:
    """Resolve a public client_id owned by *owner_id*, else 404."""
    client = _registry().get_by_client_id(client_id)
    if client is None or client.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@router.get("/developer/clients", response_model=list[ClientInfo])
async def list_clients(owner_id: str = Depends(require_user)):
    return [ClientInfo.from_client(c) for c in _registry().list_for_owner(owner_id)]


@router.post("/developer/clients", response_model=ClientCreatedResponse, status_code=201)
async def register_client(body: ClientRegistration, owner_id: str = Depends(require_user)):
    """Register a client. The secret is returned only in this response."""
    try:
        client, secret = _registry().register(owner_id, body)
    except QuotaExceededError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ClientValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    info = ClientInfo.from_client(client)
    return ClientCreatedResponse(**info.model_dump(), client_secret=secret)


@router.get("/developer/clients/{client_id}", response_model=ClientInfo)
async def get_client(client_id: str, owner_id: str = Depends(require_user)):
    return ClientInfo.from_client(owned_client(client_id, owner_id))


@router.patch("/developer/clients/{client_id}", response_model=ClientInfo)
async def update_client(
    client_id: str,
    body: ClientUpdate,
    background_tasks: BackgroundTasks,
    owner_id: str = Depends(require_user),
):
    from tokenwarden.webhooks.delivery import emit_event

    client = owned_client(client_id, owner_id)
    try:
        updated = _registry().update(client.id, owner_id, body)
    except ClientValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if updated is None:
        raise HTTPException(status_code=404, detail="Client not found")

    background_tasks.add_task(
        emit_event,
        updated.id,
        WebhookEvent.CLIENT_UPDATED.value,
        {"client_id": updated.client_id, "changes": sorted(body.model_dump(exclude_unset=True))},
    )
    return ClientInfo.from_client(updated)


@router.post("/developer/clients/{client_id}/deactivate", response_model=ClientInfo)
async def deactivate_client(
    client_id: str, background_tasks: BackgroundTasks, owner_id: str = Depends(require_user)
):
    """Soft-disable a client; its outstanding tokens stop verifying."""
    from tokenwarden.webhooks.delivery import emit_event

    client = owned_client(client_id, owner_id)
    updated = _registry().deactivate(client.id, owner_id)
    if updated is None:
        raise HTTPException(status_code=404, detail="Client not found")

    background_tasks.add_task(
        emit_event,
        updated.id,
        WebhookEvent.CLIENT_UPDATED.value,
        {"client_id": updated.client_id, "changes": ["is_active"]},
    )
    return ClientInfo.from_client(updated)


@router.post("/developer/clients/{client_id}/rotate-secret", response_model=ClientSecretResponse)
async def rotate_client_secret(client_id: str, owner_id: str = Depends(require_user)):
    """Issue a new secret. The old one stops working immediately."""
    client = owned_client(client_id, owner_id)
    secret = _registry().rotate_secret(client.id, owner_id)
    if secret is None:
        raise HTTPException(status_code=404, detail="Client not found")
    return ClientSecretResponse(client_id=client.client_id, client_secret=secret)


@router.delete("/developer/clients/{client_id}", response_model=StatusResponse)
async def delete_client(client_id: str, owner_id: str = Depends(require_user)):
    """Hard delete. client.deleted is delivered before the webhooks go away."""
    from tokenwarden.webhooks.delivery import emit_event

    client = owned_client(client_id, owner_id)
    await emit_event(
        client.id,
        WebhookEvent.CLIENT_DELETED.value,
        {"client_id": client.client_id},
    )
    if not _registry().delete(client.id, owner_id):
        raise HTTPException(status_code=404, detail="Client not found")
    return StatusResponse()
