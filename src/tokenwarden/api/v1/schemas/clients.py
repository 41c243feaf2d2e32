# Developer client schemas.
# Created: 2026-03-02

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from tokenwarden.oauth2.models import OAuthClient


class ClientInfo(BaseModel):
    """Client as shown to its owner (no secret)."""

    id: str
    client_id: str
    name: str
    description: str | None = None
    logo_url: str | None = None
    redirect_uris: list[str]
    scopes: list[str]
    grant_types: list[str]
    is_confidential: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_client(cls, client: OAuthClient) -> ClientInfo:
        return cls(
            id=client.id,
            client_id=client.client_id,
            name=client.name,
            description=client.description,
            logo_url=client.logo_url,
            redirect_uris=client.redirect_uris,
            scopes=client.scopes,
            grant_types=client.grant_types,
            is_confidential=client.is_confidential,
            is_active=client.is_active,
            created_at=client.created_at,
            updated_at=client.updated_at,
        )


class ClientCreatedResponse(ClientInfo):
    """Returned once at registration: includes the plaintext secret."""

    client_secret: str


class ClientSecretResponse(BaseModel):
    client_id: str
    client_secret: str
