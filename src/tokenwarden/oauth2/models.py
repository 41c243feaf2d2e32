# OAuth2 and webhook data models.
# Created: 2026-03-02
#
# Plain dataclasses; timestamps are timezone-aware UTC datetimes and are
# written as ISO 8601 strings by to_dict(). Secrets, codes and refresh tokens
# only ever appear here as SHA-256 hex digests. Webhook secrets are the
# exception: the HMAC key must be recoverable to sign deliveries.

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class DeliveryStatus(str, Enum):
    """Webhook delivery lifecycle."""

    PENDING = "pending"  # Created or claimed, attempt in flight
    DELIVERED = "delivered"  # 2xx received
    FAILED = "failed"  # Last attempt failed, retry scheduled
    ABANDONED = "abandoned"  # Terminal, no further retries


TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.ABANDONED})


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class OAuthClient:
    """Registered OAuth2 client.

    ``id`` is the internal key other records reference; ``client_id`` is the
    public identifier presented on the wire.
    """

    client_id: str
    owner_id: str
    name: str
    client_secret_hash: str
    redirect_uris: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    grant_types: list[str] = field(default_factory=list)
    description: str | None = None
    logo_url: str | None = None
    is_confidential: bool = True
    is_active: bool = True
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def allows_grant(self, grant_type: str) -> bool:
        return grant_type in self.grant_types

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "logo_url": self.logo_url,
            "client_secret_hash": self.client_secret_hash,
            "redirect_uris": list(self.redirect_uris),
            "scopes": list(self.scopes),
            "grant_types": list(self.grant_types),
            "is_confidential": self.is_confidential,
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthClient:
        return cls(
            id=data["id"],
            client_id=data["client_id"],
            owner_id=data["owner_id"],
            name=data["name"],
            description=data.get("description"),
            logo_url=data.get("logo_url"),
            client_secret_hash=data["client_secret_hash"],
            redirect_uris=data.get("redirect_uris", []),
            scopes=data.get("scopes", []),
            grant_types=data.get("grant_types", []),
            is_confidential=data.get("is_confidential", True),
            is_active=data.get("is_active", True),
            created_at=_dt(data.get("created_at")) or utcnow(),
            updated_at=_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class AuthorizationCode:
    """Single-use authorization code bound to a PKCE challenge."""

    code_hash: str
    client_id: str  # OAuthClient.id
    user_id: str
    redirect_uri: str
    scopes: list[str]
    code_challenge: str
    code_challenge_method: str
    expires_at: datetime
    used_at: datetime | None = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "code_hash": self.code_hash,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "redirect_uri": self.redirect_uri,
            "scopes": list(self.scopes),
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "expires_at": _iso(self.expires_at),
            "used_at": _iso(self.used_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationCode:
        return cls(
            id=data["id"],
            code_hash=data["code_hash"],
            client_id=data["client_id"],
            user_id=data["user_id"],
            redirect_uri=data["redirect_uri"],
            scopes=data.get("scopes", []),
            code_challenge=data["code_challenge"],
            code_challenge_method=data.get("code_challenge_method", "S256"),
            expires_at=_dt(data["expires_at"]),
            used_at=_dt(data.get("used_at")),
            created_at=_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class AccessTokenRecord:
    """Shadow record of an issued access token, keyed by sha256(jti)."""

    token_hash: str
    client_id: str  # OAuthClient.id
    scopes: list[str]
    expires_at: datetime
    user_id: str | None = None
    revoked_at: datetime | None = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_hash": self.token_hash,
            "client_id": self.client_id,
            "user_id": self.user_id,
            "scopes": list(self.scopes),
            "expires_at": _iso(self.expires_at),
            "revoked_at": _iso(self.revoked_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccessTokenRecord:
        return cls(
            id=data["id"],
            token_hash=data["token_hash"],
            client_id=data["client_id"],
            user_id=data.get("user_id"),
            scopes=data.get("scopes", []),
            expires_at=_dt(data["expires_at"]),
            revoked_at=_dt(data.get("revoked_at")),
            created_at=_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class RefreshTokenRecord:
    """Opaque refresh token, stored hashed, paired with one access token."""

    token_hash: str
    access_token_id: str
    client_id: str  # OAuthClient.id
    scopes: list[str]
    expires_at: datetime
    user_id: str | None = None
    revoked_at: datetime | None = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def revoked(self) -> bool:
        return self.revoked_at is not None

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "token_hash": self.token_hash,
            "access_token_id": self.access_token_id,
            "client_id": self.client_id,
            "scopes": list(self.scopes),
            "user_id": self.user_id,
            "expires_at": _iso(self.expires_at),
            "revoked_at": _iso(self.revoked_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefreshTokenRecord:
        return cls(
            id=data["id"],
            token_hash=data["token_hash"],
            access_token_id=data["access_token_id"],
            client_id=data["client_id"],
            scopes=data.get("scopes", []),
            user_id=data.get("user_id"),
            expires_at=_dt(data["expires_at"]),
            revoked_at=_dt(data.get("revoked_at")),
            created_at=_dt(data.get("created_at")) or utcnow(),
        )


@dataclass
class Webhook:
    """Client-scoped webhook subscription."""

    client_id: str  # OAuthClient.id
    url: str
    secret: str
    events: list[str]
    is_active: bool = True
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def subscribes_to(self, event: str) -> bool:
        return event in self.events

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "url": self.url,
            "secret": self.secret,
            "events": list(self.events),
            "is_active": self.is_active,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Webhook:
        return cls(
            id=data["id"],
            client_id=data["client_id"],
            url=data["url"],
            secret=data["secret"],
            events=data.get("events", []),
            is_active=data.get("is_active", True),
            created_at=_dt(data.get("created_at")) or utcnow(),
            updated_at=_dt(data.get("updated_at")) or utcnow(),
        )


@dataclass
class WebhookDelivery:
    """One dispatch of one event to one webhook, across all its attempts."""

    webhook_id: str
    event: str
    payload: dict[str, Any]
    status: DeliveryStatus = DeliveryStatus.PENDING
    http_status: int | None = None
    response_body: str | None = None
    attempts: int = 0
    next_retry_at: datetime | None = None
    delivered_at: datetime | None = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event": self.event,
            "payload": self.payload,
            "status": self.status.value,
            "http_status": self.http_status,
            "response_body": self.response_body,
            "attempts": self.attempts,
            "next_retry_at": _iso(self.next_retry_at),
            "delivered_at": _iso(self.delivered_at),
            "created_at": _iso(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WebhookDelivery:
        return cls(
            id=data["id"],
            webhook_id=data["webhook_id"],
            event=data["event"],
            payload=data.get("payload", {}),
            status=DeliveryStatus(data.get("status", "pending")),
            http_status=data.get("http_status"),
            response_body=data.get("response_body"),
            attempts=data.get("attempts", 0),
            next_retry_at=_dt(data.get("next_retry_at")),
            delivered_at=_dt(data.get("delivered_at")),
            created_at=_dt(data.get("created_at")) or utcnow(),
        )
