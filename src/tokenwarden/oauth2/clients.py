# Client Registry: register, verify, rotate, update, deactivate, delete.
# Created: 2026-03-02
#
# Client ids look like twc_<24 alphanumerics>. Secrets are 48 alphanumerics,
# stored as sha256 hex and returned exactly once (at registration or
# rotation). Owners are opaque user ids authenticated upstream.

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from tokenwarden.oauth2.constants import (
    CLIENT_DESCRIPTION_MAX_LENGTH,
    CLIENT_ID_LENGTH,
    CLIENT_ID_PREFIX,
    CLIENT_NAME_MAX_LENGTH,
    CLIENT_SECRET_LENGTH,
    GRANT_CLIENT_CREDENTIALS,
)
from tokenwarden.oauth2.credentials import generate_random_string, hash_secret, verify_secret
from tokenwarden.oauth2.errors import ClientValidationError, QuotaExceededError
from tokenwarden.oauth2.models import OAuthClient
from tokenwarden.oauth2.protocol import OAuthStoreProtocol

logger = logging.getLogger(__name__)

GrantTypeName = Literal["authorization_code", "client_credentials", "refresh_token"]

_FORBIDDEN_REDIRECT_SCHEMES = frozenset({"javascript", "data", "file", "vbscript"})


def _check_redirect_uri(uri: str) -> str:
    parts = urlsplit(uri)
    if not parts.scheme or parts.scheme.lower() in _FORBIDDEN_REDIRECT_SCHEMES:
        raise ValueError(f"Invalid redirect URI: {uri}")
    if parts.scheme in ("http", "https") and not parts.netloc:
        raise ValueError(f"Redirect URI must be absolute: {uri}")
    if not parts.netloc and not parts.path:
        raise ValueError(f"Invalid redirect URI: {uri}")
    if parts.fragment:
        raise ValueError(f"Redirect URI must not contain a fragment: {uri}")
    return uri


def _check_http_url(url: str) -> str:
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValueError(f"Must be an absolute http(s) URL: {url}")
    return url


class ClientRegistration(BaseModel):
    """Input for registering a new client."""

    name: str = Field(min_length=1, max_length=CLIENT_NAME_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=CLIENT_DESCRIPTION_MAX_LENGTH)
    logo_url: str | None = None
    redirect_uris: list[str] = Field(min_length=1, max_length=5)
    scopes: list[str] = Field(min_length=1)
    grant_types: list[GrantTypeName] = Field(
        default_factory=lambda: ["authorization_code", "refresh_token"], min_length=1
    )
    is_confidential: bool = True

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name must not be blank")
        return v

    @field_validator("logo_url")
    @classmethod
    def _logo(cls, v: str | None) -> str | None:
        return _check_http_url(v) if v else None

    @field_validator("redirect_uris")
    @classmethod
    def _redirects(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(_check_redirect_uri(u) for u in v))

    @field_validator("scopes", "grant_types")
    @classmethod
    def _dedupe(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))


class ClientUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=CLIENT_NAME_MAX_LENGTH)
    description: str | None = Field(default=None, max_length=CLIENT_DESCRIPTION_MAX_LENGTH)
    logo_url: str | None = None
    redirect_uris: list[str] | None = Field(default=None, min_length=1, max_length=5)
    scopes: list[str] | None = Field(default=None, min_length=1)
    grant_types: list[GrantTypeName] | None = Field(default=None, min_length=1)
    is_active: bool | None = None

    @field_validator("logo_url")
    @classmethod
    def _logo(cls, v: str | None) -> str | None:
        return _check_http_url(v) if v else v

    @field_validator("redirect_uris")
    @classmethod
    def _redirects(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        return list(dict.fromkeys(_check_redirect_uri(u) for u in v))


class ClientRegistry:
    """Owns OAuth client records."""

    def __init__(
        self,
        store: OAuthStoreProtocol,
        supported_scopes: list[str] | None = None,
        max_clients_per_owner: int = 10,
        max_redirect_uris: int = 5,
    ):
        self.store = store
        self.supported_scopes = list(supported_scopes or ["read", "write", "profile"])
        self.max_clients_per_owner = max_clients_per_owner
        self.max_redirect_uris = max_redirect_uris

    # -- validation -----------------------------------------------------------

    def _check_scopes(self, scopes: list[str]) -> None:
        unsupported = [s for s in scopes if s not in self.supported_scopes]
        if unsupported:
            raise ClientValidationError(f"Unsupported scopes: {', '.join(unsupported)}")

    def _check_shape(
        self, redirect_uris: list[str], grant_types: list[str], is_confidential: bool
    ) -> None:
        if len(redirect_uris) > self.max_redirect_uris:
            raise ClientValidationError(
                f"At most {self.max_redirect_uris} redirect URIs are allowed"
            )
        if GRANT_CLIENT_CREDENTIALS in grant_types and not is_confidential:
            raise ClientValidationError("Public clients cannot use the client_credentials grant")

    # -- lifecycle ------------------------------------------------------------

    def register(
        self, owner_id: str, registration: ClientRegistration
    ) -> tuple[OAuthClient, str]:
        """Create a client. Returns ``(client, plaintext_secret)``.

        Raises:
            ClientValidationError: unsupported scope or inconsistent settings.
            QuotaExceededError: the owner already has the maximum number of clients.
        """
        self._check_scopes(registration.scopes)
        self._check_shape(
            registration.redirect_uris, registration.grant_types, registration.is_confidential
        )

        secret = generate_random_string(CLIENT_SECRET_LENGTH)
        client = OAuthClient(
            client_id=CLIENT_ID_PREFIX + generate_random_string(CLIENT_ID_LENGTH),
            owner_id=owner_id,
            name=registration.name,
            description=registration.description,
            logo_url=registration.logo_url,
            client_secret_hash=hash_secret(secret),
            redirect_uris=list(registration.redirect_uris),
            scopes=list(registration.scopes),
            grant_types=list(registration.grant_types),
            is_confidential=registration.is_confidential,
        )
        if not self.store.insert_client(client, max_per_owner=self.max_clients_per_owner):
            raise QuotaExceededError(
                f"Maximum of {self.max_clients_per_owner} clients per owner reached",
                limit=self.max_clients_per_owner,
            )

        logger.info("Registered OAuth client %s for owner %s", client.client_id, owner_id)
        return client, secret

    def get(self, id: str) -> OAuthClient | None:
        return self.store.get_client(id)

    def get_by_client_id(self, client_id: str) -> OAuthClient | None:
        return self.store.get_client_by_client_id(client_id)

    def get_owned(self, id: str, owner_id: str) -> OAuthClient | None:
        """Return the client only if *owner_id* owns it."""
        client = self.store.get_client(id)
        if client is None or client.owner_id != owner_id:
            return None
        return client

    def list_for_owner(self, owner_id: str) -> list[OAuthClient]:
        return self.store.list_clients(owner_id)

    def update(self, id: str, owner_id: str, changes: ClientUpdate) -> OAuthClient | None:
        client = self.get_owned(id, owner_id)
        if client is None:
            return None

        fields = changes.model_dump(exclude_unset=True)
        if "scopes" in fields and fields["scopes"] is not None:
            self._check_scopes(fields["scopes"])
        self._check_shape(
            fields.get("redirect_uris") or client.redirect_uris,
            fields.get("grant_types") or client.grant_types,
            client.is_confidential,
        )

        for name, value in fields.items():
            if value is None and name not in ("description", "logo_url"):
                continue
            setattr(client, name, list(value) if isinstance(value, list) else value)
        client.updated_at = datetime.now(UTC)
        self.store.save_client(client)
        logger.info("Updated OAuth client %s", client.client_id)
        return client

    def deactivate(self, id: str, owner_id: str) -> OAuthClient | None:
        """Soft-disable a client. Its tokens stop verifying immediately."""
        return self.update(id, owner_id, ClientUpdate(is_active=False))

    def rotate_secret(self, id: str, owner_id: str) -> str | None:
        """Replace the client secret. The previous secret stops working at once."""
        client = self.get_owned(id, owner_id)
        if client is None:
            return None
        secret = generate_random_string(CLIENT_SECRET_LENGTH)
        client.client_secret_hash = hash_secret(secret)
        client.updated_at = datetime.now(UTC)
        self.store.save_client(client)
        logger.info("Rotated secret for OAuth client %s", client.client_id)
        return secret

    def delete(self, id: str, owner_id: str) -> bool:
        """Hard delete, cascading to codes, tokens and webhooks."""
        client = self.get_owned(id, owner_id)
        if client is None:
            return False
        deleted = self.store.delete_client(id)
        if deleted:
            logger.info("Deleted OAuth client %s", client.client_id)
        return deleted

    # -- checks used by the authorization server -----------------------------

    def verify_credentials(self, client_id: str, secret: str | None) -> OAuthClient | None:
        """Return the active client if *secret* matches, else None."""
        client = self.store.get_client_by_client_id(client_id)
        if client is None or not client.is_active:
            return None
        if not secret or not verify_secret(secret, client.client_secret_hash):
            return None
        return client

    def validate_redirect_uri(self, client_id: str, redirect_uri: str) -> bool:
        """Exact string match against a registered URI."""
        client = self.store.get_client_by_client_id(client_id)
        return client is not None and redirect_uri in client.redirect_uris

    def validate_scopes(self, client_id: str, scopes: list[str]) -> bool:
        """All-or-nothing: every requested scope must be permitted."""
        client = self.store.get_client_by_client_id(client_id)
        if client is None or not scopes:
            return False
        return set(scopes).issubset(client.scopes)
