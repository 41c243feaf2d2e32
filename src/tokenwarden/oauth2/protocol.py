"""Storage protocol for the authorization server.

Created: 2026-03-02

Any backend (the bundled JSON file store, a SQL database, ...) must offer
primary-key and unique-index lookups plus the conditional updates below.
Methods whose docstring says "atomically" must check the condition and
apply the change as one operation: they are what make code redemption and
refresh rotation single-use under concurrent requests.

Returned records are copies; mutate them and pass them back through a
``save_*`` method to persist changes.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from tokenwarden.oauth2.models import (
    AccessTokenRecord,
    AuthorizationCode,
    OAuthClient,
    RefreshTokenRecord,
    Webhook,
    WebhookDelivery,
)


@runtime_checkable
class OAuthStoreProtocol(Protocol):
    # =========================================================================
    # Clients
    # =========================================================================

    def insert_client(self, client: OAuthClient, max_per_owner: int | None = None) -> bool:
        """Atomically insert *client* unless its owner already has *max_per_owner*.

        Returns False when the quota would be exceeded.
        """
        ...

    def get_client(self, id: str) -> OAuthClient | None:
        """Get a client by internal id."""
        ...

    def get_client_by_client_id(self, client_id: str) -> OAuthClient | None:
        """Get a client by its public client_id."""
        ...

    def list_clients(self, owner_id: str) -> list[OAuthClient]: ...

    def save_client(self, client: OAuthClient) -> None:
        """Overwrite an existing client."""
        ...

    def delete_client(self, id: str) -> bool:
        """Delete a client with its codes, tokens, webhooks and deliveries."""
        ...

    # =========================================================================
    # Authorization codes
    # =========================================================================

    def insert_code(self, code: AuthorizationCode) -> None: ...

    def get_code_by_hash(self, code_hash: str) -> AuthorizationCode | None: ...

    def mark_code_used(self, id: str, used_at: datetime) -> bool:
        """Atomically set used_at if it is still unset. Returns True for the winner."""
        ...

    def delete_dead_codes(self, now: datetime) -> int:
        """Delete codes that are used or expired at *now*. Returns count."""
        ...

    # =========================================================================
    # Access tokens (shadow records)
    # =========================================================================

    def insert_access_token(self, record: AccessTokenRecord) -> None: ...

    def get_access_token(self, id: str) -> AccessTokenRecord | None: ...

    def get_access_token_by_hash(self, token_hash: str) -> AccessTokenRecord | None: ...

    def revoke_access_token(self, id: str, revoked_at: datetime) -> bool:
        """Atomically set revoked_at if unset. Returns True if this call revoked it."""
        ...

    def delete_dead_access_tokens(self, now: datetime) -> int:
        """Delete access tokens that are revoked or expired at *now*."""
        ...

    # =========================================================================
    # Refresh tokens
    # =========================================================================

    def insert_refresh_token(self, record: RefreshTokenRecord) -> None: ...

    def get_refresh_token_by_hash(self, token_hash: str) -> RefreshTokenRecord | None: ...

    def get_refresh_token_for_access(self, access_token_id: str) -> RefreshTokenRecord | None:
        """Get the refresh token issued alongside an access token."""
        ...

    def revoke_refresh_token(self, id: str, revoked_at: datetime) -> bool:
        """Atomically set revoked_at if unset. Returns True if this call revoked it."""
        ...

    def delete_dead_refresh_tokens(self, now: datetime) -> int:
        """Delete refresh tokens that are revoked or expired at *now*."""
        ...

    # =========================================================================
    # Webhooks
    # =========================================================================

    def insert_webhook(self, webhook: Webhook, max_per_client: int | None = None) -> bool:
        """Atomically insert *webhook* unless its client already has *max_per_client*."""
        ...

    def get_webhook(self, id: str) -> Webhook | None: ...

    def list_webhooks(self, client_id: str) -> list[Webhook]: ...

    def save_webhook(self, webhook: Webhook) -> None: ...

    def delete_webhook(self, id: str) -> bool:
        """Delete a webhook and its deliveries."""
        ...

    # =========================================================================
    # Deliveries
    # =========================================================================

    def insert_delivery(self, delivery: WebhookDelivery) -> None: ...

    def get_delivery(self, id: str) -> WebhookDelivery | None: ...

    def save_delivery(self, delivery: WebhookDelivery) -> None: ...

    def list_deliveries(self, webhook_id: str, limit: int = 50) -> list[WebhookDelivery]:
        """Newest first."""
        ...

    def list_due_deliveries(self, now: datetime, limit: int = 100) -> list[WebhookDelivery]:
        """Pending or failed deliveries whose next_retry_at is at or before *now*."""
        ...

    def claim_delivery(
        self, id: str, expected_retry_at: datetime | None, lease_until: datetime
    ) -> bool:
        """Atomically claim a due delivery for one attempt.

        Succeeds only if the row is still pending/failed with next_retry_at
        equal to *expected_retry_at*; on success status becomes pending and
        next_retry_at becomes *lease_until*.
        """
        ...

    def delete_deliveries_before(self, cutoff: datetime) -> int:
        """Delete delivered/abandoned deliveries created before *cutoff*."""
        ...
