# OAuth2 error taxonomy.
# Created: 2026-03-02
#
# OAuthError carries the RFC 6749 section 5.2 error code plus the HTTP
# status the token endpoint should answer with. Registry errors are plain
# exceptions mapped to 400/403 by the developer routes.

from __future__ import annotations

from typing import Any


class OAuthError(Exception):
    """Base class for protocol errors surfaced to OAuth2 clients."""

    error = "invalid_request"
    status_code = 400

    def __init__(self, description: str = "", *, status_code: int | None = None):
        super().__init__(description or self.error)
        self.error_description = description
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"error": self.error}
        if self.error_description:
            data["error_description"] = self.error_description
        return data

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.error_description!r})"


class InvalidRequestError(OAuthError):
    error = "invalid_request"


class InvalidClientError(OAuthError):
    error = "invalid_client"
    status_code = 401


class InvalidGrantError(OAuthError):
    error = "invalid_grant"


class InvalidScopeError(OAuthError):
    error = "invalid_scope"


class UnauthorizedClientError(OAuthError):
    error = "unauthorized_client"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"


class AccessDeniedError(OAuthError):
    error = "access_denied"
    status_code = 403


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500


class InvalidTokenError(OAuthError):
    """Bearer token failed verification (RFC 6750 section 3.1)."""

    error = "invalid_token"
    status_code = 401


class InsufficientScopeError(OAuthError):
    error = "insufficient_scope"
    status_code = 403


# --- Registry errors ----------------------------------------------------------


class RegistryError(Exception):
    """Base for client/webhook registry failures."""


class ClientValidationError(RegistryError, ValueError):
    """Registration or update input is invalid."""


class QuotaExceededError(RegistryError):
    """A per-owner or per-client ceiling would be exceeded."""

    def __init__(self, message: str, *, limit: int):
        super().__init__(message)
        self.limit = limit


class WebhookValidationError(RegistryError, ValueError):
    """Webhook URL or event list is invalid."""
