# OAuth2 endpoint schemas.
# Created: 2026-03-02

from __future__ import annotations

from pydantic import BaseModel, Field


class ConsentClient(BaseModel):
    name: str
    description: str | None = None
    logo_url: str | None = None


class ConsentResponse(BaseModel):
    """What the consent UI needs to render an authorization prompt."""

    client: ConsentClient
    requested_scopes: list[str]
    redirect_uri: str
    state: str | None = None


class AuthorizeDecision(BaseModel):
    """Submitted by the consent UI once the user approves or denies."""

    client_id: str
    redirect_uri: str
    scope: str
    code_challenge: str
    code_challenge_method: str = "S256"
    state: str | None = None
    approved: bool


class AuthorizeRedirect(BaseModel):
    redirect: str


class TokenResponse(BaseModel):
    """OAuth2 token response. refresh_token is omitted when not issued."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: str | None = None


class UserInfoResponse(BaseModel):
    sub: str | None = None
    client_id: str
    scope: str


class ServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: str
    userinfo_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: list[str]
    code_challenge_methods_supported: list[str] = Field(default_factory=lambda: ["S256"])
    token_endpoint_auth_methods_supported: list[str] = Field(
        default_factory=lambda: ["client_secret_basic", "client_secret_post", "none"]
    )
    revocation_endpoint_auth_methods_supported: list[str] = Field(
        default_factory=lambda: ["client_secret_basic", "client_secret_post", "none"]
    )
