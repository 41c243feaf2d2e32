# OAuth2 Authorization Server.
# Created: 2026-03-02
#
# Grants: authorization_code + PKCE (S256 only), client_credentials and
# refresh_token with rotation. Revocation follows RFC 7009. Every failure is
# raised as an OAuthError subclass carrying the RFC 6749 error code.
#
# Single-use guarantees come from the store's conditional updates:
# mark_code_used() for codes and revoke_refresh_token() for rotation. The
# loser of a concurrent race sees invalid_grant.

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from urllib.parse import urlencode, urlsplit, urlunsplit

from tokenwarden import lifecycle
from tokenwarden.oauth2 import pkce
from tokenwarden.oauth2.clients import ClientRegistry
from tokenwarden.oauth2.constants import (
    AUTHORIZATION_CODE_LENGTH,
    CODE_CHALLENGE_METHOD_S256,
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    GRANT_REFRESH_TOKEN,
    RESPONSE_TYPE_CODE,
    TOKEN_TYPE_HINT_REFRESH,
)
from tokenwarden.oauth2.credentials import generate_random_string, hash_secret, verify_secret
from tokenwarden.oauth2.errors import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnauthorizedClientError,
    UnsupportedResponseTypeError,
)
from tokenwarden.oauth2.models import AuthorizationCode, OAuthClient, utcnow
from tokenwarden.oauth2.protocol import OAuthStoreProtocol
from tokenwarden.oauth2.tokens import (
    AccessTokenClaims,
    AccessTokenCodec,
    IssuedTokens,
    TokenService,
    parse_scope,
)

logger = logging.getLogger(__name__)

CODE_TTL = timedelta(minutes=10)


def append_query(uri: str, params: dict[str, str | None]) -> str:
    """Add *params* to *uri*, keeping any query it already has."""
    clean = {k: v for k, v in params.items() if v is not None and v != ""}
    parts = urlsplit(uri)
    query = f"{parts.query}&{urlencode(clean)}" if parts.query else urlencode(clean)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


@dataclass
class AuthorizationRequest:
    """An /authorize request that passed validation and may be shown for consent."""

    client: OAuthClient
    redirect_uri: str
    scopes: list[str]
    code_challenge: str
    code_challenge_method: str
    state: str | None = None

    def denied_redirect(self) -> str:
        return append_query(self.redirect_uri, {"error": "access_denied", "state": self.state})


@dataclass
class AuthorizationGrant:
    """A freshly minted code. ``code`` is plaintext and exists only here."""

    code: str
    client: OAuthClient
    user_id: str
    redirect_uri: str
    scopes: list[str]
    expires_at: datetime
    state: str | None = None
    record_id: str = field(default="", repr=False)

    def redirect_url(self) -> str:
        return append_query(self.redirect_uri, {"code": self.code, "state": self.state})


@dataclass
class RevocationOutcome:
    """What a successful revocation touched, for audit and webhooks."""

    client: OAuthClient
    token_type: str
    user_id: str | None = None


class AuthorizationServer:
    """OAuth2 authorization server."""

    def __init__(
        self,
        store: OAuthStoreProtocol,
        clients: ClientRegistry,
        tokens: TokenService,
        code_ttl: timedelta = CODE_TTL,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.clients = clients
        self.tokens = tokens
        self.code_ttl = code_ttl
        self._clock = clock

    # =========================================================================
    # Client authentication
    # =========================================================================

    def _load_client(self, client_id: str | None) -> OAuthClient:
        if not client_id:
            raise InvalidRequestError("client_id is required")
        client = self.clients.get_by_client_id(client_id)
        if client is None or not client.is_active:
            raise InvalidClientError("Unknown or inactive client")
        return client

    def _authenticate(
        self, client_id: str | None, client_secret: str | None, *, require_secret: bool = False
    ) -> OAuthClient:
        client = self._load_client(client_id)
        if client.is_confidential or require_secret:
            if not client_secret or not verify_secret(client_secret, client.client_secret_hash):
                raise InvalidClientError("Client authentication failed")
        return client

    # =========================================================================
    # Authorization code grant, phase 1
    # =========================================================================

    def validate_authorization_request(
        self,
        client_id: str,
        redirect_uri: str,
        scope: str | None,
        code_challenge: str | None,
        code_challenge_method: str | None = CODE_CHALLENGE_METHOD_S256,
        state: str | None = None,
        response_type: str = RESPONSE_TYPE_CODE,
    ) -> AuthorizationRequest:
        """Run every check that must pass before consent is shown."""
        client = self._load_client(client_id)
        # Errors before the redirect URI is verified are never redirected.
        if not redirect_uri or redirect_uri not in client.redirect_uris:
            raise InvalidRequestError("redirect_uri is not registered for this client")
        if response_type != RESPONSE_TYPE_CODE:
            raise UnsupportedResponseTypeError("Only response_type=code is supported")
        if not client.allows_grant(GRANT_AUTHORIZATION_CODE):
            raise UnauthorizedClientError("Client may not use the authorization_code grant")

        method = code_challenge_method or CODE_CHALLENGE_METHOD_S256
        if method != CODE_CHALLENGE_METHOD_S256:
            raise InvalidRequestError("code_challenge_method must be S256")
        if not pkce.is_well_formed(code_challenge):
            raise InvalidRequestError("code_challenge is missing or malformed")

        scopes = parse_scope(scope)
        if not scopes:
            raise InvalidScopeError("scope is required")
        if not set(scopes).issubset(client.scopes):
            raise InvalidScopeError("Requested scope exceeds the client's permitted scopes")

        return AuthorizationRequest(
            client=client,
            redirect_uri=redirect_uri,
            scopes=scopes,
            code_challenge=code_challenge,
            code_challenge_method=method,
            state=state,
        )

    def authorize(
        self,
        client_id: str,
        user_id: str,
        redirect_uri: str,
        scope: str | None,
        code_challenge: str | None,
        code_challenge_method: str | None = CODE_CHALLENGE_METHOD_S256,
        state: str | None = None,
    ) -> AuthorizationGrant:
        """Record the user's consent and mint a single-use code."""
        request = self.validate_authorization_request(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
        )
        if not user_id:
            raise InvalidRequestError("An authenticated user is required")

        now = self._clock()
        code = generate_random_string(AUTHORIZATION_CODE_LENGTH)
        record = AuthorizationCode(
            code_hash=hash_secret(code),
            client_id=request.client.id,
            user_id=user_id,
            redirect_uri=request.redirect_uri,
            scopes=request.scopes,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            expires_at=now + self.code_ttl,
            created_at=now,
        )
        self.store.insert_code(record)
        logger.info(
            "Issued authorization code %s to client %s", record.id, request.client.client_id
        )

        return AuthorizationGrant(
            code=code,
            client=request.client,
            user_id=user_id,
            redirect_uri=request.redirect_uri,
            scopes=request.scopes,
            expires_at=record.expires_at,
            state=state,
            record_id=record.id,
        )

    # =========================================================================
    # Authorization code grant, phase 2
    # =========================================================================

    def exchange_code(
        self,
        code: str | None,
        redirect_uri: str | None,
        client_id: str | None,
        code_verifier: str | None,
        client_secret: str | None = None,
    ) -> IssuedTokens:
        """Redeem a code + PKCE verifier for tokens. Succeeds at most once per code."""
        if not code or not redirect_uri or not code_verifier:
            raise InvalidRequestError("code, redirect_uri and code_verifier are required")

        client = self._authenticate(client_id, client_secret)
        if not client.allows_grant(GRANT_AUTHORIZATION_CODE):
            raise UnauthorizedClientError("Client may not use the authorization_code grant")

        record = self.store.get_code_by_hash(hash_secret(code))
        if record is None:
            raise InvalidGrantError("Authorization code is invalid")
        if record.used_at is not None:
            logger.warning("Replay of used authorization code %s", record.id)
            raise InvalidGrantError("Authorization code has already been used")
        now = self._clock()
        if record.is_expired(now):
            raise InvalidGrantError("Authorization code has expired")
        if record.client_id != client.id:
            raise InvalidGrantError("Authorization code was issued to another client")
        if record.redirect_uri != redirect_uri:
            raise InvalidGrantError("redirect_uri does not match the authorization request")
        if not pkce.verify_pkce(code_verifier, record.code_challenge, record.code_challenge_method):
            raise InvalidGrantError("PKCE verification failed")

        if not self.store.mark_code_used(record.id, now):
            logger.warning("Concurrent redemption of authorization code %s rejected", record.id)
            raise InvalidGrantError("Authorization code has already been used")

        # Scopes removed from the client since consent are not carried over.
        scopes = [s for s in record.scopes if s in client.scopes]
        if not scopes:
            raise InvalidScopeError("None of the granted scopes are still permitted")

        return self.tokens.issue(
            client,
            scopes,
            user_id=record.user_id,
            with_refresh=client.allows_grant(GRANT_REFRESH_TOKEN),
        )

    # =========================================================================
    # Client credentials grant
    # =========================================================================

    def client_credentials(
        self, client_id: str | None, client_secret: str | None, scope: str | None = None
    ) -> IssuedTokens:
        """Machine-to-machine token: no subject, never a refresh token."""
        client = self._authenticate(client_id, client_secret, require_secret=True)
        if not client.allows_grant(GRANT_CLIENT_CREDENTIALS):
            raise UnauthorizedClientError("Client may not use the client_credentials grant")

        requested = parse_scope(scope)
        if requested and not set(requested).issubset(client.scopes):
            raise InvalidScopeError("Requested scope exceeds the client's permitted scopes")
        scopes = requested or list(client.scopes)

        return self.tokens.issue(client, scopes, user_id=None, with_refresh=False)

    # =========================================================================
    # Refresh grant
    # =========================================================================

    def refresh(
        self,
        refresh_token: str | None,
        client_id: str | None,
        client_secret: str | None = None,
        scope: str | None = None,
    ) -> IssuedTokens:
        """Rotate a refresh token into a brand-new pair, optionally narrowing scope."""
        if not refresh_token:
            raise InvalidRequestError("refresh_token is required")

        client = self._authenticate(client_id, client_secret)
        if not client.allows_grant(GRANT_REFRESH_TOKEN):
            raise UnauthorizedClientError("Client may not use the refresh_token grant")

        record = self.tokens.find_refresh_record(refresh_token)
        if record is None:
            raise InvalidGrantError("Refresh token is invalid")
        if record.revoked:
            logger.warning(
                "Reuse of revoked refresh token %s for client %s", record.id, client.client_id
            )
            raise InvalidGrantError("Refresh token has been revoked")
        if record.is_expired(self._clock()):
            raise InvalidGrantError("Refresh token has expired")
        if record.client_id != client.id:
            raise InvalidGrantError("Refresh token was issued to another client")

        original = [s for s in record.scopes if s in client.scopes]
        requested = parse_scope(scope)
        if requested and not set(requested).issubset(original):
            raise InvalidScopeError("Requested scope exceeds the original grant")
        scopes = requested or original
        if not scopes:
            raise InvalidScopeError("None of the granted scopes are still permitted")

        if not self.tokens.revoke_refresh_pair(record):
            logger.warning("Concurrent reuse of refresh token %s rejected", record.id)
            raise InvalidGrantError("Refresh token has been revoked")

        return self.tokens.issue(client, scopes, user_id=record.user_id, with_refresh=True)

    # =========================================================================
    # Verification and revocation
    # =========================================================================

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        return self.tokens.verify(token)

    def revoke(
        self,
        token: str | None,
        client_id: str | None,
        client_secret: str | None = None,
        token_type_hint: str | None = None,
    ) -> RevocationOutcome | None:
        """RFC 7009 revocation.

        Never raises for unknown tokens, foreign tokens or failed client
        authentication; returns None when nothing was revoked.
        """
        if not token or not client_id:
            return None
        client = self.clients.get_by_client_id(client_id)
        if client is None:
            return None
        if client.is_confidential and not (
            client_secret and verify_secret(client_secret, client.client_secret_hash)
        ):
            logger.info("Revocation by unauthenticated client %s ignored", client_id)
            return None

        lookups = [self._revoke_access, self._revoke_refresh]
        if token_type_hint == TOKEN_TYPE_HINT_REFRESH:
            lookups.reverse()
        for lookup in lookups:
            outcome = lookup(token, client)
            if outcome is not None:
                return outcome
        return None

    def _revoke_access(self, token: str, client: OAuthClient) -> RevocationOutcome | None:
        record = self.tokens.find_access_record(token)
        if record is None or record.client_id != client.id:
            return None
        if not self.tokens.revoke_access_pair(record):
            return None
        logger.info("Revoked access token %s for client %s", record.id, client.client_id)
        return RevocationOutcome(client=client, token_type="access_token", user_id=record.user_id)

    def _revoke_refresh(self, token: str, client: OAuthClient) -> RevocationOutcome | None:
        record = self.tokens.find_refresh_record(token)
        if record is None or record.client_id != client.id:
            return None
        if not self.tokens.revoke_refresh_pair(record):
            return None
        logger.info("Revoked refresh token %s for client %s", record.id, client.client_id)
        return RevocationOutcome(client=client, token_type="refresh_token", user_id=record.user_id)


# ---------------------------------------------------------------------------
# Factory / singleton
# ---------------------------------------------------------------------------


def build_authorization_server(store: OAuthStoreProtocol | None = None, settings=None):
    """Wire an AuthorizationServer from settings."""
    from tokenwarden.config import get_settings
    from tokenwarden.oauth2.storage import get_oauth_store

    settings = settings or get_settings()
    store = store if store is not None else get_oauth_store()
    clients = ClientRegistry(
        store,
        supported_scopes=settings.supported_scopes,
        max_clients_per_owner=settings.max_clients_per_owner,
        max_redirect_uris=settings.max_redirect_uris,
    )
    codec = AccessTokenCodec(
        settings.signing_key(), issuer=settings.issuer, algorithm=settings.jwt_algorithm
    )
    tokens = TokenService(
        store,
        codec,
        access_ttl=timedelta(seconds=settings.access_token_ttl),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl),
    )
    return AuthorizationServer(
        store, clients, tokens, code_ttl=timedelta(seconds=settings.authorization_code_ttl)
    )


_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = build_authorization_server()
        lifecycle.register("oauth_server", reset=reset_oauth_server)
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
