# Access-token minting and the shadow-record revocation check.
# Created: 2026-03-02
#
# Access tokens are HS256 JWTs carrying iss, sub (absent for
# client_credentials), client_id, scope, typ and jti. A JWT alone is never
# trusted: every verification also requires the shadow record keyed by
# sha256(jti) to exist, be unexpired and unrevoked, and its client to be
# active. Refresh tokens are opaque random strings stored by hash.

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import jwt

from tokenwarden.oauth2.constants import ACCESS_TOKEN_TYP, REFRESH_TOKEN_LENGTH, TOKEN_TYPE
from tokenwarden.oauth2.credentials import generate_random_string, hash_secret
from tokenwarden.oauth2.errors import InvalidTokenError
from tokenwarden.oauth2.models import AccessTokenRecord, OAuthClient, RefreshTokenRecord, utcnow
from tokenwarden.oauth2.protocol import OAuthStoreProtocol

logger = logging.getLogger(__name__)


def format_scope(scopes: list[str]) -> str:
    return " ".join(scopes)


def parse_scope(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates but keeping order."""
    if not scope:
        return []
    return list(dict.fromkeys(scope.split()))


@dataclass
class AccessTokenClaims:
    """Verified contents of an access token."""

    jti: str
    client_id: str  # public client_id
    scopes: list[str]
    expires_at: datetime
    issued_at: datetime
    user_id: str | None = None
    record_id: str | None = None

    @property
    def scope(self) -> str:
        return format_scope(self.scopes)

    def has_scope(self, *required: str) -> bool:
        return set(required).issubset(self.scopes)


@dataclass
class IssuedTokens:
    """Result of minting; the only place plaintext tokens exist."""

    access_token: str
    expires_in: int
    scopes: list[str]
    access_record: AccessTokenRecord
    refresh_token: str | None = None
    refresh_record: RefreshTokenRecord | None = field(default=None, repr=False)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": TOKEN_TYPE,
            "expires_in": self.expires_in,
            "scope": format_scope(self.scopes),
        }
        if self.refresh_token is not None:
            body["refresh_token"] = self.refresh_token
        return body


class AccessTokenCodec:
    """Signs and decodes access-token JWTs."""

    def __init__(self, secret: str, issuer: str, algorithm: str = "HS256"):
        self._secret = secret
        self.issuer = issuer
        self.algorithm = algorithm

    def encode(
        self,
        *,
        jti: str,
        client_id: str,
        scopes: list[str],
        issued_at: datetime,
        expires_at: datetime,
        user_id: str | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "iss": self.issuer,
            "client_id": client_id,
            "scope": format_scope(scopes),
            "typ": ACCESS_TOKEN_TYP,
            "jti": jti,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if user_id is not None:
            payload["sub"] = user_id
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str, *, verify_exp: bool = True) -> dict[str, Any]:
        """Verify signature and issuer; raise InvalidTokenError on any failure."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"require": ["exp", "iat", "jti"], "verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("Access token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise InvalidTokenError("Access token is invalid") from exc

        if claims.get("typ") != ACCESS_TOKEN_TYP:
            raise InvalidTokenError("Token is not an access token")
        return claims


class TokenService:
    """Mints token pairs and owns the shadow records.

    ``issue``, ``verify``, ``revoke`` and ``is_revoked`` are the whole
    revocation interface; everything else here supports rotation.
    """

    def __init__(
        self,
        store: OAuthStoreProtocol,
        codec: AccessTokenCodec,
        access_ttl: timedelta = timedelta(hours=1),
        refresh_ttl: timedelta = timedelta(days=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.codec = codec
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    # -- issue ----------------------------------------------------------------

    def issue(
        self,
        client: OAuthClient,
        scopes: list[str],
        user_id: str | None = None,
        with_refresh: bool = False,
    ) -> IssuedTokens:
        now = self._clock()
        jti = secrets.token_urlsafe(32)
        expires_at = now + self.access_ttl

        access_record = AccessTokenRecord(
            token_hash=hash_secret(jti),
            client_id=client.id,
            user_id=user_id,
            scopes=list(scopes),
            expires_at=expires_at,
            created_at=now,
        )
        access_token = self.codec.encode(
            jti=jti,
            client_id=client.client_id,
            scopes=scopes,
            issued_at=now,
            expires_at=expires_at,
            user_id=user_id,
        )
        self.store.insert_access_token(access_record)

        issued = IssuedTokens(
            access_token=access_token,
            expires_in=int(self.access_ttl.total_seconds()),
            scopes=list(scopes),
            access_record=access_record,
        )

        if with_refresh:
            raw = generate_random_string(REFRESH_TOKEN_LENGTH)
            refresh_record = RefreshTokenRecord(
                token_hash=hash_secret(raw),
                access_token_id=access_record.id,
                client_id=client.id,
                scopes=list(scopes),
                user_id=user_id,
                expires_at=now + self.refresh_ttl,
                created_at=now,
            )
            self.store.insert_refresh_token(refresh_record)
            issued.refresh_token = raw
            issued.refresh_record = refresh_record

        logger.debug(
            "Issued access token %s for client %s (refresh=%s)",
            access_record.id,
            client.client_id,
            with_refresh,
        )
        return issued

    # -- verify ---------------------------------------------------------------

    def verify(self, token: str) -> AccessTokenClaims:
        """Full validity check: signature + expiry + live shadow record + active client."""
        claims = self.codec.decode(token)

        record = self.store.get_access_token_by_hash(hash_secret(claims["jti"]))
        if record is None:
            raise InvalidTokenError("Access token is not recognized")
        if record.revoked:
            raise InvalidTokenError("Access token has been revoked")
        if record.is_expired(self._clock()):
            raise InvalidTokenError("Access token has expired")

        client = self.store.get_client(record.client_id)
        if client is None or not client.is_active:
            raise InvalidTokenError("Client is no longer active")

        return AccessTokenClaims(
            jti=claims["jti"],
            client_id=client.client_id,
            user_id=record.user_id,
            scopes=list(record.scopes),
            issued_at=record.created_at,
            expires_at=record.expires_at,
            record_id=record.id,
        )

    def is_revoked(self, jti: str) -> bool:
        """True when the shadow record is missing or revoked."""
        record = self.store.get_access_token_by_hash(hash_secret(jti))
        return record is None or record.revoked

    # -- revoke ---------------------------------------------------------------

    def find_access_record(self, token: str) -> AccessTokenRecord | None:
        """Resolve a JWT (signature checked, expiry ignored) to its shadow record."""
        try:
            claims = self.codec.decode(token, verify_exp=False)
        except InvalidTokenError:
            return None
        return self.store.get_access_token_by_hash(hash_secret(claims["jti"]))

    def find_refresh_record(self, raw: str) -> RefreshTokenRecord | None:
        return self.store.get_refresh_token_by_hash(hash_secret(raw))

    def revoke(self, token: str, client: OAuthClient | None = None) -> bool:
        """Revoke an access token and the refresh token issued with it.

        When *client* is given, tokens belonging to other clients are left
        alone. Returns True if anything changed state.
        """
        record = self.find_access_record(token)
        if record is None:
            return False
        if client is not None and record.client_id != client.id:
            return False
        return self.revoke_access_pair(record)

    def revoke_access_pair(self, record: AccessTokenRecord) -> bool:
        now = self._clock()
        changed = self.store.revoke_access_token(record.id, now)
        refresh = self.store.get_refresh_token_for_access(record.id)
        if refresh is not None:
            changed = self.store.revoke_refresh_token(refresh.id, now) or changed
        return changed

    def revoke_refresh_pair(self, refresh: RefreshTokenRecord) -> bool:
        """Revoke a refresh token, then its paired access token.

        Returns True only if this call won the refresh-token revocation; the
        rotation path relies on that to reject concurrent reuse.
        """
        now = self._clock()
        won = self.store.revoke_refresh_token(refresh.id, now)
        self.store.revoke_access_token(refresh.access_token_id, now)
        return won
