# Shared FastAPI dependencies for the API layer.
# Created: 2026-03-02

from __future__ import annotations

import base64
import binascii
from urllib.parse import unquote

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from tokenwarden.oauth2.errors import InvalidClientError, InvalidRequestError, OAuthError

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def require_user(request: Request) -> str:
    """Return the resource owner's id set by the upstream authentication layer.

    The owner is authenticated out-of-band; a trusted proxy or middleware
    puts the user id in the header named by ``Settings.user_header``.
    """
    from tokenwarden.config import get_settings

    user_id = request.headers.get(get_settings().user_header, "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return user_id


def bearer_token(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_token(*scopes: str):
    """FastAPI dependency that verifies the bearer access token.

    Usage::

        @router.get("/me")
        async def me(claims: AccessTokenClaims = Depends(require_token("profile"))): ...

    Returns the verified claims. 401 when the token is missing or invalid
    (signature, expiry, revoked shadow record, inactive client); 403 when
    it lacks one of *scopes*.
    """

    async def _check(request: Request):
        from tokenwarden.oauth2.server import get_oauth_server

        token = bearer_token(request)
        if token is None:
            raise HTTPException(
                status_code=401,
                detail="Bearer token required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        try:
            claims = get_oauth_server().verify_access_token(token)
        except OAuthError as exc:
            raise HTTPException(
                status_code=401,
                detail=exc.error_description or exc.error,
                headers={"WWW-Authenticate": f'Bearer error="{exc.error}"'},
            ) from exc

        if scopes and not claims.has_scope(*scopes):
            raise HTTPException(
                status_code=403,
                detail=f"Token missing required scope: {' '.join(scopes)}",
                headers={
                    "WWW-Authenticate": (
                        f'Bearer error="insufficient_scope", scope="{" ".join(scopes)}"'
                    )
                },
            )
        return claims

    return _check


def client_credentials(
    request: Request, form_client_id: str | None, form_client_secret: str | None
) -> tuple[str | None, str | None]:
    """Resolve client credentials from HTTP Basic or the form body.

    Using both methods in one request is rejected (RFC 6749 section 2.3).
    """
    auth = request.headers.get("Authorization", "")
    scheme, _, encoded = auth.partition(" ")
    if scheme.lower() != "basic":
        return form_client_id or None, form_client_secret or None

    if form_client_secret:
        raise InvalidRequestError("Use only one client authentication method")
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise InvalidClientError("Malformed Basic credentials") from exc
    basic_id, sep, basic_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic credentials")
    basic_id, basic_secret = unquote(basic_id), unquote(basic_secret)
    if form_client_id and form_client_id != basic_id:
        raise InvalidRequestError("client_id does not match the Authorization header")
    return basic_id, basic_secret


def oauth_error_response(exc: OAuthError, *, basic_challenge: bool = False) -> JSONResponse:
    """Render an OAuthError as an RFC 6749 JSON error response."""
    headers = dict(NO_STORE_HEADERS)
    if basic_challenge and exc.status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="tokenwarden"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)
