# OAuth2 router: authorize, token, revoke, userinfo, discovery.
# Created: 2026-03-02
#
# /oauth/authorize only returns the consent data contract (GET) and accepts
# the user's decision (POST); rendering the consent screen is the UI's job.
# /oauth/token and /oauth/revoke take application/x-www-form-urlencoded
# bodies per RFC 6749 / RFC 7009. Webhook events are dispatched as
# background tasks after the response is sent.

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse

from tokenwarden.api.deps import (
    NO_STORE_HEADERS,
    client_credentials,
    oauth_error_response,
    require_token,
    require_user,
)
from tokenwarden.api.v1.schemas.common import OAuthErrorResponse
from tokenwarden.api.v1.schemas.oauth2 import (
    AuthorizeDecision,
    AuthorizeRedirect,
    ConsentClient,
    ConsentResponse,
    ServerMetadata,
    TokenResponse,
    UserInfoResponse,
)
from tokenwarden.oauth2.constants import (
    GRANT_AUTHORIZATION_CODE,
    GRANT_CLIENT_CREDENTIALS,
    SUPPORTED_GRANT_TYPES,
)
from tokenwarden.oauth2.errors import (
    InvalidRequestError,
    OAuthError,
    ServerError,
    UnsupportedGrantTypeError,
)
from tokenwarden.oauth2.tokens import AccessTokenClaims
from tokenwarden.security.rate_limiter import rate_limit
from tokenwarden.webhooks.events import WebhookEvent

logger = logging.getLogger(__name__)

_ERROR_RESPONSES = {
    400: {"model": OAuthErrorResponse},
    401: {"model": OAuthErrorResponse},
}

router = APIRouter(tags=["OAuth2"])

# Mounted at the site root: RFC 8414 clients look for it there.
well_known_router = APIRouter(tags=["OAuth2"])


def _authorize_error(exc: OAuthError) -> JSONResponse:
    # Never redirected: the redirect URI may not have been verified yet.
    return JSONResponse(status_code=400, content=exc.to_dict())


@router.get(
    "/oauth/authorize",
    response_model=ConsentResponse,
    responses=_ERROR_RESPONSES,
    dependencies=[Depends(rate_limit("authorize"))],
)
async def authorize(
    response_type: str = Query("code"),
    client_id: str = Query(...),
    redirect_uri: str = Query(...),
    scope: str = Query(""),
    state: str | None = Query(None),
    code_challenge: str = Query(""),
    code_challenge_method: str = Query("S256"),
    user_id: str = Depends(require_user),
):
    """Validate an authorization request and return what the consent UI shows."""
    from tokenwarden.oauth2.server import get_oauth_server

    try:
        request = get_oauth_server().validate_authorization_request(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
            response_type=response_type,
        )
    except OAuthError as exc:
        return _authorize_error(exc)

    return ConsentResponse(
        client=ConsentClient(
            name=request.client.name,
            description=request.client.description,
            logo_url=request.client.logo_url,
        ),
        requested_scopes=request.scopes,
        redirect_uri=request.redirect_uri,
        state=state,
    )


@router.post(
    "/oauth/authorize",
    response_model=AuthorizeRedirect,
    responses=_ERROR_RESPONSES,
    dependencies=[Depends(rate_limit("authorize"))],
)
async def authorize_decision(
    body: AuthorizeDecision,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(require_user),
):
    """Record the user's consent decision and return the client redirect."""
    from tokenwarden.oauth2.server import get_oauth_server
    from tokenwarden.webhooks.delivery import emit_event

    server = get_oauth_server()
    try:
        if not body.approved:
            request = server.validate_authorization_request(
                client_id=body.client_id,
                redirect_uri=body.redirect_uri,
                scope=body.scope,
                code_challenge=body.code_challenge,
                code_challenge_method=body.code_challenge_method,
                state=body.state,
            )
            background_tasks.add_task(
                emit_event,
                request.client.id,
                WebhookEvent.AUTHORIZATION_DENIED.value,
                {"user_id": user_id, "scopes": request.scopes},
            )
            return AuthorizeRedirect(redirect=request.denied_redirect())

        grant = server.authorize(
            client_id=body.client_id,
            user_id=user_id,
            redirect_uri=body.redirect_uri,
            scope=body.scope,
            code_challenge=body.code_challenge,
            code_challenge_method=body.code_challenge_method,
            state=body.state,
        )
    except OAuthError as exc:
        return _authorize_error(exc)

    background_tasks.add_task(
        emit_event,
        grant.client.id,
        WebhookEvent.AUTHORIZATION_GRANTED.value,
        {"user_id": user_id, "scopes": grant.scopes},
    )
    return AuthorizeRedirect(redirect=grant.redirect_url())


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    responses=_ERROR_RESPONSES,
    dependencies=[Depends(rate_limit("token"))],
)
async def token(request: Request, background_tasks: BackgroundTasks):
    """Token endpoint for all three grants."""
    from tokenwarden.oauth2.server import get_oauth_server
    from tokenwarden.webhooks.delivery import emit_event

    form = await request.form()

    def field(name: str) -> str | None:
        value = form.get(name)
        return str(value) if value not in (None, "") else None

    grant_type = field("grant_type")
    server = get_oauth_server()
    try:
        client_id, client_secret = client_credentials(
            request, field("client_id"), field("client_secret")
        )
        if grant_type is None:
            raise InvalidRequestError("grant_type is required")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            raise UnsupportedGrantTypeError(f"Unsupported grant_type: {grant_type}")

        if grant_type == GRANT_AUTHORIZATION_CODE:
            issued = server.exchange_code(
                code=field("code"),
                redirect_uri=field("redirect_uri"),
                client_id=client_id,
                code_verifier=field("code_verifier"),
                client_secret=client_secret,
            )
        elif grant_type == GRANT_CLIENT_CREDENTIALS:
            issued = server.client_credentials(client_id, client_secret, scope=field("scope"))
        else:
            issued = server.refresh(
                refresh_token=field("refresh_token"),
                client_id=client_id,
                client_secret=client_secret,
                scope=field("scope"),
            )
    except OAuthError as exc:
        logger.info("Token request rejected (%s): %s", exc.error, exc.error_description)
        return oauth_error_response(exc, basic_challenge=True)
    except Exception:
        logger.exception("Token endpoint failure")
        return oauth_error_response(ServerError("The server could not issue a token"))

    background_tasks.add_task(
        emit_event,
        issued.access_record.client_id,
        WebhookEvent.TOKEN_CREATED.value,
        {
            "client_id": client_id,
            "user_id": issued.access_record.user_id,
            "grant_type": grant_type,
            "scope": " ".join(issued.scopes),
        },
    )
    body = TokenResponse(**issued.to_response()).model_dump(exclude_none=True)
    return JSONResponse(content=body, headers=NO_STORE_HEADERS)


@router.post("/oauth/revoke", dependencies=[Depends(rate_limit("revoke"))])
async def revoke(request: Request, background_tasks: BackgroundTasks):
    """RFC 7009 revocation. Always answers 200."""
    from tokenwarden.oauth2.server import get_oauth_server
    from tokenwarden.webhooks.delivery import emit_event

    try:
        form = await request.form()
        client_id, client_secret = client_credentials(
            request,
            str(form.get("client_id") or "") or None,
            str(form.get("client_secret") or "") or None,
        )
        outcome = get_oauth_server().revoke(
            token=str(form.get("token") or "") or None,
            client_id=client_id,
            client_secret=client_secret,
            token_type_hint=str(form.get("token_type_hint") or "") or None,
        )
    except Exception:
        logger.exception("Revocation failed")
        outcome = None

    if outcome is not None:
        background_tasks.add_task(
            emit_event,
            outcome.client.id,
            WebhookEvent.TOKEN_REVOKED.value,
            {
                "client_id": outcome.client.client_id,
                "user_id": outcome.user_id,
                "token_type": outcome.token_type,
            },
        )
    return JSONResponse(content={}, headers=NO_STORE_HEADERS)


@router.get(
    "/oauth/userinfo",
    response_model=UserInfoResponse,
    dependencies=[Depends(rate_limit("userinfo"))],
)
async def userinfo(claims: AccessTokenClaims = Depends(require_token())):
    """Identity behind a bearer token."""
    return UserInfoResponse(sub=claims.user_id, client_id=claims.client_id, scope=claims.scope)


@well_known_router.get("/.well-known/oauth-authorization-server", response_model=ServerMetadata)
async def server_metadata():
    """RFC 8414 discovery document."""
    from tokenwarden.config import get_settings

    settings = get_settings()
    base = settings.issuer.rstrip("/") + "/api/v1/oauth"
    return ServerMetadata(
        issuer=settings.issuer,
        authorization_endpoint=f"{base}/authorize",
        token_endpoint=f"{base}/token",
        revocation_endpoint=f"{base}/revoke",
        userinfo_endpoint=f"{base}/userinfo",
        scopes_supported=settings.supported_scopes,
        grant_types_supported=sorted(SUPPORTED_GRANT_TYPES),
    )

