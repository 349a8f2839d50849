"""OAuth2 / OpenID Connect Routes

Key Endpoints (mounted under the configured base path, ``/oauth2``):
- GET /auth: Authorize request, redirects the user to Discourse SSO
- GET /callback: Discourse SSO callback, finishes the authorize request
- POST /token: Authorization code exchange
- GET|POST /userinfo: Claims of the access token's user
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Header, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from sso_bridge.api.dependencies import (
    extract_bearer_token,
    get_app_settings,
    get_bridge,
    get_engine,
)
from sso_bridge.config.settings import Settings
from sso_bridge.core.bridge import SSOBridge
from sso_bridge.core.claims import get_auth_root
from sso_bridge.core.errors import PendingLimitExceededError, SessionNotFoundError
from sso_bridge.core.oauth2 import (
    AuthorizationRequestError,
    CodeFlowEngine,
    TokenRequestError,
    parse_basic_auth,
)

router = APIRouter(tags=["oauth2"])
logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


# ============================================================================
# Authorization
# ============================================================================

@router.get("/auth")
async def authorize(
    request: Request,
    bridge: SSOBridge = Depends(get_bridge),
    settings: Settings = Depends(get_app_settings),
):
    """Start an authorization by sending the user to Discourse SSO.

    Sets the correlation cookie that ties the Discourse callback back to
    this authorize request.
    """
    root = get_auth_root(request, settings.base_path)

    try:
        handshake = bridge.begin(request.query_params, root)
    except AuthorizationRequestError as e:
        logger.warning(f"Parsing authorize request failed: {e}")
        return bridge.engine.write_authorization_error(e)
    except PendingLimitExceededError as e:
        return JSONResponse(
            status_code=503,
            content={"error": e.error_code, "error_description": e.message},
        )

    response = RedirectResponse(handshake.url, status_code=307)
    response.set_cookie(
        settings.session_cookie_name,
        handshake.correlation_id,
        max_age=handshake.max_age,
        path=settings.base_path or "/",
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return response


@router.get("/callback")
async def sso_callback(
    request: Request,
    sso: Optional[str] = Query(None),
    sig: Optional[str] = Query(None),
    bridge: SSOBridge = Depends(get_bridge),
    settings: Settings = Depends(get_app_settings),
):
    """Handle the signed Discourse SSO callback."""
    logger.debug("Got a Discourse SSO callback")
    correlation_id = request.cookies.get(settings.session_cookie_name)
    root = get_auth_root(request, settings.base_path)

    try:
        response = bridge.handle_callback(correlation_id, sso, sig, root)
    except SessionNotFoundError as e:
        logger.warning(f"SSO callback without a pending session: {e}")
        response = JSONResponse(
            status_code=400,
            content={"error": "invalid session, please try again"},
        )

    response.delete_cookie(settings.session_cookie_name, path=settings.base_path or "/")
    return response


# ============================================================================
# Token
# ============================================================================

@router.post("/token")
async def token(
    grant_type: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
    engine: CodeFlowEngine = Depends(get_engine),
):
    """Exchange an authorization code for ID and access tokens."""
    credentials = parse_basic_auth(authorization)
    if credentials:
        client_id, client_secret = credentials

    try:
        # bcrypt verification is CPU bound
        result = await run_in_threadpool(
            engine.exchange_code,
            grant_type,
            code,
            redirect_uri,
            client_id,
            client_secret,
        )
    except TokenRequestError as e:
        logger.warning(f"Token request rejected: {e}")
        headers = dict(NO_STORE_HEADERS)
        if e.status_code == 401:
            headers["WWW-Authenticate"] = "Basic"
        return JSONResponse(status_code=e.status_code, content=e.to_dict(), headers=headers)

    return JSONResponse(content=result, headers=NO_STORE_HEADERS)


# ============================================================================
# UserInfo
# ============================================================================

@router.api_route("/userinfo", methods=["GET", "POST"])
async def userinfo(
    token: Optional[str] = Depends(extract_bearer_token),
    engine: CodeFlowEngine = Depends(get_engine),
):
    """Return the claims of the user the access token was issued to."""
    try:
        return engine.userinfo(token)
    except TokenRequestError as e:
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict(),
            headers={
                "WWW-Authenticate": f'Bearer error="{e.error}", error_description="{e.description}"'
            },
        )
