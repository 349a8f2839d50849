"""Authorization-code flow engine.

Minimal OpenID Connect engine used by the service out of the box. Supports
the ``code`` response type, client authentication with ``client_secret_basic``
or ``client_secret_post``, RS256 ID and access tokens, and a UserInfo
endpoint backed by the access token claims.

Issued authorization codes are kept in memory and are single use.

Not provided: refresh tokens, token introspection (RFC 7662) and token
revocation (RFC 7009). Deployments that need them should plug a full
engine in behind ``AuthorizationEngine``.
"""

import base64
import binascii
import logging
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote, urlencode

import bcrypt
import jwt
from starlette.responses import RedirectResponse, Response

from sso_bridge.core.oauth2.engine import (
    AuthorizationEngine,
    AuthorizationRequest,
    AuthorizationRequestError,
)
from sso_bridge.core.sso.session_store import Clock, utc_now
from sso_bridge.domain.models import IdentityAssertion, OAuthClient, to_timestamp
from sso_bridge.infrastructure.auth.key_manager import SigningKeyManager

logger = logging.getLogger(__name__)

# Claims stripped from the access token before it is served as UserInfo
USERINFO_EXCLUDED_CLAIMS = {"iss", "aud", "exp", "iat", "jti", "scope", "rat", "at_hash"}


class TokenRequestError(Exception):
    """Token or UserInfo request rejected (RFC 6749 section 5.2)"""

    def __init__(self, error: str, description: str, status_code: int = 400):
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


@dataclass
class IssuedCode:
    """Authorization code waiting to be exchanged"""
    client_id: str
    redirect_uri: str
    assertion: IdentityAssertion
    nonce: Optional[str]
    scopes: list[str]
    expires_at: datetime


def parse_basic_auth(authorization: Optional[str]) -> Optional[tuple[str, str]]:
    """Extract (client_id, client_secret) from an HTTP Basic header"""
    if not authorization or not authorization.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, client_secret = decoded.split(":", 1)
    return unquote(client_id), unquote(client_secret)


def append_query(url: str, params: Dict[str, Optional[str]]) -> str:
    """Append non-empty parameters to a URL's query string"""
    query = urlencode({k: v for k, v in params.items() if v})
    if not query:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{query}"


class CodeFlowEngine(AuthorizationEngine):
    """OpenID Connect authorization-code engine.

    Example:
        engine = CodeFlowEngine(clients, key_manager)
        request = engine.new_authorization_request(query_params)
        engine.grant_scope(request, "openid")
        response = engine.complete_authorization(request, assertion)
    """

    def __init__(
        self,
        clients: Mapping[str, OAuthClient],
        key_manager: SigningKeyManager,
        access_token_ttl: timedelta = timedelta(minutes=30),
        code_ttl: timedelta = timedelta(minutes=10),
        clock: Clock = utc_now,
    ):
        """Initialize engine.

        Args:
            clients: Registered clients by client_id
            key_manager: Signing key for ID and access tokens
            access_token_ttl: Access token lifetime
            code_ttl: Authorization code lifetime
            clock: Returns the current time
        """
        self.clients = dict(clients)
        self.key_manager = key_manager
        self.access_token_ttl = access_token_ttl
        self.code_ttl = code_ttl
        self._clock = clock
        self._codes: Dict[str, IssuedCode] = {}
        self._codes_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def new_authorization_request(self, params: Mapping[str, str]) -> AuthorizationRequest:
        client_id = params.get("client_id")
        if not client_id:
            raise AuthorizationRequestError("invalid_request", "missing client_id")

        client = self.clients.get(client_id)
        if client is None:
            raise AuthorizationRequestError("invalid_client", f"unknown client {client_id}")

        redirect_uri = params.get("redirect_uri")
        if not redirect_uri:
            if len(client.redirect_uris) != 1:
                raise AuthorizationRequestError("invalid_request", "missing redirect_uri")
            redirect_uri = client.redirect_uris[0]
        elif redirect_uri not in client.redirect_uris:
            raise AuthorizationRequestError(
                "invalid_request", "redirect_uri is not registered for this client"
            )

        request = AuthorizationRequest(
            client=client,
            redirect_uri=redirect_uri,
            response_type=params.get("response_type", ""),
            state=params.get("state"),
            nonce=params.get("nonce"),
            requested_scopes=params.get("scope", "").split(),
        )

        if request.response_type != "code":
            raise self._redirectable_error(
                request, "unsupported_response_type", "only the code response type is supported"
            )
        if "openid" not in request.requested_scopes:
            raise self._redirectable_error(request, "invalid_scope", "the openid scope is required")

        return request

    def grant_scope(self, request: AuthorizationRequest, scope: str) -> None:
        if scope not in request.granted_scopes:
            request.granted_scopes.append(scope)

    def complete_authorization(
        self,
        request: AuthorizationRequest,
        assertion: IdentityAssertion,
    ) -> Response:
        code = secrets.token_urlsafe(32)
        issued = IssuedCode(
            client_id=request.client.client_id,
            redirect_uri=request.redirect_uri,
            assertion=assertion,
            nonce=request.nonce,
            scopes=list(request.granted_scopes),
            expires_at=self._clock() + self.code_ttl,
        )
        with self._codes_lock:
            self._purge_expired_codes_locked()
            self._codes[code] = issued

        logger.info(
            f"Authorization code issued (client={request.client.client_id}, sub={assertion.subject})"
        )
        return RedirectResponse(
            append_query(request.redirect_uri, {"code": code, "state": request.state}),
            status_code=303,
        )

    def fail_authorization(self, request: AuthorizationRequest, error: Exception) -> Response:
        error_code = getattr(error, "error_code", None) or getattr(error, "error", "server_error")
        description = getattr(error, "description", None) or str(error)

        logger.info(f"Authorization failed (client={request.client.client_id}, error={error_code})")
        return RedirectResponse(
            append_query(
                request.redirect_uri,
                {"error": error_code, "error_description": description, "state": request.state},
            ),
            status_code=303,
        )

    def current_signing_key_id(self) -> str:
        return self.key_manager.key_id

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def exchange_code(
        self,
        grant_type: Optional[str],
        code: Optional[str],
        redirect_uri: Optional[str],
        client_id: Optional[str],
        client_secret: Optional[str],
    ) -> Dict[str, Any]:
        """Exchange an authorization code for tokens.

        Returns:
            RFC 6749 token response with an added ``id_token``

        Raises:
            TokenRequestError: If the client, grant or code is invalid
        """
        client = self._authenticate_client(client_id, client_secret)

        if grant_type != "authorization_code":
            raise TokenRequestError(
                "unsupported_grant_type", "only authorization_code is supported"
            )
        if not code:
            raise TokenRequestError("invalid_request", "missing code")

        now = self._clock()
        with self._codes_lock:
            issued = self._codes.pop(code, None)

        if issued is None or now >= issued.expires_at:
            raise TokenRequestError("invalid_grant", "authorization code is invalid or expired")
        if issued.client_id != client.client_id:
            raise TokenRequestError("invalid_grant", "authorization code was issued to another client")
        if redirect_uri and redirect_uri != issued.redirect_uri:
            raise TokenRequestError("invalid_grant", "redirect_uri does not match")

        assertion = issued.assertion
        access_expires = now + self.access_token_ttl

        access_claims = {
            **assertion.profile_claims(),
            "iss": assertion.issuer,
            "aud": client.client_id,
            "iat": to_timestamp(now),
            "exp": to_timestamp(access_expires),
            "jti": str(uuid.uuid4()),
            "scope": " ".join(issued.scopes),
        }
        id_claims = {**assertion.to_claims(), "aud": client.client_id}
        if issued.nonce:
            id_claims["nonce"] = issued.nonce

        logger.info(f"Tokens issued (client={client.client_id}, sub={assertion.subject})")

        return {
            "access_token": self.key_manager.sign(access_claims),
            "token_type": "bearer",
            "expires_in": int(self.access_token_ttl.total_seconds()),
            "scope": " ".join(issued.scopes),
            "id_token": self.key_manager.sign(id_claims),
        }

    def userinfo(self, access_token: Optional[str]) -> Dict[str, Any]:
        """Return the identity claims of a valid access token.

        Raises:
            TokenRequestError: If the token is missing or invalid
        """
        if not access_token:
            raise TokenRequestError("invalid_token", "missing access token", status_code=401)

        try:
            claims = self.key_manager.decode(access_token)
        except jwt.InvalidTokenError as e:
            logger.warning(f"UserInfo request with invalid access token: {e}")
            raise TokenRequestError("invalid_token", "access token is invalid", status_code=401)

        if "jti" not in claims:
            raise TokenRequestError(
                "invalid_token",
                "Only access tokens can be used to fetch user information",
                status_code=401,
            )

        return {k: v for k, v in claims.items() if k not in USERINFO_EXCLUDED_CLAIMS}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authenticate_client(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
    ) -> OAuthClient:
        client = self.clients.get(client_id or "")
        if client is None or client_secret is None:
            raise TokenRequestError("invalid_client", "client authentication failed", status_code=401)

        if not bcrypt.checkpw(client_secret.encode(), client.secret_hash.encode()):
            logger.warning(f"Client authentication failed (client={client_id})")
            raise TokenRequestError("invalid_client", "client authentication failed", status_code=401)

        return client

    def _purge_expired_codes_locked(self) -> None:
        now = self._clock()
        expired = [code for code, issued in self._codes.items() if now >= issued.expires_at]
        for code in expired:
            del self._codes[code]

    @staticmethod
    def _redirectable_error(
        request: AuthorizationRequest,
        error: str,
        description: str,
    ) -> AuthorizationRequestError:
        return AuthorizationRequestError(
            error,
            description,
            redirect_uri=request.redirect_uri,
            state=request.state,
        )
