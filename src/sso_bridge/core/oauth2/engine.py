"""Abstract OAuth2/OIDC authorization engine interface.

The SSO bridge never parses OAuth2 requests or mints tokens itself. It
drives an engine through this contract: the engine parses the authorize
request, the bridge runs the SSO round trip, and the engine turns the
resulting identity (or failure) into the response for the user agent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlencode

from starlette.responses import JSONResponse, RedirectResponse, Response

from sso_bridge.domain.models import ClientGroupPolicy, IdentityAssertion, OAuthClient


class AuthorizationRequestError(Exception):
    """Authorize request rejected by the engine.

    Attributes:
        error: RFC 6749 error code
        description: Human readable description
        redirect_uri: Validated redirect URI of the client, when known. Errors
            without one must not be redirected.
        state: Client state to echo back with a redirected error
    """

    def __init__(
        self,
        error: str,
        description: str,
        redirect_uri: Optional[str] = None,
        state: Optional[str] = None,
    ):
        super().__init__(f"{error}: {description}")
        self.error = error
        self.description = description
        self.redirect_uri = redirect_uri
        self.state = state


@dataclass
class AuthorizationRequest:
    """Parsed OAuth2 authorize request.

    Attributes:
        client: Requesting client
        redirect_uri: Validated redirect URI
        response_type: Requested response type
        state: Opaque client state, echoed back
        nonce: OIDC nonce, copied into the ID token
        requested_scopes: Scopes the client asked for
        granted_scopes: Scopes granted so far
    """
    client: OAuthClient
    redirect_uri: str
    response_type: str = "code"
    state: Optional[str] = None
    nonce: Optional[str] = None
    requested_scopes: list[str] = field(default_factory=list)
    granted_scopes: list[str] = field(default_factory=list)

    @property
    def group_policy(self) -> Optional[ClientGroupPolicy]:
        return self.client.group_policy


class AuthorizationEngine(ABC):
    """Contract the SSO bridge needs from an OAuth2/OIDC engine."""

    @abstractmethod
    def new_authorization_request(self, params: Mapping[str, str]) -> AuthorizationRequest:
        """Parse and validate an authorize request.

        Args:
            params: Query parameters of the authorize request

        Returns:
            Opaque handle later passed back to the engine

        Raises:
            AuthorizationRequestError: If the request is invalid
        """
        pass

    @abstractmethod
    def grant_scope(self, request: AuthorizationRequest, scope: str) -> None:
        """Grant a scope on a pending authorization request."""
        pass

    @abstractmethod
    def complete_authorization(
        self,
        request: AuthorizationRequest,
        assertion: IdentityAssertion,
    ) -> Response:
        """Finish a successful authorization.

        Returns:
            Response to send to the user agent
        """
        pass

    @abstractmethod
    def fail_authorization(self, request: AuthorizationRequest, error: Exception) -> Response:
        """Finish a failed authorization.

        Returns:
            Response to send to the user agent
        """
        pass

    @abstractmethod
    def current_signing_key_id(self) -> str:
        """``kid`` of the key the engine currently signs tokens with."""
        pass

    def write_authorization_error(self, error: AuthorizationRequestError) -> Response:
        """Render an authorize request that could not be parsed.

        Errors are only redirected to a redirect URI the engine validated;
        anything else is answered directly with a JSON body.
        """
        body = {"error": error.error, "error_description": error.description}
        if not error.redirect_uri:
            return JSONResponse(status_code=400, content=body)

        if error.state:
            body["state"] = error.state
        separator = "&" if "?" in error.redirect_uri else "?"
        return RedirectResponse(f"{error.redirect_uri}{separator}{urlencode(body)}", status_code=303)
