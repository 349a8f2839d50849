"""Discourse SSO to OpenID Connect bridge.

Runs one SSO attempt from the OAuth2 authorize request to the engine's
final response:

    begin:     engine parses the authorize request, the store issues a
               correlation token and nonce, the codec signs the handshake URL
    callback:  the store resolves (and deletes) the pending record, the codec
               checks signature and nonce, the client's group policy is
               applied, the claims builder produces the identity and the
               engine completes the authorization

Every failure after the record was resolved is terminal and is reported to
the engine; the user has to start a new attempt.
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from starlette.responses import Response

from sso_bridge.core.claims import IdentityClaimsBuilder, split_groups
from sso_bridge.core.errors import BridgeError, PolicyDeniedError
from sso_bridge.core.oauth2.engine import AuthorizationEngine
from sso_bridge.core.policy import evaluate_group_policy
from sso_bridge.core.sso.codec import build_handshake_url, validate_callback
from sso_bridge.core.sso.session_store import PendingAuthorizationStore

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/callback"
GRANTED_SCOPE = "openid"


@dataclass
class HandshakeRedirect:
    """Where to send the user agent to start an SSO round trip

    Attributes:
        url: Signed Discourse SSO URL
        correlation_id: Value for the correlation cookie
        max_age: Cookie lifetime in seconds
    """
    url: str
    correlation_id: str
    max_age: int


class SSOBridge:
    """Correlates OAuth2 authorize requests with Discourse SSO round trips"""

    def __init__(
        self,
        engine: AuthorizationEngine,
        store: PendingAuthorizationStore,
        discourse_server: str,
        discourse_secret: str,
        claims_builder: Optional[IdentityClaimsBuilder] = None,
    ):
        """Initialize bridge.

        Args:
            engine: OAuth2/OIDC engine
            store: Pending authorization store
            discourse_server: Base URL of the Discourse server
            discourse_secret: SSO secret shared with Discourse
            claims_builder: Identity claims builder (defaults to one keyed on the engine)
        """
        self.engine = engine
        self.store = store
        self.discourse_server = discourse_server.rstrip("/")
        self.discourse_secret = discourse_secret
        self.claims_builder = claims_builder or IdentityClaimsBuilder(engine.current_signing_key_id)

    def begin(self, params: Mapping[str, str], root: str) -> HandshakeRedirect:
        """Start an SSO round trip for an authorize request.

        Args:
            params: Authorize request query parameters
            root: Canonical root URL of this service

        Returns:
            HandshakeRedirect

        Raises:
            AuthorizationRequestError: If the engine rejects the request
            PendingLimitExceededError: If too many attempts are in flight
        """
        authorization_request = self.engine.new_authorization_request(params)

        correlation_id, nonce = self.store.begin(authorization_request)
        url = build_handshake_url(
            self.discourse_server,
            f"{root}{CALLBACK_PATH}",
            self.discourse_secret,
            nonce,
        )

        logger.debug(
            f"SSO round trip started (client={authorization_request.client.client_id})"
        )
        return HandshakeRedirect(
            url=url,
            correlation_id=correlation_id,
            max_age=int(self.store.ttl.total_seconds()),
        )

    def handle_callback(
        self,
        correlation_id: Optional[str],
        sso: Optional[str],
        sig: Optional[str],
        root: str,
    ) -> Response:
        """Finish an SSO round trip.

        Args:
            correlation_id: Value of the correlation cookie
            sso: Signed payload from Discourse
            sig: Payload signature from Discourse
            root: Canonical root URL of this service

        Returns:
            The engine's response, for success and for rejected callbacks

        Raises:
            SessionNotFoundError: If no pending attempt matches the cookie
        """
        pending = self.store.resolve(correlation_id)
        authorization_request = pending.external_request

        try:
            attributes = validate_callback(sso, sig, self.discourse_secret, pending.nonce)
        except BridgeError as e:
            logger.warning(f"SSO callback rejected: {e}")
            return self.engine.fail_authorization(authorization_request, e)

        username = attributes.get("username", "")
        groups = split_groups(attributes.get("groups", ""))
        logger.debug(f"Parsed SSO user data (username={username}, groups={groups})")

        decision = evaluate_group_policy(authorization_request.group_policy, groups)
        if not decision.allowed:
            error = PolicyDeniedError(decision.reason)
            logger.warning(
                f"Group validation failed (username={username}, "
                f"client={authorization_request.client.client_id}): {decision.reason}"
            )
            return self.engine.fail_authorization(authorization_request, error)

        # Discourse has no notion of scopes, so only openid is granted
        self.engine.grant_scope(authorization_request, GRANTED_SCOPE)

        assertion = self.claims_builder.build(root, attributes)
        logger.info(f"User authenticated via SSO: {username}")
        return self.engine.complete_authorization(authorization_request, assertion)
