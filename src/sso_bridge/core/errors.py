"""Bridge error taxonomy.

Every failure of a single SSO attempt is terminal for that attempt. The
``error_code`` attribute carries the RFC 6749 error used when the failure is
reported back to the OAuth2 client through the authorization engine.
"""


class BridgeError(Exception):
    """Base class for SSO bridge failures."""

    error_code = "server_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class SignatureMismatchError(BridgeError):
    """Callback signature does not match the shared secret."""

    error_code = "access_denied"


class NonceReplayError(BridgeError):
    """Callback is validly signed but carries a nonce we did not issue."""

    error_code = "access_denied"


class MalformedPayloadError(BridgeError):
    """Callback payload could not be decoded or parsed."""

    error_code = "invalid_request"


class SessionNotFoundError(BridgeError):
    """No pending authorization for the correlation token.

    The cookie is missing, the token is unknown, or the record was already
    resolved or has expired. The user has to start over.
    """

    error_code = "invalid_request"


class PolicyDeniedError(BridgeError):
    """User authenticated but is not allowed to use the requesting client."""

    error_code = "access_denied"

    def __init__(self, reason: str):
        super().__init__(f"You are not allowed to access this application: {reason}")
        self.reason = reason


class PendingLimitExceededError(BridgeError):
    """Too many SSO attempts are in flight."""

    error_code = "temporarily_unavailable"
