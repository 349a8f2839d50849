"""Unit tests for the SSO bridge orchestration"""

import base64
import hashlib
import hmac
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest

from sso_bridge.core.bridge import SSOBridge
from sso_bridge.core.errors import (
    MalformedPayloadError,
    NonceReplayError,
    PendingLimitExceededError,
    PolicyDeniedError,
    SessionNotFoundError,
    SignatureMismatchError,
)
from sso_bridge.core.oauth2 import AuthorizationRequest, AuthorizationRequestError
from sso_bridge.core.sso.session_store import PendingAuthorizationStore
from sso_bridge.domain.models import ClientGroupPolicy, OAuthClient

pytestmark = pytest.mark.unit

SECRET = "discourse-shared-secret"
ROOT = "https://bridge.example.org/oauth2"


def _authorization_request(policy=None) -> AuthorizationRequest:
    client = OAuthClient(
        client_id="wiki",
        secret_hash="$2b$04$unused",
        redirect_uris=["https://wiki.example.org/cb"],
        group_policy=policy,
    )
    return AuthorizationRequest(client=client, redirect_uri="https://wiki.example.org/cb")


@pytest.fixture
def mock_engine():
    """Mock authorization engine"""
    engine = MagicMock()
    engine.new_authorization_request.return_value = _authorization_request()
    engine.current_signing_key_id.return_value = "kid-1"
    return engine


@pytest.fixture
def store(clock):
    return PendingAuthorizationStore(clock=clock)


@pytest.fixture
def bridge(mock_engine, store):
    return SSOBridge(mock_engine, store, "https://forum.example.org/", SECRET)


def _handshake_nonce(url: str) -> int:
    sso = parse_qs(urlsplit(url).query)["sso"][0]
    payload = parse_qs(base64.b64decode(sso).decode())
    return int(payload["nonce"][0])


class TestBegin:
    """Test starting an SSO round trip"""

    def test_begin_builds_signed_handshake(self, bridge, store, mock_engine):
        """Happy path: pending record stored and URL targets Discourse"""
        # Act
        handshake = bridge.begin({"client_id": "wiki"}, ROOT)

        # Assert
        assert handshake.url.startswith("https://forum.example.org/session/sso_provider?")
        assert handshake.max_age == 600
        assert len(store) == 1
        mock_engine.new_authorization_request.assert_called_once_with({"client_id": "wiki"})

    def test_handshake_return_url_is_callback(self, bridge):
        handshake = bridge.begin({}, ROOT)

        sso = parse_qs(urlsplit(handshake.url).query)["sso"][0]
        payload = parse_qs(base64.b64decode(sso).decode())
        assert payload["return_sso_url"] == [f"{ROOT}/callback"]

    def test_engine_rejection_stores_nothing(self, bridge, store, mock_engine):
        mock_engine.new_authorization_request.side_effect = AuthorizationRequestError(
            "invalid_client", "unknown client"
        )

        with pytest.raises(AuthorizationRequestError):
            bridge.begin({}, ROOT)

        assert len(store) == 0

    def test_pending_limit_propagates(self, mock_engine, clock):
        store = PendingAuthorizationStore(clock=clock, max_pending=0)
        bridge = SSOBridge(mock_engine, store, "https://forum.example.org", SECRET)

        with pytest.raises(PendingLimitExceededError):
            bridge.begin({}, ROOT)


class TestHandleCallback:
    """Test finishing an SSO round trip"""

    def _begin(self, bridge):
        handshake = bridge.begin({}, ROOT)
        return handshake.correlation_id, _handshake_nonce(handshake.url)

    def test_success_completes_authorization(self, bridge, mock_engine, sign_payload, user_attributes):
        """Happy path: openid granted and identity handed to the engine"""
        # Arrange
        correlation_id, nonce = self._begin(bridge)
        sso, sig = sign_payload(SECRET, nonce=str(nonce), **user_attributes)

        # Act
        response = bridge.handle_callback(correlation_id, sso, sig, ROOT)

        # Assert
        assert response is mock_engine.complete_authorization.return_value
        request = mock_engine.new_authorization_request.return_value
        mock_engine.grant_scope.assert_called_once_with(request, "openid")
        assertion = mock_engine.complete_authorization.call_args[0][1]
        assert assertion.subject == "alice"
        assert assertion.groups == ["dev", "staff"]
        assert assertion.issuer == ROOT
        assert assertion.signing_key_id == "kid-1"
        mock_engine.fail_authorization.assert_not_called()

    def test_unknown_session_raises(self, bridge, mock_engine, sign_payload):
        sso, sig = sign_payload(SECRET, nonce="1")

        with pytest.raises(SessionNotFoundError):
            bridge.handle_callback("unknown", sso, sig, ROOT)

        mock_engine.fail_authorization.assert_not_called()

    def test_callback_is_single_use(self, bridge, sign_payload):
        correlation_id, nonce = self._begin(bridge)
        sso, sig = sign_payload(SECRET, nonce=str(nonce), username="alice")
        bridge.handle_callback(correlation_id, sso, sig, ROOT)

        with pytest.raises(SessionNotFoundError):
            bridge.handle_callback(correlation_id, sso, sig, ROOT)

    @pytest.mark.parametrize(
        "make_payload,error_type",
        [
            (lambda sign, nonce: (sign(SECRET, nonce=str(nonce))[0], "00" * 32), SignatureMismatchError),
            (lambda sign, nonce: sign(SECRET, nonce=str(nonce + 1)), NonceReplayError),
            (lambda sign, nonce: sign(SECRET, nonce="x"), MalformedPayloadError),
        ],
        ids=["signature", "nonce", "malformed"],
    )
    def test_invalid_callback_fails_authorization(
        self, bridge, mock_engine, store, sign_payload, make_payload, error_type
    ):
        """Rejected callbacks are reported to the engine and consume the session"""
        correlation_id, nonce = self._begin(bridge)
        sso, sig = make_payload(sign_payload, nonce)

        response = bridge.handle_callback(correlation_id, sso, sig, ROOT)

        assert response is mock_engine.fail_authorization.return_value
        error = mock_engine.fail_authorization.call_args[0][1]
        assert isinstance(error, error_type)
        mock_engine.complete_authorization.assert_not_called()
        assert len(store) == 0

    def test_non_ascii_payload_fails_authorization(self, bridge, mock_engine, store):
        """A signed payload that is not ASCII reaches the engine as malformed"""
        correlation_id, _ = self._begin(bridge)
        sso = "bm9uY2U9NQ==é"
        sig = hmac.new(SECRET.encode(), sso.encode(), hashlib.sha256).hexdigest()

        response = bridge.handle_callback(correlation_id, sso, sig, ROOT)

        assert response is mock_engine.fail_authorization.return_value
        error = mock_engine.fail_authorization.call_args[0][1]
        assert isinstance(error, MalformedPayloadError)
        assert len(store) == 0

    def test_policy_denial(self, bridge, mock_engine, sign_payload):
        mock_engine.new_authorization_request.return_value = _authorization_request(
            ClientGroupPolicy(deny_groups=("staff",))
        )
        correlation_id, nonce = self._begin(bridge)
        sso, sig = sign_payload(SECRET, nonce=str(nonce), username="alice", groups="dev,staff")

        bridge.handle_callback(correlation_id, sso, sig, ROOT)

        error = mock_engine.fail_authorization.call_args[0][1]
        assert isinstance(error, PolicyDeniedError)
        assert error.reason == "in denied group staff"
        mock_engine.grant_scope.assert_not_called()
        mock_engine.complete_authorization.assert_not_called()

    def test_allow_list_admits_member(self, bridge, mock_engine, sign_payload):
        mock_engine.new_authorization_request.return_value = _authorization_request(
            ClientGroupPolicy(allow_groups=frozenset({"staff"}))
        )
        correlation_id, nonce = self._begin(bridge)
        sso, sig = sign_payload(SECRET, nonce=str(nonce), username="alice", groups="staff")

        bridge.handle_callback(correlation_id, sso, sig, ROOT)

        mock_engine.complete_authorization.assert_called_once()
