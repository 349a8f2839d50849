"""Unit tests for identity claims construction"""

from datetime import timedelta

import pytest
from starlette.requests import Request

from sso_bridge.core.claims import IdentityClaimsBuilder, get_auth_root, split_groups

pytestmark = pytest.mark.unit

ROOT = "https://bridge.example.org/oauth2"


def _request(headers: dict) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/oauth2/auth",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "server": ("internal", 8080),
        "scheme": "http",
    }
    return Request(scope)


class TestIdentityClaimsBuilder:
    """Test mapping SSO attributes to an identity assertion"""

    def test_attribute_mapping(self, clock, user_attributes):
        """Happy path: provider attributes land in the right claims"""
        # Arrange
        builder = IdentityClaimsBuilder(lambda: "kid-1", clock=clock)

        # Act
        identity = builder.build(ROOT, user_attributes)

        # Assert
        assert identity.subject == "alice"
        assert identity.email == "alice@example.org"
        assert identity.name == "Alice Example"
        assert identity.picture == "https://forum.example.org/avatars/alice.png"
        assert identity.external_id == "42"
        assert identity.groups == ["dev", "staff"]
        assert identity.issuer == ROOT
        assert identity.signing_key_id == "kid-1"
        assert identity.email_verified is True

    def test_timestamps(self, clock, user_attributes):
        builder = IdentityClaimsBuilder(lambda: "kid-1", clock=clock)

        identity = builder.build(ROOT, user_attributes)

        assert identity.issued_at == clock.now
        assert identity.auth_time == clock.now
        assert identity.requested_at == clock.now
        assert identity.expires_at == clock.now + timedelta(hours=6)

    def test_missing_attributes_default_to_empty(self, clock):
        builder = IdentityClaimsBuilder(lambda: "kid-1", clock=clock)

        identity = builder.build(ROOT, {"username": "bob"})

        assert identity.subject == "bob"
        assert identity.email == ""
        assert identity.groups == []

    def test_signing_key_id_read_per_build(self, clock):
        """Key id is looked up on every build, not captured once"""
        key_ids = iter(["first", "second"])
        builder = IdentityClaimsBuilder(lambda: next(key_ids), clock=clock)

        assert builder.build(ROOT, {}).signing_key_id == "first"
        assert builder.build(ROOT, {}).signing_key_id == "second"

    def test_to_claims(self, clock, user_attributes):
        identity = IdentityClaimsBuilder(lambda: "kid-1", clock=clock).build(ROOT, user_attributes)

        claims = identity.to_claims()

        assert claims["iss"] == ROOT
        assert claims["sub"] == "alice"
        assert claims["exp"] - claims["iat"] == 6 * 3600
        assert claims["groups"] == ["dev", "staff"]
        assert claims["email_verified"] is True


class TestSplitGroups:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("", []),
            ("dev", ["dev"]),
            ("dev,staff,admins", ["dev", "staff", "admins"]),
        ],
    )
    def test_split(self, raw, expected):
        assert split_groups(raw) == expected


class TestGetAuthRoot:
    """Test canonical root URL derivation"""

    def test_defaults_to_http(self):
        request = _request({"host": "bridge.example.org"})

        assert get_auth_root(request, "/oauth2") == "http://bridge.example.org/oauth2"

    def test_forwarded_proto(self):
        request = _request({"host": "bridge.example.org", "x-forwarded-proto": "https"})

        assert get_auth_root(request, "/oauth2") == "https://bridge.example.org/oauth2"

    def test_host_header_keeps_port(self):
        request = _request({"host": "localhost:8080"})

        assert get_auth_root(request, "") == "http://localhost:8080"
