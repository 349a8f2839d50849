"""Bridge Data Models

Purpose: Define data structures for in-flight SSO round trips and the
identities they resolve to.

Key Components:
- PendingAuthorization: One SSO round trip waiting for its callback
- ClientGroupPolicy: Optional per-client group allow/deny lists
- PolicyDecision: Outcome of evaluating a group policy
- IdentityAssertion: Claims handed to the authorization engine
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, FrozenSet, Optional, Tuple


def to_timestamp(value: datetime) -> int:
    """Convert datetime to integer seconds since the epoch"""
    return int(value.timestamp())


@dataclass
class PendingAuthorization:
    """In-flight SSO round trip

    Attributes:
        correlation_id: Opaque token stored in the user's cookie
        nonce: Value embedded in the signed handshake, checked once on callback
        external_request: Engine-owned authorization request, passed back untouched
        created_at: Record creation timestamp
        expires_at: Record expiration timestamp
    """
    correlation_id: str
    nonce: int
    external_request: Any
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Check if the record is past its lifetime at ``now``"""
        return now >= self.expires_at


@dataclass(frozen=True)
class ClientGroupPolicy:
    """Group-based access policy of an OAuth2 client

    Attributes:
        allow_groups: If non-empty, only members of one of these groups get in
        deny_groups: Members of these groups are rejected; the first configured
            match is reported (ignored when allow_groups is set)
    """
    allow_groups: FrozenSet[str] = frozenset()
    deny_groups: Tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyDecision:
    """Result of a group policy evaluation"""
    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "PolicyDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> "PolicyDecision":
        return cls(allowed=False, reason=reason)


@dataclass
class IdentityAssertion:
    """Identity of an authenticated SSO user

    Built fresh for each callback and owned by the authorization engine
    once handed over.

    Attributes:
        subject: Provider username, used as the OIDC ``sub`` claim
        email: User email (trusted as verified by the provider)
        name: Full name
        picture: Avatar URL
        external_id: Provider-side user id
        groups: Provider groups in the order the provider sent them
        issuer: Canonical root URL of this service
        issued_at: Assertion creation time
        auth_time: Time the user authenticated
        requested_at: Time the assertion was requested
        expires_at: Assertion expiry (six hours after issuance)
        signing_key_id: ``kid`` of the key the engine signs with
        email_verified: Always True, the provider verifies email addresses
    """
    subject: str
    email: str
    name: str
    picture: str
    external_id: str
    groups: list[str]
    issuer: str
    issued_at: datetime
    auth_time: datetime
    requested_at: datetime
    expires_at: datetime
    signing_key_id: str
    email_verified: bool = True

    def to_claims(self) -> dict:
        """Convert to ID token claims"""
        return {
            "iss": self.issuer,
            "sub": self.subject,
            "exp": to_timestamp(self.expires_at),
            "iat": to_timestamp(self.issued_at),
            "rat": to_timestamp(self.requested_at),
            "auth_time": to_timestamp(self.auth_time),
            "email": self.email,
            "email_verified": self.email_verified,
            "picture": self.picture,
            "name": self.name,
            "groups": list(self.groups),
            "external_id": self.external_id,
        }

    def profile_claims(self) -> dict:
        """Claims describing the user, without token bookkeeping"""
        return {
            "sub": self.subject,
            "email": self.email,
            "email_verified": self.email_verified,
            "picture": self.picture,
            "name": self.name,
            "groups": list(self.groups),
            "external_id": self.external_id,
        }
