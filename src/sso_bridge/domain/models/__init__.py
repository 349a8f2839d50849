"""Domain models for the SSO bridge"""

from sso_bridge.domain.models.bridge import (
    ClientGroupPolicy,
    IdentityAssertion,
    PendingAuthorization,
    PolicyDecision,
    to_timestamp,
)
from sso_bridge.domain.models.client import GroupPolicyConfig, OAuthClient

__all__ = [
    # Bridge models
    "PendingAuthorization",
    "ClientGroupPolicy",
    "PolicyDecision",
    "IdentityAssertion",
    "to_timestamp",
    # Client models
    "OAuthClient",
    "GroupPolicyConfig",
]
