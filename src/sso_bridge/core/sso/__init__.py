"""Discourse SSO protocol and pending round-trip tracking."""

from .codec import SSOAttributes, build_handshake_url, validate_callback
from .session_store import ExpiryReaper, PendingAuthorizationStore

__all__ = [
    "SSOAttributes",
    "build_handshake_url",
    "validate_callback",
    "PendingAuthorizationStore",
    "ExpiryReaper",
]
