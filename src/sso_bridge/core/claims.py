"""Identity claims built from validated SSO attributes."""

import logging
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Callable

from starlette.requests import Request

from sso_bridge.core.sso.session_store import Clock, utc_now
from sso_bridge.domain.models import IdentityAssertion

logger = logging.getLogger(__name__)

ASSERTION_LIFETIME = timedelta(hours=6)


def get_auth_root(request: Request, base_path: str) -> str:
    """Canonical root URL of the service as seen by the user agent.

    The scheme comes from ``X-Forwarded-Proto`` when a proxy sets it and
    falls back to plain HTTP.
    """
    scheme = request.headers.get("x-forwarded-proto") or "http"
    host = request.headers.get("host") or request.url.netloc
    return f"{scheme}://{host}{base_path}"


def split_groups(raw: str) -> list[str]:
    """Split the provider's comma-joined group list, keeping order"""
    if not raw:
        return []
    return raw.split(",")


class IdentityClaimsBuilder:
    """Maps Discourse SSO attributes to an IdentityAssertion"""

    def __init__(self, signing_key_id: Callable[[], str], clock: Clock = utc_now):
        """Initialize builder.

        Args:
            signing_key_id: Returns the ``kid`` of the engine's current signing key
            clock: Returns the current time
        """
        self._signing_key_id = signing_key_id
        self._clock = clock

    def build(self, root: str, attributes: Mapping) -> IdentityAssertion:
        """Build the identity assertion for a validated callback.

        Args:
            root: Canonical root URL of this service, used as issuer
            attributes: Validated SSO payload attributes

        Returns:
            IdentityAssertion
        """
        now: datetime = self._clock()

        return IdentityAssertion(
            subject=attributes.get("username", ""),
            email=attributes.get("email", ""),
            name=attributes.get("name", ""),
            picture=attributes.get("avatar_url", ""),
            external_id=attributes.get("external_id", ""),
            groups=split_groups(attributes.get("groups", "")),
            issuer=root,
            issued_at=now,
            auth_time=now,
            requested_at=now,
            expires_at=now + ASSERTION_LIFETIME,
            signing_key_id=self._signing_key_id(),
        )
