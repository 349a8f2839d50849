"""Discourse SSO provider protocol codec.

Builds the signed handshake URL sent to the Discourse SSO provider and
validates the signed payload it sends back.

Protocol:
    outbound: sso = base64("nonce=<n>&return_sso_url=<url>")
              sig = hex(HMAC-SHA256(secret, sso))
    inbound:  same signing scheme; the decoded payload is form-encoded and
              carries username, email, name, avatar_url, groups,
              external_id and the echoed nonce
"""

import base64
import binascii
import hashlib
import hmac
import logging
import re
from collections.abc import Mapping
from typing import Iterator, Optional
from urllib.parse import parse_qs, urlencode

from sso_bridge.core.errors import (
    MalformedPayloadError,
    NonceReplayError,
    SignatureMismatchError,
)

logger = logging.getLogger(__name__)

SSO_PROVIDER_PATH = "/session/sso_provider"
_NONCE_PATTERN = re.compile(r"-?[0-9]+")


class SSOAttributes(Mapping):
    """Read-only view of a decoded SSO payload.

    Keys may repeat in the payload; item access returns the last value.
    """

    def __init__(self, values: dict[str, list[str]]):
        self._values = values

    def __getitem__(self, key: str) -> str:
        return self._values[key][-1]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get_all(self, key: str) -> list[str]:
        """Return every value sent for ``key`` in payload order"""
        return list(self._values.get(key, []))

    def __repr__(self) -> str:
        return f"SSOAttributes({dict(self)!r})"


def _sign(payload: bytes, shared_secret: str) -> bytes:
    return hmac.new(shared_secret.encode(), payload, hashlib.sha256).digest()


def build_handshake_url(
    provider_base: str,
    callback_url: str,
    shared_secret: str,
    nonce: int,
) -> str:
    """Build the URL that starts an SSO round trip.

    Args:
        provider_base: Base URL of the Discourse server
        callback_url: URL the provider redirects back to (inserted as-is)
        shared_secret: SSO secret shared with the provider
        nonce: Nonce the provider must echo back

    Returns:
        ``<provider_base>/session/sso_provider?sso=<base64>&sig=<hex>``
    """
    payload = f"nonce={nonce}&return_sso_url={callback_url}"
    sso = base64.b64encode(payload.encode())
    sig = _sign(sso, shared_secret).hex()

    query = urlencode({"sso": sso.decode("ascii"), "sig": sig})
    return f"{provider_base}{SSO_PROVIDER_PATH}?{query}"


def validate_callback(
    sso: Optional[str],
    sig: Optional[str],
    shared_secret: str,
    expected_nonce: int,
) -> SSOAttributes:
    """Validate a signed SSO callback and return its attributes.

    The signature is checked before anything in the payload is parsed.

    Args:
        sso: Base64 payload from the ``sso`` query parameter
        sig: Hex HMAC from the ``sig`` query parameter
        shared_secret: SSO secret shared with the provider
        expected_nonce: Nonce issued for this round trip

    Returns:
        Decoded payload attributes

    Raises:
        SignatureMismatchError: If the MAC does not match
        MalformedPayloadError: If the payload or its nonce cannot be decoded
        NonceReplayError: If the payload nonce is not the expected one
    """
    sso = sso or ""
    expected = _sign(sso.encode(), shared_secret)

    try:
        received = bytes.fromhex(sig or "")
    except ValueError:
        logger.warning("SSO callback signature is not valid hex")
        raise SignatureMismatchError("wrong signature from discourse")

    if not hmac.compare_digest(expected, received):
        logger.warning("SSO callback signature mismatch")
        raise SignatureMismatchError("wrong signature from discourse")

    try:
        text = base64.b64decode(sso.encode("ascii"), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeError) as e:
        raise MalformedPayloadError(f"decoding discourse payload: {e}")

    attributes = SSOAttributes(parse_qs(text, keep_blank_values=True))

    raw_nonce = attributes.get("nonce", "")
    if not _NONCE_PATTERN.fullmatch(raw_nonce):
        raise MalformedPayloadError("parsing returned nonce: not a number")
    nonce = int(raw_nonce)

    if nonce != expected_nonce:
        logger.warning("SSO callback carries an unexpected nonce")
        raise NonceReplayError("wrong nonce from discourse")

    return attributes
