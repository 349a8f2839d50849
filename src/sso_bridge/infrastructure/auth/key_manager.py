"""Signing Key Manager (RS256)

Holds the RSA key used to sign ID and access tokens and publishes its
public half as a JWK.

The key id (``kid``) is a fingerprint of the public key so that relying
parties can tell keys apart across restarts and rotations.
"""

import base64
import hashlib
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


def generate_private_key_pem() -> str:
    """Generate a new RSA private key as PKCS#1 PEM text"""
    private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return pem.decode("utf-8")


def compute_key_id(public_key: rsa.RSAPublicKey) -> str:
    """Fingerprint a public key

    SHA-256 over the PKCS#1 DER encoding, base64 encoded and truncated to
    32 characters.
    """
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.PKCS1,
    )
    digest = hashlib.sha256(der).digest()
    return base64.b64encode(digest).decode("ascii")[:32]


class SigningKeyManager:
    """Manages the RS256 signing key of the service

    Token headers carry the ``kid`` of this key; the same value is published
    in the JWKS document.
    """

    def __init__(self, private_key: rsa.RSAPrivateKey):
        """Initialize key manager

        Args:
            private_key: RSA private key used for signing
        """
        self.private_key = private_key
        self.public_key = private_key.public_key()
        self.key_id = compute_key_id(self.public_key)

        logger.info(f"Signing key manager initialized (kid={self.key_id})")

    @classmethod
    def from_pem(cls, pem: str) -> "SigningKeyManager":
        """Load an RSA private key from PEM text (PKCS#1 or PKCS#8)"""
        try:
            private_key = serialization.load_pem_private_key(pem.encode(), password=None)
        except ValueError as e:
            logger.error(f"Failed to parse private key: {e}")
            raise

        if not isinstance(private_key, rsa.RSAPrivateKey):
            raise ValueError("signing key must be an RSA private key")

        return cls(private_key)

    @classmethod
    def from_file(cls, key_path: str) -> "SigningKeyManager":
        """Load an RSA private key from a PEM file"""
        path = Path(key_path)
        if not path.exists():
            raise FileNotFoundError(f"Private key not found: {key_path}")

        manager = cls.from_pem(path.read_text())
        logger.info(f"Loaded RSA private key from {key_path}")
        return manager

    @classmethod
    def generate(cls) -> "SigningKeyManager":
        """Create a manager with a fresh, unpersisted key"""
        private_key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
        return cls(private_key)

    def sign(self, claims: Dict[str, Any]) -> str:
        """Sign claims as an RS256 JWT with this key's ``kid`` header"""
        return jwt.encode(
            claims,
            self.private_key,
            algorithm="RS256",
            headers={"kid": self.key_id},
        )

    def decode(
        self,
        token: str,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Verify and decode a JWT signed with this key

        Raises:
            jwt.InvalidTokenError: If the token is invalid or expired
        """
        return jwt.decode(
            token,
            self.public_key,
            algorithms=["RS256"],
            audience=audience,
            issuer=issuer,
            options={"verify_aud": audience is not None},
        )

    def get_jwk(self) -> Dict[str, Any]:
        """Get public key as JWK (JSON Web Key)

        Returns:
            JWK dictionary
        """
        public_numbers = self.public_key.public_numbers()

        def int_to_base64url(value: int) -> str:
            """Convert integer to base64url encoding"""
            value_bytes = value.to_bytes((value.bit_length() + 7) // 8, byteorder="big")
            return base64.urlsafe_b64encode(value_bytes).rstrip(b"=").decode("utf-8")

        return {
            "kty": "RSA",
            "use": "sig",
            "alg": "RS256",
            "kid": self.key_id,
            "n": int_to_base64url(public_numbers.n),
            "e": int_to_base64url(public_numbers.e),
        }


def load_signing_keys(
    private_key_pem: Optional[str] = None,
    private_key_path: Optional[str] = None,
) -> SigningKeyManager:
    """Load the configured signing key, or generate one

    Args:
        private_key_pem: PEM text of the private key
        private_key_path: Path to a PEM file, used when no PEM text is given

    Returns:
        SigningKeyManager
    """
    if private_key_pem:
        return SigningKeyManager.from_pem(private_key_pem)
    if private_key_path:
        return SigningKeyManager.from_file(private_key_path)

    logger.warning(
        "No private key specified for the OIDC provider. "
        "Your tokens will be invalid on restart!"
    )
    return SigningKeyManager.generate()
