"""OpenID Connect Discovery Routes

Provides the discovery document and the public signing keys.

Endpoints (mounted under the configured base path):
- /.well-known/openid-configuration
- /certs (JWKS)
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from sso_bridge.api.dependencies import get_app_settings, get_key_manager
from sso_bridge.config.settings import Settings
from sso_bridge.core.claims import get_auth_root
from sso_bridge.infrastructure.auth.key_manager import SigningKeyManager

logger = logging.getLogger(__name__)

router = APIRouter(tags=["discovery"])


@router.get("/certs")
async def get_jwks(key_manager: SigningKeyManager = Depends(get_key_manager)) -> Dict[str, Any]:
    """Get JSON Web Key Set (JWKS)

    Returns:
        JWKS document with the current signing key

    Example Response:
        {
            "keys": [
                {
                    "kty": "RSA",
                    "use": "sig",
                    "alg": "RS256",
                    "kid": "fingerprint-of-the-key",
                    "n": "base64url-encoded-modulus",
                    "e": "base64url-encoded-exponent"
                }
            ]
        }
    """
    return {"keys": [key_manager.get_jwk()]}


@router.get("/.well-known/openid-configuration")
async def get_openid_configuration(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Get OpenID Connect discovery document

    URLs are derived from the host and scheme the request was made with.

    Returns:
        OpenID Connect discovery document
    """
    root = get_auth_root(request, settings.base_path)

    config = {
        "issuer": root,
        "authorization_endpoint": f"{root}/auth",
        "token_endpoint": f"{root}/token",
        "userinfo_endpoint": f"{root}/userinfo",
        "jwks_uri": f"{root}/certs",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "scopes_supported": ["openid"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
        "claims_supported": [
            "sub", "iss", "aud", "exp", "iat", "auth_time", "nonce",
            "email", "email_verified", "name", "picture", "groups", "external_id",
        ],
    }

    logger.debug("OpenID configuration endpoint accessed")
    return config
