"""OAuth2 client registry loading.

Clients are declared in a YAML file:

    clients:
      forum-wiki:
        secret: "change-me"            # plain text or bcrypt hash
        redirect_uris:
          - https://wiki.example.org/oidc/callback
        group_policy:                  # optional
          allow_groups: [staff]
          deny_groups: [suspended]
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import bcrypt
import yaml
from pydantic import BaseModel, Field, ValidationError

from sso_bridge.domain.models import GroupPolicyConfig, OAuthClient

logger = logging.getLogger(__name__)

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


class ClientConfig(BaseModel):
    """Client entry as written in the clients file"""
    secret: str
    redirect_uris: list[str] = Field(default_factory=list)
    group_policy: Optional[GroupPolicyConfig] = None


def hash_client_secret(secret: str) -> str:
    """Hash a client secret with bcrypt unless it already is a bcrypt hash"""
    if secret.startswith(BCRYPT_PREFIXES):
        return secret
    return bcrypt.hashpw(secret.encode(), bcrypt.gensalt()).decode()


def build_clients(raw: Dict[str, Any]) -> Dict[str, OAuthClient]:
    """Validate raw client entries and build the registry

    Args:
        raw: Mapping of client_id to client entry

    Returns:
        Mapping of client_id to OAuthClient

    Raises:
        ValueError: If an entry is invalid
    """
    clients: Dict[str, OAuthClient] = {}
    for client_id, entry in (raw or {}).items():
        try:
            config = ClientConfig.model_validate(entry or {})
        except ValidationError as e:
            raise ValueError(f"Invalid configuration for client '{client_id}': {e}") from e

        clients[client_id] = OAuthClient(
            client_id=client_id,
            secret_hash=hash_client_secret(config.secret),
            redirect_uris=config.redirect_uris,
            group_policy=config.group_policy.to_policy() if config.group_policy else None,
        )
    return clients


def load_clients(path: str) -> Dict[str, OAuthClient]:
    """Load the client registry from a YAML file

    A missing file yields an empty registry.

    Args:
        path: Path to the clients YAML file

    Returns:
        Mapping of client_id to OAuthClient
    """
    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"Clients file not found: {path}. No OAuth2 clients are registered")
        return {}

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse clients file: {e}")
        raise ValueError(f"Cannot load clients from {path}: {e}") from e

    clients = build_clients(config.get("clients", {}))
    logger.info(f"Loaded {len(clients)} clients from {path}")
    return clients
