"""OAuth2 client registration models."""

from typing import Optional

from pydantic import BaseModel, Field

from sso_bridge.domain.models.bridge import ClientGroupPolicy


class GroupPolicyConfig(BaseModel):
    """Group policy as written in the clients file."""
    allow_groups: list[str] = Field(default_factory=list)
    deny_groups: list[str] = Field(default_factory=list)

    def to_policy(self) -> ClientGroupPolicy:
        return ClientGroupPolicy(
            allow_groups=frozenset(self.allow_groups),
            deny_groups=tuple(dict.fromkeys(self.deny_groups)),
        )


class OAuthClient(BaseModel):
    """Registered OAuth2 client.

    Attributes:
        client_id: Client identifier
        secret_hash: bcrypt hash of the client secret
        redirect_uris: Allowed redirect URIs (exact match)
        group_policy: Optional group policy; None means unrestricted
    """
    client_id: str
    secret_hash: str
    redirect_uris: list[str] = Field(default_factory=list)
    group_policy: Optional[ClientGroupPolicy] = None

    model_config = {"arbitrary_types_allowed": True}
