"""OAuth2/OIDC engine contract and the built-in authorization-code engine."""

from .code_flow import CodeFlowEngine, TokenRequestError, parse_basic_auth
from .engine import AuthorizationEngine, AuthorizationRequest, AuthorizationRequestError

__all__ = [
    "AuthorizationEngine",
    "AuthorizationRequest",
    "AuthorizationRequestError",
    "CodeFlowEngine",
    "TokenRequestError",
    "parse_basic_auth",
]
