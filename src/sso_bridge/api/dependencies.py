"""FastAPI dependencies for the bridge components held on ``app.state``."""

from typing import Optional

from fastapi import Header, Request

from sso_bridge.config.settings import Settings
from sso_bridge.core.bridge import SSOBridge
from sso_bridge.core.oauth2 import CodeFlowEngine
from sso_bridge.infrastructure.auth.key_manager import SigningKeyManager


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_bridge(request: Request) -> SSOBridge:
    return request.app.state.bridge


def get_engine(request: Request) -> CodeFlowEngine:
    return request.app.state.engine


def get_key_manager(request: Request) -> SigningKeyManager:
    return request.app.state.key_manager


async def extract_bearer_token(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[str]:
    """Extract Bearer token from Authorization header."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    return authorization[7:].strip()
