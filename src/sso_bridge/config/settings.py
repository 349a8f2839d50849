"""Configuration Settings for the SSO Bridge

Manages environment variables and application configuration.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Service info
    service_name: str = "sso-bridge"
    service_version: str = "1.0.0"
    environment: str = "development"

    # Server configuration
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    base_path: str = "/oauth2"

    # Discourse SSO provider
    discourse_server: str = ""
    discourse_secret: str = ""

    # OIDC signing key (PEM text takes precedence over the file path)
    oidc_private_key: Optional[str] = None
    oidc_private_key_path: Optional[str] = None

    # Registered OAuth2 clients
    clients_config_path: str = "/etc/sso-bridge/clients.yml"

    # Pending SSO sessions
    session_ttl_seconds: int = 600  # 10 minutes
    session_sweep_interval_seconds: float = 30.0
    max_pending_sessions: int = 10000
    session_cookie_name: str = "oidc_session"
    cookie_secure: bool = True

    # Token lifetimes
    access_token_expire_minutes: int = 30
    authorization_code_ttl_seconds: int = 600

    # CORS configuration
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance

    Returns:
        Settings instance
    """
    return Settings()
