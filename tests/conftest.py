"""
Pytest configuration and fixtures for SSO bridge tests.

Provides fixtures for:
- A controllable clock
- Signing keys
- Signed Discourse SSO payloads
- Registered clients
- The FastAPI application and an HTTP client
"""

import base64
import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional
from urllib.parse import urlencode

import bcrypt
import pytest
import pytest_asyncio
import yaml
from httpx import ASGITransport, AsyncClient

from sso_bridge.config.settings import Settings
from sso_bridge.domain.models import ClientGroupPolicy, OAuthClient
from sso_bridge.infrastructure.auth.key_manager import SigningKeyManager, generate_private_key_pem
from sso_bridge.main import create_app

SSO_SECRET = "discourse-shared-secret"
DISCOURSE_SERVER = "https://forum.example.org"
CLIENT_SECRET = "wiki-secret"
REDIRECT_URI = "https://wiki.example.org/oidc/callback"


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        # Tokens signed against this clock are verified against wall time
        self.now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def signing_key_pem() -> str:
    """One RSA key for the whole session (generation is slow)"""
    return generate_private_key_pem()


@pytest.fixture
def key_manager(signing_key_pem) -> SigningKeyManager:
    return SigningKeyManager.from_pem(signing_key_pem)


@pytest.fixture(scope="session")
def client_secret_hash() -> str:
    return bcrypt.hashpw(CLIENT_SECRET.encode(), bcrypt.gensalt(rounds=4)).decode()


@pytest.fixture
def sign_payload():
    """Build a signed Discourse callback (sso, sig) from attributes"""

    def _sign(secret: str = SSO_SECRET, **attributes) -> tuple[str, str]:
        sso = base64.b64encode(urlencode(attributes).encode()).decode()
        sig = hmac.new(secret.encode(), sso.encode(), hashlib.sha256).hexdigest()
        return sso, sig

    return _sign


@pytest.fixture
def user_attributes() -> dict:
    return {
        "username": "alice",
        "email": "alice@example.org",
        "name": "Alice Example",
        "avatar_url": "https://forum.example.org/avatars/alice.png",
        "groups": "dev,staff",
        "external_id": "42",
    }


@pytest.fixture
def oauth_clients(client_secret_hash) -> dict[str, OAuthClient]:
    return {
        "wiki": OAuthClient(
            client_id="wiki",
            secret_hash=client_secret_hash,
            redirect_uris=[REDIRECT_URI],
        ),
        "staff-only": OAuthClient(
            client_id="staff-only",
            secret_hash=client_secret_hash,
            redirect_uris=["https://admin.example.org/callback"],
            group_policy=ClientGroupPolicy(allow_groups=frozenset({"admins"})),
        ),
    }


@pytest.fixture
def clients_file(tmp_path, client_secret_hash) -> str:
    """Clients YAML file with one open and one restricted client"""
    path = tmp_path / "clients.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "clients": {
                    "wiki": {
                        "secret": client_secret_hash,
                        "redirect_uris": [REDIRECT_URI],
                    },
                    "staff-only": {
                        "secret": client_secret_hash,
                        "redirect_uris": ["https://admin.example.org/callback"],
                        "group_policy": {"allow_groups": ["admins"]},
                    },
                }
            }
        )
    )
    return str(path)


@pytest.fixture
def settings(signing_key_pem, clients_file) -> Settings:
    return Settings(
        _env_file=None,
        discourse_server=DISCOURSE_SERVER,
        discourse_secret=SSO_SECRET,
        oidc_private_key=signing_key_pem,
        clients_config_path=clients_file,
        cookie_secure=False,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client for the application."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
