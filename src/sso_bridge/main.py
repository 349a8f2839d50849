"""SSO Bridge Service

Main FastAPI application entry point.
Exposes a Discourse SSO login as an OpenID Connect provider.

Run with:
    uvicorn --factory sso_bridge.main:create_app
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from sso_bridge.api.middleware.request_log import RequestLogMiddleware
from sso_bridge.api.routes import discovery, oauth2
from sso_bridge.config.clients import load_clients
from sso_bridge.config.settings import Settings, get_settings
from sso_bridge.core.bridge import SSOBridge
from sso_bridge.core.oauth2 import CodeFlowEngine
from sso_bridge.core.sso.session_store import ExpiryReaper, PendingAuthorizationStore
from sso_bridge.infrastructure.auth.key_manager import load_signing_keys

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    settings: Settings = app.state.settings

    # Startup
    logger.info(f"Starting {settings.service_name} v{settings.service_version}")
    logger.info(f"Environment: {settings.environment}")
    app.state.reaper.start()

    yield

    # Shutdown
    logger.info("Shutting down SSO bridge")
    await app.state.reaper.stop()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application and its bridge components

    Args:
        settings: Settings to use (defaults to the cached environment settings)

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    if not settings.discourse_server:
        logger.warning("No Discourse server configured (DISCOURSE_SERVER)")
    if not settings.discourse_secret:
        logger.warning("No Discourse SSO secret configured (DISCOURSE_SECRET)")

    key_manager = load_signing_keys(settings.oidc_private_key, settings.oidc_private_key_path)
    clients = load_clients(settings.clients_config_path)
    logger.info(f"Clients loaded: {len(clients)}")

    engine = CodeFlowEngine(
        clients,
        key_manager,
        access_token_ttl=timedelta(minutes=settings.access_token_expire_minutes),
        code_ttl=timedelta(seconds=settings.authorization_code_ttl_seconds),
    )
    store = PendingAuthorizationStore(
        ttl=timedelta(seconds=settings.session_ttl_seconds),
        max_pending=settings.max_pending_sessions,
    )
    bridge = SSOBridge(engine, store, settings.discourse_server, settings.discourse_secret)

    app = FastAPI(
        title="SSO Bridge",
        version=settings.service_version,
        description="OpenID Connect provider backed by Discourse SSO",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.key_manager = key_manager
    app.state.engine = engine
    app.state.store = store
    app.state.bridge = bridge
    app.state.reaper = ExpiryReaper(store, settings.session_sweep_interval_seconds)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(RequestLogMiddleware)

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "version": settings.service_version,
            "environment": settings.environment,
            "pending_sessions": len(store),
        }

    @app.get("/")
    async def root():
        """Send visitors to the Discourse forum"""
        return RedirectResponse(settings.discourse_server or "/health", status_code=307)

    app.include_router(oauth2.router, prefix=settings.base_path)
    app.include_router(discovery.router, prefix=settings.base_path)

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "server_error",
                "error_description": "An unexpected error occurred. Please try again later."
            }
        )

    return app


def run(settings: Optional[Settings] = None) -> None:
    """Serve the application with uvicorn (auto-reload when DEBUG is set)"""
    import uvicorn

    settings = settings or get_settings()
    uvicorn.run(
        "sso_bridge.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
