"""
FastAPI Application Factory
===========================

Entry point of the Ghost SSO bridge, which sits behind the same reverse proxy
as Ghost and owns the ``/auth/*`` paths.

Architecture:
    Browser → /auth/{member,admin}/login → Keycloak → /auth/{member,admin}/callback
            → Ghost (magic link for members, signed admin cookie for staff)

Routers:
    - /auth/member/* : Member realm (login, logout, callback, debug)
    - /auth/admin/*  : Staff realm (login, callback)
    - /health, /healthz, /ready : Probes

Running the Service:
    Development:
        uvicorn ghost_sso.main:app --reload --host 0.0.0.0 --port 3000

    Production:
        uvicorn ghost_sso.main:app --host 0.0.0.0 --port 3000 --proxy-headers --forwarded-allow-ips='*'
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ghost_sso import __version__
from ghost_sso.auth.members import member_router
from ghost_sso.auth.oidc import OIDCClient
from ghost_sso.auth.staff import staff_router
from ghost_sso.config import Settings, get_settings
from ghost_sso.db import GhostGateway, create_engine_from_settings
from ghost_sso.dependencies import AppState
from ghost_sso.errors import ErrorCode
from ghost_sso.ghost_api import GhostAdminClient
from ghost_sso.health import health_router
from ghost_sso.models import ErrorResponse

logger = logging.getLogger("ghost_sso.main")

JSON_LOG_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", '
    '"message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}'
)
TEXT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: 'json' for log aggregators, 'text' for local development
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=JSON_LOG_FORMAT if log_format == "json" else TEXT_LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def build_app_state(settings: Settings) -> AppState:
    """Create the pooled engine, HTTP client and realm clients."""
    http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)

    return AppState(
        settings=settings,
        gateway=GhostGateway(create_engine_from_settings(settings)),
        http_client=http_client,
        member_oidc=OIDCClient(settings.member_realm, http_client, settings.JWKS_CACHE_SECONDS),
        staff_oidc=OIDCClient(settings.staff_realm, http_client, settings.JWKS_CACHE_SECONDS),
        ghost_admin=GhostAdminClient(
            base_url=settings.ghost_api_url,
            public_url=settings.blog_url,
            key_id=settings.admin_key_id,
            key_secret=settings.admin_key_secret,
            http_client=http_client,
        ),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
        - Load configuration and set up logging
        - Open the Ghost database pool and the shared HTTP client
        - Discover both Keycloak realms (startup fails if either is down)

    Shutdown:
        - Close the HTTP client and dispose of the database pool
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)

    logger.info(
        "Starting Ghost SSO bridge",
        extra={"blog_url": settings.blog_url, "ghost_api_url": settings.ghost_api_url},
    )

    app_state = build_app_state(settings)
    app.state.app_state = app_state

    try:
        await app_state.member_oidc.discover()
        await app_state.staff_oidc.discover()
        logger.info("Ghost SSO bridge started", extra={"version": __version__})

        yield
    finally:
        logger.info("Shutting down Ghost SSO bridge")
        await app_state.http_client.aclose()
        await app_state.gateway.close()


def create_app() -> FastAPI:
    """
    Application factory function.

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="Ghost SSO Bridge",
        description="Keycloak single sign-on for Ghost members and staff",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.include_router(member_router)
    app.include_router(staff_router)
    app.include_router(health_router)

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, str]:
        return {
            "service": "ghost-sso-bridge",
            "version": __version__,
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Never includes exception details in the response.
        """
        logger.error(
            f"Unhandled exception: {type(exc).__name__}",
            extra={"path": request.url.path, "method": request.method},
            exc_info=exc,
        )
        body = ErrorResponse(error=ErrorCode.FATAL.value, message="An unexpected error occurred")
        return JSONResponse(status_code=500, content=body.model_dump())

    return app


# Create app instance for uvicorn
app = create_app()


def run() -> None:
    """Serve the app with uvicorn, trusting the reverse proxy's forwarded headers."""
    settings = get_settings()

    uvicorn.run(
        "ghost_sso.main:app",
        host=settings.HOST,
        port=settings.PORT,
        proxy_headers=True,
        forwarded_allow_ips="*",
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
