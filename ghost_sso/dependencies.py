"""
Shared application state and the FastAPI dependencies that expose it.

Resources (database engine, HTTP client, OIDC clients, Admin API client)
are built once in the application lifespan and stored on
``app.state.app_state``; routes reach them only through these functions,
which makes every collaborator replaceable in tests.
"""

import time
from typing import Optional

import httpx
from fastapi import HTTPException, Request, status

from ghost_sso.auth.oidc import OIDCClient
from ghost_sso.config import Settings
from ghost_sso.db import GhostGateway
from ghost_sso.ghost_api import GhostAdminClient


class AppState:
    """Container for the resources shared by all requests."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        gateway: Optional[GhostGateway] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        member_oidc: Optional[OIDCClient] = None,
        staff_oidc: Optional[OIDCClient] = None,
        ghost_admin: Optional[GhostAdminClient] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.http_client = http_client
        self.member_oidc = member_oidc
        self.staff_oidc = staff_oidc
        self.ghost_admin = ghost_admin
        self.started_at = time.monotonic()


def get_app_state(request: Request) -> AppState:
    """
    Dependency returning the application state.

    Raises:
        HTTPException: 503 if the lifespan has not initialised the state
    """
    app_state = getattr(request.app.state, "app_state", None)
    if app_state is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return app_state


def _require(value, name: str):
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name} not available",
        )
    return value


def get_app_settings(request: Request) -> Settings:
    return _require(get_app_state(request).settings, "Settings")


def get_gateway(request: Request) -> GhostGateway:
    return _require(get_app_state(request).gateway, "Database")


def get_member_oidc(request: Request) -> OIDCClient:
    return _require(get_app_state(request).member_oidc, "Member identity provider")


def get_staff_oidc(request: Request) -> OIDCClient:
    return _require(get_app_state(request).staff_oidc, "Staff identity provider")


def get_ghost_admin(request: Request) -> GhostAdminClient:
    return _require(get_app_state(request).ghost_admin, "Ghost Admin API")
