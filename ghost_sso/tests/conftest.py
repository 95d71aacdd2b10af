"""
Shared fixtures for the Ghost SSO bridge tests.

Route tests build the app with ``create_app()`` and install a hand-made
``AppState`` instead of running the lifespan, so no database, Keycloak or
Ghost instance is needed. OIDC clients are real objects with discovery
pre-seeded and the code exchange mocked; the gateway and Admin API client
are ``AsyncMock``s.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from ghost_sso.auth.oidc import OIDCClient
from ghost_sso.config import Settings
from ghost_sso.db import GhostGateway
from ghost_sso.dependencies import AppState
from ghost_sso.ghost_api import GhostAdminClient
from ghost_sso.main import create_app
from ghost_sso.models import IdentityClaims, ProviderMetadata


BLOG_URL = "https://blog.example.com"
MEMBER_ISSUER = "https://sso.example.com/realms/members"
STAFF_ISSUER = "https://sso.example.com/realms/staff"
ADMIN_API_KEY = "6489a1b2c3d4e5f601234567:" + "ab" * 32


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture
def test_settings():
    """Fully populated settings for a blog at blog.example.com"""
    return Settings(
        BLOG_PUBLIC_URL=BLOG_URL + "/",
        GHOST_INTERNAL_URL="http://ghost:2368",
        GHOST_ADMIN_API_KEY=ADMIN_API_KEY,
        MEMBER_KEYCLOAK_ISSUER=MEMBER_ISSUER,
        MEMBER_CLIENT_ID="ghost-members",
        MEMBER_CLIENT_SECRET="member-client-secret",
        MEMBER_CALLBACK_URL=BLOG_URL + "/auth/member/callback",
        STAFF_KEYCLOAK_ISSUER=STAFF_ISSUER,
        STAFF_CLIENT_ID="ghost-staff",
        STAFF_CLIENT_SECRET="staff-client-secret",
        STAFF_CALLBACK_URL=BLOG_URL + "/auth/admin/callback",
        DB_PASSWORD="db-password",
    )


def realm_metadata(issuer: str, end_session: bool = True) -> ProviderMetadata:
    """Discovery document in Keycloak's layout"""
    base = f"{issuer}/protocol/openid-connect"
    return ProviderMetadata(
        issuer=issuer,
        authorization_endpoint=f"{base}/auth",
        token_endpoint=f"{base}/token",
        jwks_uri=f"{base}/certs",
        end_session_endpoint=f"{base}/logout" if end_session else None,
    )


def make_identity(email: str = "reader@example.com", name: str = "Jane Reader") -> IdentityClaims:
    claims = {"sub": "kc-user-1", "email": email}
    if name:
        claims["name"] = name
    return IdentityClaims(
        email=email,
        name=name,
        subject="kc-user-1",
        id_token="header.payload.signature",
        raw=claims,
    )


# ============================================================================
# Collaborators
# ============================================================================

@pytest.fixture
def member_oidc(test_settings):
    """Member realm client with discovery cached and the code exchange mocked"""
    client = OIDCClient(test_settings.member_realm, http_client=AsyncMock())
    client._metadata = realm_metadata(MEMBER_ISSUER)
    client.exchange_code = AsyncMock(return_value=make_identity())
    return client


@pytest.fixture
def staff_oidc(test_settings):
    """Staff realm client with discovery cached and the code exchange mocked"""
    client = OIDCClient(test_settings.staff_realm, http_client=AsyncMock())
    client._metadata = realm_metadata(STAFF_ISSUER)
    client.exchange_code = AsyncMock(return_value=make_identity("editor@example.com", "Ed Itor"))
    return client


@pytest.fixture
def mock_gateway():
    """Gateway whose writes succeed and whose reads find nothing"""
    gateway = AsyncMock(spec=GhostGateway)
    gateway.find_active_staff_user.return_value = None
    gateway.fetch_session_secret.return_value = None
    gateway.insert_magic_token.return_value = "0123456789abcdef01234567"
    gateway.insert_session.return_value = "0123456789abcdef01234567"
    gateway.ping.return_value = True
    gateway.is_staff_empty.return_value = False
    return gateway


@pytest.fixture
def mock_ghost_admin():
    """Admin API client that finds no members and creates whatever it is asked to"""
    ghost_admin = AsyncMock(spec=GhostAdminClient)
    ghost_admin.find_members_by_email.return_value = []
    ghost_admin.create_member.side_effect = lambda email, name: {"id": "m1", "email": email, "name": name}
    ghost_admin.browse_members.return_value = []
    return ghost_admin


# ============================================================================
# Application
# ============================================================================

@pytest.fixture
def app_state(test_settings, mock_gateway, member_oidc, staff_oidc, mock_ghost_admin):
    return AppState(
        settings=test_settings,
        gateway=mock_gateway,
        http_client=AsyncMock(),
        member_oidc=member_oidc,
        staff_oidc=staff_oidc,
        ghost_admin=mock_ghost_admin,
    )


@pytest.fixture
def app(app_state):
    """Application with the lifespan bypassed and test state installed"""
    application = create_app()
    application.state.app_state = app_state
    return application


@pytest.fixture
def client(app):
    """HTTPS test client, so Secure cookies round-trip"""
    return TestClient(app, base_url="https://testserver")


def set_cookie_headers(response, name: str):
    """All Set-Cookie headers for one cookie name"""
    return [h for h in response.headers.get_list("set-cookie") if h.startswith(f"{name}=")]
