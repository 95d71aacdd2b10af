"""
Tests for the member realm routes
=================================

Tests for ghost_sso/auth/members.py

Test Coverage:
--------------
1. Login redirect (state/nonce cookie, signup registration page)
2. Callback: lookup, first-login provisioning, magic token insertion
3. Callback failures (state, provider error, Admin API faults)
4. Single logout with and without an end-session endpoint
5. Debug endpoint gating
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import status

from ghost_sso.auth.members import (
    LOGOUT_TOKEN_COOKIE,
    STATE_COOKIE,
    registration_endpoint,
    resolve_member,
)
from ghost_sso.errors import IntegrationError, UpstreamAuthError
from ghost_sso.tests.conftest import (
    BLOG_URL,
    MEMBER_ISSUER,
    make_identity,
    realm_metadata,
    set_cookie_headers,
)


STATE_HEADER = {"Cookie": f"{STATE_COOKIE}=state-abc.nonce-xyz"}


def callback(client, **params):
    query = {"code": "auth-code", "state": "state-abc"}
    query.update(params)
    return client.get(
        "/auth/member/callback",
        params=query,
        headers=STATE_HEADER,
        follow_redirects=False,
    )


# ============================================================================
# Login
# ============================================================================

class TestMemberLogin:
    """Test suite for /auth/member/login"""

    def test_redirects_to_authorization_endpoint(self, client):
        response = client.get("/auth/member/login", follow_redirects=False)

        assert response.status_code == status.HTTP_302_FOUND
        location = urlparse(response.headers["location"])
        assert f"{location.scheme}://{location.netloc}{location.path}" == (
            f"{MEMBER_ISSUER}/protocol/openid-connect/auth"
        )

        query = parse_qs(location.query)
        assert query["client_id"] == ["ghost-members"]
        assert query["redirect_uri"] == [f"{BLOG_URL}/auth/member/callback"]
        assert query["response_type"] == ["code"]
        assert "openid" in query["scope"][0]

        cookies = set_cookie_headers(response, STATE_COOKIE)
        assert len(cookies) == 1
        assert f"={query['state'][0]}.{query['nonce'][0]}" in cookies[0]
        assert "Path=/auth/member" in cookies[0]
        assert "HttpOnly" in cookies[0]

    def test_signup_uses_registration_page(self, client):
        response = client.get("/auth/member/login", params={"action": "signup"}, follow_redirects=False)

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"].startswith(
            f"{MEMBER_ISSUER}/protocol/openid-connect/registrations?"
        )

    def test_discovery_failure_shows_error_page(self, client, member_oidc):
        member_oidc._metadata = None
        member_oidc._http.get.side_effect = httpx.ConnectError("down")

        response = client.get("/auth/member/login", follow_redirects=False)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert "upstream_auth" in response.text

    def test_registration_endpoint_rewrite(self):
        assert registration_endpoint("https://kc/realms/x/protocol/openid-connect/auth") == (
            "https://kc/realms/x/protocol/openid-connect/registrations"
        )
        # Only a trailing /auth segment is rewritten
        assert registration_endpoint("https://kc/auth/realms/x/authorize") == "https://kc/auth/realms/x/authorize"


# ============================================================================
# Callback
# ============================================================================

class TestMemberCallback:
    """Test suite for /auth/member/callback"""

    def test_first_login_creates_member_and_inserts_token(self, client, mock_ghost_admin, mock_gateway, member_oidc):
        response = callback(client)

        assert response.status_code == status.HTTP_302_FOUND
        location = response.headers["location"]
        assert location.startswith(f"{BLOG_URL}/members/?token=")

        mock_ghost_admin.find_members_by_email.assert_awaited_once_with("reader@example.com")
        mock_ghost_admin.create_member.assert_awaited_once_with(email="reader@example.com", name="Jane Reader")

        mock_gateway.insert_magic_token.assert_awaited_once()
        args, kwargs = mock_gateway.insert_magic_token.call_args
        token, email = args
        assert email == "reader@example.com"
        assert kwargs["intent"] == "signin"
        assert parse_qs(urlparse(location).query)["token"] == [token]

        exchange_kwargs = member_oidc.exchange_code.call_args.kwargs
        assert exchange_kwargs["code"] == "auth-code"
        assert exchange_kwargs["expected_nonce"] == "nonce-xyz"
        assert exchange_kwargs["redirect_uri"] == f"{BLOG_URL}/auth/member/callback"

    def test_existing_member_is_not_recreated(self, client, mock_ghost_admin, mock_gateway):
        mock_ghost_admin.find_members_by_email.return_value = [{"id": "m1", "email": "reader@example.com"}]

        response = callback(client)

        assert response.status_code == status.HTTP_302_FOUND
        mock_ghost_admin.create_member.assert_not_awaited()
        mock_gateway.insert_magic_token.assert_awaited_once()

    def test_email_passed_through_unchanged(self, client, member_oidc, mock_ghost_admin, mock_gateway):
        member_oidc.exchange_code.return_value = make_identity("Jane.Reader@Example.COM")

        callback(client)

        mock_ghost_admin.find_members_by_email.assert_awaited_once_with("Jane.Reader@Example.COM")
        assert mock_gateway.insert_magic_token.call_args.args[1] == "Jane.Reader@Example.COM"

    def test_admin_api_failure_never_inserts_token(self, client, mock_ghost_admin, mock_gateway):
        mock_ghost_admin.find_members_by_email.side_effect = IntegrationError("Ghost redirected instead of responding")

        response = callback(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "integration_error" in response.text
        assert "redirected" not in response.text
        mock_ghost_admin.create_member.assert_not_awaited()
        mock_gateway.insert_magic_token.assert_not_awaited()

    def test_create_failure_never_inserts_token(self, client, mock_ghost_admin, mock_gateway):
        mock_ghost_admin.create_member.side_effect = IntegrationError("Ghost API error 422")

        response = callback(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        mock_gateway.insert_magic_token.assert_not_awaited()

    def test_failed_login_still_keeps_logout_token(self, client, mock_ghost_admin):
        mock_ghost_admin.find_members_by_email.side_effect = IntegrationError("down")

        response = callback(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert len(set_cookie_headers(response, LOGOUT_TOKEN_COOKIE)) == 1

    def test_success_sets_logout_token_and_clears_state(self, client):
        response = callback(client)

        logout_cookie = set_cookie_headers(response, LOGOUT_TOKEN_COOKIE)
        assert len(logout_cookie) == 1
        assert "header.payload.signature" in logout_cookie[0]
        assert "Path=/auth/member" in logout_cookie[0]

        state_cookie = set_cookie_headers(response, STATE_COOKIE)
        assert len(state_cookie) == 1
        assert "Max-Age=0" in state_cookie[0]

    def test_state_mismatch_is_rejected(self, client, member_oidc, mock_gateway):
        response = callback(client, state="forged-state")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "upstream_auth" in response.text
        member_oidc.exchange_code.assert_not_awaited()
        mock_gateway.insert_magic_token.assert_not_awaited()

    def test_missing_state_cookie_is_rejected(self, client, member_oidc):
        response = client.get(
            "/auth/member/callback",
            params={"code": "auth-code", "state": "state-abc"},
            follow_redirects=False,
        )

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        member_oidc.exchange_code.assert_not_awaited()

    def test_provider_error_is_rejected(self, client, member_oidc):
        response = callback(client, error="access_denied", code="")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "upstream_auth" in response.text
        member_oidc.exchange_code.assert_not_awaited()

    def test_exchange_failure_is_rejected(self, client, member_oidc, mock_ghost_admin):
        member_oidc.exchange_code.side_effect = UpstreamAuthError("Token exchange failed (status=400)")

        response = callback(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        mock_ghost_admin.find_members_by_email.assert_not_awaited()
        assert set_cookie_headers(response, LOGOUT_TOKEN_COOKIE) == []

    def test_database_failure_is_generic(self, client, mock_gateway):
        mock_gateway.insert_magic_token.side_effect = RuntimeError("secret internals")

        response = callback(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert "secret internals" not in response.text
        assert "Error code: fatal" in response.text


class TestResolveMember:
    """Test suite for resolve_member()"""

    @pytest.mark.asyncio
    async def test_non_list_response_is_integration_error(self, mock_ghost_admin):
        mock_ghost_admin.find_members_by_email.return_value = None

        with pytest.raises(IntegrationError):
            await resolve_member(mock_ghost_admin, make_identity())

        mock_ghost_admin.create_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_name_falls_back_to_given_name_then_generic(self, mock_ghost_admin):
        identity = make_identity(name=None)
        identity.raw["given_name"] = "Jane"
        await resolve_member(mock_ghost_admin, identity)
        assert mock_ghost_admin.create_member.call_args.kwargs["name"] == "Jane"

        await resolve_member(mock_ghost_admin, make_identity(name=None))
        assert mock_ghost_admin.create_member.call_args.kwargs["name"] == "Member"


# ============================================================================
# Logout
# ============================================================================

class TestMemberLogout:
    """Test suite for /auth/member/logout"""

    def test_logout_ends_provider_session_with_hint(self, client):
        response = client.get(
            "/auth/member/logout",
            headers={"Cookie": f"{LOGOUT_TOKEN_COOKIE}=cached-id-token"},
            follow_redirects=False,
        )

        assert response.status_code == status.HTTP_302_FOUND
        location = urlparse(response.headers["location"])
        assert location.path.endswith("/protocol/openid-connect/logout")
        query = parse_qs(location.query)
        assert query["id_token_hint"] == ["cached-id-token"]
        assert query["post_logout_redirect_uri"] == [BLOG_URL]
        assert query["client_id"] == ["ghost-members"]

    def test_logout_clears_member_cookies(self, client):
        response = client.get("/auth/member/logout", follow_redirects=False)

        for name in ("ghost-members-ssr", "ghost-members-ssr.sig", LOGOUT_TOKEN_COOKIE):
            cookies = set_cookie_headers(response, name)
            assert len(cookies) == 1
            assert "Max-Age=0" in cookies[0]

    def test_logout_without_hint(self, client):
        response = client.get("/auth/member/logout", follow_redirects=False)

        query = parse_qs(urlparse(response.headers["location"]).query)
        assert "id_token_hint" not in query

    def test_logout_without_end_session_endpoint(self, client, member_oidc):
        member_oidc._metadata = realm_metadata(MEMBER_ISSUER, end_session=False)

        response = client.get("/auth/member/logout", follow_redirects=False)

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"] == BLOG_URL


# ============================================================================
# Debug
# ============================================================================

class TestMemberDebug:
    """Test suite for /auth/member/debug"""

    def test_disabled_by_default(self, client):
        response = client.get("/auth/member/debug")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_reports_config_without_secrets(self, client, test_settings, mock_ghost_admin):
        test_settings.ENABLE_DEBUG_ENDPOINTS = True
        mock_ghost_admin.browse_members.return_value = [{"id": "m1"}]

        response = client.get("/auth/member/debug")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["config"]["api_key_present"] is True
        assert data["tests"]["ghost_api"] == {"success": True, "count": 1}
        assert test_settings.GHOST_ADMIN_API_KEY not in response.text
        mock_ghost_admin.browse_members.assert_awaited_once_with(limit=1)

    def test_reports_api_failure(self, client, test_settings, mock_ghost_admin):
        test_settings.ENABLE_DEBUG_ENDPOINTS = True
        mock_ghost_admin.browse_members.side_effect = IntegrationError("down")

        response = client.get("/auth/member/debug")

        assert response.json()["tests"]["ghost_api"] == {"success": False, "error": "integration_error"}
