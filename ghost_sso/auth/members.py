"""
Member realm routes: Keycloak login for blog subscribers.

Flow:
1. ``/login`` sends the browser to Keycloak (or its registration page)
2. ``/callback`` exchanges the code, looks the member up through the Ghost
   Admin API and creates it on first login (the realm is the source of
   truth for members)
3. A one-time token is inserted into Ghost's ``tokens`` table and the
   browser is sent to ``/members/?token=...``; Ghost redeems it into its
   own member session
4. ``/logout`` clears local cookies and ends the Keycloak session too

A member created in step 2 is kept even if step 3 fails; membership alone
grants nothing.
"""

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from ghost_sso.auth.login_state import (
    check_login_state,
    clear_state_cookie,
    new_login_state,
    set_state_cookie,
)
from ghost_sso.auth.oidc import OIDCClient
from ghost_sso.auth.pages import render_error_page
from ghost_sso.auth.utils import generate_opaque_token, get_member_display_name
from ghost_sso.config import Settings
from ghost_sso.db import GhostGateway
from ghost_sso.dependencies import (
    get_app_settings,
    get_gateway,
    get_ghost_admin,
    get_member_oidc,
)
from ghost_sso.errors import IntegrationError, UpstreamAuthError, log_callback_failure
from ghost_sso.ghost_api import GhostAdminClient
from ghost_sso.models import IdentityClaims

logger = logging.getLogger(__name__)

BASE_PATH = "/auth/member"

LOGOUT_TOKEN_COOKIE = "kc_member_id_token"
LOGOUT_TOKEN_MAX_AGE = 3600
STATE_COOKIE = "kc_member_oidc_state"
MEMBER_SESSION_COOKIES = ("ghost-members-ssr", "ghost-members-ssr.sig")

MAGIC_TOKEN_INTENT = "signin"

member_router = APIRouter(prefix=BASE_PATH, tags=["members"])


def registration_endpoint(authorization_endpoint: str) -> str:
    """
    Keycloak's registration page for a realm.

    Keycloak serves it next to the authorization endpoint:
    ``.../protocol/openid-connect/auth`` -> ``.../protocol/openid-connect/registrations``.
    Other providers need their own rule.
    """
    return re.sub(r"/auth$", "/registrations", authorization_endpoint)


async def resolve_member(ghost_admin: GhostAdminClient, identity: IdentityClaims) -> Dict[str, Any]:
    """
    Find the member for this identity, creating it on first login.

    Matching is on the email exactly as the identity provider sent it.

    Raises:
        IntegrationError: If the Admin API fails or answers with something
            other than a list (never read as "no member")
    """
    members = await ghost_admin.find_members_by_email(identity.email)
    if not isinstance(members, list):
        raise IntegrationError("Ghost API returned invalid response")

    if members:
        logger.info("Member found", extra={"email": identity.email})
        return members[0]

    logger.info("Creating new member", extra={"email": identity.email})
    return await ghost_admin.create_member(
        email=identity.email,
        name=get_member_display_name(identity.raw),
    )


def magic_link_url(settings: Settings, token: str) -> str:
    return f"{settings.blog_url}/members/?{urlencode({'token': token})}"


# =============================================================================
# Login Endpoint
# =============================================================================

@member_router.get("/login")
async def login(
    action: Optional[str] = Query(None, description="'signup' opens the Keycloak registration page"),
    oidc: OIDCClient = Depends(get_member_oidc),
    settings: Settings = Depends(get_app_settings),
):
    """Redirect to the member realm's authorization (or registration) endpoint."""
    try:
        metadata = await oidc.discover()
    except UpstreamAuthError as e:
        code = log_callback_failure(logger, "member", e)
        return render_error_page(code.value, retry_url=f"{BASE_PATH}/login", status_code=status.HTTP_502_BAD_GATEWAY)

    endpoint = None
    if action == "signup":
        endpoint = registration_endpoint(metadata.authorization_endpoint)

    state, nonce = new_login_state()
    url = oidc.build_authorization_url(
        metadata,
        redirect_uri=settings.MEMBER_CALLBACK_URL,
        state=state,
        nonce=nonce,
        authorization_endpoint=endpoint,
    )

    response = RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
    set_state_cookie(response, STATE_COOKIE, BASE_PATH, state, nonce)
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@member_router.get("/logout")
async def logout(
    request: Request,
    oidc: OIDCClient = Depends(get_member_oidc),
    settings: Settings = Depends(get_app_settings),
):
    """
    Clear local cookies and end the Keycloak session (single logout).

    The cached ID token goes along as ``id_token_hint`` so Keycloak skips
    its confirmation screen. Without an end-session endpoint the browser
    goes straight back to the blog.
    """
    id_token = request.cookies.get(LOGOUT_TOKEN_COOKIE)

    target = settings.blog_url
    try:
        metadata = await oidc.discover()
    except UpstreamAuthError as e:
        logger.warning(f"Provider logout skipped: {e}", extra={"realm": "member"})
    else:
        end_session_url = oidc.build_end_session_url(
            metadata,
            post_logout_redirect_uri=settings.blog_url,
            id_token_hint=id_token,
        )
        if end_session_url:
            target = end_session_url

    response = RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
    for cookie_name in MEMBER_SESSION_COOKIES:
        response.delete_cookie(cookie_name, path="/")
    response.delete_cookie(LOGOUT_TOKEN_COOKIE, path=BASE_PATH, httponly=True, secure=True, samesite="lax")
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@member_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Keycloak"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    oidc: OIDCClient = Depends(get_member_oidc),
    gateway: GhostGateway = Depends(get_gateway),
    ghost_admin: GhostAdminClient = Depends(get_ghost_admin),
    settings: Settings = Depends(get_app_settings),
):
    """
    Complete a member login.

    Returns:
        302 to Ghost's magic-link handler, or a generic 500 error page
    """
    identity: Optional[IdentityClaims] = None

    try:
        nonce = check_login_state(request, STATE_COOKIE, state)
        if error:
            raise UpstreamAuthError(f"Provider returned error: {error}")
        if not code:
            raise UpstreamAuthError("Missing authorization code")

        metadata = await oidc.discover()
        identity = await oidc.exchange_code(
            metadata,
            code=code,
            redirect_uri=settings.MEMBER_CALLBACK_URL,
            expected_nonce=nonce,
        )

        await resolve_member(ghost_admin, identity)

        token = generate_opaque_token()
        await gateway.insert_magic_token(token, identity.email, intent=MAGIC_TOKEN_INTENT)

        response = RedirectResponse(url=magic_link_url(settings, token), status_code=status.HTTP_302_FOUND)
        logger.info("Member login completed", extra={"email": identity.email})

    except Exception as e:
        error_code = log_callback_failure(logger, "member", e)
        response = render_error_page(
            error_code.value,
            retry_url=f"{BASE_PATH}/login",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    clear_state_cookie(response, STATE_COOKIE, BASE_PATH)

    if identity is not None:
        # Kept for single logout even when provisioning failed: the
        # Keycloak session exists either way.
        response.set_cookie(
            LOGOUT_TOKEN_COOKIE,
            identity.id_token,
            max_age=LOGOUT_TOKEN_MAX_AGE,
            path=BASE_PATH,
            httponly=True,
            secure=True,
            samesite="lax",
        )

    return response


# =============================================================================
# Debug Endpoint
# =============================================================================

@member_router.get("/debug")
async def debug(
    settings: Settings = Depends(get_app_settings),
    ghost_admin: GhostAdminClient = Depends(get_ghost_admin),
):
    """Report non-secret configuration and test Admin API connectivity."""
    if not settings.ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    results: Dict[str, Any] = {
        "config": {
            "blog_url": settings.blog_url,
            "ghost_api_url": settings.ghost_api_url,
            "api_key_present": bool(settings.GHOST_ADMIN_API_KEY),
            "member_callback_url": settings.MEMBER_CALLBACK_URL,
        },
        "tests": {},
    }

    try:
        members = await ghost_admin.browse_members(limit=1)
        results["tests"]["ghost_api"] = {"success": True, "count": len(members)}
    except IntegrationError as e:
        results["tests"]["ghost_api"] = {"success": False, "error": e.code.value}

    return results
