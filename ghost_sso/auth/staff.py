"""
Staff realm routes: Keycloak login for the Ghost admin panel.

Ghost's admin area has no endpoint that redeems a one-time token, so the
callback creates the session the way Ghost would:

1. the Keycloak identity must match an existing staff user with a
   loginable status (staff are never provisioned here)
2. a row is inserted into Ghost's ``sessions`` table
3. its session id is signed with Ghost's ``admin_session_secret`` and set
   as the ``ghost-admin-api-session`` cookie on ``/ghost``

Ghost's cookie parser then unsigns the cookie, finds the row and treats
the browser as signed in. Failures go back to ``/auth/admin/login`` with
an ``error`` code only.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse

from ghost_sso.auth.login_state import (
    check_login_state,
    clear_state_cookie,
    new_login_state,
    set_state_cookie,
)
from ghost_sso.auth.oidc import OIDCClient
from ghost_sso.auth.pages import render_error_page
from ghost_sso.auth.utils import client_ip, generate_object_id, generate_opaque_token, sign_value
from ghost_sso.config import Settings
from ghost_sso.db import GhostGateway
from ghost_sso.dependencies import get_app_settings, get_gateway, get_staff_oidc
from ghost_sso.errors import (
    AuthorizationDenied,
    ConfigurationFault,
    ErrorCode,
    UpstreamAuthError,
    log_callback_failure,
)

logger = logging.getLogger(__name__)

BASE_PATH = "/auth/admin"
ADMIN_PATH = "/ghost"
ADMIN_SESSION_COOKIE = "ghost-admin-api-session"
STATE_COOKIE = "kc_staff_oidc_state"

SESSION_LIFETIME = timedelta(days=180)
SESSION_LIFETIME_MS = int(SESSION_LIFETIME.total_seconds() * 1000)
DEFAULT_USER_AGENT = "Mozilla/5.0"

staff_router = APIRouter(prefix=BASE_PATH, tags=["staff"])


# =============================================================================
# Session Forging
# =============================================================================

def js_iso(dt: datetime) -> str:
    """UTC timestamp in JavaScript ``Date.toISOString()`` form."""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def build_session_data(
    user_id: str,
    origin: str,
    user_agent: str,
    ip: str,
    expires_at: datetime,
) -> Dict[str, Any]:
    """Session payload in the shape Ghost's admin session store writes."""
    return {
        "cookie": {
            "originalMaxAge": SESSION_LIFETIME_MS,
            "expires": js_iso(expires_at),
            "secure": True,
            "httpOnly": True,
            "path": ADMIN_PATH,
            "sameSite": "none",
        },
        "user_id": user_id,
        "origin": origin,
        "user_agent": user_agent,
        "ip": ip,
        "verified": True,
    }


def encode_cookie_value(value: str) -> str:
    """Percent-encode like ``encodeURIComponent``, which Ghost's parser reverses."""
    return quote(value, safe="!~*'()")


# =============================================================================
# Login Endpoint
# =============================================================================

@staff_router.get("/login")
async def login(
    error: Optional[str] = Query(None, description="Error code from a failed callback"),
    oidc: OIDCClient = Depends(get_staff_oidc),
    settings: Settings = Depends(get_app_settings),
):
    """
    Redirect to the staff realm's authorization endpoint.

    With ``?error=<code>`` an error page is shown instead: going straight
    back to Keycloak would bounce an already signed-in user through the
    same failing callback again.
    """
    if error:
        status_code = (
            status.HTTP_403_FORBIDDEN
            if error == ErrorCode.USER_NOT_FOUND.value
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return render_error_page(
            error,
            retry_url=f"{BASE_PATH}/login",
            status_code=status_code,
            title="Staff Sign-in Failed",
        )

    try:
        metadata = await oidc.discover()
    except UpstreamAuthError as e:
        code = log_callback_failure(logger, "staff", e)
        return render_error_page(code.value, retry_url=f"{BASE_PATH}/login", status_code=status.HTTP_502_BAD_GATEWAY)

    state, nonce = new_login_state()
    url = oidc.build_authorization_url(
        metadata,
        redirect_uri=settings.STAFF_CALLBACK_URL,
        state=state,
        nonce=nonce,
    )

    response = RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
    set_state_cookie(response, STATE_COOKIE, BASE_PATH, state, nonce)
    return response


# =============================================================================
# Callback Endpoint
# =============================================================================

@staff_router.get("/callback")
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Keycloak"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    oidc: OIDCClient = Depends(get_staff_oidc),
    gateway: GhostGateway = Depends(get_gateway),
    settings: Settings = Depends(get_app_settings),
):
    """
    Complete a staff login by forging a native Ghost admin session.

    Returns:
        302 to ``/ghost/`` with the signed session cookie, or 302 to the
        staff login page with an ``error`` code
    """
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
            redirect_uri=settings.STAFF_CALLBACK_URL,
            expected_nonce=nonce,
        )

        user = await gateway.find_active_staff_user(identity.email)
        if user is None:
            raise AuthorizationDenied("No loginable staff user for this identity")

        secret = await gateway.fetch_session_secret()
        if not secret:
            raise ConfigurationFault("admin_session_secret not found in database")

        session_id = generate_opaque_token()
        now = datetime.now(timezone.utc)
        expires_at = now + SESSION_LIFETIME
        ip = client_ip(request.headers, request.client.host if request.client else None)

        session_data = build_session_data(
            user_id=user["id"],
            origin=settings.blog_url,
            user_agent=request.headers.get("user-agent") or DEFAULT_USER_AGENT,
            ip=ip,
            expires_at=expires_at,
        )
        await gateway.insert_session(
            session_id,
            user["id"],
            session_data,
            now=now.replace(tzinfo=None),
            row_id=generate_object_id(),
        )

        response = RedirectResponse(url=f"{settings.blog_url}{ADMIN_PATH}/", status_code=status.HTTP_302_FOUND)
        response.set_cookie(
            ADMIN_SESSION_COOKIE,
            encode_cookie_value(sign_value(session_id, secret)),
            max_age=int(SESSION_LIFETIME.total_seconds()),
            expires=expires_at,
            path=ADMIN_PATH,
            httponly=True,
            secure=True,
            samesite="none",
        )
        logger.info("Admin session created", extra={"email": identity.email, "ip": ip})

    except Exception as e:
        error_code = log_callback_failure(logger, "staff", e)
        response = RedirectResponse(
            url=f"{BASE_PATH}/login?{urlencode({'error': error_code.value})}",
            status_code=status.HTTP_302_FOUND,
        )

    clear_state_cookie(response, STATE_COOKIE, BASE_PATH)
    return response
