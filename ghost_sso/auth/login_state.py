"""
Per-login OIDC ``state`` and ``nonce`` kept in a short-lived cookie.

``/login`` stores both values as ``<state>.<nonce>`` in an HttpOnly cookie
scoped to the realm's base path; ``/callback`` requires the returned state
to match and hands the nonce to ID token verification. Callbacks clear the
cookie on every outcome so a value is never accepted twice.
"""

import hmac
from typing import Optional, Tuple

from fastapi import Request, Response

from ghost_sso.auth.utils import generate_opaque_token
from ghost_sso.errors import UpstreamAuthError

STATE_COOKIE_MAX_AGE = 600


def new_login_state() -> Tuple[str, str]:
    """Fresh (state, nonce) pair."""
    return generate_opaque_token(), generate_opaque_token()


def set_state_cookie(response: Response, cookie_name: str, path: str, state: str, nonce: str) -> None:
    response.set_cookie(
        cookie_name,
        f"{state}.{nonce}",
        max_age=STATE_COOKIE_MAX_AGE,
        path=path,
        httponly=True,
        secure=True,
        samesite="lax",
    )


def clear_state_cookie(response: Response, cookie_name: str, path: str) -> None:
    response.delete_cookie(cookie_name, path=path, httponly=True, secure=True, samesite="lax")


def check_login_state(request: Request, cookie_name: str, received_state: Optional[str]) -> str:
    """
    Check the callback's state against the login cookie.

    Returns:
        The nonce issued with the matching authorization request

    Raises:
        UpstreamAuthError: If the cookie is missing or the state differs
    """
    stored = request.cookies.get(cookie_name) or ""
    state, sep, nonce = stored.partition(".")
    if not sep or not state or not nonce:
        raise UpstreamAuthError("Missing login state")
    if not received_state or not hmac.compare_digest(state.encode(), received_state.encode()):
        raise UpstreamAuthError("State mismatch")
    return nonce
