"""
Credential and token utilities matching Ghost's own generators.

This module handles:
- Record identifiers in Ghost's 24-hex ObjectId format
- UUID v4 values for cross-system linkage columns
- URL-safe opaque tokens (magic-link tokens and admin session ids)
- Cookie signatures in the ``s:<value>.<signature>`` shape that Ghost's
  cookie-parsing middleware unsigns
- Small request/claims helpers shared by both realms
"""

import base64
import hashlib
import hmac
import secrets
import uuid
from typing import Any, Dict, Mapping, Optional


SIGNED_COOKIE_PREFIX = "s:"
LOOPBACK_IP = "127.0.0.1"
DEFAULT_MEMBER_NAME = "Member"


# =============================================================================
# Identifier Generators
# =============================================================================

def generate_object_id() -> str:
    """
    Generate a primary key in Ghost's record-id format.

    Returns:
        24 lowercase hex characters (12 random bytes)
    """
    return secrets.token_bytes(12).hex()


def generate_uuid() -> str:
    """Generate an RFC 4122 version 4 UUID string."""
    return str(uuid.uuid4())


def generate_opaque_token() -> str:
    """
    Generate a URL-safe opaque token.

    Used both as the one-time login token and as the admin session id.
    24 random bytes encode to exactly 32 base64 characters, so there is
    never any padding; ``+`` and ``/`` are swapped for ``-`` and ``_``.

    Returns:
        32-character string over ``[A-Za-z0-9_-]``
    """
    raw = base64.b64encode(secrets.token_bytes(24)).decode("ascii")
    return raw.replace("+", "-").replace("/", "_").rstrip("=")


# =============================================================================
# Cookie Signature
# =============================================================================

def _hmac_b64(value: str, secret: str) -> str:
    digest = hmac.new(
        secret.encode("utf-8"),
        value.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii").rstrip("=")


def sign_value(value: str, secret: str) -> str:
    """
    Sign a value the way Ghost's session cookies are signed.

    HMAC-SHA256 keyed by ``secret``, standard base64 with the padding
    stripped, wrapped as ``s:<value>.<signature>``. Any deviation from
    this shape makes Ghost silently drop the session.

    Args:
        value: Value to sign (the session id)
        secret: Ghost ``admin_session_secret``

    Returns:
        Signed cookie value
    """
    return f"{SIGNED_COOKIE_PREFIX}{value}.{_hmac_b64(value, secret)}"


def unsign_value(signed: str, secret: str) -> Optional[str]:
    """
    Verify a signed cookie value and recover the original value.

    Args:
        signed: Value produced by ``sign_value``
        secret: Secret the value is expected to be signed with

    Returns:
        The original value, or None if the signature does not match
    """
    if not signed or not signed.startswith(SIGNED_COOKIE_PREFIX):
        return None

    body = signed[len(SIGNED_COOKIE_PREFIX):]
    value, sep, signature = body.rpartition(".")
    if not sep:
        return None

    expected = _hmac_b64(value, secret)
    if hmac.compare_digest(expected.encode("ascii"), signature.encode("ascii")):
        return value
    return None


# =============================================================================
# Request / Claims Helpers
# =============================================================================

def client_ip(headers: Mapping[str, str], peer: Optional[str] = None) -> str:
    """
    Best-effort client IP behind a reverse proxy.

    Prefers ``X-Real-IP``, then ``X-Forwarded-For``, then the socket peer.
    When a comma-separated proxy chain is present the first hop wins.

    Args:
        headers: Request headers (case-insensitive mapping)
        peer: Socket peer address, if known

    Returns:
        Client IP, or loopback if nothing is available
    """
    ip = headers.get("x-real-ip") or headers.get("x-forwarded-for") or peer or LOOPBACK_IP
    if "," in ip:
        ip = ip.split(",")[0].strip()
    return ip or LOOPBACK_IP


def get_member_display_name(claims: Dict[str, Any]) -> str:
    """
    Display name for a newly provisioned member.

    Args:
        claims: Verified ID token claims

    Returns:
        The ``name`` claim, else ``given_name``, else a generic label
    """
    name = claims.get("name") or claims.get("given_name")
    if name:
        return name
    return DEFAULT_MEMBER_NAME


def extract_email_from_claims(claims: Dict[str, Any]) -> Optional[str]:
    """
    Email address from ID token claims, exactly as received.

    No case or whitespace normalization is applied: Ghost matches
    members and staff on the stored value.
    """
    email = claims.get("email")
    if isinstance(email, str) and "@" in email:
        return email
    return None
