"""
Ghost Admin API client (members only).

Ghost answers Admin API calls only when the request looks like it arrived on
its public URL, so every request presents the public host and claims HTTPS,
and redirects are never followed: a redirect means the Host spoofing did not
work, which is an integration fault rather than an answer.

Authentication uses Ghost's short-lived Admin API JWT: HS256, keyed by the
hex-decoded secret half of the Admin API key, ``kid`` set to the key id.
"""

import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import httpx
import jwt

from ghost_sso.errors import IntegrationError

logger = logging.getLogger(__name__)

ADMIN_TOKEN_AUDIENCE = "/admin/"
ADMIN_TOKEN_TTL_SECONDS = 300


def nql_quote(value: str) -> str:
    """Quote a value for a Ghost NQL filter expression."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class GhostAdminClient:
    """
    Minimal Ghost Admin API client for member lookup and provisioning.

    Args:
        base_url: URL Ghost is reachable on from this service
        public_url: Ghost's configured public URL (drives the Host header)
        key_id: Admin API key id
        key_secret: Admin API key secret (hex)
        http_client: Shared httpx client
    """

    def __init__(
        self,
        base_url: str,
        public_url: str,
        key_id: str,
        key_secret: str,
        http_client: httpx.AsyncClient,
    ):
        self.base_url = base_url.rstrip("/")
        self.public_host = urlparse(public_url).netloc
        self._key_id = key_id
        self._key_secret = bytes.fromhex(key_secret)
        self._http = http_client

    def generate_token(self) -> str:
        """Mint a 5-minute Admin API token."""
        iat = int(time.time())
        return jwt.encode(
            {"iat": iat, "exp": iat + ADMIN_TOKEN_TTL_SECONDS, "aud": ADMIN_TOKEN_AUDIENCE},
            self._key_secret,
            algorithm="HS256",
            headers={"kid": self._key_id},
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}/ghost/api/admin{endpoint}"
        headers = {
            "Authorization": f"Ghost {self.generate_token()}",
            "Accept": "application/json",
            "Host": self.public_host,
            "X-Forwarded-Proto": "https",
            "X-Forwarded-Host": self.public_host,
        }

        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json_body,
                headers=headers,
                follow_redirects=False,
            )
        except httpx.HTTPError as e:
            logger.error("Ghost Admin API unreachable", extra={"endpoint": endpoint, "error_type": type(e).__name__})
            raise IntegrationError(f"Ghost API unreachable: {type(e).__name__}") from e

        logger.debug("Ghost Admin API response", extra={"endpoint": endpoint, "status": response.status_code})

        if 300 <= response.status_code < 400:
            logger.error(
                "Ghost redirected instead of responding",
                extra={"endpoint": endpoint, "location": response.headers.get("location")},
            )
            raise IntegrationError("Ghost redirected instead of responding")

        if not response.is_success:
            raise IntegrationError(f"Ghost API error {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise IntegrationError("Ghost returned a non-JSON response") from e

        if not isinstance(data, dict):
            raise IntegrationError("Ghost returned an unexpected response shape")
        return data

    # =========================================================================
    # Members
    # =========================================================================

    async def browse_members(self, **params: Any) -> List[Dict[str, Any]]:
        """
        List members matching the given browse parameters.

        Raises:
            IntegrationError: If Ghost fails to answer or ``members`` is not a list
        """
        data = await self._request("GET", "/members/", params=params or None)
        members = data.get("members")
        if not isinstance(members, list):
            raise IntegrationError("Ghost API returned invalid response")
        return members

    async def find_members_by_email(self, email: str) -> List[Dict[str, Any]]:
        """Members whose email equals ``email`` exactly (zero or more)."""
        return await self.browse_members(filter=f"email:{nql_quote(email)}")

    async def create_member(self, email: str, name: str) -> Dict[str, Any]:
        """
        Create a member.

        Returns:
            The created member record

        Raises:
            IntegrationError: If Ghost rejects the request or answers oddly
        """
        data = await self._request(
            "POST",
            "/members/",
            json_body={"members": [{"email": email, "name": name}]},
        )
        members = data.get("members")
        if not isinstance(members, list) or not members:
            raise IntegrationError("Ghost API returned no created member")
        return members[0]
