"""
OIDC client for one Keycloak realm.

This module handles:
- Discovering the realm's metadata from its issuer URL
- Building authorization (and Keycloak registration) URLs
- Exchanging an authorization code for tokens
- Fetching and caching the realm JWKS and verifying ID tokens

Every failure talking to the provider surfaces as ``UpstreamAuthError``;
authorization codes are single-use, so nothing here is retried.
"""

import logging
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from jose import jwk, jwt
from jose.exceptions import JOSEError

from ghost_sso.auth.utils import extract_email_from_claims
from ghost_sso.config import RealmConfig
from ghost_sso.errors import UpstreamAuthError
from ghost_sso.models import IdentityClaims, ProviderMetadata

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "openid email profile"
ALLOWED_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "ES256"]


class OIDCClient:
    """
    Confidential OIDC client bound to one realm.

    Args:
        realm: Issuer, client credentials and callback URL of the realm
        http_client: Shared httpx client (owns timeouts and connection reuse)
        jwks_cache_seconds: How long fetched signing keys are trusted
    """

    def __init__(
        self,
        realm: RealmConfig,
        http_client: httpx.AsyncClient,
        jwks_cache_seconds: int = 3600,
    ):
        self.realm = realm
        self._http = http_client
        self._jwks_cache_seconds = jwks_cache_seconds
        self._metadata: Optional[ProviderMetadata] = None
        self._jwks: Optional[Dict[str, Any]] = None
        self._jwks_time: float = 0.0

    @property
    def client_id(self) -> str:
        return self.realm.client_id

    # =========================================================================
    # Discovery
    # =========================================================================

    async def discover(self, force_refresh: bool = False) -> ProviderMetadata:
        """
        Fetch (once) the realm's OpenID configuration.

        Returns:
            Discovered provider metadata

        Raises:
            UpstreamAuthError: If the discovery document is unreachable or invalid
        """
        if self._metadata is not None and not force_refresh:
            return self._metadata

        url = f"{self.realm.issuer.rstrip('/')}/.well-known/openid-configuration"
        try:
            response = await self._http.get(url)
            response.raise_for_status()
            metadata = ProviderMetadata.model_validate(response.json())
        except httpx.HTTPError as e:
            raise UpstreamAuthError(f"OIDC discovery failed: {type(e).__name__}") from e
        except ValueError as e:
            raise UpstreamAuthError("Invalid OIDC discovery document") from e

        self._metadata = metadata
        logger.info("Discovered OIDC issuer", extra={"issuer": metadata.issuer})
        return metadata

    # =========================================================================
    # Authorization Request
    # =========================================================================

    def build_authorization_url(
        self,
        metadata: ProviderMetadata,
        *,
        redirect_uri: str,
        scope: str = DEFAULT_SCOPE,
        state: Optional[str] = None,
        nonce: Optional[str] = None,
        authorization_endpoint: Optional[str] = None,
    ) -> str:
        """
        Build the URL the browser is sent to for authentication.

        Args:
            metadata: Discovered provider metadata
            redirect_uri: Registered callback URL of this realm
            scope: Requested scopes
            state: CSRF state echoed back on the callback
            nonce: Value the ID token must carry
            authorization_endpoint: Override of the discovered endpoint
                (used for Keycloak's registration page)
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": scope,
        }
        if state:
            params["state"] = state
        if nonce:
            params["nonce"] = nonce

        endpoint = authorization_endpoint or metadata.authorization_endpoint
        return f"{endpoint}?{urlencode(params)}"

    def build_end_session_url(
        self,
        metadata: ProviderMetadata,
        *,
        post_logout_redirect_uri: str,
        id_token_hint: Optional[str] = None,
    ) -> Optional[str]:
        """
        RP-initiated logout URL, or None when the provider offers none.

        With ``id_token_hint`` Keycloak ends the session without asking the
        user to confirm.
        """
        if not metadata.end_session_endpoint:
            return None

        params = {
            "client_id": self.client_id,
            "post_logout_redirect_uri": post_logout_redirect_uri,
        }
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        return f"{metadata.end_session_endpoint}?{urlencode(params)}"

    # =========================================================================
    # Code Exchange
    # =========================================================================

    async def exchange_code(
        self,
        metadata: ProviderMetadata,
        *,
        code: str,
        redirect_uri: str,
        expected_nonce: Optional[str] = None,
    ) -> IdentityClaims:
        """
        Exchange an authorization code for verified identity claims.

        Args:
            metadata: Discovered provider metadata
            code: Authorization code from the callback
            redirect_uri: Redirect URI used in the authorization request
            expected_nonce: Nonce sent in the authorization request

        Returns:
            Verified identity claims

        Raises:
            UpstreamAuthError: If the exchange or ID token verification fails
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
            "client_id": self.client_id,
            "client_secret": self.realm.client_secret,
        }

        try:
            response = await self._http.post(
                metadata.token_endpoint,
                data=payload,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise UpstreamAuthError(f"Token exchange failed: {type(e).__name__}") from e

        if not response.is_success:
            # Provider error bodies can echo the code; keep only the status.
            raise UpstreamAuthError(f"Token exchange failed (status={response.status_code})")

        try:
            token_data = response.json()
        except ValueError as e:
            raise UpstreamAuthError("Invalid token response") from e

        id_token = token_data.get("id_token") if isinstance(token_data, dict) else None
        if not id_token:
            raise UpstreamAuthError("Token response missing id_token")

        claims = await self.verify_id_token(
            metadata,
            id_token,
            access_token=token_data.get("access_token"),
            expected_nonce=expected_nonce,
        )

        email = extract_email_from_claims(claims)
        if not email:
            raise UpstreamAuthError("ID token has no email claim")

        return IdentityClaims(
            email=email,
            name=claims.get("name"),
            subject=str(claims.get("sub") or ""),
            id_token=id_token,
            raw=claims,
        )

    # =========================================================================
    # JWKS / ID Token Verification
    # =========================================================================

    async def fetch_jwks(self, metadata: ProviderMetadata, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Fetch the realm JWKS with caching.

        Raises:
            UpstreamAuthError: If the JWKS endpoint is unreachable or invalid
        """
        now = time.time()
        if not force_refresh and self._jwks and (now - self._jwks_time) < self._jwks_cache_seconds:
            return self._jwks

        try:
            response = await self._http.get(metadata.jwks_uri)
            response.raise_for_status()
            jwks_data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamAuthError(f"JWKS fetch failed: {type(e).__name__}") from e
        except ValueError as e:
            raise UpstreamAuthError("Invalid JWKS response") from e

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise UpstreamAuthError("Invalid JWKS response: missing 'keys' field")

        self._jwks = jwks_data
        self._jwks_time = now
        return jwks_data

    @staticmethod
    def get_signing_key(token: str, jwks: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Key from the JWKS matching the token's ``kid``.

        Raises:
            UpstreamAuthError: If the token header is malformed or has no kid
        """
        try:
            header = jwt.get_unverified_header(token)
        except JOSEError as e:
            raise UpstreamAuthError("Malformed ID token header") from e

        kid = header.get("kid")
        if not kid:
            raise UpstreamAuthError("ID token header missing 'kid'")

        for key in jwks.get("keys", []):
            if isinstance(key, dict) and key.get("kid") == kid:
                return key
        return None

    async def verify_id_token(
        self,
        metadata: ProviderMetadata,
        id_token: str,
        access_token: Optional[str] = None,
        expected_nonce: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Verify signature, issuer, audience, expiry and nonce of an ID token.

        Returns:
            Verified claims

        Raises:
            UpstreamAuthError: If any check fails
        """
        jwks = await self.fetch_jwks(metadata)
        signing_key = self.get_signing_key(id_token, jwks)
        if not signing_key:
            # Keys may have rotated since the last fetch.
            jwks = await self.fetch_jwks(metadata, force_refresh=True)
            signing_key = self.get_signing_key(id_token, jwks)
            if not signing_key:
                raise UpstreamAuthError("Unable to find matching signing key in JWKS")

        algorithm = jwt.get_unverified_header(id_token).get("alg", "RS256")
        if algorithm not in ALLOWED_ALGORITHMS:
            raise UpstreamAuthError(f"Unsupported ID token algorithm: {algorithm}")

        try:
            public_key = jwk.construct(signing_key, algorithm=algorithm)
            claims = jwt.decode(
                id_token,
                public_key.to_pem().decode("utf-8"),
                algorithms=[algorithm],
                audience=self.client_id,
                issuer=metadata.issuer,
                access_token=access_token,
                options={
                    "verify_at_hash": False,
                    "leeway": 10,
                },
            )
        except JOSEError as e:
            raise UpstreamAuthError(f"ID token verification failed: {type(e).__name__}") from e

        if expected_nonce is not None and claims.get("nonce") != expected_nonce:
            raise UpstreamAuthError("Nonce mismatch")

        return claims
