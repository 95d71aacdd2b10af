"""
Configuration module for the Ghost SSO bridge.

This module uses Pydantic Settings to load and validate environment variables
for the two Keycloak realms (members and staff), the Ghost site and Admin API,
the shared Ghost database, and server/logging behaviour.

Environment variables are loaded from .env file or system environment.
"""

import re
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ADMIN_API_KEY_PATTERN = re.compile(r"^[0-9a-f]+:[0-9a-f]+$", re.IGNORECASE)


class RealmConfig(BaseModel):
    """OIDC client registration for one realm."""

    issuer: str
    client_id: str
    client_secret: str
    callback_url: str


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Secrets (client secrets, Admin API key, database password) are only
    read here and handed to the components that need them; they are never
    logged.
    """

    # =========================================================================
    # Ghost Site
    # =========================================================================

    BLOG_PUBLIC_URL: str = Field(
        ...,
        description="Public Ghost URL used for browser redirects (e.g., https://blog.example.com)",
        min_length=1,
    )

    GHOST_INTERNAL_URL: Optional[str] = Field(
        None,
        description="Internal Ghost URL for Admin API calls (defaults to BLOG_PUBLIC_URL)",
    )

    GHOST_ADMIN_API_KEY: str = Field(
        ...,
        description="Ghost Admin API key in '<id>:<hex secret>' format",
    )

    # =========================================================================
    # Member Realm (public subscribers)
    # =========================================================================

    MEMBER_KEYCLOAK_ISSUER: str = Field(..., description="Issuer URL of the member realm")
    MEMBER_CLIENT_ID: str = Field(..., description="OIDC client id for the member realm")
    MEMBER_CLIENT_SECRET: str = Field(..., description="OIDC client secret for the member realm")
    MEMBER_CALLBACK_URL: str = Field(..., description="Registered redirect URI, e.g. https://blog.example.com/auth/member/callback")

    # =========================================================================
    # Staff Realm (Ghost admin panel)
    # =========================================================================

    STAFF_KEYCLOAK_ISSUER: str = Field(..., description="Issuer URL of the staff realm")
    STAFF_CLIENT_ID: str = Field(..., description="OIDC client id for the staff realm")
    STAFF_CLIENT_SECRET: str = Field(..., description="OIDC client secret for the staff realm")
    STAFF_CALLBACK_URL: str = Field(..., description="Registered redirect URI, e.g. https://blog.example.com/auth/admin/callback")

    # =========================================================================
    # Ghost Database (shared with Ghost, read/write)
    # =========================================================================

    DB_HOST: str = Field(default="ghost-db")
    DB_PORT: int = Field(default=3306, ge=1, le=65535)
    DB_USER: str = Field(default="ghost")
    DB_PASSWORD: Optional[str] = Field(None)
    DB_NAME: str = Field(default="ghost")

    DB_POOL_SIZE: int = Field(
        default=10,
        description="Maximum pooled connections to the Ghost database",
        ge=1,
        le=100,
    )

    DB_POOL_TIMEOUT_SECONDS: int = Field(
        default=30,
        description="Seconds to wait for a free pooled connection",
        ge=1,
    )

    # =========================================================================
    # Server / Logging
    # =========================================================================

    HOST: str = Field(default="0.0.0.0")
    PORT: int = Field(default=3000, ge=1, le=65535)

    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(
        default="json",
        description="'json' for log aggregators, 'text' for local development",
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for calls to Keycloak and the Ghost Admin API",
        gt=0,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache realm JWKS keys in seconds",
        ge=60,
        le=86400,
    )

    ENABLE_DEBUG_ENDPOINTS: bool = Field(
        default=False,
        description="Expose GET /auth/member/debug",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def blog_url(self) -> str:
        """Public Ghost URL without trailing slash."""
        return self.BLOG_PUBLIC_URL.rstrip("/")

    @property
    def ghost_api_url(self) -> str:
        """Base URL for Admin API calls without trailing slash."""
        return (self.GHOST_INTERNAL_URL or self.BLOG_PUBLIC_URL).rstrip("/")

    @property
    def admin_key_id(self) -> str:
        return self.GHOST_ADMIN_API_KEY.split(":", 1)[0]

    @property
    def admin_key_secret(self) -> str:
        return self.GHOST_ADMIN_API_KEY.split(":", 1)[1]

    @property
    def member_realm(self) -> RealmConfig:
        return RealmConfig(
            issuer=self.MEMBER_KEYCLOAK_ISSUER,
            client_id=self.MEMBER_CLIENT_ID,
            client_secret=self.MEMBER_CLIENT_SECRET,
            callback_url=self.MEMBER_CALLBACK_URL,
        )

    @property
    def staff_realm(self) -> RealmConfig:
        return RealmConfig(
            issuer=self.STAFF_KEYCLOAK_ISSUER,
            client_id=self.STAFF_CLIENT_ID,
            client_secret=self.STAFF_CLIENT_SECRET,
            callback_url=self.STAFF_CALLBACK_URL,
        )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("GHOST_ADMIN_API_KEY")
    @classmethod
    def validate_admin_api_key(cls, v: str) -> str:
        """
        Validate the Admin API key is '<id>:<hex secret>'.

        The secret half is hex-decoded to sign Admin API tokens, so a
        malformed key would otherwise only fail at the first member login.

        Raises:
            ValueError: If the key does not match the expected format
        """
        if not ADMIN_API_KEY_PATTERN.match(v or ""):
            # Do not echo the value: it is a credential.
            raise ValueError("GHOST_ADMIN_API_KEY must be in format id:secret (hex)")
        if len(v.split(":", 1)[1]) % 2:
            raise ValueError("GHOST_ADMIN_API_KEY secret must be an even-length hex string")
        return v

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("json", "text"):
            raise ValueError(f"LOG_FORMAT must be 'json' or 'text', got: {v}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v = v.strip().upper()
        if v not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return v


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()
