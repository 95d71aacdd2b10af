"""
Data Models Module

This module defines Pydantic models shared across the bridge:
- Identity models (discovered provider metadata, identity claims)
- Health probe responses
- Error responses
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Identity Models
# ============================================================================

class ProviderMetadata(BaseModel):
    """Subset of an OIDC discovery document the bridge relies on."""
    issuer: str = Field(..., description="Issuer identifier")
    authorization_endpoint: str = Field(..., description="Authorization endpoint URL")
    token_endpoint: str = Field(..., description="Token endpoint URL")
    jwks_uri: str = Field(..., description="JWKS endpoint URL")
    end_session_endpoint: Optional[str] = Field(None, description="RP-initiated logout endpoint, if offered")


class IdentityClaims(BaseModel):
    """Identity produced by one successful code exchange. Lives for one request."""
    email: str = Field(..., description="Email claim exactly as received")
    name: Optional[str] = Field(None, description="Display name claim")
    subject: str = Field(..., description="Subject identifier (sub)")
    id_token: str = Field(..., description="Raw ID token, kept for single logout")
    raw: Dict[str, Any] = Field(default_factory=dict, description="All verified claims")


# ============================================================================
# Health Check Models
# ============================================================================

class HealthResponse(BaseModel):
    """Liveness probe response."""
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    uptime: float = Field(..., description="Seconds since the process started")


class ReadinessResponse(BaseModel):
    """Readiness probe response."""
    status: str = Field(..., description="'ready' or 'not ready'")
    timestamp: datetime = Field(default_factory=_utcnow, description="Check timestamp")
    checks: Dict[str, bool] = Field(default_factory=dict, description="Dependency check results")
    reason: Optional[str] = Field(None, description="Why the service is not ready")


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Generic human-readable message")
