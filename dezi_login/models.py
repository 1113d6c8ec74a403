"""
Data Models Module

This module defines Pydantic models for the data that moves through the
Dezi login flow.

Models are organized by functional area:
- Protocol models (discovery document, PKCE parameters, token response, claims)
- Session models (application session, PKCE carrier)
- Persistence models (user records, login audit events)
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Protocol Models
# ============================================================================

class DiscoveryDocument(BaseModel):
    """Subset of the OIDC provider metadata used by the login flow."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    issuer: str = Field(..., description="Issuer identifier")
    authorization_endpoint: str = Field(..., description="Authorization endpoint URL")
    token_endpoint: str = Field(..., description="Token endpoint URL")
    userinfo_endpoint: str = Field(..., description="UserInfo endpoint URL (returns a JWE)")
    jwks_uri: str = Field(..., description="URL of the IdP's signing key set")
    response_types_supported: List[str] = Field(default_factory=list)
    subject_types_supported: List[str] = Field(default_factory=list)
    id_token_signing_alg_values_supported: List[str] = Field(default_factory=list)


class PKCEParams(BaseModel):
    """Per-attempt PKCE and anti-CSRF values."""

    model_config = ConfigDict(frozen=True)

    code_verifier: str
    code_challenge: str
    state: str
    nonce: str


class TokenResponse(BaseModel):
    """Token endpoint response. Only the access token is ever used."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., min_length=1)
    token_type: str = Field(default="Bearer")
    expires_in: Optional[int] = None
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    scope: Optional[str] = None


class DeziClaims(BaseModel):
    """Verified claims from the Dezi userinfo assertion."""

    model_config = ConfigDict(extra="allow")

    dezi_nummer: str = Field(..., description="Stable external identifier of the professional")
    abonnee_nummer: str = Field(..., description="Subscriber (organisation account) number")
    rol_code: str = Field(..., description="Role code")
    rol_naam: str = Field(..., description="Role name")

    sub: Optional[str] = None
    iss: Optional[str] = None
    aud: Optional[Union[str, List[str]]] = None
    # NumericDate values may be fractional
    exp: Optional[Union[int, float]] = None
    iat: Optional[Union[int, float]] = None
    nbf: Optional[Union[int, float]] = None
    nonce: Optional[str] = None


# ============================================================================
# Session Models
# ============================================================================

class SessionData(BaseModel):
    """Application session carried in the signed session cookie."""

    user_id: str
    external_subject_id: str
    subscriber_id: str
    role_code: str
    role_name: str
    display_name: Optional[str] = None
    created_at: int = Field(..., description="Epoch seconds")
    expires_at: int = Field(..., description="Epoch seconds")


class PKCESessionData(BaseModel):
    """PKCE carrier stored across the redirect to Dezi."""

    code_verifier: str
    state: str
    nonce: str
    created_at: int = Field(..., description="Epoch seconds")


# ============================================================================
# Persistence Models
# ============================================================================

class UserRecord(BaseModel):
    """User known to the application, keyed by Dezi number."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    dezi_nummer: str
    display_name: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class LoginEvent(BaseModel):
    """Audit row written for every successful login."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    abonnee_nummer: str
    dezi_role_code: str
    dezi_role_name: str
    ip_address: str = "unknown"
    user_agent: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# Response Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Landing payload echoing an error redirect."""

    error: Optional[str] = Field(None, description="Error category")
    message: Optional[str] = Field(None, description="Human-readable error message")

