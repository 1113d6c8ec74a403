"""
Configuration module for the Dezi login gateway.

This module uses Pydantic Settings to load and validate environment variables
for the Dezi OIDC client, session signing, and runtime behaviour.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The Dezi client settings and the session secret are required and have
    no defaults; everything else falls back to development-friendly values.
    """

    # =========================================================================
    # Dezi OIDC Configuration
    # =========================================================================

    DEZI_ISSUER: str = Field(
        ...,
        description="Dezi OIDC issuer URL (discovery lives under /.well-known/openid-configuration)",
        min_length=1,
    )

    DEZI_CLIENT_ID: str = Field(
        ...,
        description="Client ID registered with Dezi",
        min_length=1,
    )

    DEZI_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="Client secret (only for confidential clients; sent with HTTP Basic auth)",
    )

    DEZI_REDIRECT_URI: str = Field(
        ...,
        description="Callback URL registered with Dezi (e.g., https://app.example.nl/auth/dezi/callback)",
        min_length=1,
    )

    DEZI_PRIVATE_KEY: str = Field(
        ...,
        description="PEM-encoded private key used to decrypt the userinfo JWE",
        min_length=1,
    )

    DEZI_SCOPES: str = Field(
        default="openid",
        description="Space or comma separated scopes requested at the authorization endpoint",
    )

    # =========================================================================
    # Session Configuration
    # =========================================================================

    SESSION_SECRET: str = Field(
        ...,
        description="Secret for signing session and PKCE carrier tokens (HS256)",
        min_length=32,
    )

    # =========================================================================
    # Application Configuration
    # =========================================================================

    APP_URL: str = Field(
        default="http://localhost:3000",
        description="Public base URL of this application, used for post-login redirects",
    )

    ENVIRONMENT: str = Field(
        default="development",
        description="Deployment environment (development, test, production)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level",
    )

    # =========================================================================
    # Caching / HTTP Configuration
    # =========================================================================

    DISCOVERY_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the Dezi discovery document in seconds",
        ge=1,
        le=86400,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache the Dezi signing key set in seconds",
        ge=1,
        le=86400,
    )

    HTTP_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for outbound requests to Dezi",
        gt=0,
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
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def scopes_list(self) -> List[str]:
        """
        Parse DEZI_SCOPES into a list, always including ``openid``.

        Returns:
            List of scope strings in configured order.
        """
        scopes = [s for s in self.DEZI_SCOPES.replace(",", " ").split() if s]
        if "openid" not in scopes:
            scopes.insert(0, "openid")
        return scopes

    @property
    def private_key_pem(self) -> str:
        """
        Return the private key PEM with escaped newlines restored.

        Single-line environment variables often carry the PEM as ``\\n``
        sequences.
        """
        return self.DEZI_PRIVATE_KEY.replace("\\n", "\n").strip()

    @property
    def app_url(self) -> str:
        return self.APP_URL.rstrip("/")

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("DEZI_ISSUER", "DEZI_REDIRECT_URI", "APP_URL")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that a URL setting is an absolute http(s) URL.

        Raises:
            ValueError: If the scheme or host is missing
        """
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Expected an absolute http(s) URL, got: {v}")
        return v

    @field_validator("DEZI_PRIVATE_KEY")
    @classmethod
    def validate_private_key(cls, v: str) -> str:
        if "PRIVATE KEY-----" not in v:
            raise ValueError("DEZI_PRIVATE_KEY must be a PEM-encoded private key")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()
        if level not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")
        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    Cached so the environment is read once per process. Also used as a
    FastAPI dependency, which lets tests swap it via ``dependency_overrides``.

    Raises:
        ValidationError: If required environment variables are missing
                        or invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Settings) -> dict:
    """
    Inspect loaded settings and return a status report.

    Called during application startup; warnings are logged, not raised,
    since hard requirements are already enforced by the Settings model.

    Returns:
        Dictionary with warnings and a few non-sensitive values.
    """
    warnings = []

    if not settings.DEZI_CLIENT_SECRET:
        warnings.append("DEZI_CLIENT_SECRET is not set (public client, no HTTP Basic auth)")

    if settings.is_production:
        if not settings.APP_URL.startswith("https://"):
            warnings.append("APP_URL is not https in production (cookies are marked secure)")
        if not settings.DEZI_REDIRECT_URI.startswith("https://"):
            warnings.append("DEZI_REDIRECT_URI is not https in production")

    if urlparse(settings.DEZI_REDIRECT_URI).netloc != urlparse(settings.APP_URL).netloc:
        warnings.append("DEZI_REDIRECT_URI host differs from APP_URL host (cookies may not be sent back)")

    return {
        "warnings": warnings,
        "issuer": settings.DEZI_ISSUER,
        "scopes": settings.scopes_list,
        "environment": settings.ENVIRONMENT,
    }
