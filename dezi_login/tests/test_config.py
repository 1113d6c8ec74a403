"""
Tests for settings loading and validation
"""

import pytest
from pydantic import ValidationError

from conftest import (
    APP_URL,
    CLIENT_ID,
    ENCRYPTION_PRIVATE_KEY,
    ISSUER,
    REDIRECT_URI,
    SESSION_SECRET,
)
from dezi_login.config import Settings, validate_configuration


def build_settings(**overrides) -> Settings:
    values = {
        "DEZI_ISSUER": ISSUER,
        "DEZI_CLIENT_ID": CLIENT_ID,
        "DEZI_REDIRECT_URI": REDIRECT_URI,
        "DEZI_PRIVATE_KEY": ENCRYPTION_PRIVATE_KEY,
        "SESSION_SECRET": SESSION_SECRET,
        "APP_URL": APP_URL,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestSettings:
    """Test Settings validation and computed properties"""

    def test_defaults(self):
        settings = build_settings()

        assert settings.ENVIRONMENT == "development"
        assert settings.LOG_LEVEL == "INFO"
        assert settings.DISCOVERY_CACHE_SECONDS == 3600
        assert settings.DEZI_CLIENT_SECRET is None
        assert settings.is_production is False

    def test_short_session_secret_rejected(self):
        with pytest.raises(ValidationError):
            build_settings(SESSION_SECRET="short")

    def test_issuer_must_be_http_url(self):
        with pytest.raises(ValidationError):
            build_settings(DEZI_ISSUER="dezi.example.nl")

    def test_private_key_must_be_pem(self):
        with pytest.raises(ValidationError):
            build_settings(DEZI_PRIVATE_KEY="not-a-key")

    def test_log_level_normalised(self):
        assert build_settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

        with pytest.raises(ValidationError):
            build_settings(LOG_LEVEL="LOUD")

    def test_scopes_always_include_openid(self):
        assert build_settings(DEZI_SCOPES="profile,email").scopes_list == ["openid", "profile", "email"]
        assert build_settings(DEZI_SCOPES="openid profile").scopes_list == ["openid", "profile"]

    def test_escaped_newlines_in_private_key(self):
        escaped = ENCRYPTION_PRIVATE_KEY.replace("\n", "\\n")

        settings = build_settings(DEZI_PRIVATE_KEY=escaped)

        assert settings.private_key_pem == ENCRYPTION_PRIVATE_KEY.strip()

    def test_app_url_trailing_slash_removed(self):
        assert build_settings(APP_URL="http://localhost:3000/").app_url == "http://localhost:3000"

    def test_loaded_from_environment(self, monkeypatch):
        monkeypatch.setenv("DEZI_ISSUER", ISSUER)
        monkeypatch.setenv("DEZI_CLIENT_ID", "env-client")
        monkeypatch.setenv("DEZI_REDIRECT_URI", REDIRECT_URI)
        monkeypatch.setenv("DEZI_PRIVATE_KEY", ENCRYPTION_PRIVATE_KEY)
        monkeypatch.setenv("SESSION_SECRET", SESSION_SECRET)
        monkeypatch.setenv("ENVIRONMENT", "production")

        settings = Settings(_env_file=None)

        assert settings.DEZI_CLIENT_ID == "env-client"
        assert settings.is_production is True


class TestValidateConfiguration:
    """Test the startup configuration report"""

    def test_public_client_warning(self):
        report = validate_configuration(build_settings())

        assert any("DEZI_CLIENT_SECRET" in w for w in report["warnings"])
        assert report["issuer"] == ISSUER
        assert report["scopes"] == ["openid"]

    def test_production_http_warnings(self):
        report = validate_configuration(build_settings(ENVIRONMENT="production", DEZI_CLIENT_SECRET="s"))

        assert any("APP_URL" in w for w in report["warnings"])
        assert any("DEZI_REDIRECT_URI is not https" in w for w in report["warnings"])

    def test_clean_configuration(self):
        report = validate_configuration(build_settings(DEZI_CLIENT_SECRET="s"))

        assert report["warnings"] == []
