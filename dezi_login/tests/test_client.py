"""
Tests for the authorization URL builder, token exchange and userinfo fetch
"""

import base64
from unittest.mock import AsyncMock

import httpx
import pytest

from conftest import CLIENT_ID, ISSUER, REDIRECT_URI, query_params
from dezi_login.auth.client import (
    build_authorization_url,
    exchange_code_for_tokens,
    fetch_user_info,
)
from dezi_login.auth.errors import TokenExchangeError, UserInfoFetchError
from dezi_login.auth.pkce import generate_pkce_params


TOKEN_ENDPOINT = f"{ISSUER}/token"
USERINFO_ENDPOINT = f"{ISSUER}/userinfo"


class TestAuthorizationURL:
    """Test authorization URL construction"""

    def test_contains_all_parameters(self):
        pkce = generate_pkce_params()

        url = build_authorization_url(f"{ISSUER}/authorize", CLIENT_ID, REDIRECT_URI, pkce)
        params = query_params(url)

        assert url.startswith(f"{ISSUER}/authorize?")
        assert params == {
            "response_type": "code",
            "client_id": CLIENT_ID,
            "redirect_uri": REDIRECT_URI,
            "scope": "openid",
            "state": pkce.state,
            "nonce": pkce.nonce,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": "S256",
        }

    def test_redirect_uri_is_percent_encoded(self):
        pkce = generate_pkce_params()

        url = build_authorization_url(f"{ISSUER}/authorize", CLIENT_ID, REDIRECT_URI, pkce)

        assert "redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Fauth%2Fdezi%2Fcallback" in url

    def test_endpoint_with_existing_query(self):
        pkce = generate_pkce_params()

        url = build_authorization_url(f"{ISSUER}/authorize?ui_locales=nl", CLIENT_ID, REDIRECT_URI, pkce)

        assert "?ui_locales=nl&response_type=code" in url

    def test_multiple_scopes_are_space_joined(self):
        pkce = generate_pkce_params()

        url = build_authorization_url(
            f"{ISSUER}/authorize", CLIENT_ID, REDIRECT_URI, pkce, scopes=["openid", "profile"]
        )

        assert query_params(url)["scope"] == "openid profile"


class TestTokenExchange:
    """Test the authorization code exchange"""

    @pytest.mark.asyncio
    async def test_successful_exchange(self):
        client = AsyncMock()
        client.post.return_value = httpx.Response(
            200, json={"access_token": "at-1", "token_type": "Bearer", "expires_in": 300}
        )

        tokens = await exchange_code_for_tokens(
            client, TOKEN_ENDPOINT, "code-1", "verifier-1", CLIENT_ID, REDIRECT_URI
        )

        assert tokens.access_token == "at-1"
        args, kwargs = client.post.call_args
        assert args[0] == TOKEN_ENDPOINT
        assert kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "code-1",
            "redirect_uri": REDIRECT_URI,
            "client_id": CLIENT_ID,
            "code_verifier": "verifier-1",
        }
        assert kwargs["headers"]["Content-Type"] == "application/x-www-form-urlencoded"
        assert kwargs["auth"] is None

    @pytest.mark.asyncio
    async def test_client_secret_uses_basic_auth(self):
        client = AsyncMock()
        client.post.return_value = httpx.Response(200, json={"access_token": "at-1"})

        await exchange_code_for_tokens(
            client, TOKEN_ENDPOINT, "code-1", "verifier-1", CLIENT_ID, REDIRECT_URI,
            client_secret="s3cret",
        )

        auth = client.post.call_args.kwargs["auth"]
        assert isinstance(auth, httpx.BasicAuth)
        request = next(auth.auth_flow(httpx.Request("POST", TOKEN_ENDPOINT)))
        expected = base64.b64encode(f"{CLIENT_ID}:s3cret".encode()).decode()
        assert request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_error_status_raises_with_body(self):
        client = AsyncMock()
        client.post.return_value = httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(TokenExchangeError) as exc_info:
            await exchange_code_for_tokens(
                client, TOKEN_ENDPOINT, "used-code", "verifier-1", CLIENT_ID, REDIRECT_URI
            )

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in exc_info.value.body
        assert exc_info.value.category == "token_error"

    @pytest.mark.asyncio
    async def test_missing_access_token_raises(self):
        client = AsyncMock()
        client.post.return_value = httpx.Response(200, json={"token_type": "Bearer"})

        with pytest.raises(TokenExchangeError):
            await exchange_code_for_tokens(
                client, TOKEN_ENDPOINT, "code-1", "verifier-1", CLIENT_ID, REDIRECT_URI
            )

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        client = AsyncMock()
        client.post.side_effect = httpx.ReadTimeout("timed out")

        with pytest.raises(TokenExchangeError):
            await exchange_code_for_tokens(
                client, TOKEN_ENDPOINT, "code-1", "verifier-1", CLIENT_ID, REDIRECT_URI
            )


class TestFetchUserInfo:
    """Test the userinfo request"""

    @pytest.mark.asyncio
    async def test_sends_bearer_token_and_returns_body(self):
        client = AsyncMock()
        client.get.return_value = httpx.Response(200, text="a.b.c.d.e\n")

        body = await fetch_user_info(client, USERINFO_ENDPOINT, "at-1")

        assert body == "a.b.c.d.e"
        headers = client.get.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer at-1"
        assert headers["Accept"] == "application/jwt"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = AsyncMock()
        client.get.return_value = httpx.Response(401, text="invalid_token")

        with pytest.raises(UserInfoFetchError) as exc_info:
            await fetch_user_info(client, USERINFO_ENDPOINT, "expired")

        assert exc_info.value.status_code == 401
        assert exc_info.value.category == "userinfo_error"
