"""
Dezi OIDC client operations.

Builds the authorization redirect, exchanges the authorization code, and runs
the userinfo pipeline: fetch JWE -> decrypt -> verify JWS -> nonce -> claims.
Every outbound call goes through the application's shared httpx client.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from dezi_login.auth.errors import TokenExchangeError, UserInfoFetchError
from dezi_login.auth.pkce import CODE_CHALLENGE_METHOD
from dezi_login.auth.utils import (
    JWKSCache,
    decrypt_jwe,
    mask_sensitive_data,
    resolve_signing_keys,
    verify_jws_and_extract_claims,
)
from dezi_login.config import Settings
from dezi_login.models import DeziClaims, DiscoveryDocument, PKCEParams, TokenResponse

logger = logging.getLogger(__name__)


# =============================================================================
# Authorization
# =============================================================================

def build_authorization_url(
    authorization_endpoint: str,
    client_id: str,
    redirect_uri: str,
    pkce: PKCEParams,
    scopes: Iterable[str] = ("openid",),
) -> str:
    """
    Build the authorization URL for redirecting users to Dezi login.
    """
    params = {
        "response_type": "code",
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "scope": " ".join(scopes),
        "state": pkce.state,
        "nonce": pkce.nonce,
        "code_challenge": pkce.code_challenge,
        "code_challenge_method": CODE_CHALLENGE_METHOD,
    }
    separator = "&" if "?" in authorization_endpoint else "?"
    return f"{authorization_endpoint}{separator}{urlencode(params)}"


# =============================================================================
# Token Exchange
# =============================================================================

async def exchange_code_for_tokens(
    http_client: httpx.AsyncClient,
    token_endpoint: str,
    code: str,
    code_verifier: str,
    client_id: str,
    redirect_uri: str,
    client_secret: Optional[str] = None,
) -> TokenResponse:
    """
    Exchange an authorization code for tokens at Dezi's token endpoint.

    Authorization codes are single use, so there is no retry.

    Args:
        http_client: Shared async HTTP client
        token_endpoint: Token endpoint from discovery
        code: Authorization code from the callback
        code_verifier: PKCE verifier stored at login-start
        client_id: Registered client ID
        redirect_uri: Must equal the one sent at login-start
        client_secret: Optional; sent with HTTP Basic auth when set

    Returns:
        Parsed token response

    Raises:
        TokenExchangeError: On transport failure, non-2xx, or invalid body
    """
    payload = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri,
        "client_id": client_id,
        "code_verifier": code_verifier,
    }

    auth = httpx.BasicAuth(client_id, client_secret) if client_secret else None

    try:
        response = await http_client.post(
            token_endpoint,
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            auth=auth,
        )
    except httpx.HTTPError as e:
        raise TokenExchangeError(f"Token exchange failed: {type(e).__name__}") from e

    if not response.is_success:
        raise TokenExchangeError(
            f"Token exchange failed: {response.status_code}",
            status_code=response.status_code,
            body=response.text,
        )

    try:
        return TokenResponse.model_validate(response.json())
    except (ValueError, ValidationError) as e:
        raise TokenExchangeError(
            "Token exchange failed: invalid token response",
            status_code=response.status_code,
        ) from e


# =============================================================================
# UserInfo and JWE/JWS Processing
# =============================================================================

async def fetch_user_info(
    http_client: httpx.AsyncClient,
    userinfo_endpoint: str,
    access_token: str,
) -> str:
    """
    Fetch the encrypted userinfo assertion.

    Returns:
        Response body, a compact JWE

    Raises:
        UserInfoFetchError: On transport failure or non-2xx status
    """
    try:
        response = await http_client.get(
            userinfo_endpoint,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/jwt",
            },
        )
    except httpx.HTTPError as e:
        raise UserInfoFetchError(f"UserInfo request failed: {type(e).__name__}") from e

    if not response.is_success:
        raise UserInfoFetchError(
            f"UserInfo request failed: {response.status_code}",
            status_code=response.status_code,
        )

    return response.text.strip()


async def process_user_info(
    settings: Settings,
    discovery: DiscoveryDocument,
    access_token: str,
    http_client: httpx.AsyncClient,
    jwks_cache: JWKSCache,
    expected_nonce: Optional[str] = None,
) -> DeziClaims:
    """
    Run the complete userinfo pipeline after token exchange.

    1. Fetch userinfo (JWE)
    2. Decrypt JWE to get the inner JWS
    3. Verify the JWS against Dezi's key set and validate claims

    Each stage raises its own error type; see dezi_login.auth.errors.
    """
    encrypted = await fetch_user_info(http_client, discovery.userinfo_endpoint, access_token)

    signed = decrypt_jwe(encrypted, settings.private_key_pem)

    signing_keys = await resolve_signing_keys(signed, discovery.jwks_uri, http_client, jwks_cache)
    claims = verify_jws_and_extract_claims(
        signed,
        signing_keys,
        expected_issuer=settings.DEZI_ISSUER,
        expected_audience=settings.DEZI_CLIENT_ID,
        expected_nonce=expected_nonce,
    )

    logger.info(
        "Verified Dezi userinfo assertion",
        extra={
            "dezi_nummer": mask_sensitive_data(claims.dezi_nummer),
            "rol_code": claims.rol_code,
        },
    )
    return claims
