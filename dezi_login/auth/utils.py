"""
Cryptographic utilities for the Dezi userinfo assertion.

This module handles:
- Fetching and caching the Dezi JWKS (JSON Web Key Set)
- Decrypting the userinfo JWE with our private key
- Verifying the inner JWS signature and standard claims
- Nonce and required-claim checks
- Masking identifiers for logs and display

SECURITY: never log the private key, the raw JWE, or the decrypted JWS.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import httpx
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwe, jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError
from pydantic import ValidationError

from dezi_login.auth.errors import (
    DecryptionError,
    MissingClaimError,
    ReplayError,
    VerificationError,
)
from dezi_login.models import DeziClaims, SessionData

logger = logging.getLogger(__name__)


JWE_KEY_ALGORITHM = "RSA-OAEP-256"
SIGNING_ALGORITHMS = [
    "RS256", "RS384", "RS512",
    "PS256", "PS384", "PS512",
    "ES256", "ES384", "ES512",
]
CLOCK_SKEW_SECONDS = 60
REQUIRED_CLAIMS = ("dezi_nummer", "abonnee_nummer", "rol_code", "rol_naam")

# JWS alg prefix -> JWK kty
KEY_TYPES = {"RS": "RSA", "PS": "RSA", "ES": "EC"}


# =============================================================================
# JWKS Cache
# =============================================================================

class JWKSCache:
    """
    Simple TTL cache for the IdP signing key set, keyed by ``jwks_uri``.

    A token whose ``kid`` is not in the cached set triggers one forced
    refresh before the key is declared unknown.
    """

    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[Dict[str, Any], float]] = {}

    async def get(
        self,
        jwks_uri: str,
        http_client: httpx.AsyncClient,
        force_refresh: bool = False,
    ) -> Dict[str, Any]:
        """
        Fetch JWKS from Dezi with caching.

        Raises:
            VerificationError: If the key set cannot be fetched or is malformed
        """
        entry = self._entries.get(jwks_uri)
        if not force_refresh and entry and (self.clock() - entry[1]) < self.ttl_seconds:
            return entry[0]

        try:
            response = await http_client.get(jwks_uri, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise VerificationError(f"JWKS request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise VerificationError(f"JWKS request failed: {response.status_code}")

        try:
            jwks_data = response.json()
        except ValueError as e:
            raise VerificationError("Invalid JWKS response: not JSON") from e

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise VerificationError("Invalid JWKS response: missing 'keys' field")

        self._entries[jwks_uri] = (jwks_data, self.clock())
        return jwks_data


def select_signing_keys(token: str, jwks: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Pick the keys from ``jwks`` that may have signed ``token``.

    Only keys whose ``kty`` fits the header ``alg`` are considered. With a
    ``kid`` in the header only the matching key is returned; without one
    every such signature-capable key is a candidate.

    Raises:
        VerificationError: If the token header is malformed
    """
    try:
        unverified_header = jwt.get_unverified_header(token)
    except JOSEError as e:
        raise VerificationError("Failed to decode JWS header") from e

    key_type = KEY_TYPES.get(str(unverified_header.get("alg", ""))[:2])
    keys = [
        k for k in jwks.get("keys", [])
        if k.get("use", "sig") == "sig" and k.get("kty") == key_type
    ]
    kid = unverified_header.get("kid")
    if kid:
        return [k for k in keys if k.get("kid") == kid]
    return keys


async def resolve_signing_keys(
    token: str,
    jwks_uri: str,
    http_client: httpx.AsyncClient,
    jwks_cache: JWKSCache,
) -> List[Dict[str, Any]]:
    """
    Resolve candidate verification keys, refreshing the cache once on a miss.

    Raises:
        VerificationError: If no key in the IdP's key set matches
    """
    jwks = await jwks_cache.get(jwks_uri, http_client)
    keys = select_signing_keys(token, jwks)
    if not keys:
        jwks = await jwks_cache.get(jwks_uri, http_client, force_refresh=True)
        keys = select_signing_keys(token, jwks)

    if not keys:
        raise VerificationError("Unable to find matching signing key in JWKS")
    return keys


# =============================================================================
# JWE Decryption
# =============================================================================

@contextmanager
def decryption_key(private_key_pem: str) -> Iterator[rsa.RSAPrivateKey]:
    """
    Load the RSA private key for the duration of a single decrypt call.

    Errors are re-raised without chaining so key parsing details never
    reach a traceback or log record.
    """
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        raise DecryptionError("Configured private key could not be loaded") from None

    if not isinstance(key, rsa.RSAPrivateKey):
        raise DecryptionError(f"{JWE_KEY_ALGORITHM} requires an RSA private key")

    try:
        yield key
    finally:
        del key


def decrypt_jwe(token: str, private_key_pem: str) -> str:
    """
    Decrypt a compact JWE using our private key.

    Args:
        token: Compact-serialized JWE from the userinfo endpoint
        private_key_pem: PEM-encoded RSA private key

    Returns:
        The plaintext, which is the inner compact JWS

    Raises:
        DecryptionError: On unsupported algorithm, wrong key or malformed input
    """
    try:
        header = jwe.get_unverified_header(token)
    except JOSEError:
        raise DecryptionError("Malformed JWE") from None

    if header.get("alg") != JWE_KEY_ALGORITHM:
        raise DecryptionError(f"Unsupported JWE key algorithm: {header.get('alg')}")

    with decryption_key(private_key_pem) as key:
        try:
            plaintext = jwe.decrypt(token, key)
        except (JOSEError, ValueError, TypeError) as e:
            raise DecryptionError(f"JWE decryption failed: {type(e).__name__}") from None

    if plaintext is None:
        raise DecryptionError("JWE decryption produced no plaintext")

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionError("JWE plaintext is not UTF-8") from None


# =============================================================================
# JWS Verification
# =============================================================================

def verify_jws_and_extract_claims(
    token: str,
    signing_keys: List[Dict[str, Any]],
    expected_issuer: str,
    expected_audience: str,
    expected_nonce: Optional[str] = None,
) -> DeziClaims:
    """
    Verify the inner JWS and extract the Dezi claims.

    Validates, in order:
    1. Signature against the IdP's published keys
    2. Issuer and audience (audience must be present)
    3. exp / nbf with a 60 second clock skew tolerance
    4. Nonce, when one was issued for this flow
    5. Presence of the required Dezi claims

    Raises:
        VerificationError: Signature or standard claim failure
        ReplayError: Nonce mismatch
        MissingClaimError: A required Dezi claim is absent, empty or not a string or integer
    """
    key = signing_keys[0] if len(signing_keys) == 1 else {"keys": signing_keys}

    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=SIGNING_ALGORITHMS,
            audience=expected_audience,
            issuer=expected_issuer,
            options={
                "verify_signature": True,
                "verify_aud": True,
                "verify_iss": True,
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iat": True,
                "verify_at_hash": False,
                "require_aud": True,
                "leeway": CLOCK_SKEW_SECONDS,
            },
        )
    except ExpiredSignatureError:
        raise VerificationError("JWS has expired") from None
    except JWTClaimsError as e:
        raise VerificationError(f"Invalid JWS claims: {e}") from None
    except JOSEError:
        raise VerificationError("JWS signature verification failed") from None

    if expected_nonce is not None and payload.get("nonce") != expected_nonce:
        raise ReplayError("Nonce mismatch - possible replay attack")

    for claim in REQUIRED_CLAIMS:
        value = payload.get(claim)
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            raise MissingClaimError(claim)
        if isinstance(value, str) and not value.strip():
            raise MissingClaimError(claim)
        payload[claim] = str(value)

    try:
        return DeziClaims.model_validate(payload)
    except ValidationError:
        raise VerificationError("JWS claims have unexpected types") from None


# =============================================================================
# Display Helpers
# =============================================================================

def mask_sensitive_data(value: Optional[str]) -> str:
    """
    Mask an identifier, showing only its last 4 characters.

    Example:
        >>> mask_sensitive_data("123456789")
        '*****6789'
    """
    if not value or len(value) <= 4:
        return "****"
    return "*" * (len(value) - 4) + value[-4:]


def create_safe_claims_for_display(claims: DeziClaims) -> Dict[str, Any]:
    """Claims with Dezi number, subscriber number and subject masked."""
    safe = claims.model_dump()
    safe["dezi_nummer"] = mask_sensitive_data(claims.dezi_nummer)
    safe["abonnee_nummer"] = mask_sensitive_data(claims.abonnee_nummer)
    safe["sub"] = mask_sensitive_data(claims.sub) if claims.sub else None
    return safe


def create_safe_session_for_display(session: SessionData) -> Dict[str, Any]:
    """Session with external subject and subscriber identifiers masked."""
    safe = session.model_dump()
    safe["external_subject_id"] = mask_sensitive_data(session.external_subject_id)
    safe["subscriber_id"] = mask_sensitive_data(session.subscriber_id)
    return safe
