"""
PKCE parameter generation for the Dezi Authorization Code flow.

Only the S256 challenge method is supported; plain challenges are never
offered to the IdP.
"""

import base64
import hashlib
import secrets

from dezi_login.models import PKCEParams


CODE_CHALLENGE_METHOD = "S256"


def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded 256-bit random string (43 characters)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode('ascii').rstrip('=')


def generate_code_challenge(verifier: str) -> str:
    """
    Generate code challenge from verifier using S256 method.

    Args:
        verifier: Code verifier string

    Returns:
        Base64-URL-encoded SHA256 hash of verifier, without padding
    """
    digest = hashlib.sha256(verifier.encode('ascii')).digest()
    return base64.urlsafe_b64encode(digest).decode('ascii').rstrip('=')


def generate_pkce_params() -> PKCEParams:
    """
    Generate a fresh verifier/challenge pair plus state and nonce.

    State guards the callback against CSRF, the nonce binds the userinfo
    assertion to this attempt. Both carry 256 bits of randomness.
    """
    code_verifier = generate_code_verifier()
    return PKCEParams(
        code_verifier=code_verifier,
        code_challenge=generate_code_challenge(code_verifier),
        state=secrets.token_urlsafe(32),
        nonce=secrets.token_urlsafe(32),
    )
