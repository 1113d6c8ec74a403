"""
Authentication error taxonomy.

Every failure inside a login flow is raised as a subclass of DeziAuthError.
Each class carries the coarse ``category`` the orchestrator puts in the
error redirect; the exception message itself stays server-side.
"""

from typing import Optional


class DeziAuthError(Exception):
    """Base exception for Dezi login flow errors"""

    category = "callback_error"


class DiscoveryError(DeziAuthError):
    """OIDC discovery document could not be fetched or parsed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TokenExchangeError(DeziAuthError):
    """Token endpoint rejected the authorization code exchange"""

    category = "token_error"

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class UserInfoFetchError(DeziAuthError):
    """UserInfo endpoint did not return the encrypted assertion"""

    category = "userinfo_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DecryptionError(DeziAuthError):
    """JWE could not be decrypted with the configured private key"""

    category = "decryption_error"


class VerificationError(DeziAuthError):
    """Inner JWS signature or standard claims failed validation"""

    category = "verification_error"


class ReplayError(VerificationError):
    """Nonce in the verified assertion does not match the one issued"""


class MissingClaimError(DeziAuthError):
    """A required Dezi claim is absent or empty"""

    category = "userinfo_error"

    def __init__(self, claim: str):
        super().__init__(f"Missing required claim: {claim}")
        self.claim = claim


class StateMismatch(DeziAuthError):
    """Callback state does not match the stored PKCE carrier"""

    category = "state_mismatch"


class SessionExpired(DeziAuthError):
    """PKCE carrier is missing, expired or invalid"""

    category = "session_expired"


class PersistenceError(DeziAuthError):
    """User record or audit event could not be written"""

    category = "callback_error"


# Short messages shown to the user next to each category. These are the only
# error texts that leave the server.
ERROR_MESSAGES = {
    "login_failed": "Failed to initiate Dezi login",
    "oauth_error": "Dezi login was not completed",
    "invalid_callback": "Missing code or state parameter",
    "session_expired": "PKCE session expired or not found",
    "state_mismatch": "State parameter mismatch - possible CSRF attack",
    "token_error": "Failed to exchange authorization code",
    "userinfo_error": "Failed to retrieve user information",
    "decryption_error": "Failed to decrypt user information",
    "verification_error": "Failed to verify user information",
    "callback_error": "Authentication callback failed",
    "session_required": "You must log in to view this page",
    "demo_disabled": "Demo login is disabled in production",
    "demo_login_failed": "Failed to create demo session",
}


__all__ = [
    "ERROR_MESSAGES",
    "DeziAuthError",
    "DiscoveryError",
    "TokenExchangeError",
    "UserInfoFetchError",
    "DecryptionError",
    "VerificationError",
    "ReplayError",
    "MissingClaimError",
    "StateMismatch",
    "SessionExpired",
    "PersistenceError",
]
