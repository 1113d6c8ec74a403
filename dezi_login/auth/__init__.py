"""
Authentication Package

This package implements the Dezi OpenID Connect login flow.

Modules:
- routes: Login, callback, logout and demo endpoints (/auth/...)
- pkce: PKCE verifier/challenge, state and nonce generation
- discovery: TTL-cached OIDC discovery document
- client: Authorization URL, token exchange, userinfo pipeline
- utils: JWE decryption, JWKS cache, JWS verification, masking helpers
- session: Signed session and PKCE carrier cookies
- errors: Error taxonomy and the public error categories

The authentication flow:
1. /auth/dezi/login stores a PKCE carrier cookie and redirects to Dezi
2. User authenticates with Dezi
3. /auth/dezi/callback checks state, exchanges the code, decrypts and
   verifies the userinfo assertion
4. The user and a login event are persisted
5. A signed session cookie is issued and the user lands on /dashboard
"""

from .routes import auth_router

__all__ = [
    "auth_router",
]
