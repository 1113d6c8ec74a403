"""
Shared fixtures for the Dezi login tests.

Provides RSA key pairs for the IdP signing key and our encryption key, a
settings instance, and ``FakeDeziProvider``: an in-process stand-in for the
Dezi endpoints that is installed as the app's HTTP client.
"""

import time
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from jose import jwe
from jose import jwt as jose_jwt
from jwt.algorithms import RSAAlgorithm

from dezi_login.config import Settings, get_settings
from dezi_login.main import create_app


ISSUER = "https://dezi.example.nl"
CLIENT_ID = "dezi-test-client"
REDIRECT_URI = "http://localhost:3000/auth/dezi/callback"
APP_URL = "http://localhost:3000"
SESSION_SECRET = "test-session-secret-0123456789abcdef"
TEST_KID = "dezi-signing-2024"


def generate_test_keys() -> Tuple[str, str]:
    """Generate an RSA key pair, returned as (private PKCS8 PEM, public PEM)"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
        backend=default_backend()
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )
    return private_pem.decode(), public_pem.decode()


# Generate test keys once for reuse
SIGNING_PRIVATE_KEY, SIGNING_PUBLIC_KEY = generate_test_keys()
ENCRYPTION_PRIVATE_KEY, ENCRYPTION_PUBLIC_KEY = generate_test_keys()


def create_jwks(public_pem: str = SIGNING_PUBLIC_KEY, kid: str = TEST_KID) -> Dict[str, Any]:
    """JWKS containing one RSA signing key"""
    public_key = serialization.load_pem_public_key(public_pem.encode(), backend=default_backend())
    jwk = RSAAlgorithm.to_jwk(public_key, as_dict=True)
    jwk["kid"] = kid
    jwk["use"] = "sig"
    jwk["alg"] = "RS256"
    return {"keys": [jwk]}


class FakeDeziProvider:
    """
    Answers the gateway's outbound requests like Dezi would.

    Tests tweak ``discovery``, ``jwks``, ``token_response`` and ``claims``,
    or put a canned ``httpx.Response`` in ``overrides`` keyed by URL.
    Every call is recorded in ``calls`` as (method, url, kwargs).
    """

    def __init__(self):
        self.discovery = {
            "issuer": ISSUER,
            "authorization_endpoint": f"{ISSUER}/authorize",
            "token_endpoint": f"{ISSUER}/token",
            "userinfo_endpoint": f"{ISSUER}/userinfo",
            "jwks_uri": f"{ISSUER}/jwks",
            "response_types_supported": ["code"],
            "subject_types_supported": ["public"],
            "id_token_signing_alg_values_supported": ["RS256"],
        }
        self.jwks = create_jwks()
        self.token_response: Dict[str, Any] = {
            "access_token": "access-token-123",
            "token_type": "Bearer",
            "expires_in": 300,
        }
        self.claims: Optional[Dict[str, Any]] = None
        self.userinfo_body: Optional[str] = None
        self.overrides: Dict[str, httpx.Response] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    # -- token helpers -------------------------------------------------------

    def make_claims(self, nonce: Optional[str] = None, **overrides) -> Dict[str, Any]:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": "subject-900000001",
            "iat": now,
            "nbf": now,
            "exp": now + 300,
            "dezi_nummer": "900000001",
            "abonnee_nummer": "01234567",
            "rol_code": "01.015",
            "rol_naam": "Huisarts",
        }
        if nonce is not None:
            claims["nonce"] = nonce
        claims.update(overrides)
        return {k: v for k, v in claims.items() if v is not None}

    def sign(self, claims: Dict[str, Any], kid: str = TEST_KID, private_key: str = SIGNING_PRIVATE_KEY) -> str:
        return jose_jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})

    def encrypt(
        self,
        plaintext: str,
        public_key: str = ENCRYPTION_PUBLIC_KEY,
        algorithm: str = "RSA-OAEP-256",
    ) -> str:
        token = jwe.encrypt(plaintext.encode("utf-8"), public_key, encryption="A256GCM", algorithm=algorithm)
        return token.decode("ascii")

    # -- transport -----------------------------------------------------------

    def called(self, url: str) -> bool:
        return any(call_url == url for _, call_url, _ in self.calls)

    async def get(self, url: str, **kwargs) -> httpx.Response:
        self.calls.append(("GET", url, kwargs))
        if url in self.overrides:
            return self.overrides[url]
        if url == f"{ISSUER}/.well-known/openid-configuration":
            return httpx.Response(200, json=self.discovery)
        if url == self.discovery["jwks_uri"]:
            return httpx.Response(200, json=self.jwks)
        if url == self.discovery["userinfo_endpoint"]:
            body = self.userinfo_body
            if body is None:
                body = self.encrypt(self.sign(self.claims))
            return httpx.Response(200, text=body, headers={"Content-Type": "application/jwt"})
        return httpx.Response(404, text="not found")

    async def post(self, url: str, **kwargs) -> httpx.Response:
        self.calls.append(("POST", url, kwargs))
        if url in self.overrides:
            return self.overrides[url]
        if url == self.discovery["token_endpoint"]:
            return httpx.Response(200, json=self.token_response)
        return httpx.Response(404, text="not found")


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def query_params(url: str) -> Dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        DEZI_ISSUER=ISSUER,
        DEZI_CLIENT_ID=CLIENT_ID,
        DEZI_REDIRECT_URI=REDIRECT_URI,
        DEZI_PRIVATE_KEY=ENCRYPTION_PRIVATE_KEY,
        SESSION_SECRET=SESSION_SECRET,
        APP_URL=APP_URL,
        ENVIRONMENT="test",
    )


@pytest.fixture
def dezi_provider() -> FakeDeziProvider:
    return FakeDeziProvider()


@pytest.fixture
def app(settings, dezi_provider):
    """Application with settings overridden and the fake IdP as HTTP client"""
    application = create_app()
    application.state.http_client = dezi_provider
    application.dependency_overrides[get_settings] = lambda: settings
    return application


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def start_login(client):
    """Run login-start and return the query parameters sent to Dezi"""
    def _start() -> Dict[str, str]:
        response = client.get("/auth/dezi/login")
        assert response.status_code == 302
        return query_params(response.headers["location"])
    return _start
