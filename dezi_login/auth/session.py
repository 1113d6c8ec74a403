"""
Session Management Module
=========================

Signs and verifies the two cookie-borne tokens of the login flow:

- the application session (8 hours, SameSite=strict)
- the PKCE carrier (10 minutes, SameSite=lax, one-time use)

Both are HS256 JWTs signed with SESSION_SECRET. Expiry is embedded in the
signed payload and checked against the codec's clock. Verification never
raises: a missing, tampered, expired or incomplete token all come back as
``None`` so callers cannot tell them apart.

Logout only deletes the cookie; a copied token stays valid until its
embedded expiry.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Type, TypeVar

import jwt
from fastapi import Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, ValidationError

from dezi_login.config import Settings, get_settings
from dezi_login.models import PKCESessionData, PKCEParams, SessionData

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "dezi_session"
PKCE_COOKIE_NAME = "dezi_pkce"
SESSION_DURATION_SECONDS = 8 * 60 * 60
PKCE_DURATION_SECONDS = 10 * 60

JWT_ALGORITHM = "HS256"
SESSION_TOKEN_TYPE = "session"
PKCE_TOKEN_TYPE = "pkce"

ModelT = TypeVar("ModelT", bound=BaseModel)


# =============================================================================
# Token Codec
# =============================================================================

class SessionCodec:
    """
    HS256 codec for session and PKCE carrier tokens.

    Args:
        secret: Signing secret (at least 32 characters)
        clock: Wall-clock source in epoch seconds, injectable for tests
    """

    def __init__(self, secret: str, clock: Callable[[], float] = time.time):
        if not secret or len(secret) < 32:
            raise ValueError("Session secret must be at least 32 characters long")
        self._secret = secret
        self.clock = clock

    def now(self) -> int:
        return int(self.clock())

    def _encode(self, claims: Dict[str, Any], token_type: str, expires_at: int) -> str:
        payload = dict(claims)
        payload.update({
            "typ": token_type,
            "iat": self.now(),
            "exp": expires_at,
        })
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def _decode(self, token: Optional[str], token_type: str, model: Type[ModelT]) -> Optional[ModelT]:
        if not token:
            return None

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "typ"],
                },
            )
        except jwt.PyJWTError as e:
            logger.debug(f"Rejected {token_type} token: {type(e).__name__}")
            return None

        if payload.get("typ") != token_type:
            return None

        expires_at = payload.get("exp")
        if not isinstance(expires_at, (int, float)) or expires_at <= self.clock():
            return None

        try:
            return model.model_validate(payload)
        except ValidationError:
            return None

    # -------------------------------------------------------------------------
    # Application session
    # -------------------------------------------------------------------------

    def sign_session(self, data: SessionData) -> str:
        return self._encode(data.model_dump(), SESSION_TOKEN_TYPE, data.expires_at)

    def verify_session(self, token: Optional[str]) -> Optional[SessionData]:
        session = self._decode(token, SESSION_TOKEN_TYPE, SessionData)
        if session is None or session.expires_at <= self.clock():
            return None
        return session

    # -------------------------------------------------------------------------
    # PKCE carrier
    # -------------------------------------------------------------------------

    def sign_pkce(self, data: PKCESessionData) -> str:
        return self._encode(
            data.model_dump(),
            PKCE_TOKEN_TYPE,
            data.created_at + PKCE_DURATION_SECONDS,
        )

    def verify_pkce(self, token: Optional[str]) -> Optional[PKCESessionData]:
        return self._decode(token, PKCE_TOKEN_TYPE, PKCESessionData)


def get_session_codec(settings: Settings = Depends(get_settings)) -> SessionCodec:
    """FastAPI dependency building a codec from settings."""
    return SessionCodec(settings.SESSION_SECRET)


# =============================================================================
# PKCE Carrier Cookie
# =============================================================================

def store_pkce_session(
    response: Response,
    codec: SessionCodec,
    pkce: PKCEParams,
    secure: bool = False,
) -> None:
    """
    Store verifier, state and nonce in a short-lived cookie for the callback.

    SameSite=lax is required so the cookie survives the top-level redirect
    back from Dezi.
    """
    carrier = PKCESessionData(
        code_verifier=pkce.code_verifier,
        state=pkce.state,
        nonce=pkce.nonce,
        created_at=codec.now(),
    )
    response.set_cookie(
        PKCE_COOKIE_NAME,
        codec.sign_pkce(carrier),
        max_age=PKCE_DURATION_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="lax",
    )


class UsedCarrierRegistry:
    """
    Remembers consumed PKCE carriers (by nonce) until they would expire.

    Process-local: with several workers a replayed cookie can still reach
    a worker that has not seen it, where the carrier's expiry is the bound.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._used: Dict[str, float] = {}

    def mark_used(self, carrier: PKCESessionData) -> bool:
        """
        Record ``carrier`` as consumed.

        Returns:
            False if it had already been consumed
        """
        now = self.clock()
        self._used = {n: exp for n, exp in self._used.items() if exp > now}
        if carrier.nonce in self._used:
            return False
        self._used[carrier.nonce] = carrier.created_at + PKCE_DURATION_SECONDS
        return True


def get_pkce_session(
    request: Request,
    codec: SessionCodec,
    used_carriers: Optional[UsedCarrierRegistry] = None,
) -> Optional[PKCESessionData]:
    """
    Retrieve and validate the PKCE carrier from its cookie.

    A carrier is only ever returned once. The caller must delete the cookie
    on its response with ``clear_pkce_session`` whatever the outcome.
    """
    carrier = codec.verify_pkce(request.cookies.get(PKCE_COOKIE_NAME))
    if carrier is None:
        return None
    if used_carriers is not None and not used_carriers.mark_used(carrier):
        logger.warning("Rejected replayed PKCE carrier")
        return None
    return carrier


def clear_pkce_session(response: Response) -> None:
    response.delete_cookie(PKCE_COOKIE_NAME, path="/")


# =============================================================================
# Application Session Cookie
# =============================================================================

def create_session(
    response: Response,
    codec: SessionCodec,
    user_id: str,
    external_subject_id: str,
    subscriber_id: str,
    role_code: str,
    role_name: str,
    display_name: Optional[str] = None,
    secure: bool = False,
) -> SessionData:
    """
    Mint a new application session and set it as a cookie.

    Returns:
        The session that was issued
    """
    now = codec.now()
    session = SessionData(
        user_id=user_id,
        external_subject_id=external_subject_id,
        subscriber_id=subscriber_id,
        role_code=role_code,
        role_name=role_name,
        display_name=display_name,
        created_at=now,
        expires_at=now + SESSION_DURATION_SECONDS,
    )
    response.set_cookie(
        SESSION_COOKIE_NAME,
        codec.sign_session(session),
        max_age=SESSION_DURATION_SECONDS,
        path="/",
        secure=secure,
        httponly=True,
        samesite="strict",
    )
    return session


def destroy_session(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")


# =============================================================================
# FastAPI Dependencies
# =============================================================================

async def get_session(
    request: Request,
    codec: SessionCodec = Depends(get_session_codec),
) -> Optional[SessionData]:
    """
    Current session if the cookie carries a valid token, else None.

    Usage in routes:
        @app.get("/page")
        async def page(session: Optional[SessionData] = Depends(get_session)):
            ...
    """
    return codec.verify_session(request.cookies.get(SESSION_COOKIE_NAME))


async def require_session(
    session: Optional[SessionData] = Depends(get_session),
) -> SessionData:
    """
    Require a valid session, for protected API routes.

    Raises:
        HTTPException: 401 when no valid session is present
    """
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No valid session",
        )
    return session


__all__ = [
    "SESSION_COOKIE_NAME",
    "PKCE_COOKIE_NAME",
    "SESSION_DURATION_SECONDS",
    "PKCE_DURATION_SECONDS",
    "SessionCodec",
    "get_session_codec",
    "store_pkce_session",
    "UsedCarrierRegistry",
    "get_pkce_session",
    "clear_pkce_session",
    "create_session",
    "destroy_session",
    "get_session",
    "require_session",
]
