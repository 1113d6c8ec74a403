"""
Authentication routes for the Dezi OIDC login flow.

This module implements the Authorization Code flow with PKCE:

    Anonymous -> FlowStarted (carrier cookie set) -> CallbackReceived
      -> TokensExchanged -> ClaimsVerified -> SessionEstablished

Every failure ends in a redirect to the landing page carrying a coarse
``error`` category and a short fixed ``message``. Exception text, tokens and
cryptographic material stay in the server log, masked where needed.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from dezi_login.auth.client import (
    build_authorization_url,
    exchange_code_for_tokens,
    process_user_info,
)
from dezi_login.auth.errors import (
    ERROR_MESSAGES,
    DeziAuthError,
    PersistenceError,
    SessionExpired,
    StateMismatch,
)
from dezi_login.auth.pkce import generate_pkce_params
from dezi_login.auth.session import (
    SessionCodec,
    clear_pkce_session,
    create_session,
    destroy_session,
    get_pkce_session,
    get_session_codec,
    require_session,
    store_pkce_session,
)
from dezi_login.auth.utils import create_safe_session_for_display, mask_sensitive_data
from dezi_login.config import Settings, get_settings
from dezi_login.dependencies import AuthContext, get_auth_context
from dezi_login.models import DeziClaims, LoginEvent, PKCESessionData, SessionData, UserRecord
from dezi_login.store import UserStore

logger = logging.getLogger(__name__)


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)

DEMO_USER = {
    "dezi_nummer": "DEMO-12345678",
    "display_name": "Demo Gebruiker",
    "abonnee_nummer": "98765432",
    "rol_code": "01",
    "rol_naam": "Huisarts",
}


# =============================================================================
# Helpers
# =============================================================================

def redirect_with_error(settings: Settings, error_code: str, message: Optional[str] = None) -> RedirectResponse:
    """
    Redirect to the landing page with error parameters.
    """
    params = {
        "error": error_code,
        "message": message or ERROR_MESSAGES.get(error_code, ERROR_MESSAGES["callback_error"]),
    }
    return RedirectResponse(url=f"{settings.app_url}/?{urlencode(params)}", status_code=302)


def get_client_ip(request: Request) -> str:
    """
    Client IP for the audit trail: first X-Forwarded-For hop, then
    X-Real-IP, then ``unknown``.
    """
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.headers.get("x-real-ip") or "unknown"


async def record_login(
    request: Request,
    store: UserStore,
    claims: DeziClaims,
) -> UserRecord:
    """
    Upsert the user and append a login event.

    Raises:
        PersistenceError: If either write fails
    """
    try:
        user = await store.upsert_user(claims.dezi_nummer, display_name=claims.rol_naam or None)
        await store.record_login_event(LoginEvent(
            user_id=user.id,
            abonnee_nummer=claims.abonnee_nummer,
            dezi_role_code=claims.rol_code,
            dezi_role_name=claims.rol_naam,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        ))
    except Exception as e:
        raise PersistenceError(f"Failed to persist login: {type(e).__name__}") from e
    return user


def _dashboard_redirect(settings: Settings) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_url}/dashboard", status_code=302)


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/dezi/login", response_class=RedirectResponse)
async def login(
    settings: Settings = Depends(get_settings),
    codec: SessionCodec = Depends(get_session_codec),
    ctx: AuthContext = Depends(get_auth_context),
):
    """
    Initiate the Dezi login flow.

    1. Fetches (or reuses) the discovery document
    2. Generates PKCE parameters (code_verifier, code_challenge, state, nonce)
    3. Stores verifier, state and nonce in the carrier cookie
    4. Redirects the user to Dezi's authorization endpoint
    """
    try:
        discovery = await ctx.discovery_cache.fetch(settings.DEZI_ISSUER, ctx.http_client)
        pkce = generate_pkce_params()

        authorization_url = build_authorization_url(
            discovery.authorization_endpoint,
            settings.DEZI_CLIENT_ID,
            settings.DEZI_REDIRECT_URI,
            pkce,
            settings.scopes_list,
        )

        response = RedirectResponse(url=authorization_url, status_code=302)
        store_pkce_session(response, codec, pkce, secure=settings.is_production)
        return response

    except DeziAuthError as e:
        logger.error(
            f"Login initiation failed: {e}",
            extra={"error_type": type(e).__name__},
        )
    except Exception:
        logger.exception("Login initiation failed")

    return redirect_with_error(settings, "login_failed")


# =============================================================================
# Callback Endpoint
# =============================================================================

async def complete_login(
    request: Request,
    code: str,
    state: str,
    carrier: Optional[PKCESessionData],
    settings: Settings,
    codec: SessionCodec,
    ctx: AuthContext,
) -> RedirectResponse:
    """
    Drive a callback from CallbackReceived to SessionEstablished.

    Raises:
        DeziAuthError: Subclass identifying the stage that failed
    """
    if carrier is None:
        raise SessionExpired("PKCE session expired or not found")

    if not secrets.compare_digest(carrier.state.encode("utf-8"), state.encode("utf-8")):
        raise StateMismatch("State parameter mismatch")

    discovery = await ctx.discovery_cache.fetch(settings.DEZI_ISSUER, ctx.http_client)

    tokens = await exchange_code_for_tokens(
        ctx.http_client,
        discovery.token_endpoint,
        code,
        carrier.code_verifier,
        settings.DEZI_CLIENT_ID,
        settings.DEZI_REDIRECT_URI,
        settings.DEZI_CLIENT_SECRET,
    )

    claims = await process_user_info(
        settings,
        discovery,
        tokens.access_token,
        ctx.http_client,
        ctx.jwks_cache,
        expected_nonce=carrier.nonce,
    )

    user = await record_login(request, ctx.user_store, claims)

    response = _dashboard_redirect(settings)
    create_session(
        response,
        codec,
        user_id=user.id,
        external_subject_id=claims.dezi_nummer,
        subscriber_id=claims.abonnee_nummer,
        role_code=claims.rol_code,
        role_name=claims.rol_naam,
        display_name=user.display_name,
        secure=settings.is_production,
    )

    logger.info(
        "Dezi login completed",
        extra={"user_id": user.id, "dezi_nummer": mask_sensitive_data(claims.dezi_nummer)},
    )
    return response


@auth_router.get("/dezi/callback", response_class=RedirectResponse)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from Dezi"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
    settings: Settings = Depends(get_settings),
    codec: SessionCodec = Depends(get_session_codec),
    ctx: AuthContext = Depends(get_auth_context),
):
    """
    Handle the OAuth callback from Dezi.

    1. Validates state against the PKCE carrier
    2. Exchanges the authorization code for tokens
    3. Fetches and processes userinfo (JWE -> JWS -> claims)
    4. Upserts the user and writes a login event
    5. Creates the application session and redirects to the dashboard

    The carrier cookie is deleted on every outcome.
    """
    if error:
        logger.warning(
            "Dezi returned an OAuth error",
            extra={"oauth_error": error},
        )
        response = redirect_with_error(settings, "oauth_error", (error_description or error)[:200])

    elif not code or not state:
        response = redirect_with_error(settings, "invalid_callback")

    else:
        carrier = get_pkce_session(request, codec, ctx.used_carriers)
        try:
            response = await complete_login(request, code, state, carrier, settings, codec, ctx)
        except DeziAuthError as e:
            logger.warning(
                f"Callback processing failed: {e}",
                extra={"category": e.category, "error_type": type(e).__name__},
            )
            response = redirect_with_error(settings, e.category)
        except Exception:
            logger.exception("Unexpected error in callback")
            response = redirect_with_error(settings, "callback_error")

    clear_pkce_session(response)
    return response


# =============================================================================
# Logout Endpoint
# =============================================================================

@auth_router.get("/logout", response_class=RedirectResponse)
async def logout(settings: Settings = Depends(get_settings)):
    """
    Delete the session cookie and return to the landing page.

    The signed token itself is not revoked; it stays valid until expiry.
    """
    response = RedirectResponse(url=f"{settings.app_url}/", status_code=302)
    try:
        destroy_session(response)
    except Exception:
        logger.exception("Logout failed to clear the session cookie")
    return response


# =============================================================================
# Demo Login (development only)
# =============================================================================

@auth_router.get("/demo/login", response_class=RedirectResponse)
async def demo_login(
    request: Request,
    settings: Settings = Depends(get_settings),
    codec: SessionCodec = Depends(get_session_codec),
    ctx: AuthContext = Depends(get_auth_context),
):
    """
    Create a session for a fixed demo user without contacting Dezi.

    Disabled when ENVIRONMENT is production.
    """
    if settings.is_production:
        return redirect_with_error(settings, "demo_disabled")

    try:
        user = await ctx.user_store.upsert_user(
            DEMO_USER["dezi_nummer"],
            display_name=DEMO_USER["display_name"],
        )
        await ctx.user_store.record_login_event(LoginEvent(
            user_id=user.id,
            abonnee_nummer=DEMO_USER["abonnee_nummer"],
            dezi_role_code=DEMO_USER["rol_code"],
            dezi_role_name=DEMO_USER["rol_naam"],
            ip_address="127.0.0.1",
            user_agent="Demo Mode",
        ))
    except Exception:
        logger.exception("Demo login failed")
        return redirect_with_error(settings, "demo_login_failed")

    response = _dashboard_redirect(settings)
    create_session(
        response,
        codec,
        user_id=user.id,
        external_subject_id=user.dezi_nummer,
        subscriber_id=DEMO_USER["abonnee_nummer"],
        role_code=DEMO_USER["rol_code"],
        role_name=DEMO_USER["rol_naam"],
        display_name=user.display_name,
        secure=settings.is_production,
    )
    return response


# =============================================================================
# Session Info
# =============================================================================

@auth_router.get("/session")
async def session_info(session: SessionData = Depends(require_session)):
    """Current session with identifiers masked; 401 without a session."""
    return create_safe_session_for_display(session)
