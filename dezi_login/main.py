"""
FastAPI Application Factory
===========================

Entry point for the Dezi login gateway.

Routers / surfaces:
    - /auth/*       : Dezi OIDC login, callback, logout, demo login, session info
    - /dashboard    : Protected surface (requires a valid session)
    - /             : Public landing surface, echoes error redirects
    - /health       : Health check endpoint

Running the Service:
    Development:
        uvicorn dezi_login.main:app --reload --port 3000

    Production:
        ENVIRONMENT=production uvicorn dezi_login.main:app --host 0.0.0.0 --port 3000 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import RedirectResponse

from dezi_login.auth import auth_router
from dezi_login.auth.discovery import DiscoveryCache
from dezi_login.auth.errors import ERROR_MESSAGES
from dezi_login.auth.session import (
    SESSION_COOKIE_NAME,
    UsedCarrierRegistry,
    get_session,
)
from dezi_login.auth.utils import JWKSCache, create_safe_session_for_display
from dezi_login.config import Settings, get_settings, validate_configuration
from dezi_login.models import ErrorResponse, SessionData
from dezi_login.store import InMemoryUserStore, UserStore

logger = logging.getLogger("dezi_login.main")

# Routes that require a session cookie
PROTECTED_ROUTES = ["/dashboard"]

# Routes that send an already logged-in user to the dashboard
AUTH_ROUTES = ["/auth/dezi/login"]


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


def resolve_settings(request: Request) -> Settings:
    """Settings for code outside dependency injection, honouring overrides."""
    provider = request.app.dependency_overrides.get(get_settings, get_settings)
    return provider()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup: load and check configuration, open the shared HTTP client.
    Shutdown: close the HTTP client and drop cached IdP metadata.
    """
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")

    app.state.http_client = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    app.state.discovery_cache.ttl_seconds = settings.DISCOVERY_CACHE_SECONDS
    app.state.jwks_cache.ttl_seconds = settings.JWKS_CACHE_SECONDS

    logger.info(
        "Dezi login gateway started",
        extra={"issuer": settings.DEZI_ISSUER, "environment": settings.ENVIRONMENT},
    )

    yield

    await app.state.http_client.aclose()
    app.state.discovery_cache.invalidate()
    logger.info("Dezi login gateway shutdown complete")


def create_app(user_store: Optional[UserStore] = None) -> FastAPI:
    """
    Application factory function.

    Args:
        user_store: Persistence backend; defaults to an in-memory store

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title="Dezi Login Gateway",
        description="OpenID Connect login with Dezi (PKCE, encrypted and signed userinfo)",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.state.discovery_cache = DiscoveryCache()
    app.state.jwks_cache = JWKSCache()
    app.state.used_carriers = UsedCarrierRegistry()
    app.state.user_store = user_store or InMemoryUserStore()

    app.include_router(auth_router)

    @app.middleware("http")
    async def route_guard(request: Request, call_next):
        """
        Cookie-presence check in front of protected and login routes.

        Full session validation happens in the route handlers.
        """
        path = request.url.path
        has_session = bool(request.cookies.get(SESSION_COOKIE_NAME))

        if any(path.startswith(route) for route in PROTECTED_ROUTES) and not has_session:
            settings = resolve_settings(request)
            query = urlencode({"error": "session_required", "message": ERROR_MESSAGES["session_required"]})
            return RedirectResponse(url=f"{settings.app_url}/?{query}", status_code=302)

        if any(path.startswith(route) for route in AUTH_ROUTES) and has_session:
            settings = resolve_settings(request)
            return RedirectResponse(url=f"{settings.app_url}/dashboard", status_code=302)

        return await call_next(request)

    @app.get("/health", tags=["System"])
    async def health_check() -> Dict[str, str]:
        return {
            "status": "ok",
            "service": "dezi-login",
            "version": "1.0.0",
        }

    @app.get("/", tags=["System"], response_model=ErrorResponse)
    async def landing(
        error: Optional[str] = Query(None),
        message: Optional[str] = Query(None),
    ) -> ErrorResponse:
        """Public landing surface; echoes the error of a failed login."""
        return ErrorResponse(error=error, message=message)

    @app.get("/dashboard", tags=["System"])
    async def dashboard(
        session: Optional[SessionData] = Depends(get_session),
        settings: Settings = Depends(get_settings),
    ):
        """Protected surface. An invalid or expired session goes back to the landing page."""
        if session is None:
            return RedirectResponse(url=f"{settings.app_url}/", status_code=302)
        return create_safe_session_for_display(session)

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "dezi_login.main:app",
        host="0.0.0.0",
        port=3000,
        reload=not settings.is_production,
        log_level=settings.LOG_LEVEL.lower()
    )
