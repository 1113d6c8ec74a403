"""
FastAPI dependencies exposing the process-wide resources held on app.state.
"""

from dataclasses import dataclass

import httpx
from fastapi import Request

from dezi_login.auth.discovery import DiscoveryCache
from dezi_login.auth.session import UsedCarrierRegistry
from dezi_login.auth.utils import JWKSCache
from dezi_login.store import UserStore


@dataclass
class AuthContext:
    """Shared collaborators of the login flow."""

    http_client: httpx.AsyncClient
    discovery_cache: DiscoveryCache
    jwks_cache: JWKSCache
    user_store: UserStore
    used_carriers: UsedCarrierRegistry


def get_auth_context(request: Request) -> AuthContext:
    """
    Dependency returning the app's shared HTTP client, caches and store.
    """
    state = request.app.state
    return AuthContext(
        http_client=state.http_client,
        discovery_cache=state.discovery_cache,
        jwks_cache=state.jwks_cache,
        user_store=state.user_store,
        used_carriers=state.used_carriers,
    )
