"""
OIDC discovery with a per-issuer TTL cache.

The cache is an explicit object owned by the application (``app.state``)
rather than module globals, so expiry can be driven by an injected clock.
Concurrent misses may both fetch; the result is the same document, so the
last writer simply wins.
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

import httpx
from pydantic import ValidationError

from dezi_login.auth.errors import DiscoveryError
from dezi_login.models import DiscoveryDocument

logger = logging.getLogger(__name__)

DISCOVERY_CACHE_TTL = 3600.0
WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def discovery_url(issuer: str) -> str:
    return f"{issuer.rstrip('/')}{WELL_KNOWN_PATH}"


class DiscoveryCache:
    """
    Fetches and caches the IdP's OpenID configuration.

    Attributes:
        ttl_seconds: Maximum age of a cached document
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = DISCOVERY_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[DiscoveryDocument, float]] = {}

    def get_cached(self, issuer: str) -> Optional[DiscoveryDocument]:
        """Return the cached document if it is younger than the TTL."""
        entry = self._entries.get(issuer)
        if entry is None:
            return None

        document, fetched_at = entry
        if (self.clock() - fetched_at) >= self.ttl_seconds:
            return None
        return document

    async def fetch(self, issuer: str, http_client: httpx.AsyncClient) -> DiscoveryDocument:
        """
        Return the discovery document for ``issuer``, fetching on miss/expiry.

        Args:
            issuer: Issuer base URL
            http_client: Shared async HTTP client

        Returns:
            Parsed discovery document

        Raises:
            DiscoveryError: On transport failure, non-2xx status or malformed body
        """
        cached = self.get_cached(issuer)
        if cached is not None:
            return cached

        url = discovery_url(issuer)
        try:
            response = await http_client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Discovery request failed: {type(e).__name__}") from e

        if not response.is_success:
            raise DiscoveryError(
                f"Failed to fetch OIDC discovery document: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            document = DiscoveryDocument.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise DiscoveryError(
                "Malformed OIDC discovery document",
                status_code=response.status_code,
            ) from e

        self._entries[issuer] = (document, self.clock())
        logger.info(
            "Fetched OIDC discovery document",
            extra={"issuer": issuer, "ttl_seconds": self.ttl_seconds},
        )
        return document

    def invalidate(self, issuer: Optional[str] = None) -> None:
        """Drop one issuer's entry, or all entries when ``issuer`` is None."""
        if issuer is None:
            self._entries.clear()
        else:
            self._entries.pop(issuer, None)
