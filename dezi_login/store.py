"""
User persistence interface.

The login flow only needs two writes: upsert a user keyed by Dezi number and
append a login audit event. ``UserStore`` is the contract; the in-memory
implementation backs development and tests. A database-backed store only has
to implement the same two coroutines.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from dezi_login.models import LoginEvent, UserRecord

logger = logging.getLogger(__name__)


class UserStore(Protocol):
    async def upsert_user(self, dezi_nummer: str, display_name: Optional[str] = None) -> UserRecord:
        ...

    async def record_login_event(self, event: LoginEvent) -> LoginEvent:
        ...


class InMemoryUserStore:
    """Process-local UserStore; contents are lost on restart."""

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._events: List[LoginEvent] = []
        self._lock = asyncio.Lock()

    async def upsert_user(self, dezi_nummer: str, display_name: Optional[str] = None) -> UserRecord:
        """
        Create the user, or update its display name if it already exists.

        A ``None`` display name leaves an existing one untouched.
        """
        async with self._lock:
            user = self._users.get(dezi_nummer)
            if user is None:
                user = UserRecord(dezi_nummer=dezi_nummer, display_name=display_name)
            else:
                user = user.model_copy(update={
                    "display_name": display_name or user.display_name,
                    "updated_at": datetime.now(timezone.utc),
                })
            self._users[dezi_nummer] = user
            return user

    async def record_login_event(self, event: LoginEvent) -> LoginEvent:
        async with self._lock:
            self._events.append(event)
        return event

    async def get_user(self, dezi_nummer: str) -> Optional[UserRecord]:
        return self._users.get(dezi_nummer)

    async def list_login_events(self, user_id: Optional[str] = None) -> List[LoginEvent]:
        if user_id is None:
            return list(self._events)
        return [e for e in self._events if e.user_id == user_id]
