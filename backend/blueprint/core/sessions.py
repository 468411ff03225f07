"""
Client Sessions
===============

Every HTTP client gets its own identity, backend session and state store,
the way each browser running the UI would. A client is recognised by an
opaque session id carried in a cookie; unknown or malformed ids are never
adopted, a fresh one is issued instead.

The long-lived storage tier is shared by all clients and partitioned by
session id (``ScopedStorage``), so a signed-in client whose in-memory
session was evicted, or whose process restarted, resumes from its stored
backend session.
"""

import asyncio
import logging
import re
import secrets
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

from blueprint.core.storage import KeyValueStorage

if TYPE_CHECKING:
    from blueprint.services.admin_dashboard import AdminDashboard
    from blueprint.services.identity_cache import IdentityCache
    from blueprint.services.lookup import LookupFlow
    from blueprint.services.session_reconciler import SessionReconciler
    from blueprint.services.state_store import AppState

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9_-]{32,64}$")


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class ScopedStorage(KeyValueStorage):
    """View of ``backing`` restricted to keys under ``<scope>/``."""

    def __init__(self, backing: KeyValueStorage, scope: str):
        self._backing = backing
        self._prefix = f"{scope}/"

    def get_item(self, key: str) -> Optional[str]:
        return self._backing.get_item(self._prefix + key)

    def set_item(self, key: str, value: str) -> None:
        self._backing.set_item(self._prefix + key, value)

    def remove_item(self, key: str) -> None:
        self._backing.remove_item(self._prefix + key)

    def keys(self) -> List[str]:
        return [key[len(self._prefix):] for key in self._backing.keys() if key.startswith(self._prefix)]


class ClientSession:
    """One client's services, started once and stopped on eviction."""

    def __init__(
        self,
        session_id: str,
        *,
        identity: "IdentityCache",
        state: "AppState",
        reconciler: "SessionReconciler",
        lookup: "LookupFlow",
        dashboard: "AdminDashboard",
    ):
        self.id = session_id
        self.identity = identity
        self.state = state
        self.reconciler = reconciler
        self.lookup = lookup
        self.dashboard = dashboard
        self.last_seen = 0.0
        self._startup: Optional[asyncio.Future] = None

    @property
    def gateway(self):
        return self.state.gateway

    async def ready(self, *, watch_expiry: bool = True) -> None:
        """Start the session on first use; later callers wait for the same startup."""
        if self._startup is None:
            self._startup = asyncio.ensure_future(self._start(watch_expiry))
        await asyncio.shield(self._startup)

    async def _start(self, watch_expiry: bool) -> None:
        await self.reconciler.start(watch_expiry=watch_expiry)
        await self.reconciler.settle()

    async def close(self) -> None:
        await self.reconciler.stop()
        await self.gateway.aclose()


class SessionRegistry:
    """
    Maps session ids to live ``ClientSession`` objects.

    Args:
        factory: Builds an unstarted ``ClientSession`` for a session id
        backing: Shared long-lived storage, used to recognise resumable ids
        idle_seconds: Sessions unused for longer are stopped and dropped
        watch_expiry: Run each session's periodic expiry check
        clock: Monotonic time source
    """

    def __init__(
        self,
        factory: Callable[[str], ClientSession],
        *,
        backing: KeyValueStorage,
        idle_seconds: float,
        watch_expiry: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self._backing = backing
        self._idle_seconds = idle_seconds
        self._watch_expiry = watch_expiry
        self._clock = clock
        self._sessions: Dict[str, ClientSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def _resumable(self, session_id: str) -> bool:
        if not _SESSION_ID.match(session_id):
            return False
        prefix = f"{session_id}/"
        return any(key.startswith(prefix) for key in self._backing.keys())

    async def acquire(self, session_id: Optional[str]) -> ClientSession:
        """
        Return the started session for ``session_id``.

        A new session (with a new id) is created when the id is missing,
        unknown and has nothing stored, or malformed.
        """
        await self.evict_idle()

        client = self._sessions.get(session_id) if session_id else None
        if client is None:
            if not (session_id and self._resumable(session_id)):
                session_id = new_session_id()
                logger.info(f"Opening client session {session_id[:8]}")
            else:
                logger.info(f"Resuming client session {session_id[:8]}")
            client = self._factory(session_id)
            self._sessions[session_id] = client

        client.last_seen = self._clock()
        try:
            await client.ready(watch_expiry=self._watch_expiry)
        except Exception:
            logger.exception(f"Client session {client.id[:8]} failed to start")
            await self.discard(client.id)
            raise
        return client

    async def discard(self, session_id: str) -> None:
        client = self._sessions.pop(session_id, None)
        if client is not None:
            await client.close()

    async def evict_idle(self) -> int:
        now = self._clock()
        idle = [sid for sid, c in self._sessions.items() if now - c.last_seen > self._idle_seconds]
        for sid in idle:
            logger.info(f"Evicting idle client session {sid[:8]}")
            await self.discard(sid)
        return len(idle)

    async def close_all(self) -> None:
        for sid in list(self._sessions):
            await self.discard(sid)
