"""
Gateway Auth Client
===================

Sign-up, sign-in, sign-out, session/user retrieval and auth-state change
notifications against the managed backend's auth API.

The current backend session is persisted in the long-lived storage tier
under ``sb-<project-ref>-auth-token`` so it survives restarts and can be
swept by the identity cache's prefix cleanup.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from blueprint.core.storage import KeyValueStorage
from blueprint.gateway.exceptions import (
    AuthenticationError,
    AuthorizationError,
    raise_for_response,
)
from blueprint.gateway.models import (
    AuthEvent,
    AuthEventType,
    AuthResponse,
    AuthSession,
    AuthUser,
)

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "sb-"

_CLOSED = object()


class AuthEventStream:
    """
    Long-lived channel of auth-state change events.

    Consumers iterate it with ``async for`` and acknowledge each event with
    ``task_done()`` once handled, which lets producers ``join()`` until every
    published event has been processed. ``close()`` detaches the stream from
    its publisher and ends iteration.
    """

    def __init__(self, owner: "AuthClient"):
        self._owner = owner
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: AuthEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def __aiter__(self) -> "AuthEventStream":
        return self

    async def __anext__(self) -> AuthEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.task_done()
            raise StopAsyncIteration
        return item

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published event has been acknowledged."""
        await self._queue.join()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._owner._unsubscribe(self)
        self._queue.put_nowait(_CLOSED)


class AuthClient:
    """Client for the auth API (``/auth/v1``)."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        anon_key: str,
        storage: KeyValueStorage,
        storage_key: str,
    ):
        self._http = http
        self._anon_key = anon_key
        self._storage = storage
        self.storage_key = storage_key
        self._subscribers: List[AuthEventStream] = []

    # =========================================================================
    # Session persistence
    # =========================================================================

    def _load_session(self) -> Optional[AuthSession]:
        raw = self._storage.get_item(self.storage_key)
        if not raw:
            return None
        try:
            return AuthSession.model_validate(json.loads(raw))
        except ValueError as e:
            logger.warning(f"Discarding unreadable stored session: {e}")
            self._storage.remove_item(self.storage_key)
            return None

    def _save_session(self, session: Optional[AuthSession]) -> None:
        if session is None:
            self._storage.remove_item(self.storage_key)
        else:
            self._storage.set_item(self.storage_key, session.model_dump_json())

    @property
    def access_token(self) -> Optional[str]:
        session = self._load_session()
        return session.access_token if session else None

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {access_token or self._anon_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self) -> AuthEventStream:
        """
        Subscribe to auth-state changes.

        The stream immediately receives an ``INITIAL_SESSION`` event carrying
        the stored session (or ``None`` for a guest).
        """
        stream = AuthEventStream(self)
        self._subscribers.append(stream)
        stream.publish(AuthEvent(type=AuthEventType.INITIAL_SESSION, session=self._load_session()))
        return stream

    def _unsubscribe(self, stream: AuthEventStream) -> None:
        if stream in self._subscribers:
            self._subscribers.remove(stream)

    def _emit(self, event_type: AuthEventType, session: Optional[AuthSession]) -> None:
        event = AuthEvent(type=event_type, session=session)
        for stream in list(self._subscribers):
            stream.publish(event)

    # =========================================================================
    # Auth operations
    # =========================================================================

    @staticmethod
    def _parse_auth_payload(data: Dict[str, Any]) -> AuthResponse:
        if data.get("access_token"):
            session = AuthSession.model_validate(data)
            return AuthResponse(user=session.user, session=session)
        # Sign-up without auto-confirm returns the bare user object.
        user_data = data.get("user") or data
        user = AuthUser.model_validate(user_data) if user_data.get("id") else None
        return AuthResponse(user=user, session=None)

    async def sign_up(
        self,
        email: str,
        password: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> AuthResponse:
        """Register a new credential. Emits SIGNED_IN when auto-confirmed."""
        response = await self._http.post(
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": data or {}},
            headers=self._headers(),
        )
        raise_for_response(response)
        result = self._parse_auth_payload(response.json())
        if result.session:
            self._save_session(result.session)
            self._emit(AuthEventType.SIGNED_IN, result.session)
        return result

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        """Exchange email/password for a session. Emits SIGNED_IN."""
        response = await self._http.post(
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        raise_for_response(response)
        result = self._parse_auth_payload(response.json())
        if result.session is None:
            raise AuthenticationError("Sign-in did not return a session", status_code=response.status_code)
        self._save_session(result.session)
        self._emit(AuthEventType.SIGNED_IN, result.session)
        return result

    async def refresh_session(self) -> Optional[AuthSession]:
        """Trade the stored refresh token for a new session. Emits TOKEN_REFRESHED."""
        session = self._load_session()
        if session is None or not session.refresh_token:
            return None
        response = await self._http.post(
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": session.refresh_token},
            headers=self._headers(),
        )
        if response.status_code in (400, 401):
            logger.info("Stored refresh token rejected; dropping backend session")
            self._save_session(None)
            self._emit(AuthEventType.SIGNED_OUT, None)
            return None
        raise_for_response(response)
        refreshed = AuthSession.model_validate(response.json())
        self._save_session(refreshed)
        self._emit(AuthEventType.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def get_session(self) -> Optional[AuthSession]:
        """Return the stored session, refreshing it first when expired."""
        session = self._load_session()
        if session is not None and session.is_expired():
            return await self.refresh_session()
        return session

    async def get_user(self) -> Optional[AuthUser]:
        """
        Strict server-side identity check.

        Returns None when there is no session or the backend rejects the
        token; transport and server errors propagate.
        """
        session = await self.get_session()
        if session is None:
            return None
        response = await self._http.get(
            "/auth/v1/user",
            headers=self._headers(session.access_token),
        )
        try:
            raise_for_response(response)
        except (AuthenticationError, AuthorizationError) as e:
            logger.info(f"Backend rejected stored session: {e.message}")
            return None
        return AuthUser.model_validate(response.json())

    async def sign_out(self) -> None:
        """
        Revoke the session remotely and forget it locally. Emits SIGNED_OUT.

        The local session is dropped even when the remote call fails. If a
        different session was stored while the remote call ran, that newer
        session is kept and no event is emitted.
        """
        session = self._load_session()
        if session is None:
            return
        try:
            response = await self._http.post(
                "/auth/v1/logout",
                headers=self._headers(session.access_token),
            )
            if response.status_code not in (401, 403, 404):
                raise_for_response(response)
        finally:
            current = self._load_session()
            if current is not None and current.access_token != session.access_token:
                logger.info("Session replaced while signing out; keeping the newer session")
            else:
                self._save_session(None)
                self._emit(AuthEventType.SIGNED_OUT, None)
