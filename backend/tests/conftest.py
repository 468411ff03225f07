"""Pytest configuration.

Settings are environment-driven; set import-safe test defaults before
anything from ``blueprint`` is imported.

The ``FakeGateway`` below implements the gateway contract in memory (tables
plus auth with a real ``AuthEventStream``) so store, reconciler and endpoint
tests run without a backend.
"""

import os

os.environ["APP_ENV"] = "test"
os.environ.setdefault("APP_NAME", "Blueprint Settings")
os.environ.setdefault("API_PREFIX", "/api/v1")
os.environ["CORS_ORIGINS"] = "[]"
os.environ.setdefault("SUPABASE_URL", "http://test.supabase.local")

import asyncio
import copy
import itertools
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from blueprint.core.config import Settings
from blueprint.core.storage import MemoryStorage
from blueprint.gateway.auth import AuthEventStream
from blueprint.gateway.exceptions import AuthenticationError, ConflictError, GatewayError
from blueprint.gateway.models import AuthEvent, AuthEventType, AuthResponse, AuthSession, AuthUser
from blueprint.schemas.profile import UserSnapshot
from blueprint.services.identity_cache import IdentityCache
from blueprint.services.session_reconciler import SessionReconciler
from blueprint.services.state_store import AppState

SESSION_STORAGE_KEY = "sb-test-auth-token"


class FakeClock:
    """Controllable time source: call for an aware datetime, ``time()`` for epoch seconds."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeAuth:
    """In-memory auth subsystem that persists its session like the real client."""

    def __init__(self, storage: MemoryStorage, accounts: Optional[Dict[str, Tuple[str, AuthUser]]] = None):
        self.storage = storage
        self.accounts: Dict[str, Tuple[str, AuthUser]] = accounts if accounts is not None else {}
        self.auto_confirm = False
        self.sign_out_delay = 0.0
        self.sign_out_calls = 0
        self.get_user_error: Optional[Exception] = None
        self._subscribers: List[AuthEventStream] = []

    # session persistence
    @property
    def session(self) -> Optional[AuthSession]:
        raw = self.storage.get_item(SESSION_STORAGE_KEY)
        return AuthSession.model_validate(json.loads(raw)) if raw else None

    def _set_session(self, session: Optional[AuthSession]) -> None:
        if session is None:
            self.storage.remove_item(SESSION_STORAGE_KEY)
        else:
            self.storage.set_item(SESSION_STORAGE_KEY, session.model_dump_json())

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token if self.session else None

    # events
    def subscribe(self) -> AuthEventStream:
        stream = AuthEventStream(self)
        self._subscribers.append(stream)
        stream.publish(AuthEvent(type=AuthEventType.INITIAL_SESSION, session=self.session))
        return stream

    def _unsubscribe(self, stream: AuthEventStream) -> None:
        if stream in self._subscribers:
            self._subscribers.remove(stream)

    def _emit(self, event_type: AuthEventType, session: Optional[AuthSession]) -> None:
        for stream in list(self._subscribers):
            stream.publish(AuthEvent(type=event_type, session=session))

    # helpers
    def add_account(self, email: str, password: str, user_id: str) -> AuthUser:
        user = AuthUser(id=user_id, email=email)
        self.accounts[email] = (password, user)
        return user

    def start_session(self, user: AuthUser) -> AuthSession:
        session = AuthSession(access_token=f"token-{user.id}", refresh_token="refresh", user=user)
        self._set_session(session)
        return session

    # operations
    async def sign_up(self, email: str, password: str, data: Optional[Dict[str, Any]] = None) -> AuthResponse:
        if email in self.accounts:
            raise ConflictError("User already registered", status_code=409)
        user = self.add_account(email, password, f"user-{len(self.accounts) + 1}")
        if not self.auto_confirm:
            return AuthResponse(user=user, session=None)
        session = self.start_session(user)
        self._emit(AuthEventType.SIGNED_IN, session)
        return AuthResponse(user=user, session=session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResponse:
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthenticationError("Invalid login credentials", status_code=400)
        session = self.start_session(account[1])
        self._emit(AuthEventType.SIGNED_IN, session)
        return AuthResponse(user=account[1], session=session)

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def get_user(self) -> Optional[AuthUser]:
        if self.get_user_error is not None:
            raise self.get_user_error
        return self.session.user if self.session else None

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        revoking = self.session
        if self.sign_out_delay:
            await asyncio.sleep(self.sign_out_delay)
        current = self.session
        if revoking is None or current is None or current.access_token != revoking.access_token:
            return
        self._set_session(None)
        self._emit(AuthEventType.SIGNED_OUT, None)


def _matches(row: Dict[str, Any], match: Optional[Dict[str, Any]]) -> bool:
    return all(str(row.get(column)) == str(value) for column, value in (match or {}).items())


class FakeGateway:
    """In-memory tables with call recording and injectable failures."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = {
            name: [dict(row) for row in rows] for name, rows in (tables or {}).items()
        }
        self.local_storage = MemoryStorage()
        self.auth = FakeAuth(self.local_storage)
        self.calls: List[Tuple[str, str]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.select_delay = 0.0
        self._ids = itertools.count(1001)

    def for_client(self, storage) -> "FakeGateway":
        """A view sharing tables, accounts and the call log, with its own auth session."""
        view = copy.copy(self)
        view.local_storage = storage
        view.auth = FakeAuth(storage, accounts=self.auth.accounts)
        return view

    def calls_to(self, operation: str, table: str) -> int:
        return self.calls.count((operation, table))

    def fail(self, operation: str, table: str, error: Optional[Exception] = None) -> None:
        self.failures[(operation, table)] = error or GatewayError("backend unavailable", status_code=503)

    def _record(self, operation: str, table: str) -> None:
        self.calls.append((operation, table))
        error = self.failures.get((operation, table))
        if error is not None:
            raise error

    def _new_row(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(row)
        if "id" not in row:
            row["id"] = next(self._ids)
        if table in ("feedback", "history", "profiles", "votes"):
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return row

    async def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Dict[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        maybe_single: bool = False,
    ):
        self._record("select", table)
        if self.select_delay:
            await asyncio.sleep(self.select_delay)
        rows = [dict(r) for r in self.tables.get(table, []) if _matches(r, filters)]
        if order:
            rows.sort(key=lambda r: str(r.get(order) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if maybe_single:
            if len(rows) > 1:
                raise GatewayError("multiple rows", code="PGRST116")
            return rows[0] if rows else None
        return rows

    async def insert(self, table: str, rows):
        self._record("insert", table)
        payload = [rows] if isinstance(rows, dict) else list(rows)
        stored = [self._new_row(table, r) for r in payload]
        self.tables.setdefault(table, []).extend(stored)
        return [dict(r) for r in stored]

    async def update(self, table: str, values: Dict[str, Any], *, match: Dict[str, Any]):
        self._record("update", table)
        updated = []
        for row in self.tables.get(table, []):
            if _matches(row, match):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def delete(self, table: str, *, match: Dict[str, Any]) -> None:
        self._record("delete", table)
        self.tables[table] = [r for r in self.tables.get(table, []) if not _matches(r, match)]

    async def upsert(self, table: str, rows, *, on_conflict: str):
        self._record("upsert", table)
        payload = [rows] if isinstance(rows, dict) else list(rows)
        result = []
        existing = self.tables.setdefault(table, [])
        for row in payload:
            current = next((r for r in existing if str(r.get(on_conflict)) == str(row.get(on_conflict))), None)
            if current is None:
                current = self._new_row(table, row)
                existing.append(current)
            else:
                current.update(row)
            result.append(dict(current))
        return result

    async def aclose(self) -> None:
        pass


def seed_tables() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "categories": [
            {"id": 1, "name": "Machine"},
            {"id": 2, "name": "Packaging"},
        ],
        "fields": [
            {"id": 11, "name": "Line Speed", "key": "line_speed", "type": "number", "category_id": 1},
            {"id": 12, "name": "Glue Temp", "key": "glue_temp", "type": "text", "category_id": 2},
        ],
        "settings": [
            {
                "id": 101, "sku": "A1", "leg_number": "7", "case_size": "Large",
                "last_updated": "2026-02-01T08:00:00+00:00", "data": {"line_speed": 120},
            },
            {
                "id": 102, "sku": "B2", "leg_number": "7", "case_size": "Small",
                "last_updated": "2026-02-03T08:00:00+00:00", "data": {"glue_temp": "180C"},
            },
            {
                "id": 103, "sku": "C3", "leg_number": "9", "case_size": "Small",
                "last_updated": None, "data": {},
            },
        ],
        "feedback": [],
        "votes": [],
        "app_config": [{"key": "vote_period_days", "value": "7"}],
        "profiles": [
            {"id": "admin-1", "email": "admin@example.com", "role": "admin", "status": "approved",
             "first_name": "Ada", "last_name": "Admin", "created_at": "2026-01-01T00:00:00+00:00"},
            {"id": "mod-1", "email": "mod@example.com", "role": "moderator", "status": "approved",
             "first_name": "Mo", "last_name": "Derator", "created_at": "2026-01-02T00:00:00+00:00"},
            {"id": "pending-1", "email": "new@example.com", "role": "moderator", "status": "pending",
             "created_at": "2026-01-03T00:00:00+00:00"},
        ],
        "history": [],
    }


@pytest.fixture
def test_config() -> Settings:
    return Settings(
        APP_ENV="test",
        FETCH_RETRIES=1,
        FETCH_INITIAL_DELAY_SECONDS=0.0,
        FETCH_TIMEOUT_SECONDS=1.0,
        SIGN_OUT_TIMEOUT_SECONDS=0.05,
        SESSION_EXPIRY_CHECK_SECONDS=0,
        SESSION_TTL_MINUTES=15,
        DEFAULT_VOTE_PERIOD_DAYS=7,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway(seed_tables())


@pytest.fixture
def identity(gateway: FakeGateway, clock: FakeClock) -> IdentityCache:
    return IdentityCache(MemoryStorage(), gateway.local_storage, clock=clock.time)


@pytest.fixture
def state(gateway: FakeGateway, identity: IdentityCache, test_config: Settings, clock: FakeClock) -> AppState:
    return AppState(gateway, identity, config=test_config, clock=clock)


@pytest_asyncio.fixture
async def loaded_state(state: AppState) -> AppState:
    await state.fetch_data()
    return state


@pytest.fixture
def admin_user() -> UserSnapshot:
    return UserSnapshot(id="admin-1", email="admin@example.com", role="admin", first_name="Ada")


@pytest.fixture
def moderator_user() -> UserSnapshot:
    return UserSnapshot(id="mod-1", email="mod@example.com", role="moderator")


@pytest.fixture
def reconciler(gateway: FakeGateway, state: AppState, identity: IdentityCache, test_config: Settings) -> SessionReconciler:
    return SessionReconciler(gateway, state, identity, config=test_config)
