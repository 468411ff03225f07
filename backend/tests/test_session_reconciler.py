"""Tests for the session reconciler (auth events, sign-in, registration, expiry)."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from blueprint.gateway.exceptions import GatewayError
from blueprint.gateway.models import AuthEvent, AuthEventType, AuthUser
from blueprint.services.session_reconciler import (
    EXPIRED_MESSAGE,
    MISSING_PROFILE_MESSAGE,
    PENDING_MESSAGE,
    REGISTERED_MESSAGE,
    REJECTED_MESSAGE,
    AuthState,
    SessionReconciler,
)
from conftest import SESSION_STORAGE_KEY


@pytest_asyncio.fixture
async def running(reconciler):
    await reconciler.start(watch_expiry=False)
    yield reconciler
    await reconciler.stop()


def _profile(gateway, user_id):
    return next(p for p in gateway.tables["profiles"] if p["id"] == user_id)


@pytest.mark.asyncio
async def test_start_without_session_loads_data_as_guest(running, state):
    await running.settle()

    assert running.auth_state == AuthState.UNAUTHENTICATED
    assert state.user is None
    assert [s.sku for s in state.settings] == ["A1", "B2", "C3"]


@pytest.mark.asyncio
async def test_approved_sign_in_adopts_user_and_loads_data(running, state, gateway, identity):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")

    result = await running.sign_in("admin@example.com", "secret")

    assert result.success
    assert result.message == "Signed in."
    assert running.auth_state == AuthState.APPROVED
    assert state.user.id == "admin-1"
    assert state.user.role == "admin"
    assert identity.load().email == "admin@example.com"
    assert identity.expiry() is None
    assert state.settings


@pytest.mark.asyncio
async def test_sign_in_without_remember_me_sets_expiry(running, gateway, identity, clock):
    gateway.auth.add_account("mod@example.com", "secret", "mod-1")

    result = await running.sign_in("mod@example.com", "secret", remember_me=False)

    assert result.success
    assert identity.expiry() == int((clock.time() + 15 * 60) * 1000)


@pytest.mark.asyncio
async def test_pending_sign_in_ends_without_user_or_session(running, state, gateway, identity):
    gateway.auth.add_account("new@example.com", "secret", "pending-1")

    result = await running.sign_in("new@example.com", "secret")

    assert not result.success
    assert result.reason == "forbidden"
    assert result.message == PENDING_MESSAGE
    assert state.user is None
    assert identity.load() is None
    assert gateway.local_storage.get_item(SESSION_STORAGE_KEY) is None
    assert gateway.auth.sign_out_calls >= 1
    assert running.auth_state == AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_pending_profile_event_clears_cached_identity(reconciler, state, gateway, identity, admin_user):
    state.login(admin_user)
    session = gateway.auth.start_session(AuthUser(id="pending-1", email="new@example.com"))

    outcome = await reconciler.handle_event(AuthEvent(type=AuthEventType.SIGNED_IN, session=session))

    assert outcome == AuthState.UNAUTHENTICATED
    assert reconciler.last_message == PENDING_MESSAGE
    assert state.user is None
    assert identity.load() is None
    assert gateway.local_storage.get_item(SESSION_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_missing_profile_is_created_as_pending(running, state, gateway):
    gateway.auth.add_account("ghost@example.com", "secret", "ghost-1")

    result = await running.sign_in("ghost@example.com", "secret")

    assert not result.success
    assert result.message == MISSING_PROFILE_MESSAGE
    assert state.user is None
    created = _profile(gateway, "ghost-1")
    assert created["status"] == "pending"
    assert created["role"] == "moderator"


@pytest.mark.asyncio
async def test_rejected_profile_is_refused(running, state, gateway):
    _profile(gateway, "mod-1")["status"] = "rejected"
    gateway.auth.add_account("mod@example.com", "secret", "mod-1")

    result = await running.sign_in("mod@example.com", "secret")

    assert not result.success
    assert result.message == REJECTED_MESSAGE
    assert state.user is None


@pytest.mark.asyncio
async def test_profile_lookup_failure_fails_safe(running, state, gateway):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")
    gateway.fail("select", "profiles")

    result = await running.sign_in("admin@example.com", "secret")

    assert not result.success
    assert state.user is None
    assert running.auth_state == AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_wrong_password_is_invalid(running, gateway, state):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")

    result = await running.sign_in("admin@example.com", "wrong")

    assert not result.success
    assert result.reason == "invalid"
    assert result.message == "Invalid email or password."
    assert state.user is None


@pytest.mark.asyncio
async def test_signed_out_event_clears_locally(reconciler, state, gateway, identity, admin_user):
    state.login(admin_user)
    identity.set_expiry(60)

    await reconciler.handle_event(AuthEvent(type=AuthEventType.SIGNED_OUT))

    assert state.user is None
    assert identity.load() is None
    assert identity.expiry() is None
    assert gateway.auth.sign_out_calls == 0


@pytest.mark.asyncio
async def test_start_drops_cached_identity_without_valid_session(reconciler, state, identity, admin_user):
    identity.save(admin_user)

    await reconciler.start(watch_expiry=False)
    try:
        assert state.user is None
        assert identity.load() is None
    finally:
        await reconciler.stop()


@pytest.mark.asyncio
async def test_start_drops_cached_identity_when_session_check_errors(reconciler, state, gateway, identity, admin_user):
    identity.save(admin_user)
    gateway.auth.start_session(AuthUser(id="admin-1", email="admin@example.com"))
    gateway.auth.get_user_error = GatewayError("backend unavailable", status_code=503)

    await reconciler.start(watch_expiry=False)
    try:
        assert state.user is None
        assert gateway.local_storage.get_item(SESSION_STORAGE_KEY) is None
    finally:
        await reconciler.stop()


@pytest.mark.asyncio
async def test_start_restores_valid_session(reconciler, state, gateway, identity, admin_user):
    identity.save(admin_user)
    gateway.auth.start_session(AuthUser(id="admin-1", email="admin@example.com"))

    await reconciler.start(watch_expiry=False)
    try:
        await reconciler.settle()
        assert reconciler.auth_state == AuthState.APPROVED
        assert state.user.id == "admin-1"
    finally:
        await reconciler.stop()


@pytest.mark.asyncio
async def test_check_expiry_logs_out_after_deadline(reconciler, state, gateway, identity, clock, admin_user):
    state.login(admin_user)
    gateway.auth.start_session(AuthUser(id="admin-1", email="admin@example.com"))
    identity.set_expiry(60)

    assert await reconciler.check_expiry() is False
    assert state.user is not None

    clock.advance(seconds=61)

    assert await reconciler.check_expiry() is True
    assert state.user is None
    assert reconciler.last_message == EXPIRED_MESSAGE
    assert identity.expiry() is None
    assert gateway.local_storage.get_item(SESSION_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_register_creates_pending_profile(running, state, gateway):
    result = await running.register("fresh@example.com", "secret1", first_name="Fay", last_name="Fresh")

    assert result.success
    assert result.message == REGISTERED_MESSAGE
    profile = _profile(gateway, result.data["id"])
    assert profile["status"] == "pending"
    assert profile["first_name"] == "Fay"
    assert state.user is None


@pytest.mark.asyncio
async def test_register_with_auto_confirm_discards_session(running, state, gateway):
    gateway.auth.auto_confirm = True

    result = await running.register("fresh@example.com", "secret1")

    assert result.success
    assert state.user is None
    assert gateway.local_storage.get_item(SESSION_STORAGE_KEY) is None
    assert gateway.auth.sign_out_calls >= 1


@pytest.mark.asyncio
async def test_register_existing_email_conflicts(running, gateway):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")

    result = await running.register("admin@example.com", "secret1")

    assert not result.success
    assert result.reason == "conflict"


@pytest.mark.asyncio
async def test_logout_clears_user(running, state, gateway):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")
    await running.sign_in("admin@example.com", "secret")

    result = await running.logout()

    assert result.success
    assert state.user is None
    assert running.auth_state == AuthState.UNAUTHENTICATED


@pytest.mark.asyncio
async def test_stop_unsubscribes_from_auth_events(reconciler, gateway):
    await reconciler.start(watch_expiry=False)
    assert len(gateway.auth._subscribers) == 1

    await reconciler.stop()

    assert gateway.auth._subscribers == []


@pytest.mark.asyncio
async def test_expiry_loop_checks_periodically(gateway, state, identity, test_config):
    config = test_config.model_copy(update={"SESSION_EXPIRY_CHECK_SECONDS": 0.01})
    reconciler = SessionReconciler(gateway, state, identity, config=config)

    with patch.object(reconciler, "check_expiry", AsyncMock(return_value=False)) as check:
        await reconciler.start()
        await asyncio.sleep(0.05)
        await reconciler.stop()

    # once at start, then from the loop
    assert check.await_count >= 2
