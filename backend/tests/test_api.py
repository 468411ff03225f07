"""HTTP surface tests against an in-memory backend."""

import json
import logging

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from blueprint.core.container import AppContainer
from blueprint.core.storage import MemoryStorage
from blueprint.main import create_application
from blueprint.services.session_reconciler import PENDING_MESSAGE

API = "/api/v1"


@pytest_asyncio.fixture
async def container(gateway, test_config):
    gateway.auth.add_account("admin@example.com", "secret", "admin-1")
    gateway.auth.add_account("mod@example.com", "secret", "mod-1")
    gateway.auth.add_account("new@example.com", "secret", "pending-1")
    container = AppContainer(
        test_config,
        gateway_factory=gateway.for_client,
        local_storage=MemoryStorage(),
        watch_expiry=False,
    )
    yield container
    await container.aclose()


@pytest.fixture
def app(container):
    app = create_application()
    app.state.container = container
    return app


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def login(client, email):
    response = await client.post(f"{API}/auth/login", json={"email": email, "password": "secret"})
    assert response.status_code == 200, response.text
    return response.json()


# =============================================================================
# Public endpoints
# =============================================================================

@pytest.mark.asyncio
async def test_health(client):
    response = await client.get(f"{API}/health", headers={"X-Request-ID": "req-42"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["client_sessions"] == 0
    assert "set-cookie" not in response.headers
    assert response.headers["X-Request-ID"] == "req-42"
    assert response.headers["X-Trace-ID"] == "req-42"


@pytest.mark.asyncio
async def test_trace_id_takes_precedence_over_request_id(client):
    response = await client.get(f"{API}/health", headers={"X-Request-ID": "req-1", "X-Trace-ID": "trace-1"})

    assert response.headers["X-Request-ID"] == "trace-1"
    assert response.headers["X-Trace-ID"] == "trace-1"


@pytest.mark.asyncio
async def test_requests_are_audit_logged_with_client_session(client, caplog):
    caplog.set_level(logging.INFO, logger="blueprint.requests")
    await login(client, "admin@example.com")
    await client.get(f"{API}/health")
    await client.get(f"{API}/auth/me", headers={"X-Trace-ID": "trace-7"})

    events = [json.loads(r.getMessage()) for r in caplog.records if r.name == "blueprint.requests"]

    assert all(e["path"] != f"{API}/health" for e in events)
    me = [e for e in events if e["path"] == f"{API}/auth/me"]
    assert len(me) == 1
    assert me[0]["event"] == "request_completed"
    assert me[0]["request_id"] == "trace-7"
    assert me[0]["status_code"] == 200
    assert me[0]["user_id"] == "admin-1"
    assert len(me[0]["client_session"]) == 8


@pytest.mark.asyncio
async def test_missing_container_is_unavailable(container):
    app = create_application()
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get(f"{API}/health")

    assert response.status_code == 503


@pytest.mark.asyncio
async def test_state_snapshot_is_flattened_and_camel_cased(client):
    response = await client.get(f"{API}/state")

    assert response.status_code == 200
    data = response.json()
    first = data["settings"][0]
    assert first["sku"] == "A1"
    assert first["legNumber"] == "7"
    assert first["caseSize"] == "Large"
    assert first["line_speed"] == 120
    assert data["appConfig"] == {"vote_period_days": "7"}
    assert data["authState"] == "unauthenticated"
    assert data["user"] is None
    assert data["fields"][0]["categoryId"] == 1


@pytest.mark.asyncio
async def test_search_walks_leg_then_case_size(client):
    response = await client.get(f"{API}/search", params={"leg": "7"})
    assert response.json()["mode"] == "case_sizes"
    assert response.json()["caseSizes"] == ["Large", "Small"]

    response = await client.get(f"{API}/search", params={"leg": "7", "case_size": "Small"})
    data = response.json()
    assert data["mode"] == "results"
    assert [r["setting"]["sku"] for r in data["results"]] == ["B2"]
    assert data["results"][0]["lastWorked"] is None


@pytest.mark.asyncio
async def test_search_sku_overrides_case_size(client):
    response = await client.get(f"{API}/search", params={"leg": "7", "case_size": "Small", "sku": "a"})

    data = response.json()
    assert data["caseSize"] is None
    assert [r["setting"]["sku"] for r in data["results"]] == ["A1"]


@pytest.mark.asyncio
async def test_search_rejects_unknown_sort(client):
    response = await client.get(f"{API}/search", params={"leg": "7", "sort": "price"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_exact_lookup_and_detail(client):
    response = await client.get(f"{API}/search/exact", params={"leg": "7", "sku": "a1"})

    assert response.status_code == 200
    data = response.json()
    assert data["setting"]["id"] == 101
    assert [t["title"] for t in data["tabs"]] == ["Machine", "Packaging"]
    assert data["tabs"][0]["values"][0] == {"key": "line_speed", "name": "Line Speed", "type": "number", "value": 120}
    assert data["tabs"][1]["values"][0]["value"] == "-"
    assert data["feedbackLink"] == "/feedback?sku=A1&leg=7"

    missing = await client.get(f"{API}/search/exact", params={"leg": "9", "sku": "a1"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_setting_detail_not_found(client):
    assert (await client.get(f"{API}/settings/102")).status_code == 200
    assert (await client.get(f"{API}/settings/999")).status_code == 404


@pytest.mark.asyncio
async def test_guest_cannot_vote(client):
    response = await client.post(f"{API}/settings/101/votes")

    assert response.status_code == 401
    assert response.json()["detail"] == "You must be logged in to mark a setting as working."


@pytest.mark.asyncio
async def test_vote_then_cooldown(client):
    await login(client, "mod@example.com")

    first = await client.post(f"{API}/settings/101/votes")
    second = await client.post(f"{API}/settings/101/votes")

    assert first.status_code == 201
    assert first.json()["message"] == "Marked as working. Thanks!"
    assert second.status_code == 400


@pytest.mark.asyncio
async def test_feedback_submission_defaults_type_from_sku(client):
    response = await client.post(
        f"{API}/feedback",
        json={"name": "Tech", "message": "Belt slips at speed", "sku": "A1", "legNumber": "7"},
    )

    assert response.status_code == 201
    assert response.json()["message"] == "Thank you! Your feedback has been submitted."
    feedback = (await client.get(f"{API}/state")).json()["feedback"]
    assert feedback[0]["type"] == "change_request"
    assert feedback[0]["status"] == "pending"


@pytest.mark.asyncio
async def test_feedback_requires_message(client):
    response = await client.post(f"{API}/feedback", json={"name": "Tech", "message": ""})

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_navigation_depends_on_sign_in(client):
    guest = [item["label"] for item in (await client.get(f"{API}/navigation")).json()]
    assert guest == ["Search", "Feedback", "Login / Register"]

    await login(client, "mod@example.com")

    member = [item["label"] for item in (await client.get(f"{API}/navigation")).json()]
    assert member == ["Search", "Feedback", "Admin"]


@pytest.mark.asyncio
async def test_metrics_endpoint(client):
    await client.get(f"{API}/health")

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text


# =============================================================================
# Authentication
# =============================================================================

@pytest.mark.asyncio
async def test_login_me_logout(client):
    assert (await client.get(f"{API}/auth/me")).status_code == 401

    body = await login(client, "admin@example.com")
    assert body["data"]["role"] == "admin"
    assert body["data"]["firstName"] == "Ada"

    me = await client.get(f"{API}/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == "admin@example.com"

    assert (await client.post(f"{API}/auth/logout")).status_code == 200
    assert (await client.get(f"{API}/auth/me")).status_code == 401


@pytest.mark.asyncio
async def test_pending_login_is_forbidden(client):
    response = await client.post(f"{API}/auth/login", json={"email": "new@example.com", "password": "secret"})

    assert response.status_code == 403
    assert response.json()["detail"] == PENDING_MESSAGE


@pytest.mark.asyncio
async def test_bad_password_is_rejected(client):
    response = await client.post(f"{API}/auth/login", json={"email": "admin@example.com", "password": "nope"})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_register_creates_pending_account(client, gateway):
    response = await client.post(
        f"{API}/auth/register",
        json={"email": "fresh@example.com", "password": "secret1", "firstName": "Fay"},
    )

    assert response.status_code == 201
    profile = next(p for p in gateway.tables["profiles"] if p["email"] == "fresh@example.com")
    assert profile["status"] == "pending"
    assert profile["first_name"] == "Fay"


# =============================================================================
# Admin dashboard
# =============================================================================

@pytest.mark.asyncio
async def test_admin_tabs_require_sign_in(client):
    assert (await client.get(f"{API}/admin/tabs")).status_code == 401


@pytest.mark.asyncio
async def test_moderator_tabs_and_admin_only_routes(client):
    await login(client, "mod@example.com")

    tabs = await client.get(f"{API}/admin/tabs")
    assert tabs.json() == {"role": "moderator", "tabs": ["settings", "structure", "feedback"]}

    users = await client.get(f"{API}/admin/users")
    assert users.status_code == 403
    assert users.json()["detail"] == "Admin access required."


@pytest.mark.asyncio
async def test_admin_setting_lifecycle(client, gateway):
    await login(client, "admin@example.com")

    created = await client.post(
        f"{API}/admin/settings",
        json={"sku": "D4", "legNumber": "9", "caseSize": "Large", "line_speed": "88"},
    )
    assert created.status_code == 201
    new_id = created.json()["data"]["id"]
    assert created.json()["data"]["line_speed"] == 88

    updated = await client.put(
        f"{API}/admin/settings/{new_id}",
        json={"sku": "D4", "legNumber": "9", "caseSize": "Small", "line_speed": 90},
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["caseSize"] == "Small"

    invalid = await client.post(f"{API}/admin/settings", json={"sku": "", "legNumber": "9", "caseSize": "Large"})
    assert invalid.status_code == 400

    deleted = await client.delete(f"{API}/admin/settings/{new_id}")
    assert deleted.status_code == 200

    history = (await client.get(f"{API}/admin/history")).json()["data"]
    assert sorted(h["action"] for h in history) == ["create", "delete", "update"]
    assert all("summary" in h for h in history)


@pytest.mark.asyncio
async def test_category_in_use_cannot_be_deleted(client, gateway):
    await login(client, "admin@example.com")

    response = await client.delete(f"{API}/admin/categories/1")

    assert response.status_code == 400
    assert "still has fields" in response.json()["detail"]
    assert gateway.calls_to("delete", "categories") == 0


@pytest.mark.asyncio
async def test_field_management(client):
    await login(client, "mod@example.com")

    created = await client.post(f"{API}/admin/fields", json={"name": "Belt Width", "categoryId": 2, "type": "number"})
    assert created.status_code == 201
    field_id = created.json()["data"]["id"]
    assert created.json()["data"]["key"] == "belt_width"

    moved = await client.post(f"{API}/admin/fields/{field_id}/next-category")
    assert moved.json()["data"]["categoryId"] == 1

    renamed = await client.patch(f"{API}/admin/fields/{field_id}", json={"name": "Belt Width (mm)"})
    assert renamed.json()["data"]["name"] == "Belt Width (mm)"

    duplicate = await client.post(f"{API}/admin/fields", json={"name": "Belt Width", "categoryId": 2})
    assert duplicate.status_code == 400


@pytest.mark.asyncio
async def test_admin_approves_pending_user(client, gateway):
    await login(client, "admin@example.com")

    response = await client.put(f"{API}/admin/users/pending-1/status", json={"status": "approved"})

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "approved"
    await client.post(f"{API}/auth/logout")
    assert (await login(client, "new@example.com"))["success"] is True


@pytest.mark.asyncio
async def test_admin_config_vote_period(client):
    await login(client, "admin@example.com")

    bad = await client.put(f"{API}/admin/config", json={"votePeriodDays": 0})
    assert bad.status_code == 400

    ok = await client.put(f"{API}/admin/config", json={"votePeriodDays": 3})
    assert ok.status_code == 200

    config = await client.get(f"{API}/admin/config")
    assert config.json()["data"]["vote_period_days"] == "3"


@pytest.mark.asyncio
async def test_repair_signs_the_client_out(client):
    await login(client, "admin@example.com")

    response = await client.post(f"{API}/state/repair")

    assert response.status_code == 200
    assert response.json()["user"] is None
    assert response.json()["settings"]


# =============================================================================
# Client sessions
# =============================================================================

@pytest.mark.asyncio
async def test_sign_in_is_scoped_to_the_calling_client(app, container):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as admin, \
            AsyncClient(transport=transport, base_url="http://test") as anonymous:
        await login(admin, "admin@example.com")
        assert (await admin.get(f"{API}/admin/users")).status_code == 200

        users = await anonymous.get(f"{API}/admin/users")
        me = await anonymous.get(f"{API}/auth/me")

    assert users.status_code == 401
    assert me.status_code == 401
    signed_in = [s for s in container.sessions._sessions.values() if s.state.user is not None]
    assert [s.state.user.id for s in signed_in] == ["admin-1"]
    assert signed_in[0].gateway.auth.access_token == "token-admin-1"
    others = [s for s in container.sessions._sessions.values() if s is not signed_in[0]]
    assert others and all(s.gateway.auth.access_token is None for s in others)


@pytest.mark.asyncio
async def test_first_response_sets_http_only_session_cookie(client, test_config):
    response = await client.get(f"{API}/state")

    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{test_config.SESSION_COOKIE_NAME}=")
    assert "HttpOnly" in cookie
    assert "samesite=lax" in cookie.lower()

    again = await client.get(f"{API}/state")
    assert "set-cookie" not in again.headers


@pytest.mark.asyncio
async def test_forged_session_cookie_is_replaced(app, container, test_config):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={test_config.SESSION_COOKIE_NAME: "chosen-by-the-client"},
    ) as ac:
        response = await ac.get(f"{API}/state")

    assert response.status_code == 200
    assert "chosen-by-the-client" not in container.sessions
    assert len(container.sessions) == 1


@pytest.mark.asyncio
async def test_admin_changes_reach_other_clients_on_refresh(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as admin, \
            AsyncClient(transport=transport, base_url="http://test") as guest:
        assert len((await guest.get(f"{API}/state")).json()["settings"]) == 3

        await login(admin, "admin@example.com")
        created = await admin.post(
            f"{API}/admin/settings",
            json={"sku": "D4", "legNumber": "9", "caseSize": "Large"},
        )
        assert created.status_code == 201

        refreshed = await guest.post(f"{API}/state/refresh")

    assert [s["sku"] for s in refreshed.json()["settings"]][-1] == "D4"
    assert refreshed.json()["user"] is None
