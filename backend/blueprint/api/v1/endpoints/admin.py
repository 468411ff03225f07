"""
Admin dashboard endpoints.

Moderators manage settings, structure and feedback; users, history, votes
and configuration are admin-only. Role checks happen in the dashboard
service, which answers before any backend call.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from blueprint.api.deps import get_dashboard, raise_for_result, to_response
from blueprint.schemas.api import (
    CategoryRequest,
    ConfigRequest,
    FieldCreateRequest,
    FieldUpdateRequest,
    ResultResponse,
    UserRoleRequest,
    UserStatusRequest,
)
from blueprint.schemas.results import OperationResult
from blueprint.services.admin_dashboard import AdminDashboard, summarize

router = APIRouter()


@router.get("/tabs")
async def dashboard_tabs(dashboard: AdminDashboard = Depends(get_dashboard)):
    user = dashboard.state.user
    if user is None:
        raise_for_result(OperationResult.fail("You must be logged in.", reason="login_required"))
    return {"role": user.role, "tabs": dashboard.tabs()}


# =============================================================================
# Settings
# =============================================================================

@router.post("/settings", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def create_setting(
    form: Dict[str, Any] = Body(...),
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    return to_response(await dashboard.save_setting(form))


@router.put("/settings/{setting_id}", response_model=ResultResponse)
async def update_setting(
    setting_id: str,
    form: Dict[str, Any] = Body(...),
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    return to_response(await dashboard.save_setting(form, setting_id=setting_id))


@router.delete("/settings/{setting_id}", response_model=ResultResponse)
async def delete_setting(setting_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.delete_setting(setting_id))


# =============================================================================
# Structure
# =============================================================================

@router.post("/categories", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def create_category(body: CategoryRequest, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.add_category(body.name))


@router.put("/categories/{category_id}", response_model=ResultResponse)
async def rename_category(
    category_id: str,
    body: CategoryRequest,
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    return to_response(await dashboard.rename_category(category_id, body.name))


@router.delete("/categories/{category_id}", response_model=ResultResponse)
async def delete_category(category_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.delete_category(category_id))


@router.post("/fields", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def create_field(body: FieldCreateRequest, dashboard: AdminDashboard = Depends(get_dashboard)):
    result = await dashboard.add_field(body.name, body.category_id, key=body.key, type=body.type)
    return to_response(result)


@router.patch("/fields/{field_id}", response_model=ResultResponse)
async def update_field(
    field_id: str,
    body: FieldUpdateRequest,
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    updates = body.model_dump(exclude_none=True)
    return to_response(await dashboard.update_field(field_id, updates))


@router.delete("/fields/{field_id}", response_model=ResultResponse)
async def delete_field(field_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.remove_field(field_id))


@router.post("/fields/{field_id}/next-category", response_model=ResultResponse)
async def move_field(field_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.move_field_to_next_category(field_id))


# =============================================================================
# Feedback
# =============================================================================

@router.get("/feedback", response_model=ResultResponse)
async def pending_feedback(dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(dashboard.pending_feedback())


@router.post("/feedback/{feedback_id}/resolve", response_model=ResultResponse)
async def resolve_feedback(feedback_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.resolve_feedback(feedback_id))


@router.delete("/feedback/{feedback_id}", response_model=ResultResponse)
async def delete_feedback(feedback_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.delete_feedback(feedback_id))


# =============================================================================
# Users (admin)
# =============================================================================

@router.get("/users", response_model=ResultResponse)
async def list_users(dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.list_users())


@router.put("/users/{user_id}/status", response_model=ResultResponse)
async def set_user_status(
    user_id: str,
    body: UserStatusRequest,
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    return to_response(await dashboard.set_user_status(user_id, body.status))


@router.put("/users/{user_id}/role", response_model=ResultResponse)
async def set_user_role(
    user_id: str,
    body: UserRoleRequest,
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    return to_response(await dashboard.set_user_role(user_id, body.role))


# =============================================================================
# History, votes and configuration (admin)
# =============================================================================

@router.get("/history", response_model=ResultResponse)
async def list_history(
    limit: Optional[int] = Query(None, ge=1, le=1000),
    dashboard: AdminDashboard = Depends(get_dashboard),
):
    result = raise_for_result(await dashboard.list_history(limit))
    entries = [
        {**entry.model_dump(by_alias=True, mode="json"), "summary": summarize(entry)}
        for entry in result.data
    ]
    return ResultResponse(data=entries)


@router.delete("/history/{entry_id}", response_model=ResultResponse)
async def delete_history_entry(entry_id: str, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.delete_history_entry(entry_id))


@router.get("/votes", response_model=ResultResponse)
async def list_votes(dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.list_votes())


@router.get("/config", response_model=ResultResponse)
async def get_config(dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(dashboard.get_config())


@router.put("/config", response_model=ResultResponse)
async def save_config(body: ConfigRequest, dashboard: AdminDashboard = Depends(get_dashboard)):
    return to_response(await dashboard.save_vote_period(body.vote_period_days))
