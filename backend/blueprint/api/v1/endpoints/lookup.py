"""
Search and browse endpoints.

Public: anyone can search and read settings. Marking a setting as working
requires a signed-in user.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from blueprint.api.deps import get_lookup, get_state, to_response
from blueprint.schemas.api import (
    CategoryTabResponse,
    FieldValueResponse,
    NavigationItem,
    ResultResponse,
    SearchResponse,
    SettingDetailResponse,
    SettingMatchResponse,
)
from blueprint.services.lookup import SORT_KEYS, LookupFlow, SettingDetail, find_exact
from blueprint.services.state_store import AppState

router = APIRouter()


def _detail_response(detail: SettingDetail) -> SettingDetailResponse:
    return SettingDetailResponse(
        setting=detail.setting.flatten(),
        tabs=[
            CategoryTabResponse(
                category_id=tab.category.id if tab.category else None,
                title=tab.title,
                values=[
                    FieldValueResponse(key=v.field.key, name=v.field.name, type=v.field.type, value=v.value)
                    for v in tab.values
                ],
            )
            for tab in detail.tabs
        ],
        last_worked=detail.last_worked,
        feedback_link=detail.feedback_link,
    )


@router.get("/search", response_model=SearchResponse)
async def search_settings(
    leg: str = Query("", description="Leg Number"),
    sku: str = Query("", description="SKU text; takes precedence over case_size"),
    case_size: Optional[str] = Query(None),
    sort: str = Query("sku", description="sku, updated or last_worked"),
    state: AppState = Depends(get_state),
    lookup: LookupFlow = Depends(get_lookup),
):
    if sort not in SORT_KEYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"sort must be one of: {', '.join(SORT_KEYS)}",
        )
    state.set_search(leg=leg.strip(), sku=sku, case_size=None if sku.strip() else (case_size or None))
    view = lookup.view(sort_by=sort)
    return SearchResponse(
        mode=view.mode,
        leg=view.leg,
        sku=view.sku,
        case_size=view.case_size,
        case_sizes=view.case_sizes,
        results=[
            SettingMatchResponse(setting=m.setting.flatten(), last_worked=m.last_worked)
            for m in view.results
        ],
    )


@router.get("/search/exact", response_model=SettingDetailResponse)
async def search_exact(
    leg: str = Query(..., min_length=1),
    sku: str = Query(..., min_length=1),
    state: AppState = Depends(get_state),
    lookup: LookupFlow = Depends(get_lookup),
):
    """One-shot lookup of a single SKU on a leg."""
    setting = find_exact(state.settings, leg, sku)
    if setting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No setting found for SKU {sku} on Leg {leg}",
        )
    return _detail_response(lookup.detail(setting.id))


@router.get("/settings/{setting_id}", response_model=SettingDetailResponse)
async def get_setting_detail(setting_id: str, lookup: LookupFlow = Depends(get_lookup)):
    detail = lookup.detail(setting_id)
    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Setting not found")
    return _detail_response(detail)


@router.post("/settings/{setting_id}/votes", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def mark_working(setting_id: str, lookup: LookupFlow = Depends(get_lookup)):
    return to_response(await lookup.mark_working(setting_id))


@router.get("/navigation", response_model=List[NavigationItem])
async def navigation(state: AppState = Depends(get_state)):
    """Top-level navigation entries for the current visitor."""
    items = [
        NavigationItem(label="Search", path="/"),
        NavigationItem(label="Feedback", path="/feedback"),
    ]
    if state.user is not None:
        items.append(NavigationItem(label="Admin", path="/admin"))
    else:
        items.append(NavigationItem(label="Login / Register", path="/login"))
    return items
