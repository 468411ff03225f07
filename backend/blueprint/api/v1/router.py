"""
API v1 Router
=============

Main router that combines all API v1 endpoints.
"""

from fastapi import APIRouter

from blueprint.api.v1.endpoints import (
    admin,
    auth,
    feedback,
    health,
    lookup,
    state,
)

api_router = APIRouter()

api_router.include_router(
    health.router,
    prefix="/health",
    tags=["Health"],
)

api_router.include_router(
    state.router,
    prefix="/state",
    tags=["State"],
)

api_router.include_router(
    lookup.router,
    tags=["Search"],
)

api_router.include_router(
    feedback.router,
    prefix="/feedback",
    tags=["Feedback"],
)

api_router.include_router(
    auth.router,
    prefix="/auth",
    tags=["Authentication"],
)

api_router.include_router(
    admin.router,
    prefix="/admin",
    tags=["Admin"],
)
