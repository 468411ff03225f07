"""
Authentication endpoints.

Sign-in only succeeds for approved profiles; registration creates a
pending profile that an admin must approve.
"""

from fastapi import APIRouter, Depends, status

from blueprint.api.deps import get_reconciler, raise_for_result, to_response
from blueprint.schemas.api import LoginRequest, RegisterRequest, ResultResponse
from blueprint.schemas.profile import UserSnapshot
from blueprint.schemas.results import OperationResult
from blueprint.services.session_reconciler import SessionReconciler

router = APIRouter()


@router.post("/login", response_model=ResultResponse)
async def login(body: LoginRequest, reconciler: SessionReconciler = Depends(get_reconciler)):
    result = await reconciler.sign_in(body.email, body.password, remember_me=body.remember_me)
    return to_response(result)


@router.post("/register", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, reconciler: SessionReconciler = Depends(get_reconciler)):
    result = await reconciler.register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    return to_response(result)


@router.post("/logout", response_model=ResultResponse)
async def logout(reconciler: SessionReconciler = Depends(get_reconciler)):
    return to_response(await reconciler.logout())


@router.get("/me", response_model=UserSnapshot)
async def me(reconciler: SessionReconciler = Depends(get_reconciler)):
    """The signed-in user; 401 for guests."""
    if reconciler.user is None:
        raise_for_result(OperationResult.fail(reconciler.last_message or "Not signed in.", reason="login_required"))
    return reconciler.user
