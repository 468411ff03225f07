"""Feedback submission endpoint."""

from fastapi import APIRouter, Depends, status

from blueprint.api.deps import get_state, to_response
from blueprint.schemas.api import ResultResponse
from blueprint.schemas.feedback import FeedbackCreate
from blueprint.services.state_store import AppState

router = APIRouter()


@router.post("", response_model=ResultResponse, status_code=status.HTTP_201_CREATED)
async def submit_feedback(body: FeedbackCreate, state: AppState = Depends(get_state)):
    """Anyone may submit; a SKU defaults the type to a change request."""
    return to_response(await state.add_feedback(body))
