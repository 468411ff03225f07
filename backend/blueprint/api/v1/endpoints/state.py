"""
State endpoints.

Full snapshot of the store for a UI to render, plus the "retry" and
"repair" actions offered on the connection-error page.
"""

import logging

from fastapi import APIRouter, Depends

from blueprint.api.deps import get_client_session
from blueprint.core.sessions import ClientSession
from blueprint.schemas.api import StateResponse
from blueprint.services.session_reconciler import AuthState

logger = logging.getLogger(__name__)

router = APIRouter()


def build_state_response(client: ClientSession) -> StateResponse:
    snapshot = client.state.snapshot()
    return StateResponse(
        settings=[s.flatten() for s in snapshot.settings],
        fields=list(snapshot.fields),
        categories=list(snapshot.categories),
        feedback=list(snapshot.feedback),
        votes=list(snapshot.votes),
        app_config=dict(snapshot.app_config),
        user=snapshot.user,
        auth_state=client.reconciler.auth_state.value,
        auth_message=client.reconciler.last_message,
        loading=snapshot.loading,
        load_error=snapshot.load_error,
    )


@router.get("", response_model=StateResponse)
async def get_state(client: ClientSession = Depends(get_client_session)):
    return build_state_response(client)


@router.post("/refresh", response_model=StateResponse)
async def refresh_state(client: ClientSession = Depends(get_client_session)):
    """Re-run the bulk load; a call made while one is running is a no-op."""
    await client.state.refresh_data()
    return build_state_response(client)


@router.post("/repair", response_model=StateResponse)
async def repair_state(client: ClientSession = Depends(get_client_session)):
    """Clear every local cache and reload."""
    await client.state.repair()
    client.reconciler.auth_state = AuthState.UNAUTHENTICATED
    client.reconciler.last_message = None
    return build_state_response(client)
