"""
API Dependencies
================

FastAPI dependencies resolving the process's ``AppContainer``, the calling
client's ``ClientSession`` (by session cookie), and helpers translating
``OperationResult`` failures into HTTP errors.
"""

from fastapi import Depends, HTTPException, Request, Response, status

from blueprint.core.container import AppContainer
from blueprint.core.sessions import ClientSession
from blueprint.schemas.api import ResultResponse
from blueprint.schemas.results import OperationResult
from blueprint.services.admin_dashboard import AdminDashboard
from blueprint.services.lookup import LookupFlow
from blueprint.services.session_reconciler import SessionReconciler
from blueprint.services.state_store import AppState

# Failure reason -> HTTP status
REASON_STATUS = {
    "invalid": status.HTTP_400_BAD_REQUEST,
    "conflict": status.HTTP_400_BAD_REQUEST,
    "cooldown": status.HTTP_400_BAD_REQUEST,
    "login_required": status.HTTP_401_UNAUTHORIZED,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "backend_error": status.HTTP_502_BAD_GATEWAY,
}


def get_container(request: Request) -> AppContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Application is starting up",
        )
    return container


async def get_client_session(
    request: Request,
    response: Response,
    container: AppContainer = Depends(get_container),
) -> ClientSession:
    """
    Resolve the caller's client session from its cookie.

    A caller without a usable cookie gets a fresh guest session and the
    cookie naming it.
    """
    config = container.config
    presented = request.cookies.get(config.SESSION_COOKIE_NAME)
    client = await container.sessions.acquire(presented)
    if client.id != presented:
        response.set_cookie(
            config.SESSION_COOKIE_NAME,
            client.id,
            max_age=config.SESSION_COOKIE_MAX_AGE_DAYS * 24 * 3600,
            httponly=True,
            samesite="lax",
            secure=config.SESSION_COOKIE_SECURE,
        )
    request.state.client_session = client
    return client


def get_state(client: ClientSession = Depends(get_client_session)) -> AppState:
    return client.state


def get_reconciler(client: ClientSession = Depends(get_client_session)) -> SessionReconciler:
    return client.reconciler


def get_lookup(client: ClientSession = Depends(get_client_session)) -> LookupFlow:
    return client.lookup


def get_dashboard(client: ClientSession = Depends(get_client_session)) -> AdminDashboard:
    return client.dashboard


def raise_for_result(result: OperationResult) -> OperationResult:
    """Raise ``HTTPException`` for a failed result; return it unchanged otherwise."""
    if not result.success:
        raise HTTPException(
            status_code=REASON_STATUS.get(result.reason, status.HTTP_400_BAD_REQUEST),
            detail=result.message or "Request failed",
        )
    return result


def to_response(result: OperationResult) -> ResultResponse:
    raise_for_result(result)
    data = result.data
    if hasattr(data, "flatten"):
        data = data.flatten()
    return ResultResponse(success=True, message=result.message, data=data)
