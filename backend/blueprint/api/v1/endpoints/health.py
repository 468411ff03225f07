"""Health endpoint."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from blueprint.api.deps import get_container
from blueprint.core.config import settings
from blueprint.core.container import AppContainer

router = APIRouter()


@router.get("")
async def health_check(container: AppContainer = Depends(get_container)):
    """Process health and the number of live client sessions."""
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "client_sessions": len(container.sessions),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
