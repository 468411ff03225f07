"""
Blueprint Settings - Main Application Entry Point
=================================================

Initializes the FastAPI application: the composition root is built in the
lifespan and shared with every endpoint through ``app.state.container``;
each HTTP client is served by its own client session (``api.deps``).
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import RedirectResponse

from blueprint.api.v1.metrics import router as metrics_router
from blueprint.api.v1.router import api_router
from blueprint.core.config import settings
from blueprint.core.container import AppContainer
from blueprint.middleware.audit_logger import AuditLoggerMiddleware
from blueprint.middleware.prometheus import PrometheusMiddleware
from blueprint.middleware.request_id import RequestIdMiddleware


def configure_logging() -> None:
    logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    logging.getLogger("blueprint").setLevel(settings.LOG_LEVEL.upper())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    - Startup: build the container; client sessions start on first request
    - Shutdown: stop every client session and close the backend client
    """
    logger = logging.getLogger(__name__)
    container = getattr(app.state, "container", None)
    owns_container = container is None
    if owns_container:
        container = AppContainer(settings)
        app.state.container = container

    await container.start()

    yield

    if owns_container:
        try:
            await container.aclose()
        except Exception as e:
            logger.warning(f"Error during shutdown: {e}")


def create_application() -> FastAPI:
    """
    Application factory function.

    Returns:
        FastAPI: Configured application instance
    """
    configure_logging()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Machine settings lookup with moderated administration",
        version="1.0.0",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # Middleware (order matters - first added = last executed)
    # ---------------------------------------------------------------------------

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Audit logging reads the request id, so it sits inside RequestIdMiddleware
    app.add_middleware(AuditLoggerMiddleware)

    app.add_middleware(RequestIdMiddleware)

    app.add_middleware(PrometheusMiddleware)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @app.get("/", include_in_schema=False)
    async def root_redirect():
        return RedirectResponse(url="/docs")

    app.include_router(metrics_router, prefix="")

    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


# Create application instance
app = create_application()
