"""
Audit Logger Middleware
=======================

Structured logging middleware writing one JSON line per completed request
for operational monitoring.
"""

import time
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from blueprint.core.config import settings


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("blueprint.requests")


class AuditLoggerMiddleware(BaseHTTPMiddleware):
    """
    Logs method, path, status, latency and the request id of every request.

    The client session id and the signed-in user id are added when the
    request resolved a client session (see ``api.deps.get_client_session``).
    """

    EXCLUDED_PATHS = {
        "/metrics",
        "/docs",
        "/redoc",
        f"{settings.API_PREFIX}/openapi.json",
        f"{settings.API_PREFIX}/health",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                request_id=getattr(request.state, "request_id", "unknown"),
                method=request.method,
                path=request.url.path,
            )
            raise

        latency_ms = (time.perf_counter() - start_time) * 1000

        log_context = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "query": str(request.query_params),
            "status_code": response.status_code,
            "latency_ms": round(latency_ms, 2),
            "client_ip": self._get_client_ip(request),
        }

        client = getattr(request.state, "client_session", None)
        if client is not None:
            # Only a prefix; the full id is a bearer credential.
            log_context["client_session"] = client.id[:8]
            if client.state.user is not None:
                log_context["user_id"] = client.state.user.id

        if response.status_code >= 500:
            logger.error("request_completed", **log_context)
        elif response.status_code >= 400:
            logger.warning("request_completed", **log_context)
        else:
            logger.info("request_completed", **log_context)

        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        if request.client:
            return request.client.host
        return "unknown"
