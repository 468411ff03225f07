"""
Request ID Middleware
=====================

Tags every request with a correlation id so log lines written while it is
handled, and the response a UI receives, can be matched up.
"""

import uuid
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id: ``X-Trace-ID`` when supplied, then ``X-Request-ID``,
    else a generated one.

    The id is stored on ``request.state.request_id`` (and ``trace_id``) and
    echoed back in both response headers.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not request_id:
            request_id = uuid.uuid4().hex

        request.state.request_id = request_id
        request.state.trace_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Trace-ID"] = request_id
        return response
