"""
Gateway Exceptions
==================

Errors raised by the managed-backend gateway client.
"""

from typing import Optional

import httpx


class GatewayError(Exception):
    """Base exception for all backend gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: int = None,
        code: Optional[str] = None,
        response: dict = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code
        self.response = response or {}
        super().__init__(self.message)


class AuthenticationError(GatewayError):
    """Raised when authentication fails (401)."""
    pass


class AuthorizationError(GatewayError):
    """Raised when a row-level policy forbids the request (403)."""
    pass


class NotFoundError(GatewayError):
    """Raised when a table or row is not found (404)."""
    pass


class ConflictError(GatewayError):
    """Raised on unique/foreign-key violations (409)."""
    pass


class ValidationError(GatewayError):
    """Raised when request validation fails (400/422)."""
    pass


class RateLimitError(GatewayError):
    """Raised when rate limit is exceeded (429)."""

    def __init__(self, message: str, retry_after: int = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(GatewayError):
    """Raised when the backend returns a 5xx error."""
    pass


def raise_for_response(response: httpx.Response) -> None:
    """Translate an error response into the matching GatewayError."""
    if response.status_code < 400:
        return

    error_data: dict = {}
    try:
        payload = response.json()
        if isinstance(payload, dict):
            error_data = payload
    except ValueError:
        pass

    message = (
        error_data.get("message")
        or error_data.get("msg")
        or error_data.get("error_description")
        or error_data.get("error")
        or response.text
        or f"HTTP {response.status_code}"
    )
    code = error_data.get("code") or error_data.get("error_code")
    if code is not None:
        code = str(code)
    status = response.status_code
    kwargs = {"status_code": status, "code": code, "response": error_data}

    if status == 401:
        raise AuthenticationError(message, **kwargs)
    elif status == 403:
        raise AuthorizationError(message, **kwargs)
    elif status == 404:
        raise NotFoundError(message, **kwargs)
    elif status == 409:
        raise ConflictError(message, **kwargs)
    elif status in (400, 422):
        raise ValidationError(message, **kwargs)
    elif status == 429:
        retry_after = response.headers.get("Retry-After")
        raise RateLimitError(
            message,
            retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
            **kwargs,
        )
    elif status >= 500:
        raise ServerError(message, **kwargs)
    else:
        raise GatewayError(message, **kwargs)
