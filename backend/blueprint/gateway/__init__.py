"""Managed-backend gateway client."""

from blueprint.gateway.auth import AuthClient, AuthEventStream, SESSION_KEY_PREFIX
from blueprint.gateway.client import SupabaseGateway
from blueprint.gateway.exceptions import (
    GatewayError,
    AuthenticationError,
    AuthorizationError,
    NotFoundError,
    ConflictError,
    ValidationError,
    RateLimitError,
    ServerError,
)
from blueprint.gateway.models import (
    AuthEvent,
    AuthEventType,
    AuthResponse,
    AuthSession,
    AuthUser,
)

__all__ = [
    "SupabaseGateway",
    "AuthClient",
    "AuthEventStream",
    "SESSION_KEY_PREFIX",
    "GatewayError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "RateLimitError",
    "ServerError",
    "AuthEvent",
    "AuthEventType",
    "AuthResponse",
    "AuthSession",
    "AuthUser",
]
