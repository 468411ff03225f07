"""
Gateway Data Models
===================

Pydantic models for auth payloads returned by the managed backend.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """Authentication credential as reported by the auth service."""

    model_config = ConfigDict(extra="ignore")

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class AuthSession(BaseModel):
    """Backend session tokens."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[int] = None
    user: AuthUser

    def is_expired(self, now: Optional[float] = None, leeway: int = 10) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at - leeway


class AuthResponse(BaseModel):
    """Result of a sign-up or sign-in call."""

    user: Optional[AuthUser] = None
    session: Optional[AuthSession] = None


class AuthEventType(str, Enum):
    """Auth-state change notifications."""
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"


class AuthEvent(BaseModel):
    """A single auth-state change."""

    type: AuthEventType
    session: Optional[AuthSession] = None
