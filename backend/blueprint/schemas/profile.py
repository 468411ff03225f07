"""
Profile Schemas
===============

Durable identity records and the in-app user snapshot derived from them.
"""

from datetime import datetime
from typing import Literal, Optional

from blueprint.schemas.base import CamelSchema


UserRole = Literal["user", "moderator", "admin"]
UserStatus = Literal["pending", "approved", "rejected"]

# Roles allowed into the admin dashboard, lowest first.
ROLE_RANK = {"user": 0, "moderator": 1, "admin": 2}


class UserProfile(CamelSchema):
    """Row of the ``profiles`` table; ``id`` is shared with the auth credential."""

    id: str
    email: Optional[str] = None
    role: UserRole = "moderator"
    status: UserStatus = "pending"
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def display_name(self) -> str:
        name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return name or (self.email or self.id)


class UserSnapshot(CamelSchema):
    """The resolved, approved identity the application runs as."""

    id: str
    email: Optional[str] = None
    role: UserRole = "user"
    status: UserStatus = "approved"
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: UserProfile, email: Optional[str] = None) -> "UserSnapshot":
        return cls(
            id=profile.id,
            email=profile.email or email,
            role=profile.role,
            status=profile.status,
            first_name=profile.first_name,
            last_name=profile.last_name,
        )

    def has_role(self, minimum: str) -> bool:
        return ROLE_RANK.get(self.role, 0) >= ROLE_RANK.get(minimum, 0)
