"""
Engagement Schemas
==================

"Marked as working" votes and runtime application configuration.
"""

from datetime import datetime
from typing import Optional

from pydantic import field_validator

from blueprint.schemas.base import CamelSchema, RowId, ensure_aware


VOTE_PERIOD_KEY = "vote_period_days"


class Vote(CamelSchema):
    """A user's attestation that a Setting is currently working."""

    id: RowId
    user_id: str
    setting_id: RowId
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _aware_timestamp(cls, v):
        return ensure_aware(v)


class AppConfigEntry(CamelSchema):
    key: str
    value: str


class VoteRecord(CamelSchema):
    """A vote joined to its voter's profile and the voted setting."""

    id: RowId
    created_at: datetime
    user_id: str
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    setting_id: RowId
    sku: Optional[str] = None
    leg_number: Optional[str] = None
