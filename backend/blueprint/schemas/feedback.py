from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator

from blueprint.schemas.base import CamelSchema, RowId, ensure_aware


FeedbackType = Literal["general", "change_request", "bug", "new_product"]
FeedbackStatus = Literal["pending", "resolved"]


class Feedback(CamelSchema):
    id: RowId
    type: FeedbackType = "general"
    name: Optional[str] = None
    message: str = ""
    sku: Optional[str] = None
    leg_number: Optional[str] = None
    status: FeedbackStatus = "pending"
    date: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("date", "created_at", "createdAt"),
    )

    @field_validator("date")
    @classmethod
    def _aware_date(cls, v):
        return ensure_aware(v)


class FeedbackCreate(CamelSchema):
    """Visitor-submitted feedback. A SKU defaults the type to a change request."""

    type: Optional[FeedbackType] = None
    name: str = Field(min_length=1)
    message: str = Field(min_length=1)
    sku: Optional[str] = None
    leg_number: Optional[str] = None

    @model_validator(mode="after")
    def _default_type(self) -> "FeedbackCreate":
        if self.type is None:
            self.type = "change_request" if self.sku else "general"
        return self
