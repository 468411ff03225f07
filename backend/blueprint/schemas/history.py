from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import Field

from blueprint.schemas.base import CamelSchema, RowId


HistoryAction = Literal["create", "update", "delete"]


class HistoryEntry(CamelSchema):
    """Append-only audit record of a Setting mutation."""

    id: RowId
    user_email: Optional[str] = None
    action: HistoryAction
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
