"""
Catalog Schemas
===============

Settings, their dynamic field definitions, and the categories that group
those fields for tabbed display.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import Field, field_validator

from blueprint.schemas.base import CamelSchema, RowId, ensure_aware


FieldType = Literal["text", "number"]

# Fixed Setting attributes keyed by their external (camel-case) names.
FIXED_SETTING_KEYS = ("sku", "legNumber", "caseSize")


class Category(CamelSchema):
    """Named group of fields."""

    id: RowId
    name: str


class FieldDefinition(CamelSchema):
    """Admin-defined dynamic attribute attached to every Setting."""

    id: RowId
    name: str
    key: str
    type: FieldType = "text"
    category_id: Optional[RowId] = None


class Setting(CamelSchema):
    """
    A SKU/Leg/Case-Size keyed machine configuration record.

    ``values`` is the open ``field key -> value`` payload whose valid keys are
    defined by the current FieldDefinition catalog. Stale keys from deleted
    fields are kept as-is.
    """

    id: RowId
    sku: str
    leg_number: str
    case_size: str = ""
    last_updated: Optional[datetime] = None
    values: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("sku", "leg_number", "case_size", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        if v is None:
            return ""
        return str(v)

    @field_validator("last_updated")
    @classmethod
    def _aware_timestamp(cls, v):
        return ensure_aware(v)

    def get(self, key: str, default: Any = None) -> Any:
        """Uniform attribute access over fixed columns and dynamic values."""
        fixed = {
            "id": self.id,
            "sku": self.sku,
            "legNumber": self.leg_number,
            "leg_number": self.leg_number,
            "caseSize": self.case_size,
            "case_size": self.case_size,
            "lastUpdated": self.last_updated,
            "last_updated": self.last_updated,
        }
        if key in fixed:
            return fixed[key]
        return self.values.get(key, default)

    def flatten(self) -> Dict[str, Any]:
        """Single flat mapping of fixed columns and every dynamic value."""
        flat: Dict[str, Any] = dict(self.values)
        flat.update({
            "id": self.id,
            "sku": self.sku,
            "legNumber": self.leg_number,
            "caseSize": self.case_size,
            "lastUpdated": self.last_updated.isoformat() if self.last_updated else None,
        })
        return flat
