"""
Base Schemas
============

Common schema patterns and mixins.
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# Backend identities are integers or UUID strings depending on the table.
RowId = Union[int, str]


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive backend timestamps as UTC so they compare with aware ones."""
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BaseSchema(BaseModel):
    """
    Base Pydantic schema with common configuration.

    All API schemas should inherit from this base.
    """

    model_config = ConfigDict(
        # Validate default values
        validate_default=True,
        # Use enum values instead of names
        use_enum_values=True,
        # Strip whitespace from strings
        str_strip_whitespace=True,
    )


class CamelSchema(BaseSchema):
    """
    Schema whose external (UI/JSON) names are camel-case.

    Python attributes stay snake_case; ``model_dump(by_alias=True)`` and API
    responses use ``legNumber``-style keys. Either spelling is accepted on input.
    """

    model_config = ConfigDict(
        validate_default=True,
        use_enum_values=True,
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )
