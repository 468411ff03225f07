"""
Pydantic Schemas
================

Domain records, operation results and API request/response shapes.
"""

from blueprint.schemas.base import BaseSchema, CamelSchema, RowId
from blueprint.schemas.catalog import Category, FieldDefinition, Setting
from blueprint.schemas.engagement import AppConfigEntry, Vote, VoteRecord
from blueprint.schemas.feedback import Feedback, FeedbackCreate
from blueprint.schemas.history import HistoryEntry
from blueprint.schemas.profile import UserProfile, UserSnapshot
from blueprint.schemas.results import OperationResult

__all__ = [
    "BaseSchema",
    "CamelSchema",
    "RowId",
    "Category",
    "FieldDefinition",
    "Setting",
    "AppConfigEntry",
    "Vote",
    "VoteRecord",
    "Feedback",
    "FeedbackCreate",
    "HistoryEntry",
    "UserProfile",
    "UserSnapshot",
    "OperationResult",
]
