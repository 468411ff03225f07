"""
API Schemas
===========

Request bodies and response shapes of the HTTP surface. Responses are
camel-cased; settings are always returned flattened.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import Field

from blueprint.schemas.base import CamelSchema, RowId
from blueprint.schemas.catalog import Category, FieldDefinition, FieldType
from blueprint.schemas.engagement import Vote
from blueprint.schemas.feedback import Feedback
from blueprint.schemas.profile import UserRole, UserSnapshot, UserStatus


# =============================================================================
# Requests
# =============================================================================

class LoginRequest(CamelSchema):
    email: str = Field(min_length=3)
    password: str = Field(min_length=1)
    remember_me: bool = True


class RegisterRequest(CamelSchema):
    email: str = Field(min_length=3)
    password: str = Field(min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class CategoryRequest(CamelSchema):
    name: str = Field(min_length=1)


class FieldCreateRequest(CamelSchema):
    name: str = Field(min_length=1)
    category_id: RowId
    key: Optional[str] = None
    type: FieldType = "text"


class FieldUpdateRequest(CamelSchema):
    name: Optional[str] = None
    key: Optional[str] = None
    type: Optional[FieldType] = None
    category_id: Optional[RowId] = None


class UserStatusRequest(CamelSchema):
    status: UserStatus


class UserRoleRequest(CamelSchema):
    role: UserRole


class ConfigRequest(CamelSchema):
    vote_period_days: Union[int, str]


# =============================================================================
# Responses
# =============================================================================

class ResultResponse(CamelSchema):
    success: bool = True
    message: Optional[str] = None
    data: Any = None


class StateResponse(CamelSchema):
    settings: List[Dict[str, Any]] = Field(default_factory=list)
    fields: List[FieldDefinition] = Field(default_factory=list)
    categories: List[Category] = Field(default_factory=list)
    feedback: List[Feedback] = Field(default_factory=list)
    votes: List[Vote] = Field(default_factory=list)
    app_config: Dict[str, str] = Field(default_factory=dict)
    user: Optional[UserSnapshot] = None
    auth_state: str
    auth_message: Optional[str] = None
    loading: bool = False
    load_error: Optional[str] = None


class SettingMatchResponse(CamelSchema):
    setting: Dict[str, Any]
    last_worked: Optional[datetime] = None


class SearchResponse(CamelSchema):
    mode: str
    leg: str = ""
    sku: str = ""
    case_size: Optional[str] = None
    case_sizes: List[str] = Field(default_factory=list)
    results: List[SettingMatchResponse] = Field(default_factory=list)


class FieldValueResponse(CamelSchema):
    key: str
    name: str
    type: FieldType
    value: Any


class CategoryTabResponse(CamelSchema):
    category_id: Optional[RowId] = None
    title: str
    values: List[FieldValueResponse] = Field(default_factory=list)


class SettingDetailResponse(CamelSchema):
    setting: Dict[str, Any]
    tabs: List[CategoryTabResponse] = Field(default_factory=list)
    last_worked: Optional[datetime] = None
    feedback_link: str


class NavigationItem(CamelSchema):
    label: str
    path: str
