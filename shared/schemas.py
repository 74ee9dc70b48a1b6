"""Pydantic schemas for validation and serialization."""
from datetime import datetime
from typing import Optional, Dict, FrozenSet
from pydantic import BaseModel, Field, field_validator, ConfigDict
from shared.enums import SurveyStatus, AccessLevel, PermissionAction, NotificationType
from shared.validation import Validator, ValidationError


class RoleSnapshot(BaseModel):
    """Immutable, typed view of a role row held by the role catalog."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    name: str
    description: Optional[str] = ""
    permissions: Dict[str, FrozenSet[PermissionAction]] = Field(default_factory=dict)
    status_transitions: Dict[str, bool] = Field(default_factory=dict)
    status_access: Dict[SurveyStatus, AccessLevel] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator('permissions', 'status_transitions', 'status_access', mode='before')
    @classmethod
    def none_as_empty(cls, v):
        return v or {}

    @field_validator('permissions', mode='before')
    @classmethod
    def validate_permissions(cls, v):
        v = v or {}
        if not isinstance(v, dict):
            raise ValueError('permissions must be an object mapping resource to actions')
        try:
            return {resource: Validator.validate_actions(actions, resource) for resource, actions in v.items()}
        except ValidationError as e:
            raise ValueError(str(e))

    def can(self, resource, action):
        actions = self.permissions.get(resource, frozenset())
        return PermissionAction(action) in actions or PermissionAction.MANAGE in actions

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'permissions': {r: sorted(a.value for a in acts) for r, acts in self.permissions.items()},
            'status_transitions': dict(self.status_transitions),
            'status_access': {s.value: level.value for s, level in self.status_access.items()},
            'is_active': self.is_active,
        }


class TransitionRequest(BaseModel):
    """Body of a status change request."""
    status: SurveyStatus
    note: Optional[str] = None

    @field_validator('status', mode='before')
    @classmethod
    def strip_status(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('note')
    @classmethod
    def clean_note(cls, v):
        try:
            return Validator.sanitize_note(v)
        except ValidationError as e:
            raise ValueError(str(e))


class TransitionEventSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    username: str
    current_status: SurveyStatus
    new_status: SurveyStatus
    changed_at: datetime
    notes: Optional[str] = None


class NotificationSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    title: str
    message: str
    type: NotificationType
    related_survey_id: Optional[str] = None
    related_project_id: Optional[int] = None
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None


class RoleAssignmentCreate(BaseModel):
    role_id: int = Field(..., gt=0)
    expires_at: Optional[datetime] = None


class RoleAssignmentSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    role_id: int
    assigned_by: Optional[int] = None
    assigned_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool


def format_pydantic_errors(error):
    """Flatten a pydantic ValidationError into a single message."""
    errors = []
    for err in error.errors():
        field = '.'.join(str(x) for x in err['loc'])
        errors.append(f"{field}: {err['msg']}")
    return '; '.join(errors)
