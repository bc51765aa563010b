"""
Schema-shaped validation for roles and role assignments.

Every check returns a ValidationResult instead of raising; callers decide
whether invalid input is fatal. Errors are flat "field: message" strings,
with list positions joined into the path (e.g. "permissions.2: ...").
"""
from dataclasses import asdict, dataclass, field, is_dataclass
from datetime import datetime
from typing import Annotated, Any, Dict, List, Mapping, Optional, Type
from uuid import UUID

from pydantic import BaseModel, Field, StrictBool, StrictInt, ValidationError, ValidationInfo, field_validator


MAX_ROLE_LEVEL = 1000
MIN_ROLE_LEVEL = 0

PermissionName = Annotated[str, Field(min_length=1)]
UserRef = Annotated[str, Field(min_length=1, max_length=255)]


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


# ============================================================================
# Role Schemas
# ============================================================================

def _check_system_active(is_active: bool, info: ValidationInfo) -> bool:
    if info.data.get("is_system") and not is_active:
        raise ValueError("system roles must be active")
    return is_active


class RoleCreateSchema(BaseModel):
    """Input accepted by RoleCatalog.create."""
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    level: StrictInt = Field(0, ge=MIN_ROLE_LEVEL, le=MAX_ROLE_LEVEL)
    is_system: StrictBool = False
    permissions: List[PermissionName] = []
    metadata: Optional[Dict[str, Any]] = None
    is_active: StrictBool = True

    @field_validator("is_active")
    @classmethod
    def system_role_active(cls, v: bool, info: ValidationInfo) -> bool:
        return _check_system_active(v, info)


class RoleSchema(BaseModel):
    """Shape of a persisted role value."""
    id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    display_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    level: StrictInt = Field(..., ge=MIN_ROLE_LEVEL, le=MAX_ROLE_LEVEL)
    is_system: StrictBool
    permissions: List[PermissionName]
    metadata: Optional[Dict[str, Any]] = None
    is_active: StrictBool
    created_at: datetime
    updated_at: datetime

    @field_validator("is_active")
    @classmethod
    def system_role_active(cls, v: bool, info: ValidationInfo) -> bool:
        return _check_system_active(v, info)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignmentCreateSchema(BaseModel):
    """Input accepted by AssignmentLedger.create."""
    user_id: UserRef
    role_id: UUID
    assigned_by: Optional[UserRef] = None
    expires_at: Optional[datetime] = None
    is_active: StrictBool = True
    metadata: Optional[Dict[str, Any]] = None


class AssignmentSchema(BaseModel):
    """Shape of a persisted assignment value."""
    id: UUID
    user_id: UserRef
    role_id: UUID
    assigned_by: Optional[UserRef] = None
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    is_active: StrictBool
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Checks
# ============================================================================

def _format_error(error: Dict[str, Any]) -> str:
    path = ".".join(str(part) for part in error.get("loc", ()))
    return f"{path}: {error.get('msg', 'Invalid value')}"


def check(schema: Type[BaseModel], data: Any) -> ValidationResult:
    """Validate ``data`` (a mapping or a dataclass value) against ``schema``."""
    if is_dataclass(data) and not isinstance(data, type):
        data = asdict(data)
    if not isinstance(data, Mapping):
        return ValidationResult(is_valid=False, errors=[": Input should be an object"])
    try:
        schema.model_validate(dict(data))
    except ValidationError as exc:
        return ValidationResult(is_valid=False, errors=[_format_error(e) for e in exc.errors()])
    return ValidationResult(is_valid=True, errors=[])


def validate_role(role: Any) -> ValidationResult:
    return check(RoleSchema, role)


def validate_role_create(data: Any) -> ValidationResult:
    return check(RoleCreateSchema, data)


def validate_assignment(assignment: Any) -> ValidationResult:
    return check(AssignmentSchema, assignment)


def validate_assignment_create(data: Any) -> ValidationResult:
    return check(AssignmentCreateSchema, data)
