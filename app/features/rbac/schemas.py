"""
Pydantic schemas for the RBAC endpoints.

Request and response models for roles, assignments and permission checks.
Field limits here only shape the HTTP surface; the domain validation layer
(validation.py) remains the authority on role and assignment invariants.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from app.features.rbac.clock import as_utc
from app.features.rbac.validation import MAX_ROLE_LEVEL, MIN_ROLE_LEVEL


# ============================================================================
# Role Schemas
# ============================================================================

class RoleCreate(BaseModel):
    """Schema for creating a new role."""
    name: str = Field(..., min_length=1, max_length=100, description="Unique role name")
    display_name: str = Field(..., min_length=1, max_length=255, description="Human-readable label")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    level: int = Field(0, ge=MIN_ROLE_LEVEL, le=MAX_ROLE_LEVEL, description="Higher level means more authority")
    permissions: List[str] = Field(default_factory=list, description="Permission names")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('name')
    @classmethod
    def name_alphanumeric_underscore(cls, v: str) -> str:
        """Validate role name format."""
        if not v.strip().replace('_', '').replace('-', '').isalnum():
            raise ValueError('Role name must contain only alphanumeric characters, underscores, and hyphens')
        return v


class RoleUpdate(BaseModel):
    """Schema for updating a role's descriptive fields."""
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=1000)
    level: Optional[int] = Field(None, ge=MIN_ROLE_LEVEL, le=MAX_ROLE_LEVEL)


class RolePermissionsUpdate(BaseModel):
    """Schema for replacing a role's permission set."""
    permissions: List[str]


class MetadataUpdate(BaseModel):
    """Schema for merging keys into a role or assignment's metadata."""
    metadata: Dict[str, Any]


class RolePermissionAdd(BaseModel):
    """Schema for adding one permission to a role."""
    permission: str = Field(..., min_length=1, max_length=100)


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    level: int
    is_system: bool
    permissions: List[str]
    metadata: Dict[str, Any] = {}
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToUser(BaseModel):
    """Schema for granting a role to a user."""
    user_id: str = Field(..., min_length=1, max_length=255, description="User ID")
    role_id: str = Field(..., description="Role ID")
    expires_at: Optional[datetime] = Field(None, description="Leave empty for a permanent grant")
    metadata: Optional[Dict[str, Any]] = None

    @field_validator('expires_at')
    @classmethod
    def expires_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class AssignmentExpirationUpdate(BaseModel):
    """Schema for changing an assignment's expiry."""
    expires_at: Optional[datetime] = None

    @field_validator('expires_at')
    @classmethod
    def expires_at_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)


class AssignmentResponse(BaseModel):
    """Schema for role assignment response."""
    id: str
    user_id: str
    role_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    metadata: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ExpireAssignmentsResponse(BaseModel):
    """Schema for the expiry sweep result."""
    deactivated: int


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking whether a user holds permissions."""
    user_id: Optional[str] = Field(None, description="User to check (defaults to the caller)")
    permissions: List[str] = Field(..., min_length=1)
    mode: str = Field("all", pattern="^(any|all)$", description="Require any or all of the permissions")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    user_id: str
    has_permission: bool
    missing: List[str] = []


class UserPermissionsResponse(BaseModel):
    """Schema for a user's effective permissions."""
    user_id: str
    roles: List[RoleResponse] = []
    permissions: List[str] = []
    highest_level: int
