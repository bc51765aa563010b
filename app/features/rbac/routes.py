"""
RBAC API routes.

Provides endpoints for managing roles, granting and revoking roles to users,
and evaluating a user's effective permissions.
"""
from typing import List

from fastapi import APIRouter, Depends, Query, status

from app.features.rbac.dependencies import (
    get_current_user_id,
    get_permission_evaluator,
    get_rbac_service,
    require_any_permission,
    require_permission,
)
from app.features.rbac.evaluator import NO_ROLE_LEVEL, PermissionEvaluator
from app.features.rbac.permissions import SystemPermission, normalize_permission
from app.features.rbac.schemas import (
    AssignmentExpirationUpdate,
    AssignmentResponse,
    AssignRoleToUser,
    ExpireAssignmentsResponse,
    MetadataUpdate,
    PermissionCheckRequest,
    PermissionCheckResponse,
    RoleCreate,
    RolePermissionAdd,
    RolePermissionsUpdate,
    RoleResponse,
    RoleUpdate,
    UserPermissionsResponse,
)
from app.features.rbac.service import RbacService
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Role Routes
# ============================================================================

@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Create a new custom role."""
    return await service.create_role(actor_id=user_id, **role.model_dump())


@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    kind: str = Query("all", pattern="^(all|active|system|custom)$"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_READ)),
):
    """List roles, highest level first."""
    return await service.list_roles(kind=kind, limit=limit, offset=skip)


@router.get("/roles/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_READ)),
):
    """Get a role by ID."""
    return await service.get_role(role_id)


@router.patch("/roles/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Update a role's display name, description or level. System roles are read-only."""
    return await service.update_role_info(role_id, actor_id=user_id, **role_update.model_dump(exclude_unset=True))


@router.delete("/roles/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_DELETE)),
):
    """Delete a custom role and all of its assignments."""
    await service.delete_role(role_id, actor_id=user_id)


@router.put("/roles/{role_id}/permissions", response_model=RoleResponse)
async def set_role_permissions(
    role_id: str,
    body: RolePermissionsUpdate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Replace the role's permission set."""
    return await service.set_role_permissions(role_id, body.permissions, actor_id=user_id)


@router.post("/roles/{role_id}/permissions", response_model=RoleResponse)
async def add_role_permission(
    role_id: str,
    body: RolePermissionAdd,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Add one permission to a role."""
    return await service.add_role_permission(role_id, body.permission, actor_id=user_id)


@router.delete("/roles/{role_id}/permissions/{permission}", response_model=RoleResponse)
async def remove_role_permission(
    role_id: str,
    permission: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Remove one permission from a role."""
    return await service.remove_role_permission(role_id, permission, actor_id=user_id)


@router.patch("/roles/{role_id}/metadata", response_model=RoleResponse)
async def update_role_metadata(
    role_id: str,
    body: MetadataUpdate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    """Merge keys into a custom role's metadata."""
    return await service.update_role_metadata(role_id, body.metadata, actor_id=user_id)


@router.post("/roles/{role_id}/activate", response_model=RoleResponse)
async def activate_role(
    role_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    return await service.activate_role(role_id, actor_id=user_id)


@router.post("/roles/{role_id}/deactivate", response_model=RoleResponse)
async def deactivate_role(
    role_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE)),
):
    return await service.deactivate_role(role_id, actor_id=user_id)


@router.get("/roles/{role_id}/assignments", response_model=List[AssignmentResponse])
async def list_role_assignments(
    role_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_READ)),
):
    """List every assignment (active or not) of a role."""
    return await service.list_role_assignments(role_id)


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_role(
    assignment: AssignRoleToUser,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_ASSIGN)),
):
    """Grant a role to a user, optionally until ``expires_at``."""
    return await service.assign_role(
        assignment.user_id,
        assignment.role_id,
        actor_id=user_id,
        expires_at=assignment.expires_at,
        metadata=assignment.metadata,
    )


@router.delete("/assignments/{assignment_id}", response_model=AssignmentResponse)
async def revoke_assignment(
    assignment_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_ASSIGN)),
):
    """Revoke an assignment. The record is kept, deactivated."""
    return await service.revoke_assignment(assignment_id, actor_id=user_id)


@router.patch("/assignments/{assignment_id}/expiration", response_model=AssignmentResponse)
async def update_assignment_expiration(
    assignment_id: str,
    body: AssignmentExpirationUpdate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_ASSIGN)),
):
    return await service.update_assignment_expiration(assignment_id, body.expires_at, actor_id=user_id)


@router.patch("/assignments/{assignment_id}/metadata", response_model=AssignmentResponse)
async def update_assignment_metadata(
    assignment_id: str,
    body: MetadataUpdate,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.ROLE_ASSIGN)),
):
    return await service.update_assignment_metadata(assignment_id, body.metadata, actor_id=user_id)


@router.post("/assignments/expire", response_model=ExpireAssignmentsResponse)
async def expire_assignments(
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_permission(SystemPermission.SYSTEM_ADMIN)),
):
    """Deactivate every assignment whose expiry has passed."""
    return ExpireAssignmentsResponse(deactivated=await service.expire_assignments(actor_id=user_id))


@router.get("/users/{target_user_id}/assignments", response_model=List[AssignmentResponse])
async def list_user_assignments(
    target_user_id: str,
    service: RbacService = Depends(get_rbac_service),
    user_id: str = Depends(require_any_permission([SystemPermission.ROLE_READ, SystemPermission.USER_READ])),
):
    """List a user's assignments, including revoked and expired ones."""
    return await service.list_user_assignments(target_user_id)


# ============================================================================
# Evaluation Routes
# ============================================================================

@router.get("/me/permissions", response_model=UserPermissionsResponse)
async def get_my_permissions(
    user_id: str = Depends(get_current_user_id),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """Effective roles and permissions of the caller."""
    return await _user_permissions(evaluator, user_id)


@router.get("/users/{target_user_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    target_user_id: str,
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    user_id: str = Depends(require_any_permission([SystemPermission.ROLE_READ, SystemPermission.USER_READ])),
):
    """Effective roles and permissions of any user."""
    return await _user_permissions(evaluator, target_user_id)


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permissions(
    check: PermissionCheckRequest,
    user_id: str = Depends(get_current_user_id),
    evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
):
    """
    Check whether a user holds permissions.

    Checking yourself needs no permission; checking someone else needs role:read.
    """
    target = check.user_id or user_id
    if target != user_id:
        await require_permission(SystemPermission.ROLE_READ)(user_id=user_id, evaluator=evaluator)

    granted = await evaluator.get_user_permissions(target)
    requested = [normalize_permission(p) for p in check.permissions]
    missing = [p for p in dict.fromkeys(requested) if p not in granted]
    if check.mode == "any":
        allowed = len(missing) < len(set(requested))
    else:
        allowed = not missing
    return PermissionCheckResponse(user_id=target, has_permission=allowed, missing=missing)


async def _user_permissions(evaluator: PermissionEvaluator, user_id: str) -> UserPermissionsResponse:
    roles = await evaluator.get_user_roles(user_id)
    permissions = sorted({p for role in roles for p in role.permissions})
    return UserPermissionsResponse(
        user_id=user_id,
        roles=[RoleResponse.model_validate(role.to_dict()) for role in roles],
        permissions=permissions,
        highest_level=max((role.level for role in roles), default=NO_ROLE_LEVEL),
    )
