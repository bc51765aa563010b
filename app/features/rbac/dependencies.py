"""
FastAPI dependencies for RBAC.

Implements:
- Caller identification from the Bearer token
- Per-request wiring of stores, service and evaluator
- Route guards: require_permission, require_any_permission,
  require_all_permissions, require_role
"""
from typing import Annotated, List

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.rbac.audit import AuditSink, DatabaseAuditSink, FanOutAuditSink, LoggingAuditSink
from app.features.rbac.clock import Clock, system_clock
from app.features.rbac.evaluator import PermissionEvaluator
from app.features.rbac.permissions import normalize_permission
from app.features.rbac.repository import SqlAlchemyAssignmentStore, SqlAlchemyRoleStore
from app.features.rbac.service import RbacService
from app.utils import get_logger


log = get_logger(__name__)
security = HTTPBearer()


# ============================================================================
# Authentication
# ============================================================================

def decode_token(token: str) -> dict:
    """
    Decode a Bearer JWT and return its payload.

    The signature is checked when JWT_SECRET is configured and
    JWT_VERIFY_SIGNATURE is on; expiry is always checked.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        if config.JWT_SECRET and config.JWT_VERIFY_SIGNATURE:
            return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        return jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """Return the acting user's id from the ``sub`` (or ``userId``) claim."""
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub") or payload.get("userId")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    return str(user_id)


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"


# ============================================================================
# Wiring
# ============================================================================

def get_clock() -> Clock:
    return system_clock


def get_audit_sink(db: AsyncSession = Depends(get_db)) -> AuditSink:
    sinks: List[AuditSink] = [LoggingAuditSink()]
    if config.AUDIT_LOG_TO_DATABASE:
        sinks.append(DatabaseAuditSink(db))
    return FanOutAuditSink(sinks)


def get_rbac_service(
    db: AsyncSession = Depends(get_db),
    audit: AuditSink = Depends(get_audit_sink),
    clock: Clock = Depends(get_clock),
) -> RbacService:
    return RbacService(SqlAlchemyRoleStore(db), SqlAlchemyAssignmentStore(db), audit=audit, clock=clock)


def get_permission_evaluator(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> PermissionEvaluator:
    return PermissionEvaluator(SqlAlchemyRoleStore(db), SqlAlchemyAssignmentStore(db), clock=clock)


# ============================================================================
# Route Guards
# ============================================================================

def require_permission(permission: str):
    """
    FastAPI dependency to require a specific permission.

    Usage:
        @router.post("/roles")
        async def create_role(
            user_id: str = Depends(require_permission(SystemPermission.ROLE_WRITE))
        ):
            # Caller holds role:write
            pass

    Returns:
        Dependency function that returns the caller's user id if permitted

    Raises:
        HTTPException: 403 if the caller lacks the permission
    """
    permission = normalize_permission(permission)

    async def permission_dependency(
        user_id: str = Depends(get_current_user_id),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    ) -> str:
        if not await evaluator.has_user_permission(user_id, permission):
            log.debug("User %s denied: requires %s", user_id, permission)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires {permission}",
            )
        return user_id

    return permission_dependency


def require_any_permission(permissions: List[str]):
    """FastAPI dependency to require ANY of the specified permissions."""
    permissions = [normalize_permission(p) for p in permissions]

    async def permission_dependency(
        user_id: str = Depends(get_current_user_id),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    ) -> str:
        if not await evaluator.has_user_any_permission(user_id, permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires one of {permissions}",
            )
        return user_id

    return permission_dependency


def require_all_permissions(permissions: List[str]):
    """FastAPI dependency to require ALL of the specified permissions."""
    permissions = [normalize_permission(p) for p in permissions]

    async def permission_dependency(
        user_id: str = Depends(get_current_user_id),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    ) -> str:
        if not await evaluator.has_user_all_permissions(user_id, permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: requires all of {permissions}",
            )
        return user_id

    return permission_dependency


def require_role(role_name: str):
    """FastAPI dependency to require a role held through a valid assignment."""
    async def role_dependency(
        user_id: str = Depends(get_current_user_id),
        evaluator: PermissionEvaluator = Depends(get_permission_evaluator),
    ) -> str:
        if not await evaluator.has_user_role(user_id, role_name):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role required: {role_name}",
            )
        return user_id

    return role_dependency
