"""
Application service for role and assignment management.

Composes the pure catalog/ledger transitions with the stores and the audit
sink. This is where lookups turn into NotFound errors, where duplicate active
grants are refused, and where audit events are emitted.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.features.rbac.assignments import Assignment, AssignmentLedger
from app.features.rbac.audit import AuditEvent, AuditEventType, AuditSink, emit_safely
from app.features.rbac.clock import Clock, system_clock
from app.features.rbac.errors import (
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    InvalidInputError,
    InvariantViolation,
    RoleConflictError,
    RoleNotFoundError,
)
from app.features.rbac.roles import Role, RoleCatalog
from app.features.rbac.stores import AssignmentStore, RoleStore
from app.utils import get_logger


log = get_logger(__name__)


class RbacService:
    """
    Role and assignment use cases.

    Construct one per unit of work with the stores for that unit:

        service = RbacService(SqlAlchemyRoleStore(db), SqlAlchemyAssignmentStore(db))
    """

    def __init__(
        self,
        roles: RoleStore,
        assignments: AssignmentStore,
        audit: Optional[AuditSink] = None,
        clock: Clock = system_clock,
    ):
        self.roles = roles
        self.assignments = assignments
        self.audit = audit
        self.clock = clock
        self.catalog = RoleCatalog(clock)
        self.ledger = AssignmentLedger(clock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(
        self,
        event_type: AuditEventType,
        user_id: Optional[str],
        role: Optional[Role],
        actor_id: Optional[str],
        **metadata: Any,
    ) -> None:
        event = AuditEvent(
            event_type=event_type,
            user_id=user_id,
            role_id=role.id if role else None,
            role_name=role.name if role else None,
            assigned_by=actor_id,
            timestamp=self.clock.now(),
            metadata=metadata,
        )
        await emit_safely(self.audit, event)

    async def _require_role(self, role_id: str) -> Role:
        role = await self.roles.find_by_id(role_id)
        if role is None:
            raise RoleNotFoundError(role_id)
        return role

    async def _require_assignment(self, assignment_id: str) -> Assignment:
        assignment = await self.assignments.find_by_id(assignment_id)
        if assignment is None:
            raise AssignmentNotFoundError(assignment_id)
        return assignment

    def _check_valid(self, role: Role) -> None:
        result = self.catalog.validate(role)
        if not result.is_valid:
            raise InvalidInputError(result.errors)

    @staticmethod
    def _check_modifiable(role: Role) -> None:
        if not role.can_be_modified():
            log.warning("Refused change to system role %s", role.name)
            raise InvariantViolation("cannot modify system role")

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def create_role(self, actor_id: Optional[str] = None, **data: Any) -> Role:
        """
        Validate and persist a new role.

        Raises:
            InvalidInputError: If the input fails the create schema
            RoleConflictError: If a role with the normalized name exists
        """
        result = self.catalog.validate_create(data)
        if not result.is_valid:
            raise InvalidInputError(result.errors)

        role = self.catalog.create(**data)
        # Trimming can empty a name that passed the length check
        self._check_valid(role)
        if await self.roles.exists_by_name(role.name):
            raise RoleConflictError(f"Role with name {role.name!r} already exists")

        role = await self.roles.create(role)
        log.info("Role %s created by %s (level=%d, system=%s)", role.name, actor_id, role.level, role.is_system)
        if role.permissions:
            await self._emit(
                AuditEventType.PERMISSION_CHANGE, None, role, actor_id,
                added=list(role.permissions), removed=[],
            )
        return role

    async def get_role(self, role_id: str) -> Role:
        return await self._require_role(role_id)

    async def get_role_by_name(self, name: str) -> Role:
        role = await self.roles.find_by_name(name)
        if role is None:
            raise RoleNotFoundError(name)
        return role

    async def list_roles(self, kind: str = "all", limit: int = 50, offset: int = 0) -> List[Role]:
        """List roles; ``kind`` is one of all, active, system, custom."""
        if kind == "active":
            return await self.roles.find_active()
        if kind == "system":
            return await self.roles.find_system()
        if kind == "custom":
            return await self.roles.find_custom()
        return await self.roles.find_all(limit=limit, offset=offset)

    async def update_role_info(
        self,
        role_id: str,
        actor_id: Optional[str] = None,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        level: Optional[int] = None,
    ) -> Role:
        role = await self._require_role(role_id)
        self._check_modifiable(role)
        updated = self.catalog.update_info(role, display_name=display_name, description=description, level=level)
        self._check_valid(updated)
        log.info("Role %s info updated by %s", role.name, actor_id)
        return await self.roles.update(updated)

    async def update_role_metadata(self, role_id: str, metadata: Mapping[str, Any], actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        self._check_modifiable(role)
        log.info("Role %s metadata updated by %s", role.name, actor_id)
        return await self.roles.update(self.catalog.update_metadata(role, metadata))

    async def _store_permission_change(self, role: Role, updated: Role, actor_id: Optional[str]) -> Role:
        if updated is role:
            return role
        self._check_valid(updated)
        before, after = set(role.permissions), set(updated.permissions)
        updated = await self.roles.update(updated)
        await self._emit(
            AuditEventType.PERMISSION_CHANGE, None, updated, actor_id,
            added=sorted(after - before), removed=sorted(before - after),
        )
        return updated

    async def set_role_permissions(self, role_id: str, permissions: Iterable[str], actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        self._check_modifiable(role)
        return await self._store_permission_change(role, self.catalog.update_permissions(role, permissions), actor_id)

    async def add_role_permission(self, role_id: str, permission: str, actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        self._check_modifiable(role)
        return await self._store_permission_change(role, self.catalog.add_permission(role, permission), actor_id)

    async def remove_role_permission(self, role_id: str, permission: str, actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        self._check_modifiable(role)
        return await self._store_permission_change(role, self.catalog.remove_permission(role, permission), actor_id)

    async def activate_role(self, role_id: str, actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        updated = self.catalog.activate(role)
        if updated is role:
            return role
        log.info("Role %s activated by %s", role.name, actor_id)
        return await self.roles.update(updated)

    async def deactivate_role(self, role_id: str, actor_id: Optional[str] = None) -> Role:
        role = await self._require_role(role_id)
        updated = self.catalog.deactivate(role)
        if updated is role:
            return role
        log.info("Role %s deactivated by %s", role.name, actor_id)
        return await self.roles.update(updated)

    async def delete_role(self, role_id: str, actor_id: Optional[str] = None) -> None:
        """
        Hard-delete a custom role together with its assignments.

        Raises:
            InvariantViolation: If the role is a system role
        """
        role = await self._require_role(role_id)
        if not role.can_be_deleted():
            log.warning("Refused delete of system role %s", role.name)
            raise InvariantViolation("cannot delete system role")

        revoked = await self.assignments.find_active_by_role_id(role_id)
        await self.roles.delete(role_id)
        log.info("Role %s deleted by %s (%d active assignments revoked)", role.name, actor_id, len(revoked))
        for assignment in revoked:
            await self._emit(
                AuditEventType.ROLE_REVOKE, assignment.user_id, role, actor_id,
                assignment_id=assignment.id, reason="role_deleted",
            )

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def get_assignment(self, assignment_id: str) -> Assignment:
        return await self._require_assignment(assignment_id)

    async def list_user_assignments(self, user_id: str) -> List[Assignment]:
        return await self.assignments.find_by_user_id(user_id)

    async def list_role_assignments(self, role_id: str) -> List[Assignment]:
        await self._require_role(role_id)
        return await self.assignments.find_by_role_id(role_id)

    async def _release_stale(self, user_id: str, role_id: str) -> None:
        """
        Refuse a second active grant for the pair.

        An active assignment that has already expired no longer grants
        anything; it is deactivated so the new grant can take its place.
        """
        existing = await self.assignments.find_active_by_user_and_role(user_id, role_id)
        if existing is None:
            return
        if existing.is_valid(self.clock.now()):
            raise DuplicateAssignmentError(user_id, role_id)
        await self.assignments.update(self.ledger.deactivate(existing))

    async def assign_role(
        self,
        user_id: str,
        role_id: str,
        actor_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Assignment:
        """
        Grant ``role_id`` to ``user_id``.

        Raises:
            InvalidInputError: If the input fails the create schema
            RoleNotFoundError: If the role does not exist
            DuplicateAssignmentError: If the user already holds a valid grant
        """
        data = {
            "user_id": user_id,
            "role_id": role_id,
            "assigned_by": actor_id,
            "expires_at": expires_at,
            "metadata": metadata,
        }
        result = self.ledger.validate_create(data)
        if not result.is_valid:
            raise InvalidInputError(result.errors)

        role = await self._require_role(role_id)
        await self._release_stale(user_id, role_id)

        assignment = await self.assignments.create(self.ledger.create(**data))
        log.info("Role %s assigned to user %s by %s (expires=%s)", role.name, user_id, actor_id, expires_at)
        await self._emit(
            AuditEventType.ROLE_ASSIGN, user_id, role, actor_id,
            assignment_id=assignment.id,
            expires_at=assignment.expires_at.isoformat() if assignment.expires_at else None,
        )
        return assignment

    async def revoke_assignment(self, assignment_id: str, actor_id: Optional[str] = None, reason: str = "revoked") -> Assignment:
        """Soft-revoke: the assignment is deactivated and kept for history."""
        assignment = await self._require_assignment(assignment_id)
        updated = self.ledger.deactivate(assignment)
        if updated is assignment:
            return assignment
        updated = await self.assignments.update(updated)
        role = await self.roles.find_by_id(assignment.role_id)
        log.info("Assignment %s revoked by %s (%s)", assignment_id, actor_id, reason)
        await self._emit(
            AuditEventType.ROLE_REVOKE, assignment.user_id, role, actor_id,
            assignment_id=assignment.id, reason=reason,
        )
        return updated

    async def revoke_role(self, user_id: str, role_id: str, actor_id: Optional[str] = None) -> Assignment:
        assignment = await self.assignments.find_active_by_user_and_role(user_id, role_id)
        if assignment is None:
            raise AssignmentNotFoundError(f"{user_id}/{role_id}")
        return await self.revoke_assignment(assignment.id, actor_id=actor_id)

    async def reactivate_assignment(self, assignment_id: str, actor_id: Optional[str] = None) -> Assignment:
        assignment = await self._require_assignment(assignment_id)
        if assignment.is_active:
            return assignment
        role = await self._require_role(assignment.role_id)
        await self._release_stale(assignment.user_id, assignment.role_id)
        updated = await self.assignments.update(self.ledger.activate(assignment))
        await self._emit(
            AuditEventType.ROLE_ASSIGN, assignment.user_id, role, actor_id,
            assignment_id=assignment.id, reason="reactivated",
        )
        return updated

    async def update_assignment_expiration(
        self,
        assignment_id: str,
        expires_at: Optional[datetime],
        actor_id: Optional[str] = None,
    ) -> Assignment:
        assignment = await self._require_assignment(assignment_id)
        updated = self.ledger.update_expiration(assignment, expires_at)
        log.info("Assignment %s expiry set to %s by %s", assignment_id, expires_at, actor_id)
        return await self.assignments.update(updated)

    async def update_assignment_metadata(
        self,
        assignment_id: str,
        metadata: Mapping[str, Any],
        actor_id: Optional[str] = None,
    ) -> Assignment:
        assignment = await self._require_assignment(assignment_id)
        log.info("Assignment %s metadata updated by %s", assignment_id, actor_id)
        return await self.assignments.update(self.ledger.update_metadata(assignment, metadata))

    async def delete_assignment(self, assignment_id: str, actor_id: Optional[str] = None) -> None:
        assignment = await self._require_assignment(assignment_id)
        await self.assignments.delete(assignment_id)
        if assignment.is_active:
            role = await self.roles.find_by_id(assignment.role_id)
            await self._emit(
                AuditEventType.ROLE_REVOKE, assignment.user_id, role, actor_id,
                assignment_id=assignment.id, reason="deleted",
            )

    async def expire_assignments(self, actor_id: Optional[str] = None) -> int:
        """Deactivate every active assignment whose expiry has passed; returns how many."""
        expired = [a for a in await self.assignments.find_expired(self.clock.now()) if a.is_active]
        for assignment in expired:
            await self.revoke_assignment(assignment.id, actor_id=actor_id, reason="expired")
        if expired:
            log.info("Deactivated %d expired assignments", len(expired))
        return len(expired)
