"""
SQLAlchemy implementations of RoleStore and AssignmentStore.

Both stores work on one AsyncSession handed in by the caller. Sharing the
session means every read made while serving a request runs in the same
transaction. Whether those reads see one snapshot depends on the isolation
level, see PermissionEvaluator.
The stores flush but never commit; the session owner commits.
"""
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.assignments import Assignment
from app.features.rbac.errors import (
    AssignmentNotFoundError,
    DuplicateAssignmentError,
    RoleConflictError,
    RoleNotFoundError,
)
from app.features.rbac.models import AssignmentRecord, RoleRecord
from app.features.rbac.roles import Role
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Mapping
# ============================================================================

def role_from_record(record: RoleRecord) -> Role:
    return Role(
        id=record.id,
        name=record.name,
        display_name=record.display_name,
        description=record.description,
        level=record.level,
        is_system=record.is_system,
        permissions=tuple(record.permissions or ()),
        metadata=dict(record.metadata_ or {}),
        is_active=record.is_active,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _copy_role(record: RoleRecord, role: Role) -> RoleRecord:
    record.name = role.name
    record.display_name = role.display_name
    record.description = role.description
    record.level = role.level
    record.is_system = role.is_system
    record.permissions = list(role.permissions)
    record.metadata_ = dict(role.metadata)
    record.is_active = role.is_active
    record.created_at = role.created_at
    record.updated_at = role.updated_at
    return record


def assignment_from_record(record: AssignmentRecord) -> Assignment:
    return Assignment(
        id=record.id,
        user_id=record.user_id,
        role_id=record.role_id,
        assigned_by=record.assigned_by,
        assigned_at=record.assigned_at,
        expires_at=record.expires_at,
        is_active=record.is_active,
        metadata=dict(record.metadata_ or {}),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


def _copy_assignment(record: AssignmentRecord, assignment: Assignment) -> AssignmentRecord:
    record.user_id = assignment.user_id
    record.role_id = assignment.role_id
    record.assigned_by = assignment.assigned_by
    record.assigned_at = assignment.assigned_at
    record.expires_at = assignment.expires_at
    record.is_active = assignment.is_active
    record.metadata_ = dict(assignment.metadata)
    record.created_at = assignment.created_at
    record.updated_at = assignment.updated_at
    return record


# ============================================================================
# Role Store
# ============================================================================

class SqlAlchemyRoleStore:
    """RoleStore backed by the ``roles`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _scalars(self, stmt) -> List[Role]:
        result = await self.db.execute(stmt)
        return [role_from_record(r) for r in result.scalars().all()]

    async def find_by_id(self, role_id: str) -> Optional[Role]:
        record = await self.db.get(RoleRecord, role_id)
        return role_from_record(record) if record else None

    async def find_by_name(self, name: str) -> Optional[Role]:
        result = await self.db.execute(
            select(RoleRecord).where(RoleRecord.name == name.strip().lower())
        )
        record = result.scalar_one_or_none()
        return role_from_record(record) if record else None

    async def find_by_ids(self, role_ids: Sequence[str]) -> List[Role]:
        if not role_ids:
            return []
        return await self._scalars(
            select(RoleRecord).where(RoleRecord.id.in_(list(role_ids))).order_by(RoleRecord.level.desc())
        )

    async def find_all(self, limit: int = 50, offset: int = 0) -> List[Role]:
        return await self._scalars(
            select(RoleRecord).order_by(RoleRecord.level.desc(), RoleRecord.name).offset(offset).limit(limit)
        )

    async def find_active(self) -> List[Role]:
        return await self._scalars(
            select(RoleRecord).where(RoleRecord.is_active.is_(True)).order_by(RoleRecord.level.desc())
        )

    async def find_system(self) -> List[Role]:
        return await self._scalars(
            select(RoleRecord).where(RoleRecord.is_system.is_(True)).order_by(RoleRecord.level.desc())
        )

    async def find_custom(self) -> List[Role]:
        return await self._scalars(
            select(RoleRecord).where(RoleRecord.is_system.is_(False)).order_by(RoleRecord.level.desc())
        )

    async def create(self, role: Role) -> Role:
        record = _copy_role(RoleRecord(id=role.id), role)
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise RoleConflictError(f"Role with name {role.name!r} already exists")
        return role

    async def update(self, role: Role) -> Role:
        record = await self.db.get(RoleRecord, role.id)
        if record is None:
            raise RoleNotFoundError(role.id)
        _copy_role(record, role)
        await self.db.flush()
        return role

    async def delete(self, role_id: str) -> bool:
        # Assignments go with the role
        await self.db.execute(delete(AssignmentRecord).where(AssignmentRecord.role_id == role_id))
        result = await self.db.execute(delete(RoleRecord).where(RoleRecord.id == role_id))
        await self.db.flush()
        return result.rowcount > 0

    async def exists_by_id(self, role_id: str) -> bool:
        result = await self.db.execute(select(exists().where(RoleRecord.id == role_id)))
        return bool(result.scalar())

    async def exists_by_name(self, name: str) -> bool:
        result = await self.db.execute(
            select(exists().where(RoleRecord.name == name.strip().lower()))
        )
        return bool(result.scalar())


# ============================================================================
# Assignment Store
# ============================================================================

class SqlAlchemyAssignmentStore:
    """AssignmentStore backed by the ``role_assignments`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _scalars(self, stmt) -> List[Assignment]:
        result = await self.db.execute(stmt)
        return [assignment_from_record(r) for r in result.scalars().all()]

    async def find_by_id(self, assignment_id: str) -> Optional[Assignment]:
        record = await self.db.get(AssignmentRecord, assignment_id)
        return assignment_from_record(record) if record else None

    async def find_by_user_id(self, user_id: str) -> List[Assignment]:
        return await self._scalars(
            select(AssignmentRecord)
            .where(AssignmentRecord.user_id == user_id)
            .order_by(AssignmentRecord.assigned_at.desc())
        )

    async def find_by_role_id(self, role_id: str) -> List[Assignment]:
        return await self._scalars(
            select(AssignmentRecord)
            .where(AssignmentRecord.role_id == role_id)
            .order_by(AssignmentRecord.assigned_at.desc())
        )

    async def find_active_by_user_id(self, user_id: str) -> List[Assignment]:
        return await self._scalars(
            select(AssignmentRecord)
            .where(AssignmentRecord.user_id == user_id, AssignmentRecord.is_active.is_(True))
            .order_by(AssignmentRecord.assigned_at.desc())
        )

    async def find_active_by_role_id(self, role_id: str) -> List[Assignment]:
        return await self._scalars(
            select(AssignmentRecord)
            .where(AssignmentRecord.role_id == role_id, AssignmentRecord.is_active.is_(True))
            .order_by(AssignmentRecord.assigned_at.desc())
        )

    async def find_active_by_user_and_role(self, user_id: str, role_id: str) -> Optional[Assignment]:
        result = await self.db.execute(
            select(AssignmentRecord).where(
                AssignmentRecord.user_id == user_id,
                AssignmentRecord.role_id == role_id,
                AssignmentRecord.is_active.is_(True),
            )
        )
        record = result.scalars().first()
        return assignment_from_record(record) if record else None

    async def find_expired(self, at: datetime) -> List[Assignment]:
        """Assignments whose expiry is strictly before ``at``, active or not."""
        return await self._scalars(
            select(AssignmentRecord)
            .where(AssignmentRecord.expires_at.is_not(None), AssignmentRecord.expires_at < at)
            .order_by(AssignmentRecord.expires_at.desc())
        )

    async def create(self, assignment: Assignment) -> Assignment:
        record = _copy_assignment(AssignmentRecord(id=assignment.id), assignment)
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            log.warning(
                "Duplicate active assignment rejected by storage: user=%s role=%s",
                assignment.user_id, assignment.role_id,
            )
            raise DuplicateAssignmentError(assignment.user_id, assignment.role_id)
        return assignment

    async def update(self, assignment: Assignment) -> Assignment:
        record = await self.db.get(AssignmentRecord, assignment.id)
        if record is None:
            raise AssignmentNotFoundError(assignment.id)
        _copy_assignment(record, assignment)
        await self.db.flush()
        return assignment

    async def delete(self, assignment_id: str) -> bool:
        result = await self.db.execute(delete(AssignmentRecord).where(AssignmentRecord.id == assignment_id))
        await self.db.flush()
        return result.rowcount > 0
