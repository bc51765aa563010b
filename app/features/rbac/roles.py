"""
Role values and the RoleCatalog that produces them.

A Role is a frozen value. Every change goes through RoleCatalog and returns a
new Role with a strictly later ``updated_at``; the original is untouched.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from app.features.rbac.clock import Clock, next_timestamp, system_clock
from app.features.rbac.errors import InvariantViolation
from app.features.rbac.permissions import (
    ADMIN_PERMISSIONS,
    READ_PERMISSIONS,
    USER_MANAGEMENT_PERMISSIONS,
    WRITE_PERMISSIONS,
    normalize_permission,
    normalize_permissions,
)
from app.features.rbac.validation import ValidationResult, validate_role, validate_role_create


@dataclass(frozen=True)
class Role:
    """
    A named, leveled bundle of permissions.

    Attributes:
        id: UUID string, fixed at creation
        name: Lowercased unique key, never changes after creation
        display_name: Human label
        description: Optional free text
        level: 0-1000, higher means more authority
        is_system: System roles can never be deleted or deactivated
        permissions: Normalized, de-duplicated permission names
        metadata: Opaque key-value bag
        is_active: Whether the role currently grants anything
    """
    id: str
    name: str
    display_name: str
    description: Optional[str]
    level: int
    is_system: bool
    permissions: Tuple[str, ...]
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def has_permission(self, permission: str) -> bool:
        return normalize_permission(permission) in self.permissions

    def has_any_permission(self, permissions: Iterable[str]) -> bool:
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: Iterable[str]) -> bool:
        return all(self.has_permission(p) for p in permissions)

    def has_read_permissions(self) -> bool:
        return self.has_any_permission(READ_PERMISSIONS)

    def has_write_permissions(self) -> bool:
        return self.has_any_permission(WRITE_PERMISSIONS)

    def has_admin_permissions(self) -> bool:
        return self.has_any_permission(ADMIN_PERMISSIONS)

    def has_user_management_permissions(self) -> bool:
        return self.has_any_permission(USER_MANAGEMENT_PERMISSIONS)

    def can_be_deleted(self) -> bool:
        return not self.is_system

    def can_be_modified(self) -> bool:
        return not self.is_system

    def is_higher_level(self, other: "Role") -> bool:
        return self.level > other.level

    def is_same_level(self, other: "Role") -> bool:
        return self.level == other.level

    def is_lower_level(self, other: "Role") -> bool:
        return self.level < other.level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "level": self.level,
            "is_system": self.is_system,
            "permissions": list(self.permissions),
            "metadata": dict(self.metadata),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, level={self.level}, system={self.is_system})>"


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if value is not None else None


class RoleCatalog:
    """
    Factory and pure transitions for Role values.

    The catalog holds no state besides its clock; it is safe to share.
    """

    def __init__(self, clock: Clock = system_clock):
        self.clock = clock

    def _touch(self, role: Role, **changes: Any) -> Role:
        return replace(role, updated_at=next_timestamp(self.clock, role.updated_at), **changes)

    def create(
        self,
        name: str,
        display_name: str,
        description: Optional[str] = None,
        level: int = 0,
        is_system: bool = False,
        permissions: Iterable[str] = (),
        metadata: Optional[Mapping[str, Any]] = None,
        is_active: bool = True,
    ) -> Role:
        """
        Build a new role with a fresh id and created_at == updated_at == now.

        ``name`` is trimmed and lowercased, ``display_name`` and
        ``description`` are trimmed. No range checks happen here; run
        validate_create() on raw input or validate() on the result.

        Raises:
            InvariantViolation: If a system role is requested inactive
        """
        if is_system and not is_active:
            raise InvariantViolation("system roles must be active")
        now = self.clock.now()
        return Role(
            id=str(uuid.uuid4()),
            name=name.strip().lower(),
            display_name=display_name.strip(),
            description=_strip(description),
            level=level,
            is_system=is_system,
            permissions=normalize_permissions(permissions),
            metadata=dict(metadata or {}),
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )

    def update_info(
        self,
        role: Role,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        level: Optional[int] = None,
    ) -> Role:
        """Replace only the fields that were provided."""
        changes: Dict[str, Any] = {}
        if display_name is not None:
            changes["display_name"] = display_name.strip()
        if description is not None:
            changes["description"] = description.strip()
        if level is not None:
            changes["level"] = level
        return self._touch(role, **changes)

    def update_permissions(self, role: Role, permissions: Iterable[str]) -> Role:
        return self._touch(role, permissions=normalize_permissions(permissions))

    def add_permission(self, role: Role, permission: str) -> Role:
        """Add one permission; returns ``role`` itself if it is already present."""
        normalized = normalize_permission(permission)
        if normalized in role.permissions:
            return role
        return self.update_permissions(role, role.permissions + (normalized,))

    def remove_permission(self, role: Role, permission: str) -> Role:
        """
        Remove one permission.

        Always produces a new version, even when the permission was absent.
        """
        normalized = normalize_permission(permission)
        return self.update_permissions(role, [p for p in role.permissions if p != normalized])

    def update_metadata(self, role: Role, metadata: Mapping[str, Any]) -> Role:
        return self._touch(role, metadata={**role.metadata, **metadata})

    def activate(self, role: Role) -> Role:
        if role.is_active:
            return role
        return self._touch(role, is_active=True)

    def deactivate(self, role: Role) -> Role:
        """
        Deactivate a custom role.

        Raises:
            InvariantViolation: If the role is a system role
        """
        if not role.is_active:
            return role
        if role.is_system:
            raise InvariantViolation("cannot deactivate system role")
        return self._touch(role, is_active=False)

    # Query helpers, mirrored from Role for callers that work through the catalog

    @staticmethod
    def has_permission(role: Role, permission: str) -> bool:
        return role.has_permission(permission)

    @staticmethod
    def has_any_permission(role: Role, permissions: Iterable[str]) -> bool:
        return role.has_any_permission(permissions)

    @staticmethod
    def has_all_permissions(role: Role, permissions: Iterable[str]) -> bool:
        return role.has_all_permissions(permissions)

    @staticmethod
    def validate(role: Role) -> ValidationResult:
        return validate_role(role)

    @staticmethod
    def validate_create(data: Any) -> ValidationResult:
        return validate_role_create(data)
