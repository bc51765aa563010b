"""
Role assignment values and the AssignmentLedger that produces them.
"""
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from app.features.rbac.clock import Clock, as_utc, next_timestamp, system_clock
from app.features.rbac.validation import (
    ValidationResult,
    validate_assignment,
    validate_assignment_create,
)


@dataclass(frozen=True)
class Assignment:
    """
    Time-boxed, activatable binding of a user to a role.

    An assignment grants its role only while it is valid: active and not
    past ``expires_at``. No expiry means it never expires.
    """
    id: str
    user_id: str
    role_id: str
    assigned_by: Optional[str]
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, at: datetime) -> bool:
        return self.expires_at is not None and at > self.expires_at

    def is_valid(self, at: datetime) -> bool:
        return self.is_active and not self.is_expired(at)

    def is_temporary(self) -> bool:
        return self.expires_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "role_id": self.role_id,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "is_active": self.is_active,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<Assignment(id={self.id}, user_id={self.user_id}, role_id={self.role_id}, active={self.is_active})>"


class AssignmentLedger:
    """Factory and pure transitions for Assignment values."""

    def __init__(self, clock: Clock = system_clock):
        self.clock = clock

    def _touch(self, assignment: Assignment, **changes: Any) -> Assignment:
        return replace(
            assignment,
            updated_at=next_timestamp(self.clock, assignment.updated_at),
            **changes,
        )

    def create(
        self,
        user_id: str,
        role_id: str,
        assigned_by: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Assignment:
        now = self.clock.now()
        return Assignment(
            id=str(uuid.uuid4()),
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=now,
            expires_at=as_utc(expires_at),
            is_active=is_active,
            metadata=dict(metadata or {}),
            created_at=now,
            updated_at=now,
        )

    def activate(self, assignment: Assignment) -> Assignment:
        if assignment.is_active:
            return assignment
        return self._touch(assignment, is_active=True)

    def deactivate(self, assignment: Assignment) -> Assignment:
        if not assignment.is_active:
            return assignment
        return self._touch(assignment, is_active=False)

    def update_expiration(self, assignment: Assignment, expires_at: Optional[datetime]) -> Assignment:
        """Replace the expiry; ``None`` makes the assignment permanent."""
        return self._touch(assignment, expires_at=as_utc(expires_at))

    def update_metadata(self, assignment: Assignment, metadata: Mapping[str, Any]) -> Assignment:
        return self._touch(assignment, metadata={**assignment.metadata, **metadata})

    def is_expired(self, assignment: Assignment) -> bool:
        return assignment.is_expired(self.clock.now())

    def is_valid(self, assignment: Assignment) -> bool:
        return assignment.is_valid(self.clock.now())

    @staticmethod
    def validate(assignment: Assignment) -> ValidationResult:
        return validate_assignment(assignment)

    @staticmethod
    def validate_create(data: Any) -> ValidationResult:
        return validate_assignment_create(data)
