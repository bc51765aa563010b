"""
SQLAlchemy tables backing the RBAC stores.

The rows are persistence records only; the domain works with the frozen
Role / Assignment values and the stores map between the two.
"""
from datetime import datetime
from typing import Any, Dict
import uuid

from sqlalchemy import Boolean, ForeignKey, Index, Integer, JSON, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, UTCDateTime


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


class RoleRecord(Base, TimestampMixin):
    """
    Role row.

    System roles are seeded (scripts/seed_roles.py) and protected by the
    service layer; nothing here enforces it.
    """
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # JSON list of normalized permission strings
    permissions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    metadata_: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)

    def __repr__(self) -> str:
        return f"<RoleRecord(id={self.id}, name={self.name!r}, level={self.level})>"


class AssignmentRecord(Base, TimestampMixin):
    """
    User-role assignment row.

    At most one active row per (user_id, role_id), enforced by a partial
    unique index on both SQLite and PostgreSQL.
    """
    __tablename__ = "role_assignments"
    __table_args__ = (
        Index(
            "uq_role_assignments_active_user_role",
            "user_id",
            "role_id",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    assigned_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # Temporary assignments carry an expiry
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    metadata_: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AssignmentRecord(id={self.id}, user_id={self.user_id}, role_id={self.role_id})>"


class AuditLog(Base):
    """
    Append-only record of RBAC audit events.

    Written by DatabaseAuditSink; never updated or deleted.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)

    event_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    role_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    role_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, event_type={self.event_type}, user_id={self.user_id})>"
