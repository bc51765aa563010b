"""
Audit events for RBAC changes.

Sinks are write-only. The service emits through emit_safely(), so a failing
sink is logged and never rolls back or blocks the change being audited.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.rbac.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


class AuditEventType(str, Enum):
    ROLE_ASSIGN = "role_assign"
    ROLE_REVOKE = "role_revoke"
    PERMISSION_CHANGE = "permission_change"


@dataclass(frozen=True)
class AuditEvent:
    event_type: AuditEventType
    user_id: Optional[str]
    role_id: Optional[str]
    role_name: Optional[str]
    assigned_by: Optional[str]
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False)


class AuditSink(Protocol):
    async def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Writes each event as one structured log line."""

    async def emit(self, event: AuditEvent) -> None:
        log.info(
            "Audit: event=%s user=%s role=%s(%s) by=%s metadata=%s",
            event.event_type.value, event.user_id, event.role_name, event.role_id,
            event.assigned_by, event.metadata,
        )


class DatabaseAuditSink:
    """Appends events to the audit_logs table inside a savepoint."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def emit(self, event: AuditEvent) -> None:
        async with self.db.begin_nested():
            self.db.add(AuditLog(
                event_type=event.event_type.value,
                user_id=event.user_id,
                role_id=event.role_id,
                role_name=event.role_name,
                assigned_by=event.assigned_by,
                details=dict(event.metadata),
                created_at=event.timestamp,
            ))


class FanOutAuditSink:
    """Delivers every event to each wrapped sink independently."""

    def __init__(self, sinks: Sequence[AuditSink]):
        self.sinks = list(sinks)

    async def emit(self, event: AuditEvent) -> None:
        for sink in self.sinks:
            await emit_safely(sink, event)


async def emit_safely(sink: Optional[AuditSink], event: AuditEvent) -> None:
    if sink is None:
        return
    try:
        await sink.emit(event)
    except Exception:
        log.exception("Audit sink %s failed for %s event", type(sink).__name__, event.event_type.value)
