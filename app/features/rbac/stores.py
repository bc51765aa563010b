"""
Storage collaborators for the RBAC domain.

The domain only sees these protocols. Lookups return None for missing rows;
raising NotFound is the caller's decision.
"""
from datetime import datetime
from typing import List, Optional, Protocol, Sequence

from app.features.rbac.assignments import Assignment
from app.features.rbac.roles import Role


class RoleStore(Protocol):
    async def find_by_id(self, role_id: str) -> Optional[Role]: ...

    async def find_by_name(self, name: str) -> Optional[Role]: ...

    async def find_by_ids(self, role_ids: Sequence[str]) -> List[Role]: ...

    async def find_all(self, limit: int = 50, offset: int = 0) -> List[Role]: ...

    async def find_active(self) -> List[Role]: ...

    async def find_system(self) -> List[Role]: ...

    async def find_custom(self) -> List[Role]: ...

    async def create(self, role: Role) -> Role: ...

    async def update(self, role: Role) -> Role: ...

    async def delete(self, role_id: str) -> bool: ...

    async def exists_by_id(self, role_id: str) -> bool: ...

    async def exists_by_name(self, name: str) -> bool: ...


class AssignmentStore(Protocol):
    async def find_by_id(self, assignment_id: str) -> Optional[Assignment]: ...

    async def find_by_user_id(self, user_id: str) -> List[Assignment]: ...

    async def find_by_role_id(self, role_id: str) -> List[Assignment]: ...

    async def find_active_by_user_id(self, user_id: str) -> List[Assignment]: ...

    async def find_active_by_role_id(self, role_id: str) -> List[Assignment]: ...

    async def find_active_by_user_and_role(self, user_id: str, role_id: str) -> Optional[Assignment]: ...

    async def find_expired(self, at: datetime) -> List[Assignment]: ...

    async def create(self, assignment: Assignment) -> Assignment: ...

    async def update(self, assignment: Assignment) -> Assignment: ...

    async def delete(self, assignment_id: str) -> bool: ...
