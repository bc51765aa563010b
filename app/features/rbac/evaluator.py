"""
Effective-permission evaluation over the role and assignment stores.
"""
from typing import FrozenSet, Iterable, List

from app.features.rbac.assignments import Assignment
from app.features.rbac.clock import Clock, system_clock
from app.features.rbac.permissions import normalize_permission
from app.features.rbac.roles import Role
from app.features.rbac.stores import AssignmentStore, RoleStore
from app.utils import get_logger


log = get_logger(__name__)

# Returned by get_user_highest_role_level when the user holds no valid assignment
NO_ROLE_LEVEL = -1


class PermissionEvaluator:
    """
    Computes what a user may do from their currently valid assignments.

    The evaluator holds no locks. An aggregate issues several reads through
    one session, and they form one snapshot only inside a transaction at
    REPEATABLE READ or stricter. Under READ COMMITTED, or on SQLite where
    the driver opens no transaction before a SELECT, a grant or revoke
    committed between two reads can show up in one and not the other.
    """

    def __init__(self, roles: RoleStore, assignments: AssignmentStore, clock: Clock = system_clock):
        self.roles = roles
        self.assignments = assignments
        self.clock = clock

    async def get_active_assignments(self, user_id: str) -> List[Assignment]:
        """Assignments for ``user_id`` that are active and not expired right now."""
        now = self.clock.now()
        candidates = await self.assignments.find_active_by_user_id(user_id)
        return [a for a in candidates if a.is_valid(now)]

    async def get_user_roles(self, user_id: str) -> List[Role]:
        """
        Active roles reachable through valid assignments, highest level first.

        Inactive roles are skipped: a deactivated role grants nothing even
        while assignments to it remain.
        """
        assignments = await self.get_active_assignments(user_id)
        if not assignments:
            return []
        role_ids = list(dict.fromkeys(a.role_id for a in assignments))
        roles = await self.roles.find_by_ids(role_ids)
        return sorted((r for r in roles if r.is_active), key=lambda r: r.level, reverse=True)

    async def get_user_permissions(self, user_id: str) -> FrozenSet[str]:
        roles = await self.get_user_roles(user_id)
        permissions = frozenset(p for role in roles for p in role.permissions)
        log.debug("User %s resolved %d permissions from %d roles", user_id, len(permissions), len(roles))
        return permissions

    async def get_user_highest_role_level(self, user_id: str) -> int:
        roles = await self.get_user_roles(user_id)
        if not roles:
            return NO_ROLE_LEVEL
        return max(role.level for role in roles)

    async def has_user_role(self, user_id: str, role_name: str) -> bool:
        name = role_name.strip().lower()
        return any(role.name == name for role in await self.get_user_roles(user_id))

    async def has_user_permission(self, user_id: str, permission: str) -> bool:
        return normalize_permission(permission) in await self.get_user_permissions(user_id)

    async def has_user_any_permission(self, user_id: str, permissions: Iterable[str]) -> bool:
        granted = await self.get_user_permissions(user_id)
        return any(normalize_permission(p) in granted for p in permissions)

    async def has_user_all_permissions(self, user_id: str, permissions: Iterable[str]) -> bool:
        granted = await self.get_user_permissions(user_id)
        return all(normalize_permission(p) in granted for p in permissions)
