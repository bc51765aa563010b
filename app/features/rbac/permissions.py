"""
Permission names known to the application.

Permissions are plain strings; these constants are the ones the application
itself checks and seeds. Roles may carry any other normalized string.
"""
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Tuple


def normalize_permission(permission: str) -> str:
    """Trim and lowercase a permission name."""
    return permission.strip().lower()


def normalize_permissions(permissions: Iterable[str]) -> Tuple[str, ...]:
    """Normalize and de-duplicate, keeping first-seen order."""
    return tuple(dict.fromkeys(normalize_permission(p) for p in permissions))


class SystemPermission(str, Enum):
    """Permissions checked by the RBAC endpoints and seeded into system roles."""
    # User management
    USER_READ = "user:read"
    USER_WRITE = "user:write"
    USER_DELETE = "user:delete"
    USER_ADMIN = "user:admin"

    # Profiles
    PROFILE_READ = "profile:read"
    PROFILE_WRITE = "profile:write"
    PROFILE_DELETE = "profile:delete"

    # Settings
    SETTINGS_READ = "settings:read"
    SETTINGS_WRITE = "settings:write"

    # Role management
    ROLE_READ = "role:read"
    ROLE_WRITE = "role:write"
    ROLE_DELETE = "role:delete"
    ROLE_ASSIGN = "role:assign"

    # Activity tracking
    ACTIVITY_READ = "activity:read"
    ACTIVITY_WRITE = "activity:write"
    ACTIVITY_DELETE = "activity:delete"

    # System administration
    SYSTEM_ADMIN = "system:admin"
    SYSTEM_MONITOR = "system:monitor"

    # Content
    CONTENT_CREATE = "content:create"
    CONTENT_READ = "content:read"
    CONTENT_UPDATE = "content:update"
    CONTENT_DELETE = "content:delete"
    CONTENT_MODERATE = "content:moderate"

    # Files
    FILE_UPLOAD = "file:upload"
    FILE_READ = "file:read"
    FILE_DELETE = "file:delete"


# Fixed groups behind Role.has_read_permissions() and friends
READ_PERMISSIONS: FrozenSet[str] = frozenset({
    "read:users",
    "read:profiles",
    "read:settings",
    "read:roles",
    "read:activities",
})

WRITE_PERMISSIONS: FrozenSet[str] = frozenset({
    "write:users",
    "write:profiles",
    "write:settings",
    "write:roles",
    "write:activities",
})

ADMIN_PERMISSIONS: FrozenSet[str] = frozenset({
    "admin:users",
    "admin:system",
    "admin:roles",
    "admin:settings",
})

USER_MANAGEMENT_PERMISSIONS: FrozenSet[str] = frozenset({
    "manage:users",
    "manage:profiles",
    "manage:settings",
    "manage:roles",
})


ALL_SYSTEM_PERMISSIONS: List[str] = [p.value for p in SystemPermission]


# Seeded by scripts/seed_roles.py; every entry is a system role
DEFAULT_ROLES: Dict[str, dict] = {
    "super_admin": {
        "display_name": "Super Administrator",
        "description": "Full access to every feature",
        "level": 100,
        "permissions": ALL_SYSTEM_PERMISSIONS,
    },
    "admin": {
        "display_name": "Administrator",
        "description": "Manages users, roles and settings",
        "level": 80,
        "permissions": [
            SystemPermission.USER_READ, SystemPermission.USER_WRITE, SystemPermission.USER_DELETE,
            SystemPermission.PROFILE_READ, SystemPermission.PROFILE_WRITE,
            SystemPermission.SETTINGS_READ, SystemPermission.SETTINGS_WRITE,
            SystemPermission.ROLE_READ, SystemPermission.ROLE_WRITE, SystemPermission.ROLE_ASSIGN,
            SystemPermission.ACTIVITY_READ,
            SystemPermission.SYSTEM_MONITOR,
            SystemPermission.CONTENT_READ, SystemPermission.CONTENT_MODERATE,
            SystemPermission.FILE_READ, SystemPermission.FILE_DELETE,
        ],
    },
    "moderator": {
        "display_name": "Moderator",
        "description": "Reviews and moderates user content",
        "level": 40,
        "permissions": [
            SystemPermission.USER_READ,
            SystemPermission.PROFILE_READ,
            SystemPermission.CONTENT_READ, SystemPermission.CONTENT_UPDATE,
            SystemPermission.CONTENT_MODERATE,
            SystemPermission.FILE_READ,
        ],
    },
    "user": {
        "display_name": "User",
        "description": "Standard account",
        "level": 20,
        "permissions": [
            SystemPermission.PROFILE_READ, SystemPermission.PROFILE_WRITE,
            SystemPermission.SETTINGS_READ, SystemPermission.SETTINGS_WRITE,
            SystemPermission.CONTENT_CREATE, SystemPermission.CONTENT_READ,
            SystemPermission.FILE_UPLOAD, SystemPermission.FILE_READ,
        ],
    },
}
