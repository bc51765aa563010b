"""
Seed script to populate the default system roles.

Run this script after database initialization to create:
- The default system roles (super_admin, admin, moderator, user)
- Optionally, a super_admin grant for a bootstrap user

Existing system roles keep their id and get their permission set refreshed,
so the script can be re-run after the permission catalog changes.

Usage:
    python -m scripts.seed_roles [BOOTSTRAP_USER_ID]
"""
import asyncio
import sys
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db, init_db
from app.features.rbac.audit import LoggingAuditSink
from app.features.rbac.errors import DuplicateAssignmentError
from app.features.rbac.permissions import DEFAULT_ROLES, normalize_permissions
from app.features.rbac.repository import SqlAlchemyAssignmentStore, SqlAlchemyRoleStore
from app.features.rbac.roles import RoleCatalog
from app.features.rbac.service import RbacService
from app.utils import get_logger


log = get_logger(__name__)


async def seed_roles(db: AsyncSession) -> None:
    """
    Create default roles or refresh their permissions.

    System roles are read-only through the service, so this goes through the
    catalog and the store directly.
    """
    log.info("Creating default roles...")
    catalog = RoleCatalog()
    store = SqlAlchemyRoleStore(db)

    for role_name, role_config in DEFAULT_ROLES.items():
        permissions = normalize_permissions(role_config["permissions"])
        existing = await store.find_by_name(role_name)

        if existing:
            if existing.permissions == permissions:
                log.debug("Role '%s' already up to date, skipping", role_name)
                continue
            await store.update(catalog.update_permissions(existing, permissions))
            log.info("Refreshed role '%s' with %d permissions", role_name, len(permissions))
            continue

        role = catalog.create(
            name=role_name,
            display_name=role_config["display_name"],
            description=role_config["description"],
            level=role_config["level"],
            is_system=True,
            permissions=permissions,
        )
        result = catalog.validate(role)
        if not result.is_valid:
            raise ValueError(f"Default role '{role_name}' is invalid: {result.errors}")
        await store.create(role)
        log.info("Created role '%s' (level %d) with %d permissions", role_name, role.level, len(permissions))

    await db.commit()
    log.info("Default roles created successfully")


async def grant_super_admin(db: AsyncSession, user_id: str) -> None:
    """Give ``user_id`` the super_admin role so the API can be administered."""
    service = RbacService(SqlAlchemyRoleStore(db), SqlAlchemyAssignmentStore(db), audit=LoggingAuditSink())
    role = await service.get_role_by_name("super_admin")
    try:
        await service.assign_role(user_id, role.id, actor_id="seed")
    except DuplicateAssignmentError:
        log.info("User %s already holds super_admin", user_id)
        return
    await db.commit()


async def main(bootstrap_user_id: Optional[str] = None):
    """Main function to seed roles."""
    log.info("Starting role seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async for db in get_db():
        try:
            await seed_roles(db)
            if bootstrap_user_id:
                await grant_super_admin(db, bootstrap_user_id)

            log.info("Role seeding completed successfully!")
            log.info("")
            log.info("Default roles:")
            for role_name, role_config in DEFAULT_ROLES.items():
                log.info("  - %s (level %d): %s", role_name, role_config["level"], role_config["description"])

        except Exception as e:
            log.error("Error seeding roles: %s", e, exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
