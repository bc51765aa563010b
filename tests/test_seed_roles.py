from app.features.rbac.permissions import ALL_SYSTEM_PERMISSIONS, DEFAULT_ROLES
from app.features.rbac.repository import SqlAlchemyRoleStore
from app.features.rbac.roles import RoleCatalog
from scripts.seed_roles import seed_roles


async def test_seed_creates_system_roles(db):
    await seed_roles(db)
    roles = await SqlAlchemyRoleStore(db).find_system()

    assert [r.name for r in roles] == ["super_admin", "admin", "moderator", "user"]
    assert set(roles[0].permissions) == set(ALL_SYSTEM_PERMISSIONS)
    assert all(not r.can_be_deleted() for r in roles)


async def test_seed_is_idempotent_and_refreshes_permissions(db):
    await seed_roles(db)
    store = SqlAlchemyRoleStore(db)
    user = await store.find_by_name("user")
    await store.update(RoleCatalog().update_permissions(user, ["stale:permission"]))
    await db.commit()

    await seed_roles(db)

    refreshed = await store.find_by_name("user")
    assert refreshed.id == user.id
    assert len(await store.find_system()) == len(DEFAULT_ROLES)
    assert "stale:permission" not in refreshed.permissions
