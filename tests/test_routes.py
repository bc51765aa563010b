from datetime import timedelta

import jwt
import pytest

from app.features.rbac.assignments import AssignmentLedger
from app.features.rbac.permissions import ALL_SYSTEM_PERMISSIONS
from app.features.rbac.repository import SqlAlchemyAssignmentStore, SqlAlchemyRoleStore
from app.features.rbac.roles import RoleCatalog
from tests.conftest import T0, TEST_SECRET, FrozenClock, auth_header


ADMIN = auth_header("admin-1")


@pytest.fixture
def super_admin(run_in_db):
    """A system super_admin role held by admin-1."""
    async def seed(session):
        clock = FrozenClock()
        role = await SqlAlchemyRoleStore(session).create(RoleCatalog(clock).create(
            name="super_admin", display_name="Super Administrator", level=100,
            is_system=True, permissions=ALL_SYSTEM_PERMISSIONS,
        ))
        await SqlAlchemyAssignmentStore(session).create(
            AssignmentLedger(clock).create(user_id="admin-1", role_id=role.id)
        )
        return role
    return run_in_db(seed)


def create_editor(client):
    response = client.post(
        "/rbac/roles",
        json={"name": "editor", "display_name": "Editor", "level": 30, "permissions": ["Content:Read"]},
        headers=ADMIN,
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_missing_token_is_rejected(client):
    assert client.get("/rbac/roles").status_code in (401, 403)


def test_expired_token_is_rejected(client):
    token = jwt.encode({"sub": "admin-1", "exp": 1}, TEST_SECRET, algorithm="HS256")
    response = client.get("/rbac/roles", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["detail"] == "Token has expired"


def test_wrong_signature_is_rejected(client):
    token = jwt.encode({"sub": "admin-1"}, "some-other-secret-0123456789abcdef", algorithm="HS256")
    response = client.get("/rbac/roles", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_guard_denies_without_permission(client, super_admin):
    response = client.post(
        "/rbac/roles",
        json={"name": "editor", "display_name": "Editor"},
        headers=auth_header("nobody"),
    )
    assert response.status_code == 403
    assert response.json()["detail"] == "Permission denied: requires role:write"


def test_create_and_list_roles(client, super_admin):
    editor = create_editor(client)
    assert editor["name"] == "editor"
    assert editor["permissions"] == ["content:read"]
    assert editor["is_system"] is False

    names = [r["name"] for r in client.get("/rbac/roles", headers=ADMIN).json()]
    assert names == ["super_admin", "editor"]
    custom = client.get("/rbac/roles", params={"kind": "custom"}, headers=ADMIN).json()
    assert [r["name"] for r in custom] == ["editor"]


def test_duplicate_role_name_conflicts(client, super_admin):
    create_editor(client)
    response = client.post("/rbac/roles", json={"name": "EDITOR", "display_name": "Again"}, headers=ADMIN)
    assert response.status_code == 409


def test_invalid_role_payload(client, super_admin):
    response = client.post(
        "/rbac/roles",
        json={"name": "bad name!", "display_name": "Bad", "level": 5000},
        headers=ADMIN,
    )
    assert response.status_code == 400
    assert set(response.json()) == {"name", "level"}


def test_unknown_role_is_404(client, super_admin):
    assert client.get("/rbac/roles/missing", headers=ADMIN).status_code == 404


def test_system_role_is_protected(client, super_admin):
    assert client.delete(f"/rbac/roles/{super_admin.id}", headers=ADMIN).status_code == 409
    response = client.put(f"/rbac/roles/{super_admin.id}/permissions", json={"permissions": []}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["detail"] == "cannot modify system role"


def test_role_permission_endpoints(client, super_admin):
    editor = create_editor(client)
    added = client.post(f"/rbac/roles/{editor['id']}/permissions", json={"permission": "content:update"}, headers=ADMIN)
    assert added.json()["permissions"] == ["content:read", "content:update"]

    removed = client.delete(f"/rbac/roles/{editor['id']}/permissions/content:read", headers=ADMIN)
    assert removed.json()["permissions"] == ["content:update"]

    replaced = client.put(f"/rbac/roles/{editor['id']}/permissions", json={"permissions": ["A", "a"]}, headers=ADMIN)
    assert replaced.json()["permissions"] == ["a"]


def test_update_and_deactivate_role(client, super_admin):
    editor = create_editor(client)
    updated = client.patch(f"/rbac/roles/{editor['id']}", json={"level": 35}, headers=ADMIN).json()
    assert updated["level"] == 35
    assert updated["display_name"] == "Editor"

    deactivated = client.post(f"/rbac/roles/{editor['id']}/deactivate", headers=ADMIN).json()
    assert deactivated["is_active"] is False
    assert client.post(f"/rbac/roles/{editor['id']}/activate", headers=ADMIN).json()["is_active"] is True


def test_assignment_lifecycle(client, super_admin):
    editor = create_editor(client)
    granted = client.post("/rbac/assignments", json={"user_id": "user-7", "role_id": editor["id"]}, headers=ADMIN)
    assert granted.status_code == 201, granted.text
    assignment = granted.json()
    assert assignment["assigned_by"] == "admin-1"

    duplicate = client.post("/rbac/assignments", json={"user_id": "user-7", "role_id": editor["id"]}, headers=ADMIN)
    assert duplicate.status_code == 409

    permissions = client.get("/rbac/users/user-7/permissions", headers=ADMIN).json()
    assert permissions["permissions"] == ["content:read"]
    assert permissions["highest_level"] == 30
    assert [r["name"] for r in permissions["roles"]] == ["editor"]

    check = client.post("/rbac/check", json={"permissions": ["content:read", "content:delete"], "mode": "any"},
                        headers=auth_header("user-7")).json()
    assert check == {"user_id": "user-7", "has_permission": True, "missing": ["content:delete"]}

    revoked = client.delete(f"/rbac/assignments/{assignment['id']}", headers=ADMIN).json()
    assert revoked["is_active"] is False
    assert client.get("/rbac/me/permissions", headers=auth_header("user-7")).json()["highest_level"] == -1

    history = client.get("/rbac/users/user-7/assignments", headers=ADMIN).json()
    assert [a["id"] for a in history] == [assignment["id"]]


def test_assign_with_bad_role_id(client, super_admin):
    response = client.post("/rbac/assignments", json={"user_id": "user-7", "role_id": "nope"}, headers=ADMIN)
    assert response.status_code == 422
    assert response.json()["errors"][0].startswith("role_id:")


def test_checking_another_user_requires_role_read(client, super_admin):
    response = client.post(
        "/rbac/check",
        json={"user_id": "admin-1", "permissions": ["role:read"]},
        headers=auth_header("user-7"),
    )
    assert response.status_code == 403


def test_expire_assignments_endpoint(client, super_admin, clock):
    editor = create_editor(client)
    expires_at = (T0 + timedelta(minutes=10)).isoformat()
    granted = client.post(
        "/rbac/assignments",
        json={"user_id": "user-7", "role_id": editor["id"], "expires_at": expires_at},
        headers=ADMIN,
    ).json()
    clock.advance(hours=1)

    assert client.post("/rbac/assignments/expire", headers=ADMIN).json() == {"deactivated": 1}
    history = client.get("/rbac/users/user-7/assignments", headers=ADMIN).json()
    assert history[0]["id"] == granted["id"]
    assert history[0]["is_active"] is False


def test_extend_assignment(client, super_admin):
    editor = create_editor(client)
    granted = client.post("/rbac/assignments", json={"user_id": "user-7", "role_id": editor["id"]}, headers=ADMIN).json()
    new_expiry = (T0 + timedelta(days=30)).replace(tzinfo=None).isoformat()
    updated = client.patch(
        f"/rbac/assignments/{granted['id']}/expiration", json={"expires_at": new_expiry}, headers=ADMIN,
    )
    assert updated.status_code == 200
    assert updated.json()["expires_at"].startswith("2024-01-31T12:00:00")


def test_metadata_endpoints_merge_keys(client, super_admin):
    editor = create_editor(client)
    client.patch(f"/rbac/roles/{editor['id']}/metadata", json={"metadata": {"team": "docs"}}, headers=ADMIN)
    role = client.patch(f"/rbac/roles/{editor['id']}/metadata", json={"metadata": {"tier": 2}}, headers=ADMIN)
    assert role.status_code == 200
    assert role.json()["metadata"] == {"team": "docs", "tier": 2}

    granted = client.post("/rbac/assignments", json={"user_id": "user-7", "role_id": editor["id"]}, headers=ADMIN).json()
    updated = client.patch(
        f"/rbac/assignments/{granted['id']}/metadata", json={"metadata": {"ticket": "OPS-1"}}, headers=ADMIN,
    )
    assert updated.status_code == 200
    assert updated.json()["metadata"] == {"ticket": "OPS-1"}


def test_system_role_metadata_is_protected(client, super_admin):
    response = client.patch(f"/rbac/roles/{super_admin.id}/metadata", json={"metadata": {"x": 1}}, headers=ADMIN)
    assert response.status_code == 409
    assert response.json()["detail"] == "cannot modify system role"
