from dataclasses import FrozenInstanceError, replace

import pytest

from app.features.rbac.clock import TICK
from app.features.rbac.errors import InvariantViolation
from app.features.rbac.roles import Role
from tests.conftest import T0


def test_create_normalizes_input(catalog):
    role = catalog.create(
        name="  Editor ",
        display_name=" Editor ",
        description="  edits things  ",
        permissions=["Content:Read", " content:read", "content:update"],
    )
    assert role.name == "editor"
    assert role.display_name == "Editor"
    assert role.description == "edits things"
    assert role.permissions == ("content:read", "content:update")
    assert role.level == 0
    assert role.is_system is False
    assert role.is_active is True
    assert role.created_at == role.updated_at == T0


def test_roles_are_immutable(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    with pytest.raises(FrozenInstanceError):
        role.name = "other"


def test_add_then_has_and_remove_then_has_not(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    added = catalog.add_permission(role, "read:x")
    assert added.has_permission("read:x")
    assert added.has_permission(" READ:X ")
    removed = catalog.remove_permission(added, "read:x")
    assert not removed.has_permission("read:x")
    assert not role.has_permission("read:x")


def test_update_permissions_normalizes_and_dedupes(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    assert catalog.update_permissions(role, ["a", "A", " a "]).permissions == ("a",)


def test_add_permission_already_present_returns_same_object(catalog, clock):
    role = catalog.create(name="viewer", display_name="Viewer", permissions=["read:x"])
    clock.advance(seconds=1)
    assert catalog.add_permission(role, "READ:X") is role


def test_remove_absent_permission_still_bumps(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", permissions=["read:x"])
    updated = catalog.remove_permission(role, "write:x")
    assert updated is not role
    assert updated.permissions == ("read:x",)
    assert updated.updated_at > role.updated_at


def test_updated_at_strictly_increases_under_frozen_clock(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    first = catalog.update_info(role, display_name="Viewer 1")
    second = catalog.update_permissions(first, ["read:x"])
    third = catalog.update_metadata(second, {"team": "ops"})
    assert role.updated_at < first.updated_at < second.updated_at < third.updated_at
    assert first.updated_at == role.updated_at + TICK
    assert third.created_at == role.created_at


def test_updated_at_increases_when_clock_goes_backwards(catalog, clock):
    role = catalog.create(name="viewer", display_name="Viewer")
    clock.rewind(hours=1)
    assert catalog.update_info(role, level=5).updated_at > role.updated_at


def test_update_info_replaces_only_given_fields(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", description="old", level=3)
    updated = catalog.update_info(role, description=" new ")
    assert updated.description == "new"
    assert updated.display_name == "Viewer"
    assert updated.level == 3
    assert updated.name == role.name
    assert updated.id == role.id


def test_update_metadata_merges(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", metadata={"a": 1, "b": 2})
    assert catalog.update_metadata(role, {"b": 3, "c": 4}).metadata == {"a": 1, "b": 3, "c": 4}
    assert role.metadata == {"a": 1, "b": 2}


def test_system_role_cannot_be_deactivated(catalog):
    role = catalog.create(name="admin", display_name="Admin", is_system=True)
    with pytest.raises(InvariantViolation, match="cannot deactivate system role"):
        catalog.deactivate(role)


def test_deactivate_activate_round_trip(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    inactive = catalog.deactivate(role)
    active = catalog.activate(inactive)
    assert not inactive.is_active
    assert active.is_active
    assert role.updated_at < inactive.updated_at < active.updated_at


def test_activate_and_deactivate_are_idempotent(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    assert catalog.activate(role) is role
    inactive = catalog.deactivate(role)
    assert catalog.deactivate(inactive) is inactive


def test_system_flags(catalog):
    system = catalog.create(name="admin", display_name="Admin", is_system=True)
    custom = catalog.create(name="viewer", display_name="Viewer")
    assert not system.can_be_deleted() and not system.can_be_modified()
    assert custom.can_be_deleted() and custom.can_be_modified()


@pytest.mark.parametrize("a, b", [(10, 50), (50, 10), (20, 20), (0, 1000)])
def test_level_comparisons_are_exclusive_and_total(catalog, a, b):
    left = catalog.create(name="left", display_name="Left", level=a)
    right = catalog.create(name="right", display_name="Right", level=b)
    outcomes = [left.is_higher_level(right), left.is_same_level(right), left.is_lower_level(right)]
    assert outcomes.count(True) == 1


def test_permission_group_helpers(catalog):
    role = catalog.create(name="auditor", display_name="Auditor", permissions=["read:roles", "manage:users"])
    assert role.has_read_permissions()
    assert role.has_user_management_permissions()
    assert not role.has_write_permissions()
    assert not role.has_admin_permissions()


def test_any_and_all(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", permissions=["read:x", "read:y"])
    assert catalog.has_any_permission(role, ["write:x", "READ:Y"])
    assert not catalog.has_any_permission(role, [])
    assert catalog.has_all_permissions(role, ["read:x", "read:y"])
    assert not catalog.has_all_permissions(role, ["read:x", "write:x"])
    assert catalog.has_permission(role, "read:x")


def test_validate_flags_out_of_range_level(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", level=1001)
    result = catalog.validate(role)
    assert not result.is_valid
    assert any(e.startswith("level:") for e in result.errors)


def test_to_dict_is_json_ready(catalog):
    role = catalog.create(name="viewer", display_name="Viewer", permissions=["read:x"])
    data = role.to_dict()
    assert data["name"] == "viewer"
    assert data["permissions"] == ["read:x"]
    assert data["created_at"] == T0.isoformat()


def test_repr_mentions_name(catalog):
    role = catalog.create(name="viewer", display_name="Viewer")
    assert "viewer" in repr(role)
    assert isinstance(role, Role)


def test_system_role_must_be_active(catalog):
    with pytest.raises(InvariantViolation, match="system roles must be active"):
        catalog.create(name="admin", display_name="Admin", is_system=True, is_active=False)

    admin = catalog.create(name="admin", display_name="Admin", is_system=True)
    assert catalog.validate(admin).is_valid
    result = catalog.validate(replace(admin, is_active=False))
    assert not result.is_valid
    assert result.errors[0].startswith("is_active:")


def test_inactive_custom_role_is_valid(catalog):
    role = catalog.create(name="draft", display_name="Draft", is_active=False)
    assert not role.is_active
    assert catalog.validate(role).is_valid
