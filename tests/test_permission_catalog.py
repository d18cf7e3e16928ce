"""
Permission catalog — pure role → permission resolution.
"""

import pytest

from app.services.permission_catalog import (
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    granted_for_action,
    has_permission,
    permissions_for,
    permissions_for_action,
)


class TestPermissionsFor:
    def test_admin_holds_every_permission(self):
        assert permissions_for(["admin"]) == ALL_PERMISSIONS

    def test_admin_ignores_an_edited_catalog(self):
        assert permissions_for(["admin"], {"admin": frozenset()}) == ALL_PERMISSIONS

    def test_union_of_roles(self):
        perms = permissions_for(["viewer", "auditor"])
        assert "audit.read" in perms
        assert "task.read" in perms
        assert "task.update" not in perms

    def test_unknown_role_contributes_nothing(self):
        assert permissions_for(["wizard"]) == frozenset()

    def test_no_roles(self):
        assert permissions_for([]) == frozenset()
        assert permissions_for(None) == frozenset()

    def test_catalog_keys_outside_the_closed_set_are_ignored(self):
        catalog = {"viewer": frozenset({"task.read", "launch.missiles"})}
        assert permissions_for(["viewer"], catalog) == frozenset({"task.read"})


class TestHasPermission:
    @pytest.mark.parametrize("role,key,expected", [
        ("manager", "task.assign", True),
        ("manager", "audit.read", False),
        ("trainee", "task.update", False),
        ("trainee", "task.read", True),
        ("viewer", "program.create", False),
        ("auditor", "user.read", True),
    ])
    def test_default_table(self, role, key, expected):
        assert has_permission([role], key) is expected

    def test_manager_does_not_hold_audit(self):
        assert "audit.read" not in DEFAULT_ROLE_PERMISSIONS["manager"]


class TestActionMapping:
    def test_unlisted_action_maps_to_itself(self):
        assert permissions_for_action("program.create") == ("program.create",)

    def test_task_update_is_satisfied_by_assign(self):
        assert granted_for_action(["manager"], "task.update") == {"task.update", "task.assign"}

    def test_granted_subset_with_assign_only_role(self):
        catalog = {"manager": frozenset({"task.assign", "task.read"})}
        assert granted_for_action(["manager"], "task.update", catalog) == {"task.assign"}

    def test_lifecycle_actions_map_to_crud_permissions(self):
        assert permissions_for_action("program.publish") == ("program.update",)
        assert permissions_for_action("template.archive") == ("template.delete",)
        assert permissions_for_action("link.attach") == ("template.update",)
