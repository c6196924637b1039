"""Tests for the permission model and default role definitions."""

import pytest

from agencycrm.core.rbac.permissions import (
    AccessLevel,
    Action,
    PERMISSION_DEFINITIONS,
    PermissionCategory,
    PermissionKey,
    Resource,
    RoleScope,
    category_for,
    get_all_permissions,
    get_permissions_for_resource,
    is_seeded_permission,
    is_valid_slug,
)
from agencycrm.core.rbac.roles import (
    AGENCY_ADMIN_BINDINGS,
    BRANCH_MANAGER_ROLE,
    CONSULTANT_BINDINGS,
    DEFAULT_ROLES,
    SENIOR_CONSULTANT_BINDINGS,
    VIEWER_BINDINGS,
    get_all_default_roles,
    get_default_role_bindings,
)


class TestPermissionKey:
    """Test permission definitions."""

    def test_permission_string_format(self):
        perm = PermissionKey(Resource.STUDENTS, Action.READ)
        assert str(perm) == "students:read"

    def test_permission_from_string(self):
        perm = PermissionKey.from_string("applications:submit")
        assert perm.resource == Resource.APPLICATIONS
        assert perm.action == Action.SUBMIT

    def test_invalid_permission_format(self):
        with pytest.raises(ValueError):
            PermissionKey.from_string("invalid")

        with pytest.raises(ValueError):
            PermissionKey.from_string("too:many:parts")

        with pytest.raises(ValueError):
            PermissionKey.from_string("students:fly")

    def test_slug_validation(self):
        assert is_valid_slug("students:read")
        assert is_valid_slug("access_logs:read")
        assert is_valid_slug("visas:approve")  # not seeded, still well-formed
        assert not is_valid_slug("students")
        assert not is_valid_slug("Students:Read")
        assert not is_valid_slug("students:read:all")
        assert not is_valid_slug("")
        assert not is_valid_slug(None)

    def test_all_permissions_generated(self):
        all_perms = get_all_permissions()
        assert len(all_perms) == len(PERMISSION_DEFINITIONS)
        assert "students:read" in all_perms
        assert "applications:submit" in all_perms
        assert "roles:manage" in all_perms
        assert "access_logs:read" in all_perms
        assert "access_logs:delete" not in all_perms

    def test_permissions_for_resource(self):
        perms = get_permissions_for_resource(Resource.STUDENTS)
        assert "students:read" in perms
        assert "students:assign" in perms
        assert "applications:read" not in perms

    def test_is_seeded_permission(self):
        assert is_seeded_permission("reports:export")
        assert not is_seeded_permission("reports:delete")

    def test_categories(self):
        assert category_for(Resource.STUDENTS) == PermissionCategory.CRM
        assert category_for(Resource.INVOICES) == PermissionCategory.FINANCE
        assert category_for(Resource.ROLES) == PermissionCategory.CORE


class TestAccessLevel:

    def test_ordinal_order(self):
        levels = [AccessLevel.NONE, AccessLevel.VIEW, AccessLevel.EDIT, AccessLevel.DELETE, AccessLevel.FULL]
        assert [level.ordinal for level in levels] == [0, 1, 2, 3, 4]

    def test_custom_is_outside_ordinal(self):
        assert AccessLevel.CUSTOM.ordinal is None

    def test_full_implies_lower_levels(self):
        for level in (AccessLevel.VIEW, AccessLevel.EDIT, AccessLevel.DELETE, AccessLevel.NONE):
            assert AccessLevel.FULL.implies(level)
        assert not AccessLevel.VIEW.implies(AccessLevel.EDIT)

    def test_custom_only_implies_itself(self):
        assert AccessLevel.CUSTOM.implies(AccessLevel.CUSTOM)
        assert not AccessLevel.CUSTOM.implies(AccessLevel.VIEW)
        assert not AccessLevel.FULL.implies(AccessLevel.CUSTOM)

    def test_parse_from_string(self):
        assert AccessLevel("EDIT") is AccessLevel.EDIT
        with pytest.raises(ValueError):
            AccessLevel("ADMIN")


class TestRoleScope:

    def test_breadth_order(self):
        ordered = sorted(RoleScope, key=lambda s: s.breadth, reverse=True)
        assert ordered == [
            RoleScope.GLOBAL,
            RoleScope.AGENCY,
            RoleScope.BRANCH,
            RoleScope.DEPARTMENT,
            RoleScope.TEAM,
            RoleScope.INDIVIDUAL,
        ]

    def test_agency_wide(self):
        assert RoleScope.GLOBAL.is_agency_wide
        assert RoleScope.AGENCY.is_agency_wide
        assert not RoleScope.BRANCH.is_agency_wide
        assert not RoleScope.TEAM.is_agency_wide


class TestDefaultRoles:
    """Test default role definitions."""

    def test_default_roles_exist(self):
        assert set(DEFAULT_ROLES) == {"agency-admin", "consultant", "senior-consultant", "viewer"}

    def test_parents_listed_before_children(self):
        seen = set()
        for slug, config in DEFAULT_ROLES.items():
            if config["parent"]:
                assert config["parent"] in seen
            seen.add(slug)

    def test_admin_has_full_on_everything(self):
        slugs = {slug for slug, _ in AGENCY_ADMIN_BINDINGS}
        assert slugs == set(PERMISSION_DEFINITIONS)
        assert all(level == AccessLevel.FULL for _, level in AGENCY_ADMIN_BINDINGS)

    def test_consultant_is_read_and_edit_only(self):
        bindings = dict(CONSULTANT_BINDINGS)
        assert bindings["students:read"] == AccessLevel.VIEW
        assert bindings["students:update"] == AccessLevel.EDIT
        assert "students:delete" not in bindings

    def test_senior_consultant_extends_consultant(self):
        assert DEFAULT_ROLES["senior-consultant"]["parent"] == "consultant"
        assert DEFAULT_ROLES["senior-consultant"]["level"] > DEFAULT_ROLES["consultant"]["level"]
        assert "applications:submit" in dict(SENIOR_CONSULTANT_BINDINGS)

    def test_viewer_is_read_only(self):
        for slug, level in VIEWER_BINDINGS:
            assert slug.endswith(":read")
            assert level == AccessLevel.VIEW

    def test_all_default_bindings_are_seeded(self):
        for slug, _ in get_default_role_bindings("branch-manager"):
            assert is_seeded_permission(slug)
        for key in DEFAULT_ROLES:
            for slug, _ in get_default_role_bindings(key):
                assert is_seeded_permission(slug), slug

    def test_branch_manager_is_branch_scoped(self):
        assert BRANCH_MANAGER_ROLE["scope"] == RoleScope.BRANCH

    def test_unknown_role_raises(self):
        with pytest.raises(ValueError):
            get_default_role_bindings("superuser")

    def test_get_all_default_roles_returns_copy(self):
        roles = get_all_default_roles()
        roles.pop("viewer")
        assert "viewer" in DEFAULT_ROLES
