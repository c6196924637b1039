"""Tests for agency seeding."""

from agencycrm.core.rbac.permissions import PERMISSION_DEFINITIONS, RoleScope
from agencycrm.db.models import Permission, Role
from agencycrm.db.seed import (
    get_admin_role,
    get_role_by_slug,
    seed_agency,
    seed_branch_manager_role,
    seed_default_roles,
)
from tests.factories import create_branch


class TestSeedAgency:

    def test_seed_agency_creates_default_roles(self, db_session):
        agency = seed_agency(db_session, "Globe Study Abroad", "globe-seed")

        slugs = {r.slug for r in db_session.query(Role).filter(Role.agency_id == agency.id)}
        assert slugs == {"agency-admin", "consultant", "senior-consultant", "viewer"}
        assert db_session.query(Permission).count() >= len(PERMISSION_DEFINITIONS)

        admin = get_admin_role(db_session, agency.id)
        assert admin.is_system
        assert admin.level == 100
        assert len(admin.bindings) == len(PERMISSION_DEFINITIONS)

        senior = get_role_by_slug(db_session, agency.id, "senior-consultant")
        assert senior.parent.slug == "consultant"
        assert senior.scope == RoleScope.TEAM.value

    def test_seed_agency_is_idempotent(self, db_session):
        first = seed_agency(db_session, "Globe", "globe-twice")
        second = seed_agency(db_session, "Globe again", "globe-twice")
        assert first.id == second.id

    def test_seed_default_roles_is_idempotent(self, db_session, agency):
        first = seed_default_roles(db_session, agency.id)
        second = seed_default_roles(db_session, agency.id)
        assert {k: r.id for k, r in first.items()} == {k: r.id for k, r in second.items()}

    def test_roles_are_per_agency(self, db_session, agency_factory):
        a = agency_factory()
        b = agency_factory()
        roles_a = seed_default_roles(db_session, a.id)
        roles_b = seed_default_roles(db_session, b.id)
        assert roles_a["consultant"].id != roles_b["consultant"].id
        assert get_admin_role(db_session, a.id).agency_id == a.id


class TestBranchManagerRole:

    def test_seed_branch_manager(self, db_session, agency):
        branch = create_branch(db_session, agency=agency, code="SYD")
        role = seed_branch_manager_role(db_session, agency.id, branch)

        assert role.slug == "branch-manager-syd"
        assert role.scope == RoleScope.BRANCH.value
        assert role.branch_id == branch.id
        assert role.is_system
        assert seed_branch_manager_role(db_session, agency.id, branch).id == role.id
