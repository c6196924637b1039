"""Tests for the decision cache and the RBAC service facade."""

import uuid

import pytest

from agencycrm.core.rbac.cache import DecisionCache, get_decision_cache
from agencycrm.core.rbac.resolver import CancellationToken, DenyReason
from agencycrm.core.rbac.scoping import ALL_BRANCHES
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.seed import seed_default_roles
from tests.factories import activity_entries, assign_role, create_role, create_user, get_or_create_permission


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class TestDecisionCache:

    def test_get_set(self):
        cache = DecisionCache()
        key = DecisionCache.make_key(uuid.uuid4(), uuid.uuid4(), "students", "read")
        assert cache.get(key) is None
        cache.set(key, "allow")
        assert cache.get(key) == "allow"
        assert len(cache) == 1

    def test_ttl_expiry(self):
        clock = FakeClock()
        cache = DecisionCache(ttl_seconds=10, clock=clock)
        key = DecisionCache.make_key(uuid.uuid4(), uuid.uuid4(), "students", "read")
        cache.set(key, "allow")
        clock.now = 9.9
        assert cache.get(key) == "allow"
        clock.now = 10.0
        assert cache.get(key) is None
        assert len(cache) == 0

    def test_key_includes_resource_and_context(self):
        agency, user = uuid.uuid4(), uuid.uuid4()
        base = DecisionCache.make_key(agency, user, "students", "read")
        assert base != DecisionCache.make_key(agency, user, "students", "read", uuid.uuid4())
        assert base != DecisionCache.make_key(agency, user, "students", "read", context={"intake": "FEB"})
        assert DecisionCache.make_key(agency, user, "s", "r", context={"a": 1, "b": 2}) == \
            DecisionCache.make_key(agency, user, "s", "r", context={"b": 2, "a": 1})

    def test_unserializable_context_has_no_key(self):
        key = DecisionCache.make_key(uuid.uuid4(), uuid.uuid4(), "s", "r", context={object(): 1})
        assert key is None

    def test_invalidate_user_and_agency(self):
        cache = DecisionCache()
        agency, other_agency = uuid.uuid4(), uuid.uuid4()
        alice, bob = uuid.uuid4(), uuid.uuid4()
        cache.set(DecisionCache.make_key(agency, alice, "students", "read"), 1)
        cache.set(DecisionCache.make_key(agency, alice, "tasks", "read"), 2)
        cache.set(DecisionCache.make_key(agency, bob, "students", "read"), 3)
        cache.set(DecisionCache.make_key(other_agency, alice, "students", "read"), 4)

        assert cache.invalidate_user(agency, alice) == 2
        assert len(cache) == 2
        assert cache.invalidate_agency(agency) == 1
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0

    def test_disabled_by_default(self):
        assert get_decision_cache() is None


@pytest.fixture
def cache():
    return DecisionCache()


@pytest.fixture
def service(db_session, agency, cache):
    return RBACService(db_session, agency.id, cache=cache, timeout=0)


class TestServiceCaching:

    def test_decision_cached_and_dropped_on_revoke(self, service, cache, db_session, agency):
        user = create_user(db_session, agency=agency)
        role = create_role(db_session, agency=agency, bindings=[("students:read", "VIEW")])
        assignment = service.assign_role(user.id, role.id)

        assert service.check_permission(user.id, "students", "read").allowed
        assert len(cache) == 1

        service.revoke_role(assignment.id)
        assert len(cache) == 0
        assert service.check_permission(user.id, "students", "read").reason == DenyReason.NO_ROLES_ASSIGNED

    def test_role_update_drops_agency_entries(self, service, cache, db_session, agency):
        get_or_create_permission(db_session, "students:read")
        role = service.roles.create_role("Counsellor", "counsellor", bindings=[("students:read", "VIEW")])
        user = create_user(db_session, agency=agency)
        service.assign_role(user.id, role.id)

        assert service.check_permission(user.id, "students", "read").allowed
        service.roles.update_role(role.id, bindings=[])
        assert len(cache) == 0
        assert not service.check_permission(user.id, "students", "read").allowed

    def test_conditional_decisions_not_cached(self, service, cache, db_session, agency):
        user = create_user(db_session, agency=agency)
        role = create_role(db_session, agency=agency, bindings=[
            ("students:update", "CUSTOM", {"type": "field_equals", "field": "intake", "value": "FEB"}),
        ])
        assign_role(db_session, user=user, role=role)

        assert service.check_permission(user.id, "students", "update", context={"intake": "FEB"}).allowed
        assert len(cache) == 0

    def test_timeouts_not_cached(self, service, cache, db_session, agency):
        user = create_user(db_session, agency=agency)
        role = create_role(db_session, agency=agency, bindings=[("students:read", "VIEW")])
        assign_role(db_session, user=user, role=role)

        token = CancellationToken()
        token.cancel()
        assert service.check_permission(user.id, "students", "read", token=token).reason == DenyReason.TIMEOUT
        assert len(cache) == 0
        assert service.check_permission(user.id, "students", "read").allowed

    def test_denies_are_cached_too(self, service, cache, db_session, agency):
        user = create_user(db_session, agency=agency)
        service.check_permission(user.id, "students", "read")
        assert len(cache) == 1


class TestServiceOperations:

    def test_check_permissions_batch(self, db_session, agency):
        roles = seed_default_roles(db_session, agency.id)
        service = RBACService(db_session, agency.id, timeout=0)
        user = create_user(db_session, agency=agency)
        service.assign_role(user.id, roles["consultant"].id)

        batch = service.check_permissions(user.id, [
            {"resource": "students", "action": "read"},
            {"resource": "students", "action": "update"},
            {"resource": "students", "action": "delete"},
        ])
        assert [r.allowed for _, r in batch["results"]] == [True, True, False]
        assert batch["summary"] == {"total": 3, "allowed": 2, "denied": 1}

    def test_accessible_branches_and_hierarchy(self, db_session, agency):
        roles = seed_default_roles(db_session, agency.id)
        service = RBACService(db_session, agency.id)
        admin = create_user(db_session, agency=agency)
        service.assign_role(admin.id, roles["agency-admin"].id)

        assert service.accessible_branches(admin.id) is ALL_BRANCHES
        root_slugs = [n.role.slug for n in service.get_role_hierarchy()]
        assert root_slugs == ["agency-admin", "consultant", "viewer"]

    def test_audit_warnings_collected(self, service, db_session, agency, monkeypatch):
        from sqlalchemy.exc import SQLAlchemyError
        from agencycrm.db.models import ActivityLog

        def broken_entry(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(ActivityLog, "create_entry", broken_entry)
        user = create_user(db_session, agency=agency)
        role = create_role(db_session, agency=agency)
        service.assign_role(user.id, role.id)
        service.branches.create_branch("Sydney", "SYD")

        assert len(service.audit_warnings) == 2

    def test_record_check_is_best_effort(self, service, db_session, agency, monkeypatch):
        from sqlalchemy.exc import SQLAlchemyError
        from agencycrm.db.models import ActivityLog

        user = create_user(db_session, agency=agency)
        batch = service.check_permissions(user.id, [{"resource": "students", "action": "read"}])
        service.record_check(user.id, user.id, batch)
        entry = activity_entries(db_session, agency, "rbac.check")[0]
        assert entry.details["checks"] == [
            {"permission": "students:read", "allowed": False, "reason": "NoRolesAssigned"},
        ]

        def broken_entry(*args, **kwargs):
            raise SQLAlchemyError("disk full")

        monkeypatch.setattr(ActivityLog, "create_entry", broken_entry)
        service.record_check(user.id, user.id, batch)
        assert len(service.audit_warnings) == 1
