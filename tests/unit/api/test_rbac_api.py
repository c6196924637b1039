"""Tests for the RBAC HTTP API."""

import uuid

import pytest
from fastapi.testclient import TestClient

from agencycrm.db.seed import seed_default_roles
from tests.factories import (
    activity_entries,
    assign_role,
    create_branch,
    create_role,
    create_student,
    create_user,
)


@pytest.fixture
def roles(db_session, agency):
    return seed_default_roles(db_session, agency.id)


@pytest.fixture
def sydney(db_session, agency):
    return create_branch(db_session, agency=agency, name="Sydney", code="SYD")


@pytest.fixture
def admin(db_session, agency, roles):
    user = create_user(db_session, agency=agency, name="Admin")
    assign_role(db_session, user=user, role=roles["agency-admin"])
    return user


@pytest.fixture
def consultant(db_session, agency, roles, sydney):
    user = create_user(db_session, agency=agency, branch=sydney, name="Consultant")
    assign_role(db_session, user=user, role=roles["consultant"])
    return user


@pytest.fixture
def api(agency):
    return f"/api/{agency.subdomain}/rbac"


class TestAuthentication:

    def test_missing_token(self, client: TestClient, api):
        response = client.post(f"{api}/check", json={"checks": [{"resource": "students", "action": "read"}]})
        assert response.status_code == 401

    def test_garbage_token(self, client: TestClient, api):
        response = client.get(f"{api}/permissions", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_unknown_agency(self, client: TestClient, admin, auth_headers):
        response = client.get("/api/nowhere/rbac/permissions", headers=auth_headers(admin))
        assert response.status_code == 404

    def test_user_of_other_agency(self, client: TestClient, api, db_session, auth_headers):
        outsider = create_user(db_session)
        response = client.get(f"{api}/permissions", headers=auth_headers(outsider))
        assert response.status_code == 401


class TestCheckEndpoint:

    def test_consultant_checks(self, client: TestClient, api, consultant, auth_headers):
        response = client.post(
            f"{api}/check",
            json={"checks": [
                {"resource": "students", "action": "read"},
                {"resource": "students", "action": "delete"},
            ]},
            headers=auth_headers(consultant),
        )
        assert response.status_code == 200
        data = response.json()
        assert data["user_id"] == str(consultant.id)
        read, delete = data["results"]
        assert read["allowed"] is True
        assert read["access_level"] == "VIEW"
        assert read["deciding_policy"] is None
        assert delete["allowed"] is False
        assert delete["reason"] == "InsufficientPermissions"
        assert data["summary"] == {"total": 2, "allowed": 1, "denied": 1}

    def test_check_is_recorded_in_activity_log(self, client: TestClient, api, db_session, agency, consultant, auth_headers):
        response = client.post(
            f"{api}/check",
            json={"checks": [
                {"resource": "students", "action": "read"},
                {"resource": "students", "action": "delete"},
            ]},
            headers=auth_headers(consultant),
        )
        assert response.status_code == 200

        entries = activity_entries(db_session, agency, "rbac.check")
        assert len(entries) == 1
        assert entries[0].user_id == consultant.id
        assert entries[0].details["summary"] == {"total": 2, "allowed": 1, "denied": 1}
        assert [c["permission"] for c in entries[0].details["checks"]] == ["students:read", "students:delete"]

    def test_branch_scoped_check(self, client: TestClient, api, db_session, agency, consultant, sydney, auth_headers):
        melbourne = create_branch(db_session, agency=agency, code="MEL")
        local = create_student(db_session, agency=agency, branch=sydney)
        remote = create_student(db_session, agency=agency, branch=melbourne)

        response = client.post(
            f"{api}/check",
            json={"checks": [
                {"resource": "students", "action": "read", "resource_id": str(local.id)},
                {"resource": "students", "action": "read", "resource_id": str(remote.id)},
            ]},
            headers=auth_headers(consultant),
        )
        results = response.json()["results"]
        assert results[0]["allowed"] is True
        assert results[1]["reason"] == "OutOfScope"

    def test_admin_sees_deciding_policy(self, client: TestClient, api, admin, consultant, auth_headers):
        response = client.post(
            f"{api}/check",
            json={"user_id": str(consultant.id), "checks": [{"resource": "students", "action": "update"}]},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        policy = response.json()["results"][0]["deciding_policy"]
        assert policy["role"] == "consultant"
        assert policy["permission"] == "students:update"
        assert policy["access_level"] == "EDIT"

    def test_checking_others_requires_roles_read(self, client: TestClient, api, admin, consultant, auth_headers):
        response = client.post(
            f"{api}/check",
            json={"user_id": str(admin.id), "checks": [{"resource": "students", "action": "read"}]},
            headers=auth_headers(consultant),
        )
        assert response.status_code == 403

    def test_empty_checks_rejected(self, client: TestClient, api, consultant, auth_headers):
        response = client.post(f"{api}/check", json={"checks": []}, headers=auth_headers(consultant))
        assert response.status_code == 422


class TestRoleEndpoints:

    def test_create_and_get_role(self, client: TestClient, api, admin, auth_headers):
        response = client.post(
            f"{api}/roles",
            json={
                "name": "Visa Officer",
                "slug": "visa-officer",
                "level": 30,
                "scope": "TEAM",
                "bindings": [
                    {"permission": "documents:read", "access_level": "VIEW"},
                    {"permission": "students:update", "access_level": "CUSTOM",
                     "conditions": {"type": "owner_match"}},
                ],
            },
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        role = response.json()
        assert role["scope"] == "TEAM"
        assert [b["permission"] for b in role["bindings"]] == ["documents:read", "students:update"]

        response = client.get(f"{api}/roles/{role['id']}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["slug"] == "visa-officer"

    def test_consultant_cannot_create_role(self, client: TestClient, api, consultant, auth_headers):
        response = client.post(
            f"{api}/roles", json={"name": "X", "slug": "x"}, headers=auth_headers(consultant)
        )
        assert response.status_code == 403
        assert response.json()["detail"] == "Permission denied: InsufficientPermissions"

    def test_duplicate_slug_conflict(self, client: TestClient, api, admin, auth_headers):
        response = client.post(
            f"{api}/roles", json={"name": "Consultant", "slug": "consultant"}, headers=auth_headers(admin)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "duplicate_slug"

    def test_cannot_create_peer_level_role(self, client: TestClient, api, admin, auth_headers):
        response = client.post(
            f"{api}/roles", json={"name": "Co-Admin", "slug": "co-admin", "level": 100}, headers=auth_headers(admin)
        )
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    def test_branch_scope_requires_branch(self, client: TestClient, api, admin, auth_headers):
        response = client.post(
            f"{api}/roles", json={"name": "Lead", "slug": "lead", "scope": "BRANCH"}, headers=auth_headers(admin)
        )
        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_hierarchy(self, client: TestClient, api, admin, auth_headers):
        response = client.get(f"{api}/roles", headers=auth_headers(admin))
        assert response.status_code == 200
        roots = {node["slug"]: node for node in response.json()}
        assert set(roots) == {"agency-admin", "consultant", "viewer"}
        assert [c["slug"] for c in roots["consultant"]["children"]] == ["senior-consultant"]

    def test_hierarchy_branch_filter(self, client: TestClient, api, db_session, agency, admin, sydney, auth_headers):
        create_role(db_session, agency=agency, slug="syd-lead", scope="BRANCH", branch=sydney)
        response = client.get(f"{api}/roles", params={"branch_id": str(sydney.id)}, headers=auth_headers(admin))
        assert [node["slug"] for node in response.json()] == ["syd-lead"]

    def test_system_role_read_only(self, client: TestClient, api, admin, roles, auth_headers):
        response = client.patch(
            f"{api}/roles/{roles['viewer'].id}", json={"name": "Looker"}, headers=auth_headers(admin)
        )
        assert response.status_code == 403

    def test_update_cycle_rejected(self, client: TestClient, api, db_session, agency, admin, auth_headers):
        parent = create_role(db_session, agency=agency, slug="parent-role", level=5)
        child = create_role(db_session, agency=agency, slug="child-role", level=4, parent=parent)
        response = client.patch(
            f"{api}/roles/{parent.id}", json={"parent_id": str(child.id)}, headers=auth_headers(admin)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "cycle_detected"

    def test_deactivate_and_delete(self, client: TestClient, api, db_session, agency, admin, auth_headers):
        role = create_role(db_session, agency=agency, slug="temp", level=5)
        response = client.post(f"{api}/roles/{role.id}/deactivate", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        response = client.delete(f"{api}/roles/{role.id}", headers=auth_headers(admin))
        assert response.status_code == 204
        response = client.get(f"{api}/roles/{role.id}", headers=auth_headers(admin))
        assert response.status_code == 404


class TestAssignmentEndpoints:

    def test_assign_and_revoke(self, client: TestClient, api, db_session, agency, admin, roles, auth_headers):
        user = create_user(db_session, agency=agency)
        response = client.post(
            f"{api}/assignments",
            json={"user_id": str(user.id), "role_id": str(roles["viewer"].id)},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        assignment = response.json()
        assert assignment["state"] == "active"
        assert assignment["assigned_by"] == str(admin.id)
        assert assignment["warnings"] == []

        response = client.post(
            f"{api}/assignments",
            json={"user_id": str(user.id), "role_id": str(roles["viewer"].id)},
            headers=auth_headers(admin),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "already_assigned"

        for _ in range(2):
            response = client.post(f"{api}/assignments/{assignment['id']}/revoke", headers=auth_headers(admin))
            assert response.status_code == 200
            assert response.json()["state"] == "revoked"

        response = client.get(f"{api}/users/{user.id}/roles", headers=auth_headers(admin))
        assert response.json() == []
        response = client.get(f"{api}/users/{user.id}/roles", params={"history": True}, headers=auth_headers(admin))
        assert [a["role_slug"] for a in response.json()] == ["viewer"]

    def test_assign_user_of_other_agency(self, client: TestClient, api, db_session, admin, roles, auth_headers):
        outsider = create_user(db_session)
        response = client.post(
            f"{api}/assignments",
            json={"user_id": str(outsider.id), "role_id": str(roles["viewer"].id)},
            headers=auth_headers(admin),
        )
        assert response.status_code == 404
        assert response.json()["code"] == "user_not_in_agency"

    def test_revoke_unknown(self, client: TestClient, api, admin, auth_headers):
        response = client.post(f"{api}/assignments/{uuid.uuid4()}/revoke", headers=auth_headers(admin))
        assert response.status_code == 404

    def test_consultant_cannot_assign(self, client: TestClient, api, consultant, roles, auth_headers):
        response = client.post(
            f"{api}/assignments",
            json={"user_id": str(consultant.id), "role_id": str(roles["agency-admin"].id)},
            headers=auth_headers(consultant),
        )
        assert response.status_code == 403


class TestPermissionEndpoints:

    def test_list_permissions(self, client: TestClient, api, consultant, auth_headers):
        response = client.get(f"{api}/permissions", params={"resource": "students"}, headers=auth_headers(consultant))
        assert response.status_code == 200
        assert all(p["resource"] == "students" for p in response.json())
        assert "students:read" in {p["slug"] for p in response.json()}

    def test_custom_permission_lifecycle(self, client: TestClient, api, admin, auth_headers):
        response = client.post(
            f"{api}/permissions",
            json={"slug": "visas:approve", "resource": "visas", "action": "approve", "category": "CRM"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 201
        permission_id = response.json()["id"]

        response = client.patch(
            f"{api}/permissions/{permission_id}", json={"name": "Approve visas"}, headers=auth_headers(admin)
        )
        assert response.json()["name"] == "Approve visas"

        response = client.patch(
            f"{api}/permissions/{permission_id}", json={"resource": "students"}, headers=auth_headers(admin)
        )
        assert response.status_code == 422

        response = client.delete(f"{api}/permissions/{permission_id}", headers=auth_headers(admin))
        assert response.status_code == 204

    def test_system_permission_cannot_be_deleted(self, client: TestClient, api, db_session, admin, auth_headers):
        from agencycrm.db.models import Permission

        permission = db_session.query(Permission).filter(Permission.slug == "students:read").one()
        response = client.delete(f"{api}/permissions/{permission.id}", headers=auth_headers(admin))
        assert response.status_code == 409
        assert response.json()["code"] == "permission_in_use"

    def test_consultant_cannot_manage_catalog(self, client: TestClient, api, consultant, auth_headers):
        response = client.post(
            f"{api}/permissions",
            json={"slug": "visas:approve", "resource": "visas", "action": "approve"},
            headers=auth_headers(consultant),
        )
        assert response.status_code == 403


class TestBranchEndpoints:

    def test_create_and_list(self, client: TestClient, api, admin, sydney, auth_headers):
        response = client.post(
            f"{api}/branches", json={"name": "Melbourne", "code": "mel"}, headers=auth_headers(admin)
        )
        assert response.status_code == 201
        assert response.json()["code"] == "MEL"

        response = client.get(f"{api}/branches", headers=auth_headers(admin))
        assert [b["code"] for b in response.json()] == ["MEL", "SYD"]

    def test_duplicate_code(self, client: TestClient, api, admin, sydney, auth_headers):
        response = client.post(
            f"{api}/branches", json={"name": "Sydney CBD", "code": "SYD"}, headers=auth_headers(admin)
        )
        assert response.status_code == 409
        assert response.json()["code"] == "duplicate_branch_code"

    def test_my_branches(self, client: TestClient, api, consultant, sydney, admin, auth_headers):
        response = client.get(f"{api}/me/branches", headers=auth_headers(consultant))
        assert response.json() == {
            "user_id": str(consultant.id),
            "all_branches": False,
            "branch_ids": [str(sydney.id)],
        }

        response = client.get(f"{api}/me/branches", headers=auth_headers(admin))
        assert response.json()["all_branches"] is True

    def test_user_branches_requires_permission(self, client: TestClient, api, consultant, admin, auth_headers):
        response = client.get(f"{api}/users/{admin.id}/branches", headers=auth_headers(consultant))
        assert response.status_code == 403

        response = client.get(f"{api}/users/{consultant.id}/branches", headers=auth_headers(admin))
        assert response.status_code == 200
