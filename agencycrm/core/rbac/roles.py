"""Default role definitions for AgencyCRM.

Every new agency is seeded with these roles:
1. Agency Admin - Full access to agency resources
2. Consultant - Works assigned students and applications
3. Senior Consultant - Consultant plus intake and submission (child of Consultant)
4. Viewer - Read-only access

Branch Manager is a per-branch template (BRANCH scope needs a branch) and
is seeded when a branch is opened.
"""

from typing import Dict, List, Tuple

from .permissions import (
    AccessLevel,
    Action,
    PERMISSION_DEFINITIONS,
    PERMISSION_MATRIX,
    PermissionKey,
    Resource,
    RoleScope,
)


def _build_bindings(*perms: Tuple[Resource, Action, AccessLevel]) -> List[Tuple[str, AccessLevel]]:
    """Build (slug, access level) pairs from (Resource, Action, AccessLevel) tuples."""
    return [(str(PermissionKey(r, a)), level) for r, a, level in perms]


def _all_actions(resource: Resource, level: AccessLevel) -> List[Tuple[str, AccessLevel]]:
    return [
        (str(PermissionKey(resource, action)), level)
        for action in sorted(PERMISSION_MATRIX[resource], key=lambda a: a.value)
    ]


# Agency Admin: FULL on every seeded permission
AGENCY_ADMIN_BINDINGS = [(slug, AccessLevel.FULL) for slug in sorted(PERMISSION_DEFINITIONS)]

# Branch Manager: runs one branch's pipeline and staff
BRANCH_MANAGER_BINDINGS = (
    _all_actions(Resource.STUDENTS, AccessLevel.FULL)
    + _all_actions(Resource.APPLICATIONS, AccessLevel.FULL)
    + _all_actions(Resource.TASKS, AccessLevel.FULL)
    + _build_bindings(
        (Resource.USERS, Action.READ, AccessLevel.VIEW),
        (Resource.USERS, Action.CREATE, AccessLevel.EDIT),
        (Resource.BRANCHES, Action.READ, AccessLevel.VIEW),
        (Resource.ROLES, Action.READ, AccessLevel.VIEW),
        (Resource.ROLES, Action.ASSIGN, AccessLevel.EDIT),
        (Resource.REPORTS, Action.READ, AccessLevel.VIEW),
        (Resource.REPORTS, Action.EXPORT, AccessLevel.EDIT),
    )
)

# Consultant: assigned students and applications
CONSULTANT_BINDINGS = _build_bindings(
    (Resource.STUDENTS, Action.READ, AccessLevel.VIEW),
    (Resource.STUDENTS, Action.UPDATE, AccessLevel.EDIT),
    (Resource.APPLICATIONS, Action.READ, AccessLevel.VIEW),
    (Resource.APPLICATIONS, Action.UPDATE, AccessLevel.EDIT),
    (Resource.DOCUMENTS, Action.READ, AccessLevel.VIEW),
    (Resource.DOCUMENTS, Action.UPLOAD, AccessLevel.EDIT),
    (Resource.UNIVERSITIES, Action.READ, AccessLevel.VIEW),
    (Resource.COMMUNICATIONS, Action.SEND, AccessLevel.EDIT),
) + _all_actions(Resource.TASKS, AccessLevel.FULL)

# Senior Consultant: inherits Consultant through the hierarchy
SENIOR_CONSULTANT_BINDINGS = _build_bindings(
    (Resource.STUDENTS, Action.CREATE, AccessLevel.EDIT),
    (Resource.STUDENTS, Action.ASSIGN, AccessLevel.EDIT),
    (Resource.APPLICATIONS, Action.CREATE, AccessLevel.EDIT),
    (Resource.APPLICATIONS, Action.SUBMIT, AccessLevel.EDIT),
    (Resource.REPORTS, Action.READ, AccessLevel.VIEW),
)

# Viewer: read-only
VIEWER_BINDINGS = _build_bindings(
    (Resource.STUDENTS, Action.READ, AccessLevel.VIEW),
    (Resource.APPLICATIONS, Action.READ, AccessLevel.VIEW),
    (Resource.USERS, Action.READ, AccessLevel.VIEW),
    (Resource.TASKS, Action.READ, AccessLevel.VIEW),
)


# Default roles configuration; parents are listed before their children
DEFAULT_ROLES: Dict[str, dict] = {
    "agency-admin": {
        "name": "Agency Admin",
        "description": "Full access to agency resources",
        "level": 100,
        "scope": RoleScope.AGENCY,
        "parent": None,
        "bindings": AGENCY_ADMIN_BINDINGS,
    },
    "consultant": {
        "name": "Consultant",
        "description": "Access to assigned students and applications",
        "level": 10,
        "scope": RoleScope.TEAM,
        "parent": None,
        "bindings": CONSULTANT_BINDINGS,
    },
    "senior-consultant": {
        "name": "Senior Consultant",
        "description": "Consultant with intake, assignment and submission rights",
        "level": 20,
        "scope": RoleScope.TEAM,
        "parent": "consultant",
        "bindings": SENIOR_CONSULTANT_BINDINGS,
    },
    "viewer": {
        "name": "Viewer",
        "description": "Read-only access to resources",
        "level": 1,
        "scope": RoleScope.INDIVIDUAL,
        "parent": None,
        "bindings": VIEWER_BINDINGS,
    },
}

BRANCH_MANAGER_ROLE: dict = {
    "name": "Branch Manager",
    "description": "Manage a specific branch and its resources",
    "level": 50,
    "scope": RoleScope.BRANCH,
    "parent": None,
    "bindings": BRANCH_MANAGER_BINDINGS,
}


def get_default_role_bindings(role_key: str) -> List[Tuple[str, AccessLevel]]:
    """Get (slug, access level) bindings for a default role."""
    if role_key == "branch-manager":
        return BRANCH_MANAGER_ROLE["bindings"]
    role = DEFAULT_ROLES.get(role_key)
    if not role:
        raise ValueError(f"Unknown default role: {role_key}")
    return role["bindings"]


def get_all_default_roles() -> Dict[str, dict]:
    """Get all default role definitions."""
    return DEFAULT_ROLES.copy()
