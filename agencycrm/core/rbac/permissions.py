"""Permission model for AgencyCRM RBAC.

Defines the seeded resources and actions, the access levels a role can be
granted on a permission, and the organizational scopes a role applies at.
The seeded catalog uses a matrix approach: permissions = actions x resources.

Permission slug format: "resource:action"
Examples:
  - students:read
  - applications:submit
  - roles:manage
  - reports:export
"""

import re
from enum import Enum
from typing import NamedTuple, FrozenSet, Optional


class Resource(str, Enum):
    """Resources that can be protected by permissions."""

    # CRM
    STUDENTS = "students"             # Leads and enrolled students
    APPLICATIONS = "applications"     # University applications
    UNIVERSITIES = "universities"     # Partner universities
    TASKS = "tasks"
    DOCUMENTS = "documents"
    COMMUNICATIONS = "communications"

    # Organization
    BRANCHES = "branches"
    USERS = "users"
    ROLES = "roles"
    PERMISSIONS = "permissions"
    AGENCY = "agency"

    # Finance and reporting
    INVOICES = "invoices"
    REPORTS = "reports"
    ACCESS_LOGS = "access_logs"


class Action(str, Enum):
    """Actions that can be performed on resources."""

    # Standard CRUD actions
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"

    # Specialized actions
    ASSIGN = "assign"       # Assign records or roles to users
    EXPORT = "export"
    MANAGE = "manage"       # Full management (create/update/delete)
    SUBMIT = "submit"       # Submit applications to universities
    SEND = "send"           # Send email/SMS
    UPLOAD = "upload"


class AccessLevel(str, Enum):
    """How much of a resource-action pair a binding grants.

    NONE < VIEW < EDIT < DELETE < FULL form an ordinal. CUSTOM sits outside
    the ordinal and defers to the binding's conditions.
    """

    NONE = "NONE"
    VIEW = "VIEW"
    EDIT = "EDIT"
    DELETE = "DELETE"
    FULL = "FULL"
    CUSTOM = "CUSTOM"

    @property
    def ordinal(self) -> Optional[int]:
        return ACCESS_LEVEL_ORDINALS.get(self)

    def implies(self, other: "AccessLevel") -> bool:
        """FULL implies VIEW/EDIT/DELETE; ordinal levels imply lower ones."""
        if self is other:
            return True
        if self.ordinal is None or other.ordinal is None:
            return False
        return self.ordinal >= other.ordinal


ACCESS_LEVEL_ORDINALS = {
    AccessLevel.NONE: 0,
    AccessLevel.VIEW: 1,
    AccessLevel.EDIT: 2,
    AccessLevel.DELETE: 3,
    AccessLevel.FULL: 4,
}


class RoleScope(str, Enum):
    """Organizational breadth a role applies at, broadest first."""

    GLOBAL = "GLOBAL"
    AGENCY = "AGENCY"
    BRANCH = "BRANCH"
    DEPARTMENT = "DEPARTMENT"
    TEAM = "TEAM"
    INDIVIDUAL = "INDIVIDUAL"

    @property
    def breadth(self) -> int:
        return SCOPE_BREADTH[self]

    @property
    def is_agency_wide(self) -> bool:
        return self in (RoleScope.GLOBAL, RoleScope.AGENCY)


SCOPE_BREADTH = {
    RoleScope.GLOBAL: 5,
    RoleScope.AGENCY: 4,
    RoleScope.BRANCH: 3,
    RoleScope.DEPARTMENT: 2,
    RoleScope.TEAM: 1,
    RoleScope.INDIVIDUAL: 0,
}


class PermissionCategory(str, Enum):
    CORE = "CORE"
    CRM = "CRM"
    FINANCE = "FINANCE"
    REPORTING = "REPORTING"


class PermissionKey(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: Resource
    action: Action

    def __str__(self) -> str:
        return f"{self.resource.value}:{self.action.value}"

    @classmethod
    def from_string(cls, perm_str: str) -> "PermissionKey":
        """Parse a permission string like 'students:read'."""
        parts = perm_str.split(":")
        if len(parts) != 2:
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(Resource(parts[0]), Action(parts[1]))


SLUG_PATTERN = re.compile(r"^[a-z][a-z0-9_]*:[a-z][a-z0-9_]*$")


def is_valid_slug(slug: str) -> bool:
    """Check that a permission slug has the "resource:action" shape."""
    return bool(SLUG_PATTERN.match(slug or ""))


_CRUD = frozenset([Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE])

# Permission definitions matrix
# Maps each resource to its valid actions
PERMISSION_MATRIX: dict[Resource, FrozenSet[Action]] = {
    Resource.STUDENTS: _CRUD | {Action.ASSIGN, Action.EXPORT, Action.MANAGE},
    Resource.APPLICATIONS: _CRUD | {Action.SUBMIT, Action.MANAGE},
    Resource.UNIVERSITIES: _CRUD | {Action.MANAGE},
    Resource.TASKS: _CRUD | {Action.ASSIGN, Action.MANAGE},
    Resource.DOCUMENTS: _CRUD | {Action.UPLOAD},
    Resource.COMMUNICATIONS: frozenset([Action.READ, Action.SEND, Action.MANAGE]),
    Resource.BRANCHES: _CRUD | {Action.MANAGE},
    Resource.USERS: _CRUD | {Action.MANAGE},
    Resource.ROLES: _CRUD | {Action.ASSIGN, Action.MANAGE},
    Resource.PERMISSIONS: frozenset([Action.READ, Action.MANAGE]),
    Resource.AGENCY: frozenset([Action.READ, Action.UPDATE, Action.MANAGE]),
    Resource.INVOICES: _CRUD | {Action.MANAGE},
    Resource.REPORTS: frozenset([Action.CREATE, Action.READ, Action.EXPORT]),
    Resource.ACCESS_LOGS: frozenset([Action.READ]),
}

RESOURCE_CATEGORIES: dict[Resource, PermissionCategory] = {
    Resource.STUDENTS: PermissionCategory.CRM,
    Resource.APPLICATIONS: PermissionCategory.CRM,
    Resource.UNIVERSITIES: PermissionCategory.CRM,
    Resource.TASKS: PermissionCategory.CRM,
    Resource.DOCUMENTS: PermissionCategory.CRM,
    Resource.COMMUNICATIONS: PermissionCategory.CRM,
    Resource.INVOICES: PermissionCategory.FINANCE,
    Resource.REPORTS: PermissionCategory.REPORTING,
    Resource.ACCESS_LOGS: PermissionCategory.REPORTING,
}


def _generate_permission_definitions() -> dict[str, PermissionKey]:
    """Generate all valid permission combinations from the matrix."""
    permissions = {}
    for resource, actions in PERMISSION_MATRIX.items():
        for action in actions:
            perm = PermissionKey(resource, action)
            permissions[str(perm)] = perm
    return permissions


# All seeded permissions as a dictionary: "resource:action" -> PermissionKey
PERMISSION_DEFINITIONS = _generate_permission_definitions()


def category_for(resource: Resource) -> PermissionCategory:
    return RESOURCE_CATEGORIES.get(resource, PermissionCategory.CORE)


def is_seeded_permission(perm_str: str) -> bool:
    """Check if a permission string is part of the seeded catalog."""
    return perm_str in PERMISSION_DEFINITIONS


def get_permissions_for_resource(resource: Resource) -> list[str]:
    """Get all seeded permission strings for a resource."""
    return [
        str(PermissionKey(resource, action))
        for action in PERMISSION_MATRIX.get(resource, set())
    ]


def get_all_permissions() -> list[str]:
    """Get all seeded permission strings."""
    return list(PERMISSION_DEFINITIONS.keys())
