"""RBAC (Role-Based Access Control) module for AgencyCRM.

Permission vocabulary, access levels, role scopes, condition predicates and
the error taxonomy live here. The database-backed services (catalog, role
store, assignment ledger, scoping, resolver) are imported from their own
modules, e.g. ``from agencycrm.core.rbac.service import RBACService``,
because the ORM models import this package.
"""

from .permissions import (
    AccessLevel,
    Action,
    PermissionKey,
    PERMISSION_DEFINITIONS,
    Resource,
    RoleScope,
)
from .conditions import ConditionSet, parse_conditions
from .errors import RBACError

__all__ = [
    "AccessLevel",
    "Action",
    "PermissionKey",
    "PERMISSION_DEFINITIONS",
    "Resource",
    "RoleScope",
    "ConditionSet",
    "parse_conditions",
    "RBACError",
]
