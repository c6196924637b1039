"""Database models for AgencyCRM."""

from agencycrm.db.models.agency import Agency
from agencycrm.db.models.branch import Branch
from agencycrm.db.models.user import User
from agencycrm.db.models.student import Student
from agencycrm.db.models.permission import Permission
from agencycrm.db.models.role import Role, RolePermission
from agencycrm.db.models.assignment import UserRoleAssignment, AssignmentState
from agencycrm.db.models.activity import ActivityLog, ActivitySeverity

__all__ = [
    "Agency",
    "Branch",
    "User",
    "Student",
    "Permission",
    "Role",
    "RolePermission",
    "UserRoleAssignment",
    "AssignmentState",
    "ActivityLog",
    "ActivitySeverity",
]
