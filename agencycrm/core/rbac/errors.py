"""Typed failures raised by the RBAC services.

Route handlers translate these into HTTP responses using ``status_code``.
A negative permission decision is never one of these: deny is returned
as a ``PermissionResult``.
"""

from typing import Optional


class RBACError(Exception):
    """Base class for access-control failures surfaced to callers."""

    status_code = 400
    code = "rbac_error"

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(RBACError):
    status_code = 422
    code = "validation_error"


class NotFoundError(RBACError):
    status_code = 404
    code = "not_found"


class PermissionNotFoundError(NotFoundError):
    code = "permission_not_found"


class RoleNotFoundError(NotFoundError):
    code = "role_not_found"


class BranchNotFoundError(NotFoundError):
    code = "branch_not_found"


class ParentNotFoundError(NotFoundError):
    code = "parent_not_found"


class UserNotInAgencyError(NotFoundError):
    code = "user_not_in_agency"


class RoleNotInAgencyError(NotFoundError):
    code = "role_not_in_agency"


class AssignmentNotFoundError(NotFoundError):
    code = "assignment_not_found"


class ConflictError(RBACError):
    status_code = 409
    code = "conflict"


class DuplicateSlugError(ConflictError):
    code = "duplicate_slug"


class CycleDetectedError(ConflictError):
    code = "cycle_detected"


class AlreadyAssignedError(ConflictError):
    code = "already_assigned"


class PermissionInUseError(ConflictError):
    code = "permission_in_use"


class RoleInUseError(ConflictError):
    code = "role_in_use"


class DuplicateBranchCodeError(ConflictError):
    code = "duplicate_branch_code"


class ManagerAlreadyAssignedError(ConflictError):
    code = "manager_already_assigned"


class ForbiddenError(RBACError):
    status_code = 403
    code = "forbidden"


class HierarchyTooDeepError(RBACError):
    """Parent chain longer than the configured bound, or looping."""

    status_code = 422
    code = "hierarchy_too_deep"


class CheckTimeoutError(RBACError):
    """Permission check exceeded its budget or was cancelled."""

    status_code = 503
    code = "timeout"
