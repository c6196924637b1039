"""Permission guards for FastAPI endpoints.

Guards run the full effective-permission check for the current user and
translate a deny into HTTP 403. The response carries the deny reason only,
never role or binding identifiers.
"""

from typing import List, Tuple, Union

from fastapi import Depends, HTTPException, status

from agencycrm.api.deps import get_current_user, get_rbac_service
from agencycrm.db.models import User
from .permissions import PermissionKey
from .resolver import PermissionResult
from .service import RBACService


def _split(permission: Union[str, PermissionKey]) -> Tuple[str, str]:
    perm_str = str(permission)
    resource, sep, action = perm_str.partition(":")
    if not sep or not resource or not action:
        raise ValueError(f"Invalid permission format: {perm_str}")
    return resource, action


class PermissionDependency:
    """
    FastAPI dependency for permission checking. Returns the current user.

    Usage:
        @router.post("/roles")
        async def create_role(
            current_user: User = Depends(PermissionDependency("roles:create", "roles:manage")),
        ):
            ...
    """

    def __init__(self, *permissions: Union[str, PermissionKey], require_all: bool = False):
        if not permissions:
            raise ValueError("At least one permission is required")
        self.permissions: List[Tuple[str, str]] = [_split(p) for p in permissions]
        self.require_all = require_all

    def __call__(
        self,
        current_user: User = Depends(get_current_user),
        service: RBACService = Depends(get_rbac_service),
    ) -> User:
        results: List[PermissionResult] = [
            service.check_permission(current_user.id, resource, action)
            for resource, action in self.permissions
        ]

        if self.require_all:
            has_access = all(r.allowed for r in results)
        else:
            has_access = any(r.allowed for r in results)

        if not has_access:
            denied = next(r for r in results if not r.allowed)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {denied.reason.value}",
            )
        return current_user


def require_permission(*permissions: Union[str, PermissionKey], require_all: bool = False) -> PermissionDependency:
    """
    Dependency factory for endpoints requiring specific permissions.

    Args:
        permissions: One or more "resource:action" strings or PermissionKeys
        require_all: If True, user must have ALL permissions. Default: any one.
    """
    return PermissionDependency(*permissions, require_all=require_all)
