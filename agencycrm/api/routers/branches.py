"""Branch API endpoints: registry and branch scoping."""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, status

from agencycrm.api.deps import get_current_user, get_rbac_service
from agencycrm.api.schemas.rbac import AccessibleBranchesResponse, BranchCreate, BranchResponse
from agencycrm.core.rbac.checker import require_permission
from agencycrm.core.rbac.scoping import is_all_branches
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.models import User

router = APIRouter(tags=["branches"])


def _branches_response(user_id: UUID, branches) -> AccessibleBranchesResponse:
    if is_all_branches(branches):
        return AccessibleBranchesResponse(user_id=user_id, all_branches=True)
    return AccessibleBranchesResponse(
        user_id=user_id,
        all_branches=False,
        branch_ids=sorted(branches, key=str),
    )


@router.get("/branches", response_model=List[BranchResponse])
async def list_branches(
    current_user: User = Depends(require_permission("branches:read", "branches:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """List the agency's active branches."""
    return service.branches.list_branches()


@router.post("/branches", response_model=BranchResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    data: BranchCreate,
    current_user: User = Depends(require_permission("branches:create", "branches:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Open a branch. Codes are unique per agency; a manager runs one branch."""
    return service.branches.create_branch(
        data.name, data.code, manager_id=data.manager_id, actor_id=current_user.id
    )


@router.get("/users/{user_id}/branches", response_model=AccessibleBranchesResponse)
async def get_user_branches(
    user_id: UUID,
    current_user: User = Depends(require_permission("branches:read", "branches:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Branches a user may act within."""
    return _branches_response(user_id, service.accessible_branches(user_id))


@router.get("/me/branches", response_model=AccessibleBranchesResponse)
async def get_my_branches(
    current_user: User = Depends(get_current_user),
    service: RBACService = Depends(get_rbac_service),
):
    """Branches the caller may act within."""
    return _branches_response(current_user.id, service.accessible_branches(current_user.id))
