"""Role assignment API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from agencycrm.api.deps import get_rbac_service
from agencycrm.api.schemas.rbac import AssignmentCreate, AssignmentResponse
from agencycrm.core.rbac.checker import require_permission
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.models import User, UserRoleAssignment

router = APIRouter(tags=["assignments"])


def assignment_to_response(assignment: UserRoleAssignment, warnings: Optional[List[str]] = None) -> AssignmentResponse:
    return AssignmentResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        role_id=assignment.role_id,
        role_slug=assignment.role.slug if assignment.role else None,
        state=assignment.state.value,
        assigned_by=assignment.assigned_by,
        assigned_at=assignment.assigned_at,
        revoked_at=assignment.revoked_at,
        revoked_by=assignment.revoked_by,
        warnings=warnings or [],
    )


@router.post("/assignments", response_model=AssignmentResponse, status_code=status.HTTP_201_CREATED)
async def assign_role(
    data: AssignmentCreate,
    current_user: User = Depends(require_permission("roles:assign", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Assign a role to a user of this agency."""
    assignment = service.assign_role(data.user_id, data.role_id, assigned_by=current_user.id)
    return assignment_to_response(assignment, service.audit_warnings)


@router.post("/assignments/{assignment_id}/revoke", response_model=AssignmentResponse)
async def revoke_assignment(
    assignment_id: UUID,
    current_user: User = Depends(require_permission("roles:assign", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Revoke an assignment. Revoking an already revoked assignment succeeds."""
    assignment = service.revoke_role(assignment_id, revoked_by=current_user.id)
    return assignment_to_response(assignment, service.audit_warnings)


@router.get("/users/{user_id}/roles", response_model=List[AssignmentResponse])
async def list_user_roles(
    user_id: UUID,
    history: bool = Query(False, description="Include revoked assignments"),
    current_user: User = Depends(require_permission("roles:read", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """List a user's active assignments, or their full history."""
    if history:
        assignments = service.ledger.list_history(user_id)
    else:
        assignments = service.ledger.list_active_roles(user_id)
    return [assignment_to_response(a) for a in assignments]
