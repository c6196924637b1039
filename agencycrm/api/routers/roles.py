"""Role management API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from agencycrm.api.deps import get_rbac_service
from agencycrm.api.schemas.rbac import RoleCreate, RoleNodeResponse, RoleResponse, RoleUpdate
from agencycrm.core.rbac.checker import require_permission
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.models import Role, User

router = APIRouter(prefix="/roles", tags=["roles"])


def role_to_response(role: Role) -> RoleResponse:
    return RoleResponse(
        id=role.id,
        name=role.name,
        slug=role.slug,
        description=role.description,
        level=role.level,
        scope=role.scope,
        branch_id=role.branch_id,
        parent_id=role.parent_id,
        is_active=role.is_active,
        is_system=role.is_system,
        bindings=[
            {
                "permission": b.permission.slug,
                "access_level": b.access_level,
                "conditions": b.conditions,
            }
            for b in sorted(role.bindings, key=lambda b: b.permission.slug)
        ],
    )


@router.get("", response_model=List[RoleNodeResponse])
async def get_role_hierarchy(
    branch_id: Optional[List[UUID]] = Query(None, description="Only roles of these branches"),
    current_user: User = Depends(require_permission("roles:read", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Return the agency's role forest with each role's direct bindings."""
    return [node.to_dict() for node in service.get_role_hierarchy(branch_id)]


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(
    role_id: UUID,
    current_user: User = Depends(require_permission("roles:read", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Get a specific role by ID."""
    return role_to_response(service.roles.get_role(role_id))


@router.post("", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def create_role(
    data: RoleCreate,
    current_user: User = Depends(require_permission("roles:create", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Create a role. The caller must outrank the new role's level."""
    role = service.roles.create_role(
        data.name,
        data.slug,
        level=data.level,
        scope=data.scope,
        branch_id=data.branch_id,
        parent_id=data.parent_id,
        description=data.description,
        bindings=[b.model_dump() for b in data.bindings],
        actor_id=current_user.id,
    )
    return role_to_response(role)


@router.patch("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: UUID,
    data: RoleUpdate,
    current_user: User = Depends(require_permission("roles:update", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Update a role. System roles cannot be modified."""
    changes = data.model_dump(exclude_unset=True)
    if "bindings" in changes:
        changes["bindings"] = [b.model_dump() for b in data.bindings or []]
    role = service.roles.update_role(role_id, actor_id=current_user.id, **changes)
    return role_to_response(role)


@router.post("/{role_id}/deactivate", response_model=RoleResponse)
async def deactivate_role(
    role_id: UUID,
    current_user: User = Depends(require_permission("roles:update", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Deactivate a role; its assignments stop granting access."""
    return role_to_response(service.roles.deactivate_role(role_id, actor_id=current_user.id))


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: UUID,
    current_user: User = Depends(require_permission("roles:delete", "roles:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Delete a role that has never been assigned. System roles cannot be deleted."""
    service.roles.delete_role(role_id, actor_id=current_user.id)
    return None
