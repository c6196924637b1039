"""Permission catalog API endpoints."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from agencycrm.api.deps import get_current_user, get_rbac_service
from agencycrm.api.schemas.rbac import PermissionCreate, PermissionResponse, PermissionUpdate
from agencycrm.core.rbac.checker import require_permission
from agencycrm.core.rbac.service import RBACService
from agencycrm.db.models import User

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("", response_model=List[PermissionResponse])
async def list_permissions(
    category: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    service: RBACService = Depends(get_rbac_service),
):
    """List catalog permissions, optionally filtered."""
    return service.catalog.list_permissions(category=category, resource=resource)


@router.post("", response_model=PermissionResponse, status_code=status.HTTP_201_CREATED)
async def create_permission(
    data: PermissionCreate,
    current_user: User = Depends(require_permission("permissions:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Add a custom permission to the catalog."""
    return service.catalog.create_permission(
        data.slug,
        data.resource,
        data.action,
        category=data.category,
        name=data.name,
        description=data.description,
    )


@router.patch("/{permission_id}", response_model=PermissionResponse)
async def update_permission(
    permission_id: UUID,
    data: PermissionUpdate,
    current_user: User = Depends(require_permission("permissions:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Edit name, description or category. System permissions are read-only."""
    return service.catalog.update_permission(permission_id, **data.model_dump(exclude_unset=True))


@router.delete("/{permission_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    permission_id: UUID,
    current_user: User = Depends(require_permission("permissions:manage")),
    service: RBACService = Depends(get_rbac_service),
):
    """Delete an unreferenced custom permission."""
    service.catalog.delete_permission(permission_id)
    return None
