"""Permission catalog service.

Permissions are global. ``resource`` and ``action`` are identity fields and
never change after creation; ``name``, ``description`` and ``category`` may
be edited on non-system permissions. A permission cannot be deleted while
it is a system permission or while any role binding references it.
"""

import logging
from typing import Any, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agencycrm.db.models import Permission, RolePermission
from .errors import (
    DuplicateSlugError,
    ForbiddenError,
    PermissionInUseError,
    PermissionNotFoundError,
    ValidationError,
)
from .permissions import PERMISSION_DEFINITIONS, category_for, is_valid_slug

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class PermissionCatalog:
    """Create, edit, delete and seed catalog permissions."""

    def __init__(self, db: Session):
        self.db = db

    def create_permission(
        self,
        slug: str,
        resource: str,
        action: str,
        *,
        category: str = "CORE",
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_system: bool = False,
    ) -> Permission:
        """
        Add a permission to the catalog.

        Raises:
            ValidationError: slug is not "resource:action" or does not match resource/action
            DuplicateSlugError: slug already exists
        """
        if not is_valid_slug(slug):
            raise ValidationError(f"Invalid permission slug: {slug!r}")
        if slug != f"{resource}:{action}":
            raise ValidationError(
                f"Permission slug {slug!r} does not match resource {resource!r} and action {action!r}"
            )
        if not category or not category.strip():
            raise ValidationError("Permission category must not be empty")

        if self.get_by_slug(slug):
            raise DuplicateSlugError(f"Permission {slug} already exists")

        permission = Permission(
            slug=slug,
            resource=resource,
            action=action,
            category=category.strip().upper(),
            name=name or slug,
            description=description,
            is_system_permission=is_system,
        )
        try:
            with self.db.begin_nested():
                self.db.add(permission)
                self.db.flush()
        except IntegrityError:
            raise DuplicateSlugError(f"Permission {slug} already exists")

        logger.info(f"Permission created: {slug}")
        return permission

    def update_permission(
        self,
        permission_id: UUID,
        *,
        name: Optional[str] = _UNSET,
        description: Optional[str] = _UNSET,
        category: str = _UNSET,
        resource: Optional[str] = None,
        action: Optional[str] = None,
    ) -> Permission:
        """
        Edit descriptive fields of a permission.

        ``resource``/``action`` are accepted only so that callers echoing the
        full record back do not fail; changing them raises ValidationError.
        """
        permission = self.get_permission(permission_id)

        if permission.is_system_permission:
            raise ForbiddenError(f"System permission {permission.slug} cannot be modified")
        if resource is not None and resource != permission.resource:
            raise ValidationError("Permission resource cannot be changed")
        if action is not None and action != permission.action:
            raise ValidationError("Permission action cannot be changed")

        if name is not _UNSET:
            permission.name = name or permission.slug
        if description is not _UNSET:
            permission.description = description
        if category is not _UNSET:
            if not category or not category.strip():
                raise ValidationError("Permission category must not be empty")
            permission.category = category.strip().upper()

        self.db.flush()
        return permission

    def delete_permission(self, permission_id: UUID) -> None:
        """
        Remove an unreferenced, non-system permission.

        Raises:
            PermissionNotFoundError: no such permission
            PermissionInUseError: system permission, or bound to a role
        """
        permission = self.get_permission(permission_id)

        if permission.is_system_permission:
            raise PermissionInUseError(f"System permission {permission.slug} cannot be deleted")

        bound = self.db.query(RolePermission).filter(
            RolePermission.permission_id == permission.id
        ).count()
        if bound:
            raise PermissionInUseError(
                f"Permission {permission.slug} is bound to {bound} role(s)",
                detail={"bindings": bound},
            )

        self.db.delete(permission)
        self.db.flush()
        logger.info(f"Permission deleted: {permission.slug}")

    def get_permission(self, permission_id: UUID) -> Permission:
        permission = self.db.query(Permission).filter(Permission.id == permission_id).first()
        if not permission:
            raise PermissionNotFoundError(f"Permission {permission_id} not found")
        return permission

    def get_by_slug(self, slug: str) -> Optional[Permission]:
        return self.db.query(Permission).filter(Permission.slug == slug).first()

    def list_permissions(
        self,
        *,
        category: Optional[str] = None,
        resource: Optional[str] = None,
    ) -> List[Permission]:
        query = self.db.query(Permission)
        if category:
            query = query.filter(Permission.category == category.upper())
        if resource:
            query = query.filter(Permission.resource == resource)
        return query.order_by(Permission.resource, Permission.action).all()

    def seed_catalog(self) -> int:
        """Insert any missing seeded permissions. Returns the number created."""
        existing = {slug for (slug,) in self.db.query(Permission.slug).all()}
        created = 0
        for slug, key in sorted(PERMISSION_DEFINITIONS.items()):
            if slug in existing:
                continue
            self.db.add(Permission(
                slug=slug,
                resource=key.resource.value,
                action=key.action.value,
                category=category_for(key.resource).value,
                name=f"{key.action.value.title()} {key.resource.value.replace('_', ' ')}",
                is_system_permission=True,
            ))
            created += 1
        self.db.flush()
        if created:
            logger.info(f"Seeded {created} catalog permissions")
        return created
