"""Role store: hierarchical, tenant-scoped roles and their bindings.

Every query is filtered by the store's ``agency_id``. Role writes are
validated completely before anything is added to the session and are then
flushed inside a SAVEPOINT, so a failure leaves neither a role without its
bindings nor a half-applied update.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agencycrm.core.activity import ActivityRecorder
from agencycrm.core.config import get_settings
from agencycrm.db.models import Branch, Permission, Role, RolePermission, UserRoleAssignment
from .cache import DecisionCache, get_decision_cache
from .conditions import parse_conditions
from .errors import (
    BranchNotFoundError,
    CycleDetectedError,
    DuplicateSlugError,
    ForbiddenError,
    HierarchyTooDeepError,
    ParentNotFoundError,
    PermissionNotFoundError,
    RoleInUseError,
    RoleNotFoundError,
    ValidationError,
)
from .permissions import AccessLevel, RoleScope

logger = logging.getLogger(__name__)

ROLE_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

_UNSET: Any = object()


@dataclass
class BindingSpec:
    """Requested (permission, access level, conditions) binding for a role."""
    permission: str
    access_level: AccessLevel = AccessLevel.FULL
    conditions: Optional[Any] = None

    @classmethod
    def coerce(cls, value: Any) -> "BindingSpec":
        """Accept a BindingSpec, a mapping, or a (slug, level[, conditions]) tuple."""
        if isinstance(value, BindingSpec):
            spec = value
        elif isinstance(value, dict):
            if "permission" not in value:
                raise ValidationError("Binding is missing 'permission'")
            spec = cls(
                permission=value["permission"],
                access_level=value.get("access_level", AccessLevel.FULL),
                conditions=value.get("conditions"),
            )
        elif isinstance(value, (tuple, list)) and 2 <= len(value) <= 3:
            spec = cls(*value)
        else:
            raise ValidationError(f"Unsupported binding: {value!r}")

        try:
            spec.access_level = AccessLevel(spec.access_level)
        except ValueError:
            raise ValidationError(f"Invalid access level: {spec.access_level!r}")
        return spec


@dataclass
class RoleNode:
    """A role in the hierarchy tree with its direct bindings."""
    role: Role
    children: List["RoleNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        role = self.role
        return {
            "id": str(role.id),
            "name": role.name,
            "slug": role.slug,
            "description": role.description,
            "level": role.level,
            "scope": role.scope,
            "branch_id": str(role.branch_id) if role.branch_id else None,
            "parent_id": str(role.parent_id) if role.parent_id else None,
            "is_active": role.is_active,
            "is_system": role.is_system,
            "bindings": [
                {
                    "permission": b.permission.slug,
                    "access_level": b.access_level,
                    "conditions": b.conditions,
                }
                for b in sorted(role.bindings, key=lambda b: b.permission.slug)
            ],
            "children": [child.to_dict() for child in self.children],
        }


def iter_role_chain(db: Session, role: Role, max_depth: int) -> Iterator[Role]:
    """
    Yield ``role`` and then each ancestor, nearest first.

    Ancestors are looked up within the role's own agency only. Raises
    HierarchyTooDeepError if the chain revisits a role or grows past
    ``max_depth`` roles.
    """
    seen: Set[UUID] = set()
    current: Optional[Role] = role
    while current is not None:
        if current.id in seen:
            raise HierarchyTooDeepError(
                f"Role hierarchy loops back to {current.slug}",
                detail={"role_id": str(current.id)},
            )
        if len(seen) >= max_depth:
            raise HierarchyTooDeepError(
                f"Role hierarchy above {role.slug} exceeds {max_depth} levels",
                detail={"role_id": str(role.id), "max_depth": max_depth},
            )
        seen.add(current.id)
        yield current

        if current.parent_id is None:
            return
        current = db.query(Role).filter(
            and_(Role.id == current.parent_id, Role.agency_id == role.agency_id)
        ).first()


class RoleStore:
    """Create, update and query roles for one agency."""

    def __init__(
        self,
        db: Session,
        agency_id: UUID,
        *,
        cache: Optional[DecisionCache] = None,
        max_depth: Optional[int] = None,
    ):
        self.db = db
        self.agency_id = agency_id
        self.cache = cache if cache is not None else get_decision_cache()
        self.max_depth = max_depth or get_settings().rbac_max_hierarchy_depth
        self.activity = ActivityRecorder(db, agency_id)

    @property
    def audit_warnings(self) -> List[str]:
        return self.activity.warnings

    # Queries

    def get_role(self, role_id: UUID, *, for_update: bool = False) -> Role:
        query = self.db.query(Role).filter(
            and_(Role.id == role_id, Role.agency_id == self.agency_id)
        )
        if for_update:
            query = query.with_for_update()
        role = query.first()
        if not role:
            raise RoleNotFoundError(f"Role {role_id} not found")
        return role

    def get_by_slug(self, slug: str) -> Optional[Role]:
        return self.db.query(Role).filter(
            and_(Role.agency_id == self.agency_id, Role.slug == slug)
        ).first()

    def list_roles(self, *, include_inactive: bool = False) -> List[Role]:
        query = self.db.query(Role).filter(Role.agency_id == self.agency_id)
        if not include_inactive:
            query = query.filter(Role.is_active == True)  # noqa: E712
        return query.order_by(Role.level.desc(), Role.name).all()

    def get_ancestors(self, role_id: UUID) -> List[Role]:
        """Parent chain of a role, nearest first (the role itself excluded)."""
        role = self.get_role(role_id)
        return list(iter_role_chain(self.db, role, self.max_depth))[1:]

    def get_role_hierarchy(self, branch_ids: Optional[Sequence[UUID]] = None) -> List[RoleNode]:
        """
        Return the agency's role forest.

        Args:
            branch_ids: when given, only roles bound to one of these branches
                are included; a role whose parent is filtered out becomes a root

        Returns:
            Root RoleNodes ordered by level (highest first) then name
        """
        query = self.db.query(Role).filter(Role.agency_id == self.agency_id)
        if branch_ids is not None:
            query = query.filter(Role.branch_id.in_(list(branch_ids)))
        roles = query.order_by(Role.level.desc(), Role.name).all()

        nodes = {role.id: RoleNode(role) for role in roles}
        roots = []
        for role in roles:
            if role.parent_id is None or role.parent_id not in nodes:
                roots.append(nodes[role.id])
            else:
                nodes[role.parent_id].children.append(nodes[role.id])

        # Breadth-first from the roots; anything unreached sits on a loop
        reached: Set[UUID] = set()
        queue = deque(roots)
        while queue:
            node = queue.popleft()
            if node.role.id in reached:
                continue
            reached.add(node.role.id)
            queue.extend(node.children)

        for role in roles:
            if role.id not in reached:
                logger.error(f"Role {role.slug} ({role.id}) is part of a parent loop")
                node = nodes[role.id]
                node.children = []
                roots.append(node)
                reached.add(role.id)

        return roots

    def actor_level(self, actor_id: UUID) -> Optional[int]:
        """Highest level among the actor's active roles in this agency."""
        return self.db.query(func.max(Role.level)).select_from(Role).join(
            UserRoleAssignment, UserRoleAssignment.role_id == Role.id
        ).filter(
            and_(
                UserRoleAssignment.user_id == actor_id,
                UserRoleAssignment.agency_id == self.agency_id,
                UserRoleAssignment.is_active,
                Role.agency_id == self.agency_id,
                Role.is_active == True,  # noqa: E712
            )
        ).scalar()

    def check_can_manage(self, actor_id: UUID, *levels: int) -> None:
        """Raise ForbiddenError unless the actor outranks every given level."""
        actor_level = self.actor_level(actor_id)
        for level in levels:
            if actor_level is None or actor_level <= level:
                raise ForbiddenError(
                    f"Cannot manage a role at level {level}",
                    detail={"actor_level": actor_level, "target_level": level},
                )

    # Mutations

    def create_role(
        self,
        name: str,
        slug: str,
        *,
        level: int = 0,
        scope: Any = RoleScope.AGENCY,
        branch_id: Optional[UUID] = None,
        parent_id: Optional[UUID] = None,
        description: Optional[str] = None,
        bindings: Optional[Sequence[Any]] = None,
        actor_id: Optional[UUID] = None,
        is_system: bool = False,
    ) -> Role:
        """
        Create a role together with its bindings.

        Raises:
            ValidationError: bad name/slug/level/scope, BRANCH scope without branch, bad binding
            DuplicateSlugError: slug already used in this agency
            BranchNotFoundError: branch missing or owned by another agency
            ParentNotFoundError: parent missing or owned by another agency
            HierarchyTooDeepError: parent chain too long or looping
            PermissionNotFoundError: binding names an unknown permission
            ForbiddenError: actor does not outrank the new role
        """
        name = self._validate_name(name)
        self._validate_slug(slug)
        self._validate_level(level)
        scope = self._coerce_scope(scope)
        if scope == RoleScope.BRANCH and branch_id is None:
            raise ValidationError("BRANCH-scoped roles require a branch_id")

        if actor_id is not None:
            self.check_can_manage(actor_id, level)

        if self.get_by_slug(slug):
            raise DuplicateSlugError(f"Role slug '{slug}' already exists in this agency")
        if branch_id is not None:
            self._get_branch(branch_id)

        parent = None
        if parent_id is not None:
            parent = self._get_parent(parent_id)
            self._validate_parent_chain(parent)

        resolved = self._resolve_bindings(bindings or [])

        role = Role(
            agency_id=self.agency_id,
            name=name,
            slug=slug,
            description=description,
            level=level,
            scope=scope.value,
            branch_id=branch_id,
            parent_id=parent.id if parent else None,
            is_active=True,
            is_system=is_system,
        )
        try:
            with self.db.begin_nested():
                self.db.add(role)
                self.db.flush()
                for permission, spec in resolved:
                    role.bindings.append(self._make_binding(permission, spec))
                self.db.flush()
        except IntegrityError:
            raise DuplicateSlugError(f"Role slug '{slug}' already exists in this agency")

        logger.info(f"Role created: {slug} (level={level}, scope={scope.value}) in agency {self.agency_id}")
        self.activity.record(
            "role.create", "role",
            user_id=actor_id,
            resource_id=role.id,
            details={"slug": slug, "level": level, "scope": scope.value, "bindings": len(resolved)},
        )
        self._invalidate()
        return role

    def update_role(
        self,
        role_id: UUID,
        *,
        name: str = _UNSET,
        slug: str = _UNSET,
        description: Optional[str] = _UNSET,
        level: int = _UNSET,
        scope: Any = _UNSET,
        branch_id: Optional[UUID] = _UNSET,
        parent_id: Optional[UUID] = _UNSET,
        bindings: Optional[Sequence[Any]] = _UNSET,
        actor_id: Optional[UUID] = None,
    ) -> Role:
        """
        Update a role. Only the arguments passed are changed.

        ``bindings`` replaces the role's whole binding set. Reparenting is
        checked against the new parent chain: reaching the role itself is a
        CycleDetectedError; a chain plus subtree deeper than the bound is a
        HierarchyTooDeepError.
        """
        role = self.get_role(role_id, for_update=True)
        if role.is_system:
            raise ForbiddenError(f"System role {role.slug} cannot be modified")

        new_level = role.level if level is _UNSET else level
        if level is not _UNSET:
            self._validate_level(level)
        if actor_id is not None:
            self.check_can_manage(actor_id, role.level, new_level)

        new_scope = role.role_scope if scope is _UNSET else self._coerce_scope(scope)
        new_branch_id = role.branch_id if branch_id is _UNSET else branch_id
        if new_scope == RoleScope.BRANCH and new_branch_id is None:
            raise ValidationError("BRANCH-scoped roles require a branch_id")
        if branch_id is not _UNSET and branch_id is not None:
            self._get_branch(branch_id)

        if name is not _UNSET:
            name = self._validate_name(name)
        if slug is not _UNSET and slug != role.slug:
            self._validate_slug(slug)
            if self.get_by_slug(slug):
                raise DuplicateSlugError(f"Role slug '{slug}' already exists in this agency")

        parent = None
        if parent_id is not _UNSET and parent_id is not None:
            parent = self._get_parent(parent_id)
            self._validate_parent_chain(parent, role)

        resolved = None
        if bindings is not _UNSET:
            resolved = self._resolve_bindings(bindings or [])

        changes = {}
        try:
            with self.db.begin_nested():
                if name is not _UNSET and name != role.name:
                    changes["name"] = name
                    role.name = name
                if slug is not _UNSET and slug != role.slug:
                    changes["slug"] = slug
                    role.slug = slug
                if description is not _UNSET:
                    role.description = description
                if new_level != role.level:
                    changes["level"] = new_level
                    role.level = new_level
                if new_scope.value != role.scope:
                    changes["scope"] = new_scope.value
                    role.scope = new_scope.value
                if new_branch_id != role.branch_id:
                    changes["branch_id"] = str(new_branch_id) if new_branch_id else None
                    role.branch_id = new_branch_id
                if parent_id is not _UNSET:
                    new_parent_id = parent.id if parent else None
                    if new_parent_id != role.parent_id:
                        changes["parent_id"] = str(new_parent_id) if new_parent_id else None
                        role.parent_id = new_parent_id
                if resolved is not None:
                    self._replace_bindings(role, resolved)
                    changes["bindings"] = len(resolved)
                self.db.flush()
        except IntegrityError:
            raise DuplicateSlugError(f"Role slug '{role.slug}' already exists in this agency")

        logger.info(f"Role updated: {role.slug} {sorted(changes)}")
        self.activity.record(
            "role.update", "role",
            user_id=actor_id,
            resource_id=role.id,
            details=changes,
        )
        self._invalidate()
        return role

    def deactivate_role(self, role_id: UUID, *, actor_id: Optional[UUID] = None) -> Role:
        """Soft-deactivate a role. Its assignments stop granting anything."""
        role = self.get_role(role_id, for_update=True)
        if role.is_system:
            raise ForbiddenError(f"System role {role.slug} cannot be deactivated")
        if actor_id is not None:
            self.check_can_manage(actor_id, role.level)

        if role.is_active:
            role.is_active = False
            self.db.flush()
            logger.info(f"Role deactivated: {role.slug}")
            self.activity.record("role.deactivate", "role", user_id=actor_id, resource_id=role.id)
            self._invalidate()
        return role

    def delete_role(self, role_id: UUID, *, actor_id: Optional[UUID] = None) -> None:
        """
        Hard-delete a role that has never been assigned.

        Roles with active assignments raise RoleInUseError; roles with only
        revoked assignments also do, since deleting would drop their
        history. Deactivate those instead. Children become roots.
        """
        role = self.get_role(role_id, for_update=True)
        if role.is_system:
            raise ForbiddenError(f"System role {role.slug} cannot be deleted")
        if actor_id is not None:
            self.check_can_manage(actor_id, role.level)

        active = self.db.query(UserRoleAssignment).filter(
            and_(UserRoleAssignment.role_id == role.id, UserRoleAssignment.is_active)
        ).count()
        if active:
            raise RoleInUseError(
                f"Role {role.slug} has {active} active assignment(s)",
                detail={"active_assignments": active},
            )
        history = self.db.query(UserRoleAssignment).filter(
            UserRoleAssignment.role_id == role.id
        ).count()
        if history:
            raise RoleInUseError(
                f"Role {role.slug} has assignment history; deactivate it instead",
                detail={"revoked_assignments": history},
            )

        slug = role.slug
        self.db.query(Role).filter(
            and_(Role.parent_id == role.id, Role.agency_id == self.agency_id)
        ).update({Role.parent_id: None}, synchronize_session="fetch")
        self.db.delete(role)
        self.db.flush()

        logger.info(f"Role deleted: {slug}")
        self.activity.record("role.delete", "role", user_id=actor_id, resource_id=role_id, details={"slug": slug})
        self._invalidate()

    # Helpers

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_agency(self.agency_id)

    @staticmethod
    def _validate_name(name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name must not be empty")
        if len(name) > 100:
            raise ValidationError("Role name must be at most 100 characters")
        return name

    @staticmethod
    def _validate_slug(slug: str) -> None:
        if not slug or len(slug) > 100 or not ROLE_SLUG_PATTERN.match(slug):
            raise ValidationError(
                f"Invalid role slug {slug!r}: use lowercase letters, digits and single hyphens"
            )

    @staticmethod
    def _validate_level(level: int) -> None:
        if isinstance(level, bool) or not isinstance(level, int) or level < 0:
            raise ValidationError(f"Role level must be a non-negative integer, got {level!r}")

    @staticmethod
    def _coerce_scope(scope: Any) -> RoleScope:
        try:
            return RoleScope(scope)
        except ValueError:
            raise ValidationError(f"Invalid role scope: {scope!r}")

    def _get_branch(self, branch_id: UUID) -> Branch:
        branch = self.db.query(Branch).filter(
            and_(Branch.id == branch_id, Branch.agency_id == self.agency_id)
        ).first()
        if not branch:
            raise BranchNotFoundError(f"Branch {branch_id} not found in this agency")
        return branch

    def _get_parent(self, parent_id: UUID) -> Role:
        parent = self.db.query(Role).filter(
            and_(Role.id == parent_id, Role.agency_id == self.agency_id)
        ).first()
        if not parent:
            raise ParentNotFoundError(f"Parent role {parent_id} not found in this agency")
        return parent

    def _validate_parent_chain(self, parent: Role, role: Optional[Role] = None) -> None:
        chain_length = 0
        for ancestor in iter_role_chain(self.db, parent, self.max_depth):
            if role is not None and ancestor.id == role.id:
                raise CycleDetectedError(
                    f"Making {parent.slug} the parent of {role.slug} would create a cycle",
                    detail={"role_id": str(role.id), "parent_id": str(parent.id)},
                )
            chain_length += 1

        height = self._subtree_height(role) if role is not None else 1
        if chain_length + height > self.max_depth:
            raise HierarchyTooDeepError(
                f"Role hierarchy would exceed {self.max_depth} levels",
                detail={"max_depth": self.max_depth},
            )

    def _subtree_height(self, role: Role) -> int:
        """Number of levels in the subtree rooted at ``role`` (1 for a leaf)."""
        height = 0
        seen: Set[UUID] = set()
        frontier = [role.id]
        while frontier and height <= self.max_depth:
            height += 1
            seen.update(frontier)
            children = self.db.query(Role.id).filter(
                and_(Role.parent_id.in_(frontier), Role.agency_id == self.agency_id)
            ).all()
            frontier = [child_id for (child_id,) in children if child_id not in seen]
        return height

    def _resolve_bindings(self, bindings: Sequence[Any]) -> List[tuple]:
        specs = [BindingSpec.coerce(b) for b in bindings]

        seen = set()
        for spec in specs:
            if spec.permission in seen:
                raise ValidationError(f"Permission {spec.permission} is bound more than once")
            seen.add(spec.permission)

            if spec.access_level == AccessLevel.CUSTOM:
                try:
                    condition_set = parse_conditions(spec.conditions)
                except (ValueError, TypeError) as e:
                    raise ValidationError(f"Invalid conditions for {spec.permission}: {e}")
                if condition_set.is_empty:
                    raise ValidationError(f"CUSTOM binding for {spec.permission} requires conditions")
            elif spec.conditions:
                raise ValidationError(
                    f"Conditions are only allowed on CUSTOM bindings ({spec.permission})"
                )

        permissions = {}
        if seen:
            permissions = {
                p.slug: p
                for p in self.db.query(Permission).filter(Permission.slug.in_(list(seen))).all()
            }
        missing = sorted(seen - set(permissions))
        if missing:
            raise PermissionNotFoundError(
                f"Unknown permission(s): {', '.join(missing)}",
                detail={"missing": missing},
            )
        return [(permissions[spec.permission], spec) for spec in specs]

    @staticmethod
    def _make_binding(permission: Permission, spec: BindingSpec) -> RolePermission:
        return RolePermission(
            permission_id=permission.id,
            permission=permission,
            access_level=spec.access_level.value,
            conditions=spec.conditions if spec.access_level == AccessLevel.CUSTOM else None,
        )

    def _replace_bindings(self, role: Role, resolved: List[tuple]) -> None:
        wanted = {permission.id: (permission, spec) for permission, spec in resolved}
        for binding in list(role.bindings):
            if binding.permission_id not in wanted:
                role.bindings.remove(binding)
        current = {b.permission_id: b for b in role.bindings}
        for permission_id, (permission, spec) in wanted.items():
            binding = current.get(permission_id)
            if binding is None:
                role.bindings.append(self._make_binding(permission, spec))
            else:
                binding.access_level = spec.access_level.value
                binding.conditions = spec.conditions if spec.access_level == AccessLevel.CUSTOM else None
