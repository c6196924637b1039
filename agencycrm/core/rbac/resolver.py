"""Effective-permission resolution.

For a user and a requested (resource, action) the resolver:

1. loads the user's active assignments (deny ``NoRolesAssigned`` if none)
2. walks each assigned role and its ancestors, stopping at an inactive
   ancestor, and collects every binding on the requested pair
3. merges them most-permissive-wins: FULL, then a CUSTOM binding whose
   conditions pass, then DELETE > EDIT > VIEW > NONE; a CUSTOM binding
   whose conditions fail is ignored
4. when ``resource_id`` maps to a branch, requires that branch to be in
   the user's accessible set (deny ``OutOfScope`` otherwise)

A deny is a normal ``PermissionResult``. Hierarchy faults and timeouts are
logged and resolved as deny; the check never fails open and never writes.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from agencycrm.core.config import get_settings
from agencycrm.db.models import Role, RolePermission, User
from .conditions import parse_conditions
from .errors import CheckTimeoutError, HierarchyTooDeepError
from .ledger import RoleAssignmentLedger
from .permissions import AccessLevel
from .scoping import BranchScopingResolver
from .store import iter_role_chain

logger = logging.getLogger(__name__)


class DenyReason(str, Enum):
    """Reason attached to every decision (``Granted`` for allows)."""
    GRANTED = "Granted"
    NO_ROLES_ASSIGNED = "NoRolesAssigned"
    INSUFFICIENT_PERMISSIONS = "InsufficientPermissions"
    OUT_OF_SCOPE = "OutOfScope"
    TIMEOUT = "Timeout"
    HIERARCHY_TOO_DEEP = "HierarchyTooDeep"
    USER_NOT_FOUND = "UserNotFound"
    USER_INACTIVE = "UserInactive"
    USER_NOT_IN_AGENCY = "UserNotInAgency"
    RESOURCE_NOT_FOUND = "ResourceNotFound"


@dataclass(frozen=True)
class DecidingPolicy:
    """The binding that decided an allow, for audit and debugging."""
    role_id: UUID
    role_slug: str
    permission: str
    access_level: AccessLevel
    inherited_from: Optional[str] = None  # ancestor slug when not bound on the assigned role

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role_id": str(self.role_id),
            "role": self.role_slug,
            "permission": self.permission,
            "access_level": self.access_level.value,
            "inherited_from": self.inherited_from,
        }


@dataclass(frozen=True)
class PermissionResult:
    allowed: bool
    reason: DenyReason
    access_level: Optional[AccessLevel] = None
    deciding_policy: Optional[DecidingPolicy] = None
    # True when a CUSTOM predicate was evaluated; such decisions are not cached
    conditional: bool = field(default=False, compare=False)

    def to_dict(self, include_policy: bool = False) -> Dict[str, Any]:
        """Serialize. Role and binding identifiers are only included for admins."""
        data = {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "access_level": self.access_level.value if self.access_level else None,
        }
        if include_policy:
            data["deciding_policy"] = self.deciding_policy.to_dict() if self.deciding_policy else None
        return data

    @classmethod
    def deny(cls, reason: DenyReason, access_level: Optional[AccessLevel] = None) -> "PermissionResult":
        return cls(allowed=False, reason=reason, access_level=access_level)


class CancellationToken:
    """
    Deadline plus explicit cancel for one permission check.

    Safe to cancel from another thread; the check notices at its next
    stage boundary and denies with ``Timeout``.
    """

    def __init__(self, timeout: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None and timeout > 0 else None
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def check(self) -> None:
        if self.cancelled:
            raise CheckTimeoutError("Permission check cancelled")
        if self._deadline is not None and self._clock() >= self._deadline:
            raise CheckTimeoutError("Permission check timed out")


@dataclass
class _Candidate:
    binding: RolePermission
    assigned_role: Role
    source_role: Role
    depth: int

    @property
    def level(self) -> AccessLevel:
        return self.binding.level

    def sort_key(self):
        # Direct bindings first, then higher-level roles, then slug for determinism
        return (self.depth, -(self.assigned_role.level or 0), self.assigned_role.slug)

    def policy(self) -> DecidingPolicy:
        return DecidingPolicy(
            role_id=self.assigned_role.id,
            role_slug=self.assigned_role.slug,
            permission=self.binding.permission.slug,
            access_level=self.level,
            inherited_from=self.source_role.slug if self.depth else None,
        )


class EffectivePermissionResolver:
    """Answers permission checks for users of one agency. Read-only."""

    def __init__(
        self,
        db: Session,
        agency_id: UUID,
        *,
        max_depth: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        settings = get_settings()
        self.db = db
        self.agency_id = agency_id
        self.max_depth = max_depth or settings.rbac_max_hierarchy_depth
        self.timeout = settings.rbac_check_timeout_seconds if timeout is None else timeout
        self.ledger = RoleAssignmentLedger(db, agency_id)
        self.scoping = BranchScopingResolver(db, agency_id)

    def check_permission(
        self,
        user_id: UUID,
        resource: str,
        action: str,
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
        *,
        token: Optional[CancellationToken] = None,
        now: Optional[datetime] = None,
    ) -> PermissionResult:
        """
        Decide whether ``user_id`` may perform ``action`` on ``resource``.

        Args:
            user_id: the acting user
            resource: resource name, e.g. "students"
            action: action name, e.g. "read"
            resource_id: optional instance id; enables the branch check
            context: caller-supplied facts for CUSTOM conditions
            token: cancellation token; defaults to the configured timeout
            now: evaluation time for time-window conditions

        Returns:
            PermissionResult
        """
        token = token or CancellationToken(self.timeout)
        try:
            result = self._resolve(user_id, resource, action, resource_id, context, token, now)
        except CheckTimeoutError as e:
            logger.warning(f"Permission check {resource}:{action} for user {user_id} denied: {e}")
            return PermissionResult.deny(DenyReason.TIMEOUT)
        except HierarchyTooDeepError as e:
            logger.error(f"Permission check {resource}:{action} for user {user_id} denied: {e}")
            return PermissionResult.deny(DenyReason.HIERARCHY_TOO_DEEP)

        logger.debug(
            f"Permission {resource}:{action} for user {user_id}: "
            f"{'allow' if result.allowed else 'deny'} ({result.reason.value})"
        )
        return result

    def _resolve(
        self,
        user_id: UUID,
        resource: str,
        action: str,
        resource_id: Optional[Any],
        context: Optional[Dict[str, Any]],
        token: CancellationToken,
        now: Optional[datetime],
    ) -> PermissionResult:
        token.check()
        user = self.db.query(User).filter(User.id == user_id).first()
        if user is None:
            return PermissionResult.deny(DenyReason.USER_NOT_FOUND)
        if user.agency_id != self.agency_id:
            return PermissionResult.deny(DenyReason.USER_NOT_IN_AGENCY)
        if not user.is_active:
            return PermissionResult.deny(DenyReason.USER_INACTIVE)

        assignments = [
            a for a in self.ledger.list_active_roles(user_id)
            if a.role is not None and a.role.is_active
        ]
        if not assignments:
            return PermissionResult.deny(DenyReason.NO_ROLES_ASSIGNED)

        token.check()
        candidates = self._collect(assignments, resource, action, token)

        token.check()
        located = self.scoping.resource_branch(resource, resource_id)

        eval_context = dict(context or {})
        eval_context.setdefault("user_id", str(user.id))
        eval_context.setdefault("agency_id", str(self.agency_id))
        if resource_id is not None:
            eval_context.setdefault("resource_id", str(resource_id))
        if located.branch_id is not None:
            eval_context.setdefault("branch_id", str(located.branch_id))
        if user.branch_id is not None:
            eval_context.setdefault("user_branch_id", str(user.branch_id))
            # Stored conditions on branch_id match the home branch when no resource branch is known
            eval_context.setdefault("branch_id", str(user.branch_id))

        winner, conditional = self._merge(candidates, eval_context, now)
        if winner is None:
            return PermissionResult(
                allowed=False,
                reason=DenyReason.INSUFFICIENT_PERMISSIONS,
                conditional=conditional,
            )
        if winner.level == AccessLevel.NONE:
            return PermissionResult(
                allowed=False,
                reason=DenyReason.INSUFFICIENT_PERMISSIONS,
                access_level=AccessLevel.NONE,
                conditional=conditional,
            )

        if located.registered:
            if not located.found:
                return PermissionResult(
                    allowed=False,
                    reason=DenyReason.RESOURCE_NOT_FOUND,
                    access_level=winner.level,
                    conditional=conditional,
                )
            if located.branch_id is not None:
                token.check()
                branches = self.scoping.accessible_branches(user_id, assignments)
                if located.branch_id not in branches:
                    return PermissionResult(
                        allowed=False,
                        reason=DenyReason.OUT_OF_SCOPE,
                        access_level=winner.level,
                        conditional=conditional,
                    )

        # Stages after the last check may have run past the deadline
        token.check()
        return PermissionResult(
            allowed=True,
            reason=DenyReason.GRANTED,
            access_level=winner.level,
            deciding_policy=winner.policy(),
            conditional=conditional,
        )

    def _collect(self, assignments, resource: str, action: str, token: CancellationToken) -> List[_Candidate]:
        candidates = []
        for assignment in assignments:
            for depth, role in enumerate(iter_role_chain(self.db, assignment.role, self.max_depth)):
                token.check()
                if not role.is_active:
                    break
                for binding in role.bindings:
                    permission = binding.permission
                    if permission.resource == resource and permission.action == action:
                        candidates.append(_Candidate(binding, assignment.role, role, depth))
        return candidates

    @staticmethod
    def _merge(candidates: List[_Candidate], context: Dict[str, Any], now: Optional[datetime]):
        """Pick the winning candidate. Returns (candidate or None, evaluated_custom)."""
        ordinal = sorted(
            (c for c in candidates if c.level != AccessLevel.CUSTOM),
            key=lambda c: (-c.level.ordinal, c.sort_key()),
        )
        best = ordinal[0] if ordinal else None
        if best is not None and best.level == AccessLevel.FULL:
            return best, False

        custom = sorted((c for c in candidates if c.level == AccessLevel.CUSTOM), key=_Candidate.sort_key)
        for candidate in custom:
            conditions = parse_conditions(candidate.binding.conditions, strict=False)
            if conditions.is_empty:
                continue
            if conditions.evaluate(context, now):
                return candidate, True
        return best, bool(custom)
