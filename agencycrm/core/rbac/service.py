"""RBAC service facade used by route handlers.

Bundles the catalog, role store, assignment ledger, branch registry,
branch scoping and resolver for one agency behind a single object, and
puts the optional decision cache in front of permission checks.
"""

from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from agencycrm.core.activity import ActivityRecorder
from .branches import BranchRegistry
from .cache import DecisionCache, get_decision_cache
from .catalog import PermissionCatalog
from .ledger import RoleAssignmentLedger
from .resolver import CancellationToken, DenyReason, EffectivePermissionResolver, PermissionResult
from .scoping import BranchScopingResolver, BranchSet
from .store import RoleNode, RoleStore

_UNCACHEABLE = {DenyReason.TIMEOUT, DenyReason.HIERARCHY_TOO_DEEP}


class RBACService:
    """
    Access-control operations for one agency.

    Usage:
        service = RBACService(db, agency.id)
        result = service.check_permission(user.id, "students", "read", student_id)
        if not result.allowed:
            raise HTTPException(status_code=403, detail=result.reason.value)
    """

    def __init__(
        self,
        db: Session,
        agency_id: UUID,
        *,
        cache: Optional[DecisionCache] = None,
        timeout: Optional[float] = None,
        max_depth: Optional[int] = None,
    ):
        self.db = db
        self.agency_id = agency_id
        self.cache = cache if cache is not None else get_decision_cache()

        self.catalog = PermissionCatalog(db)
        self.roles = RoleStore(db, agency_id, cache=self.cache, max_depth=max_depth)
        self.ledger = RoleAssignmentLedger(db, agency_id, cache=self.cache)
        self.branches = BranchRegistry(db, agency_id, cache=self.cache)
        self.scoping = BranchScopingResolver(db, agency_id)
        self.resolver = EffectivePermissionResolver(db, agency_id, max_depth=max_depth, timeout=timeout)
        self.activity = ActivityRecorder(db, agency_id)

    @property
    def audit_warnings(self) -> List[str]:
        """Activity-log failures recorded by this service's mutations."""
        return (
            self.roles.audit_warnings
            + self.ledger.audit_warnings
            + self.branches.activity.warnings
            + self.activity.warnings
        )

    def check_permission(
        self,
        user_id: UUID,
        resource: str,
        action: str,
        resource_id: Optional[Any] = None,
        context: Optional[Dict[str, Any]] = None,
        *,
        token: Optional[CancellationToken] = None,
    ) -> PermissionResult:
        key = None
        if self.cache is not None:
            key = DecisionCache.make_key(self.agency_id, user_id, resource, action, resource_id, context)
            if key is not None:
                cached = self.cache.get(key)
                if cached is not None:
                    return cached

        result = self.resolver.check_permission(
            user_id, resource, action, resource_id, context, token=token
        )

        if key is not None and not result.conditional and result.reason not in _UNCACHEABLE:
            self.cache.set(key, result)
        return result

    def check_permissions(
        self,
        user_id: UUID,
        checks: Iterable[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Run several checks for one user.

        Each check is a mapping with ``resource``, ``action`` and optional
        ``resource_id`` / ``context``. Returns per-check results plus a
        summary of totals.
        """
        results = []
        for check in checks:
            result = self.check_permission(
                user_id,
                check["resource"],
                check["action"],
                check.get("resource_id"),
                check.get("context"),
            )
            results.append((check, result))

        allowed = sum(1 for _, r in results if r.allowed)
        return {
            "results": results,
            "summary": {
                "total": len(results),
                "allowed": allowed,
                "denied": len(results) - allowed,
            },
        }

    def record_check(self, actor_id: UUID, user_id: UUID, batch: Dict[str, Any]) -> None:
        """Write a best-effort activity entry for a batch check made over the API."""
        self.activity.record(
            "rbac.check", "user",
            user_id=actor_id,
            resource_id=user_id,
            details={
                "checks": [
                    {
                        "permission": f"{check['resource']}:{check['action']}",
                        "allowed": result.allowed,
                        "reason": result.reason.value,
                    }
                    for check, result in batch["results"]
                ],
                "summary": batch["summary"],
            },
        )

    def assign_role(self, user_id: UUID, role_id: UUID, assigned_by: Optional[UUID] = None):
        return self.ledger.assign_role(user_id, role_id, assigned_by)

    def revoke_role(self, assignment_id: UUID, revoked_by: Optional[UUID] = None):
        return self.ledger.revoke_role(assignment_id, revoked_by)

    def get_role_hierarchy(self, branch_ids: Optional[Sequence[UUID]] = None) -> List[RoleNode]:
        return self.roles.get_role_hierarchy(branch_ids)

    def accessible_branches(self, user_id: UUID) -> BranchSet:
        return self.scoping.accessible_branches(user_id)
