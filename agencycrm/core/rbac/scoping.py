"""Branch scoping.

Works out which branches a user may act within, and which branch a
protected resource belongs to.

A user holding any active AGENCY- or GLOBAL-scoped role gets
``ALL_BRANCHES``, a sentinel that contains every branch without listing
them. Everyone else gets the union of their own branch, the branches of
their active BRANCH-scoped roles and the branches they manage. An empty
set means no branch access.
"""

import logging
from typing import Any, Callable, Dict, FrozenSet, List, NamedTuple, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.orm import Session

from agencycrm.db.models import Branch, Student, User, UserRoleAssignment
from .ledger import RoleAssignmentLedger
from .permissions import RoleScope

logger = logging.getLogger(__name__)


class AllBranches:
    """Every branch of the agency. Membership tests are always true."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __contains__(self, branch_id: Any) -> bool:
        return True

    def __repr__(self) -> str:
        return "ALL_BRANCHES"


ALL_BRANCHES = AllBranches()

BranchSet = Union[FrozenSet[UUID], AllBranches]


def is_all_branches(branches: BranchSet) -> bool:
    return branches is ALL_BRANCHES


class ResourceBranch(NamedTuple):
    """Outcome of mapping (resource, resource_id) to a branch."""
    registered: bool
    found: bool
    branch_id: Optional[UUID]


BranchLookup = Callable[[Session, UUID, UUID], ResourceBranch]

_BRANCH_LOOKUPS: Dict[str, BranchLookup] = {}


def register_branch_lookup(resource: str, model: Any, column: str = "branch_id") -> None:
    """
    Map a resource name to the model whose rows carry its branch.

    The model needs ``id`` and ``agency_id`` columns plus ``column``.
    Registering a resource again replaces the earlier lookup.
    """
    branch_column = getattr(model, column)

    def lookup(db: Session, agency_id: UUID, resource_id: UUID) -> ResourceBranch:
        row = db.query(branch_column).filter(
            and_(model.id == resource_id, model.agency_id == agency_id)
        ).first()
        if row is None:
            return ResourceBranch(True, False, None)
        return ResourceBranch(True, True, row[0])

    _BRANCH_LOOKUPS[resource] = lookup


def unregister_branch_lookup(resource: str) -> None:
    _BRANCH_LOOKUPS.pop(resource, None)


def registered_resources() -> List[str]:
    return sorted(_BRANCH_LOOKUPS)


register_branch_lookup("users", User)
register_branch_lookup("students", Student)
register_branch_lookup("branches", Branch, column="id")


def _coerce_uuid(value: Any) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class BranchScopingResolver:
    """Branch access for users of one agency."""

    def __init__(self, db: Session, agency_id: UUID):
        self.db = db
        self.agency_id = agency_id

    def accessible_branches(
        self,
        user_id: UUID,
        assignments: Optional[Sequence[UserRoleAssignment]] = None,
    ) -> BranchSet:
        """
        Branches ``user_id`` may act within.

        Args:
            user_id: the user
            assignments: the user's active assignments, if already loaded

        Returns:
            ALL_BRANCHES, or a (possibly empty) frozenset of branch ids
        """
        user = self.db.query(User).filter(
            and_(User.id == user_id, User.agency_id == self.agency_id)
        ).first()
        if not user:
            return frozenset()

        if assignments is None:
            assignments = RoleAssignmentLedger(self.db, self.agency_id, cache=None).list_active_roles(user_id)

        branches = set()
        if user.branch_id is not None:
            branches.add(user.branch_id)

        for assignment in assignments:
            role = assignment.role
            if not assignment.is_active or role is None or not role.is_active:
                continue
            if role.agency_id != self.agency_id:
                continue
            scope = role.role_scope
            if scope.is_agency_wide:
                return ALL_BRANCHES
            if scope == RoleScope.BRANCH and role.branch_id is not None:
                branches.add(role.branch_id)

        managed = self.db.query(Branch.id).filter(
            and_(
                Branch.manager_id == user_id,
                Branch.agency_id == self.agency_id,
                Branch.is_active == True,  # noqa: E712
            )
        ).all()
        branches.update(branch_id for (branch_id,) in managed)

        return frozenset(branches)

    def can_access_branch(self, user_id: UUID, branch_id: UUID) -> bool:
        return branch_id in self.accessible_branches(user_id)

    def resource_branch(self, resource: str, resource_id: Any) -> ResourceBranch:
        """Branch a resource instance belongs to, within this agency."""
        lookup = _BRANCH_LOOKUPS.get(resource)
        if lookup is None or resource_id is None:
            return ResourceBranch(False, False, None)
        parsed = _coerce_uuid(resource_id)
        if parsed is None:
            return ResourceBranch(True, False, None)
        return lookup(self.db, self.agency_id, parsed)
