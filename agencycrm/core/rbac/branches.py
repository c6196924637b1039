"""Branch registry.

Branch codes are unique within an agency and a user manages at most one
branch. Both are checked here before the write so callers get a typed
conflict rather than a database error.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from agencycrm.core.activity import ActivityRecorder
from agencycrm.db.models import Branch, User
from .cache import DecisionCache, get_decision_cache
from .errors import (
    BranchNotFoundError,
    DuplicateBranchCodeError,
    ManagerAlreadyAssignedError,
    UserNotInAgencyError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class BranchRegistry:
    """Create branches and assign their managers within one agency."""

    def __init__(self, db: Session, agency_id: UUID, *, cache: Optional[DecisionCache] = None):
        self.db = db
        self.agency_id = agency_id
        self.cache = cache if cache is not None else get_decision_cache()
        self.activity = ActivityRecorder(db, agency_id)

    def create_branch(
        self,
        name: str,
        code: str,
        *,
        manager_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
    ) -> Branch:
        """
        Open a branch.

        Raises:
            ValidationError: empty name or code
            DuplicateBranchCodeError: code already used in this agency
            UserNotInAgencyError: manager is not a user of this agency
            ManagerAlreadyAssignedError: manager already runs another branch
        """
        name = (name or "").strip()
        code = (code or "").strip().upper()
        if not name or not code:
            raise ValidationError("Branch name and code are required")

        if self._get_by_code(code):
            raise DuplicateBranchCodeError(f"Branch code {code} already exists in this agency")
        if manager_id is not None:
            self._check_manager(manager_id)

        branch = Branch(agency_id=self.agency_id, name=name, code=code, manager_id=manager_id)
        try:
            with self.db.begin_nested():
                self.db.add(branch)
                self.db.flush()
        except IntegrityError:
            raise DuplicateBranchCodeError(f"Branch code {code} already exists in this agency")

        logger.info(f"Branch created: {code} in agency {self.agency_id}")
        self.activity.record(
            "branch.create", "branch",
            user_id=actor_id,
            resource_id=branch.id,
            details={"code": code, "manager_id": str(manager_id) if manager_id else None},
        )
        if manager_id is not None:
            self._invalidate(manager_id)
        return branch

    def set_manager(
        self,
        branch_id: UUID,
        manager_id: Optional[UUID],
        *,
        actor_id: Optional[UUID] = None,
    ) -> Branch:
        """Assign (or with None, clear) a branch's manager."""
        branch = self.get_branch(branch_id, for_update=True)
        previous = branch.manager_id
        if manager_id == previous:
            return branch
        if manager_id is not None:
            self._check_manager(manager_id, exclude_branch_id=branch.id)

        branch.manager_id = manager_id
        self.db.flush()

        logger.info(f"Branch {branch.code} manager changed from {previous} to {manager_id}")
        self.activity.record(
            "branch.set_manager", "branch",
            user_id=actor_id,
            resource_id=branch.id,
            details={
                "previous_manager_id": str(previous) if previous else None,
                "manager_id": str(manager_id) if manager_id else None,
            },
        )
        for user_id in (previous, manager_id):
            if user_id is not None:
                self._invalidate(user_id)
        return branch

    def get_branch(self, branch_id: UUID, *, for_update: bool = False) -> Branch:
        query = self.db.query(Branch).filter(
            and_(Branch.id == branch_id, Branch.agency_id == self.agency_id)
        )
        if for_update:
            query = query.with_for_update()
        branch = query.first()
        if not branch:
            raise BranchNotFoundError(f"Branch {branch_id} not found")
        return branch

    def list_branches(self, *, include_inactive: bool = False) -> List[Branch]:
        query = self.db.query(Branch).filter(Branch.agency_id == self.agency_id)
        if not include_inactive:
            query = query.filter(Branch.is_active == True)  # noqa: E712
        return query.order_by(Branch.code).all()

    def _get_by_code(self, code: str) -> Optional[Branch]:
        return self.db.query(Branch).filter(
            and_(Branch.agency_id == self.agency_id, Branch.code == code)
        ).first()

    def _check_manager(self, manager_id: UUID, exclude_branch_id: Optional[UUID] = None) -> None:
        user = self.db.query(User).filter(
            and_(User.id == manager_id, User.agency_id == self.agency_id)
        ).first()
        if not user:
            raise UserNotInAgencyError(f"User {manager_id} does not belong to this agency")

        query = self.db.query(Branch).filter(
            and_(Branch.agency_id == self.agency_id, Branch.manager_id == manager_id)
        )
        if exclude_branch_id is not None:
            query = query.filter(Branch.id != exclude_branch_id)
        managed = query.first()
        if managed:
            raise ManagerAlreadyAssignedError(
                f"User {manager_id} already manages branch {managed.code}",
                detail={"branch_id": str(managed.id)},
            )

    def _invalidate(self, user_id: UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(self.agency_id, user_id)
