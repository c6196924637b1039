"""Role assignment ledger.

Assignments are soft-revoked, never deleted, so the full history of who
held which role survives. "Currently active" is decided by
``UserRoleAssignment.is_active`` alone.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from agencycrm.core.activity import ActivityRecorder
from agencycrm.db.models import Role, User, UserRoleAssignment
from .cache import DecisionCache, get_decision_cache
from .errors import (
    AlreadyAssignedError,
    AssignmentNotFoundError,
    RoleNotInAgencyError,
    UserNotInAgencyError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class RoleAssignmentLedger:
    """
    Assign and revoke roles for users of one agency.

    Activity-log writes are best-effort: a failed write is logged and added
    to ``audit_warnings`` but never undoes the assignment or revocation.
    """

    def __init__(self, db: Session, agency_id: UUID, *, cache: Optional[DecisionCache] = None):
        self.db = db
        self.agency_id = agency_id
        self.cache = cache if cache is not None else get_decision_cache()
        self.activity = ActivityRecorder(db, agency_id)

    @property
    def audit_warnings(self) -> List[str]:
        return self.activity.warnings

    def assign_role(
        self,
        user_id: UUID,
        role_id: UUID,
        assigned_by: Optional[UUID] = None,
    ) -> UserRoleAssignment:
        """
        Give a user a role.

        Raises:
            UserNotInAgencyError: user missing or in another agency
            RoleNotInAgencyError: role missing or in another agency
            ValidationError: role is deactivated
            AlreadyAssignedError: user already holds the role
        """
        user = self.db.query(User).filter(
            and_(User.id == user_id, User.agency_id == self.agency_id)
        ).first()
        if not user:
            raise UserNotInAgencyError(f"User {user_id} does not belong to this agency")

        role = self.db.query(Role).filter(
            and_(Role.id == role_id, Role.agency_id == self.agency_id)
        ).first()
        if not role:
            raise RoleNotInAgencyError(f"Role {role_id} does not belong to this agency")
        if not role.is_active:
            raise ValidationError(f"Role {role.slug} is deactivated and cannot be assigned")

        existing = self.db.query(UserRoleAssignment).filter(
            and_(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.role_id == role_id,
                UserRoleAssignment.is_active,
            )
        ).first()
        if existing:
            raise AlreadyAssignedError(
                f"User {user_id} already holds role {role.slug}",
                detail={"assignment_id": str(existing.id)},
            )

        assignment = UserRoleAssignment(
            agency_id=self.agency_id,
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=datetime.utcnow(),
        )
        try:
            with self.db.begin_nested():
                self.db.add(assignment)
                self.db.flush()
        except IntegrityError:
            raise AlreadyAssignedError(f"User {user_id} already holds role {role.slug}")

        logger.info(f"Role {role.slug} assigned to user {user_id} by {assigned_by}")
        self.activity.record(
            "role.assign", "user_role_assignment",
            user_id=assigned_by,
            resource_id=assignment.id,
            details={"user_id": str(user_id), "role_id": str(role_id), "role": role.slug},
        )
        self._invalidate(user_id)
        return assignment

    def revoke_role(self, assignment_id: UUID, revoked_by: Optional[UUID] = None) -> UserRoleAssignment:
        """
        Revoke an assignment. Revoking twice is a no-op success; the first
        ``revoked_at``/``revoked_by`` stamp is kept.

        Raises:
            AssignmentNotFoundError: no such assignment in this agency
        """
        assignment = self.db.query(UserRoleAssignment).filter(
            and_(
                UserRoleAssignment.id == assignment_id,
                UserRoleAssignment.agency_id == self.agency_id,
            )
        ).with_for_update().first()
        if not assignment:
            raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")

        if not assignment.revoke(revoked_by):
            logger.debug(f"Assignment {assignment_id} already revoked at {assignment.revoked_at}")
            return assignment

        self.db.flush()
        logger.info(f"Assignment {assignment_id} revoked by {revoked_by}")
        self.activity.record(
            "role.revoke", "user_role_assignment",
            user_id=revoked_by,
            resource_id=assignment.id,
            details={"user_id": str(assignment.user_id), "role_id": str(assignment.role_id)},
        )
        self._invalidate(assignment.user_id)
        return assignment

    def get_assignment(self, assignment_id: UUID) -> UserRoleAssignment:
        assignment = self.db.query(UserRoleAssignment).filter(
            and_(
                UserRoleAssignment.id == assignment_id,
                UserRoleAssignment.agency_id == self.agency_id,
            )
        ).first()
        if not assignment:
            raise AssignmentNotFoundError(f"Assignment {assignment_id} not found")
        return assignment

    def list_active_roles(self, user_id: UUID) -> List[UserRoleAssignment]:
        """Active assignments for a user, with their roles loaded."""
        return self.db.query(UserRoleAssignment).join(
            Role, Role.id == UserRoleAssignment.role_id
        ).options(
            joinedload(UserRoleAssignment.role)
        ).filter(
            and_(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.agency_id == self.agency_id,
                UserRoleAssignment.is_active,
                Role.agency_id == self.agency_id,
            )
        ).order_by(UserRoleAssignment.assigned_at).all()

    def list_history(self, user_id: UUID) -> List[UserRoleAssignment]:
        """Every assignment the user has had, oldest first."""
        return self.db.query(UserRoleAssignment).options(
            joinedload(UserRoleAssignment.role)
        ).filter(
            and_(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.agency_id == self.agency_id,
            )
        ).order_by(UserRoleAssignment.assigned_at).all()

    def assignments_at(self, user_id: UUID, at: datetime) -> List[UserRoleAssignment]:
        """Assignments that were active at ``at`` (point-in-time view)."""
        return self.db.query(UserRoleAssignment).options(
            joinedload(UserRoleAssignment.role)
        ).filter(
            and_(
                UserRoleAssignment.user_id == user_id,
                UserRoleAssignment.agency_id == self.agency_id,
                UserRoleAssignment.assigned_at <= at,
                or_(
                    UserRoleAssignment.revoked_at.is_(None),
                    UserRoleAssignment.revoked_at > at,
                ),
            )
        ).order_by(UserRoleAssignment.assigned_at).all()

    def _invalidate(self, user_id: UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate_user(self.agency_id, user_id)
