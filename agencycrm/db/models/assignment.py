"""User role assignment ledger model.

Assignments are never deleted. Revocation stamps ``revoked_at`` and
``revoked_by``; the presence of ``revoked_at`` alone marks an assignment
inactive for current-state resolution.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional
from sqlalchemy import Column, DateTime, ForeignKey, Index, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import relationship

from agencycrm.db.base import Base


class AssignmentState(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class UserRoleAssignment(Base):
    __tablename__ = "user_role_assignments"
    __table_args__ = (
        Index("ix_user_role_assignments_user_revoked", "user_id", "revoked_at"),
        # One active assignment per (user, role)
        Index(
            "uq_user_role_assignments_active",
            "user_id",
            "role_id",
            unique=True,
            postgresql_where=text("revoked_at IS NULL"),
            sqlite_where=text("revoked_at IS NULL"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agency_id = Column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False, index=True)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    role_id = Column(UUID(as_uuid=True), ForeignKey("roles.id"), nullable=False, index=True)

    assigned_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)
    revoked_by = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    user = relationship("User", foreign_keys=[user_id], back_populates="role_assignments")
    role = relationship("Role", back_populates="assignments")
    assigner = relationship("User", foreign_keys=[assigned_by])
    revoker = relationship("User", foreign_keys=[revoked_by])

    @hybrid_property
    def is_active(self) -> bool:
        """Single source of truth for "is this assignment current"."""
        return self.revoked_at is None

    @is_active.expression
    def is_active(cls):
        return cls.revoked_at.is_(None)

    @property
    def state(self) -> AssignmentState:
        return AssignmentState.ACTIVE if self.revoked_at is None else AssignmentState.REVOKED

    def was_active_at(self, at: datetime) -> bool:
        """Point-in-time check; only historical queries look at timestamp values."""
        if self.assigned_at is not None and self.assigned_at > at:
            return False
        return self.revoked_at is None or self.revoked_at > at

    def revoke(self, revoked_by: Optional[uuid.UUID], at: Optional[datetime] = None) -> bool:
        """Move to REVOKED. Returns False when already revoked (first stamp wins)."""
        if self.revoked_at is not None:
            return False
        self.revoked_at = at or datetime.utcnow()
        self.revoked_by = revoked_by
        return True

    def __repr__(self) -> str:
        return f"<UserRoleAssignment user={self.user_id} role={self.role_id} {self.state.value}>"
