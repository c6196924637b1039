"""Activity log model for AgencyCRM.

Append-only trail of access-control mutations (role created, role
assigned, assignment revoked, ...). Entries are written best-effort and
are never updated.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from sqlalchemy import Column, String, DateTime, JSON, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from agencycrm.db.base import Base


class ActivitySeverity(str, Enum):
    """Severity levels for activity log entries."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Tenant scope
    agency_id = Column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False, index=True)

    # Actor (None for system actions)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)

    # Action details
    action = Column(String(100), nullable=False, index=True)
    resource_type = Column(String(100), nullable=False, index=True)
    resource_id = Column(UUID(as_uuid=True), nullable=True, index=True)
    details = Column(JSON, nullable=True)

    severity = Column(String(20), nullable=False, default="info")
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    agency = relationship("Agency", back_populates="activity_logs")
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<ActivityLog {self.action} on {self.resource_type} by user {self.user_id}>"

    @classmethod
    def create_entry(
        cls,
        agency_id: uuid.UUID,
        action: str,
        resource_type: str,
        *,
        user_id: Optional[uuid.UUID] = None,
        resource_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: ActivitySeverity = ActivitySeverity.INFO,
    ) -> "ActivityLog":
        """
        Factory method to create a new activity log entry.

        Args:
            agency_id: Tenant the action happened in
            action: Action performed (e.g. 'role.assign', 'role.revoke')
            resource_type: Type of resource (e.g. 'role', 'user_role_assignment')
            user_id: ID of user performing action (None for system actions)
            resource_id: ID of affected resource
            details: Additional context
            severity: Log severity level
        """
        return cls(
            agency_id=agency_id,
            action=action,
            resource_type=resource_type,
            user_id=user_id,
            resource_id=resource_id,
            details=details,
            severity=severity.value if isinstance(severity, ActivitySeverity) else severity,
        )
