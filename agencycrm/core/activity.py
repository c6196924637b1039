"""Best-effort activity logging for access-control mutations.

Entries are written inside a SAVEPOINT so that a failed insert rolls back
only the log row, never the mutation it describes. Failures are logged
and kept on ``warnings`` for the caller to surface.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from agencycrm.db.models.activity import ActivityLog, ActivitySeverity

logger = logging.getLogger(__name__)


class ActivityRecorder:
    """Writes ``ActivityLog`` rows for one agency."""

    def __init__(self, db: Session, agency_id: uuid.UUID):
        self.db = db
        self.agency_id = agency_id
        self.warnings: List[str] = []

    def record(
        self,
        action: str,
        resource_type: str,
        *,
        user_id: Optional[uuid.UUID] = None,
        resource_id: Optional[uuid.UUID] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: ActivitySeverity = ActivitySeverity.INFO,
    ) -> Optional[ActivityLog]:
        """Write one entry. Returns None (and records a warning) on failure."""
        try:
            with self.db.begin_nested():
                entry = ActivityLog.create_entry(
                    agency_id=self.agency_id,
                    action=action,
                    resource_type=resource_type,
                    user_id=user_id,
                    resource_id=resource_id,
                    details=details,
                    severity=severity,
                )
                self.db.add(entry)
                self.db.flush()
        except SQLAlchemyError as e:
            message = f"Activity log write failed for {action} on {resource_type} {resource_id}: {e}"
            logger.warning(message)
            self.warnings.append(message)
            return None
        return entry
