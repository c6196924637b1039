"""Permission catalog model.

Permissions are global (not tenant-scoped). ``resource`` and ``action`` are
identity fields and never change once created; system permissions cannot
be edited or deleted by tenant admins.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean, Text, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from agencycrm.db.base import Base


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (
        Index("ix_permissions_resource_action", "resource", "action"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    slug = Column(String(150), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="CORE")
    resource = Column(String(100), nullable=False)
    action = Column(String(100), nullable=False)
    is_system_permission = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    role_bindings = relationship("RolePermission", back_populates="permission")

    def __repr__(self) -> str:
        return f"<Permission {self.slug}>"
