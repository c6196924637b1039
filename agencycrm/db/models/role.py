"""Role and role-permission binding models.

Roles are tenant-scoped and form a forest through ``parent_id``. Each role
carries a set of (permission, access level, conditions) bindings.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, ForeignKey, Integer, Text,
    UniqueConstraint, Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from agencycrm.db.base import Base
from agencycrm.core.rbac.permissions import AccessLevel, RoleScope


class Role(Base):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("agency_id", "slug", name="uq_roles_agency_slug"),
        Index("ix_roles_agency_parent", "agency_id", "parent_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agency_id = Column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    level = Column(Integer, nullable=False, default=0)
    scope = Column(String(20), nullable=False, default=RoleScope.AGENCY.value)
    branch_id = Column(UUID(as_uuid=True), ForeignKey("branches.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_id = Column(UUID(as_uuid=True), ForeignKey("roles.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_system = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    agency = relationship("Agency", back_populates="roles")
    branch = relationship("Branch")
    parent = relationship("Role", remote_side=[id], back_populates="children")
    children = relationship("Role", back_populates="parent")
    bindings = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    assignments = relationship("UserRoleAssignment", back_populates="role")

    @property
    def role_scope(self) -> RoleScope:
        return RoleScope(self.scope)

    def __repr__(self) -> str:
        return f"<Role {self.slug} level={self.level} scope={self.scope}>"


class RolePermission(Base):
    """Binding of a permission to a role at a given access level."""
    __tablename__ = "role_permissions"

    role_id = Column(UUID(as_uuid=True), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    permission_id = Column(UUID(as_uuid=True), ForeignKey("permissions.id"), primary_key=True, index=True)
    access_level = Column(String(20), nullable=False, default=AccessLevel.FULL.value)
    conditions = Column(JSON, nullable=True)  # Only consulted for CUSTOM bindings
    created_at = Column(DateTime, default=datetime.utcnow)

    role = relationship("Role", back_populates="bindings")
    permission = relationship("Permission", back_populates="role_bindings", lazy="joined")

    @property
    def level(self) -> AccessLevel:
        return AccessLevel(self.access_level)

    def __repr__(self) -> str:
        return f"<RolePermission role={self.role_id} permission={self.permission_id} {self.access_level}>"
