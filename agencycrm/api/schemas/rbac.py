"""Request/response schemas for the RBAC API."""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from agencycrm.core.rbac.permissions import AccessLevel, RoleScope


# Permissions

class PermissionCreate(BaseModel):
    slug: str = Field(..., min_length=3, max_length=150)
    resource: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=100)
    category: str = Field("CORE", min_length=1, max_length=50)
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class PermissionUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    resource: Optional[str] = None
    action: Optional[str] = None


class PermissionResponse(BaseModel):
    id: UUID
    slug: str
    name: Optional[str]
    description: Optional[str]
    category: str
    resource: str
    action: str
    is_system_permission: bool

    class Config:
        from_attributes = True


# Roles

class BindingIn(BaseModel):
    permission: str = Field(..., description="Permission slug, e.g. students:read")
    access_level: AccessLevel = AccessLevel.FULL
    conditions: Optional[Any] = None


class BindingResponse(BaseModel):
    permission: str
    access_level: str
    conditions: Optional[Any] = None


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    level: int = Field(0, ge=0)
    scope: RoleScope = RoleScope.AGENCY
    branch_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    bindings: List[BindingIn] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    slug: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    level: Optional[int] = Field(None, ge=0)
    scope: Optional[RoleScope] = None
    branch_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    bindings: Optional[List[BindingIn]] = None


class RoleResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    level: int
    scope: str
    branch_id: Optional[UUID] = None
    parent_id: Optional[UUID] = None
    is_active: bool
    is_system: bool
    bindings: List[BindingResponse] = Field(default_factory=list)


class RoleNodeResponse(RoleResponse):
    children: List["RoleNodeResponse"] = Field(default_factory=list)


RoleNodeResponse.model_rebuild()


# Assignments

class AssignmentCreate(BaseModel):
    user_id: UUID
    role_id: UUID


class AssignmentResponse(BaseModel):
    id: UUID
    user_id: UUID
    role_id: UUID
    role_slug: Optional[str] = None
    state: str
    assigned_by: Optional[UUID] = None
    assigned_at: datetime
    revoked_at: Optional[datetime] = None
    revoked_by: Optional[UUID] = None
    warnings: List[str] = Field(default_factory=list)


# Checks

class CheckItem(BaseModel):
    resource: str = Field(..., min_length=1, max_length=100)
    action: str = Field(..., min_length=1, max_length=100)
    resource_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


class CheckRequest(BaseModel):
    user_id: Optional[UUID] = Field(None, description="Defaults to the caller")
    checks: List[CheckItem] = Field(..., min_length=1, max_length=100)


class CheckResult(BaseModel):
    resource: str
    action: str
    resource_id: Optional[str] = None
    allowed: bool
    reason: str
    access_level: Optional[str] = None
    deciding_policy: Optional[Dict[str, Any]] = None


class CheckSummary(BaseModel):
    total: int
    allowed: int
    denied: int


class CheckResponse(BaseModel):
    user_id: UUID
    results: List[CheckResult]
    summary: CheckSummary


# Branches

class BranchCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    code: str = Field(..., min_length=1, max_length=50)
    manager_id: Optional[UUID] = None


class BranchResponse(BaseModel):
    id: UUID
    name: str
    code: str
    manager_id: Optional[UUID] = None
    is_active: bool

    class Config:
        from_attributes = True


class AccessibleBranchesResponse(BaseModel):
    user_id: UUID
    all_branches: bool
    branch_ids: List[UUID] = Field(default_factory=list)
