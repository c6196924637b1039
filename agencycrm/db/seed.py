"""Database seeding for AgencyCRM.

Creates the permission catalog, the default roles of an agency and the
agency itself.
"""

import uuid
from typing import Dict, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session

from agencycrm.db.models import Agency, Branch, Role
from agencycrm.core.rbac.catalog import PermissionCatalog
from agencycrm.core.rbac.roles import BRANCH_MANAGER_ROLE, DEFAULT_ROLES
from agencycrm.core.rbac.store import RoleStore


def seed_permission_catalog(db: Session) -> int:
    """Insert any missing seeded permissions. Returns the number created."""
    return PermissionCatalog(db).seed_catalog()


def seed_default_roles(db: Session, agency_id: uuid.UUID) -> Dict[str, Role]:
    """
    Create the default roles for an agency.

    Idempotent: roles that already exist (by slug) are returned as-is.
    Parents are created before their children.

    Args:
        db: Database session
        agency_id: Agency to create roles for

    Returns:
        Dict mapping role slug to Role object
    """
    seed_permission_catalog(db)
    store = RoleStore(db, agency_id)

    roles = {}
    for slug, config in DEFAULT_ROLES.items():
        existing = store.get_by_slug(slug)
        if existing:
            roles[slug] = existing
            continue

        parent = roles.get(config["parent"]) if config["parent"] else None
        roles[slug] = store.create_role(
            config["name"],
            slug,
            level=config["level"],
            scope=config["scope"],
            parent_id=parent.id if parent else None,
            description=config["description"],
            bindings=config["bindings"],
            is_system=True,
        )
    return roles


def seed_branch_manager_role(db: Session, agency_id: uuid.UUID, branch: Branch) -> Role:
    """Create (or return) the Branch Manager role for one branch."""
    store = RoleStore(db, agency_id)
    slug = f"branch-manager-{branch.code.lower()}"

    existing = store.get_by_slug(slug)
    if existing:
        return existing

    seed_permission_catalog(db)
    return store.create_role(
        f"{BRANCH_MANAGER_ROLE['name']} ({branch.code})",
        slug,
        level=BRANCH_MANAGER_ROLE["level"],
        scope=BRANCH_MANAGER_ROLE["scope"],
        branch_id=branch.id,
        description=BRANCH_MANAGER_ROLE["description"],
        bindings=BRANCH_MANAGER_ROLE["bindings"],
        is_system=True,
    )


def seed_agency(
    db: Session,
    name: str,
    subdomain: str,
    *,
    settings: Optional[dict] = None,
) -> Agency:
    """
    Create a new agency with default roles.

    Args:
        db: Database session
        name: Agency name
        subdomain: Subdomain the agency is served under
        settings: Optional agency settings

    Returns:
        Created (or existing) agency
    """
    existing = db.query(Agency).filter(Agency.subdomain == subdomain).first()
    if existing:
        return existing

    agency = Agency(
        id=uuid.uuid4(),
        name=name,
        subdomain=subdomain,
        settings=settings or {},
    )
    db.add(agency)
    db.flush()

    seed_default_roles(db, agency.id)
    return agency


def get_role_by_slug(db: Session, agency_id: uuid.UUID, slug: str) -> Optional[Role]:
    """Get a role by slug within an agency."""
    return db.query(Role).filter(
        and_(Role.agency_id == agency_id, Role.slug == slug)
    ).first()


def get_admin_role(db: Session, agency_id: uuid.UUID) -> Optional[Role]:
    """Get the Agency Admin role for an agency."""
    return get_role_by_slug(db, agency_id, "agency-admin")
