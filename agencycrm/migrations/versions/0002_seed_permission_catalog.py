"""Seed the system permission catalog

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-14

Inserts every resource:action pair from the permission matrix as a
system permission. Default roles are seeded per agency at onboarding.
"""
from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa

from agencycrm.core.rbac.permissions import PERMISSION_DEFINITIONS, category_for

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: Union[str, Sequence[str], None] = "0001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Insert missing catalog permissions."""
    connection = op.get_bind()

    existing = {
        row[0] for row in connection.execute(sa.text("SELECT slug FROM permissions")).fetchall()
    }

    for slug, key in sorted(PERMISSION_DEFINITIONS.items()):
        if slug in existing:
            continue

        connection.execute(
            sa.text("""
                INSERT INTO permissions
                    (id, slug, name, category, resource, action, is_system_permission, created_at, updated_at)
                VALUES
                    (:id, :slug, :name, :category, :resource, :action, true, now(), now())
            """),
            {
                "id": str(uuid.uuid4()),
                "slug": slug,
                "name": f"{key.action.value.title()} {key.resource.value.replace('_', ' ')}",
                "category": category_for(key.resource).value,
                "resource": key.resource.value,
                "action": key.action.value,
            }
        )


def downgrade() -> None:
    """Remove seeded catalog permissions that no role still binds."""
    connection = op.get_bind()

    for slug in PERMISSION_DEFINITIONS.keys():
        connection.execute(
            sa.text("""
                DELETE FROM permissions
                WHERE slug = :slug AND is_system_permission = true
                  AND id NOT IN (SELECT permission_id FROM role_permissions)
            """),
            {"slug": slug}
        )
