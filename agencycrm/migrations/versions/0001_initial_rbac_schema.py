"""Initial schema: agencies, branches, users, students, permissions, roles, assignments, activity_logs

Revision ID: 0001
Revises: None
Create Date: 2026-09-14

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all access-control tables."""

    # --- agencies (no FK deps) ---
    op.create_table(
        "agencies",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("subdomain", sa.String(100), nullable=False),
        sa.Column("settings", sa.JSON(), server_default="{}"),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_agencies"),
        sa.UniqueConstraint("subdomain", name="uq_agencies_subdomain"),
    )
    op.create_index("ix_agencies_subdomain", "agencies", ["subdomain"])

    # --- branches (FK -> agencies; manager FK added after users) ---
    op.create_table(
        "branches",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("manager_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_branches"),
        sa.UniqueConstraint("agency_id", "code", name="uq_branches_agency_code"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], name="fk_branches_agency_id_agencies"),
    )
    op.create_index("ix_branches_agency_id", "branches", ["agency_id"])
    op.create_index("ix_branches_manager_id", "branches", ["manager_id"])

    # --- users (FK -> agencies, branches) ---
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255)),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default="true"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("last_login", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], name="fk_users_agency_id_agencies"),
        sa.ForeignKeyConstraint(
            ["branch_id"],
            ["branches.id"],
            name="fk_users_branch_id_branches",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"])
    op.create_index("ix_users_agency_id", "users", ["agency_id"])
    op.create_index("ix_users_branch_id", "users", ["branch_id"])

    op.create_foreign_key(
        "fk_branches_manager_id",
        "branches",
        "users",
        ["manager_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # --- students (FK -> agencies, branches, users) ---
    op.create_table(
        "students",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("assigned_to", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_students"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], name="fk_students_agency_id_agencies"),
        sa.ForeignKeyConstraint(
            ["branch_id"], ["branches.id"], name="fk_students_branch_id_branches", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["assigned_to"], ["users.id"], name="fk_students_assigned_to_users", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_students_agency_id", "students", ["agency_id"])
    op.create_index("ix_students_branch_id", "students", ["branch_id"])
    op.create_index("ix_students_assigned_to", "students", ["assigned_to"])

    # --- permissions (global catalog) ---
    op.create_table(
        "permissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slug", sa.String(150), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(50), nullable=False, server_default="CORE"),
        sa.Column("resource", sa.String(100), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("is_system_permission", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_permissions"),
        sa.UniqueConstraint("slug", name="uq_permissions_slug"),
    )
    op.create_index("ix_permissions_slug", "permissions", ["slug"])
    op.create_index("ix_permissions_resource_action", "permissions", ["resource", "action"])

    # --- roles (FK -> agencies, branches, self) ---
    op.create_table(
        "roles",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("scope", sa.String(20), nullable=False, server_default="AGENCY"),
        sa.Column("branch_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("is_system", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_roles"),
        sa.UniqueConstraint("agency_id", "slug", name="uq_roles_agency_slug"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], name="fk_roles_agency_id_agencies"),
        sa.ForeignKeyConstraint(
            ["branch_id"], ["branches.id"], name="fk_roles_branch_id_branches", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["parent_id"], ["roles.id"], name="fk_roles_parent_id_roles", ondelete="SET NULL"
        ),
        sa.CheckConstraint("level >= 0", name="ck_roles_level_non_negative"),
        sa.CheckConstraint(
            "scope <> 'BRANCH' OR branch_id IS NOT NULL",
            name="ck_roles_branch_scope_has_branch",
        ),
    )
    op.create_index("ix_roles_agency_id", "roles", ["agency_id"])
    op.create_index("ix_roles_branch_id", "roles", ["branch_id"])
    op.create_index("ix_roles_agency_parent", "roles", ["agency_id", "parent_id"])

    # --- role_permissions (FK -> roles, permissions) ---
    op.create_table(
        "role_permissions",
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("permission_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("access_level", sa.String(20), nullable=False, server_default="FULL"),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("role_id", "permission_id", name="pk_role_permissions"),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"], name="fk_role_permissions_role_id_roles", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["permission_id"], ["permissions.id"], name="fk_role_permissions_permission_id_permissions"
        ),
        sa.CheckConstraint(
            "access_level IN ('NONE', 'VIEW', 'EDIT', 'DELETE', 'FULL', 'CUSTOM')",
            name="ck_role_permissions_access_level",
        ),
    )
    op.create_index("ix_role_permissions_permission_id", "role_permissions", ["permission_id"])

    # --- user_role_assignments (FK -> agencies, users, roles) ---
    op.create_table(
        "user_role_assignments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("assigned_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        sa.Column("revoked_at", sa.DateTime(), nullable=True),
        sa.Column("revoked_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_user_role_assignments"),
        sa.ForeignKeyConstraint(
            ["agency_id"], ["agencies.id"], name="fk_user_role_assignments_agency_id_agencies"
        ),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_user_role_assignments_user_id_users", ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["role_id"], ["roles.id"], name="fk_user_role_assignments_role_id_roles"
        ),
        sa.ForeignKeyConstraint(
            ["assigned_by"], ["users.id"], name="fk_user_role_assignments_assigned_by_users", ondelete="SET NULL"
        ),
        sa.ForeignKeyConstraint(
            ["revoked_by"], ["users.id"], name="fk_user_role_assignments_revoked_by_users", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_user_role_assignments_agency_id", "user_role_assignments", ["agency_id"])
    op.create_index("ix_user_role_assignments_role_id", "user_role_assignments", ["role_id"])
    op.create_index(
        "ix_user_role_assignments_user_revoked", "user_role_assignments", ["user_id", "revoked_at"]
    )
    # One active assignment per (user, role)
    op.create_index(
        "uq_user_role_assignments_active",
        "user_role_assignments",
        ["user_id", "role_id"],
        unique=True,
        postgresql_where=sa.text("revoked_at IS NULL"),
    )

    # --- activity_logs (FK -> agencies, users) ---
    op.create_table(
        "activity_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("resource_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("severity", sa.String(20), nullable=False, server_default="info"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()")),
        sa.PrimaryKeyConstraint("id", name="pk_activity_logs"),
        sa.ForeignKeyConstraint(["agency_id"], ["agencies.id"], name="fk_activity_logs_agency_id_agencies"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], name="fk_activity_logs_user_id_users", ondelete="SET NULL"
        ),
    )
    op.create_index("ix_activity_logs_agency_id", "activity_logs", ["agency_id"])
    op.create_index("ix_activity_logs_user_id", "activity_logs", ["user_id"])
    op.create_index("ix_activity_logs_action", "activity_logs", ["action"])
    op.create_index("ix_activity_logs_resource_type", "activity_logs", ["resource_type"])
    op.create_index("ix_activity_logs_resource_id", "activity_logs", ["resource_id"])
    op.create_index("ix_activity_logs_created_at", "activity_logs", ["created_at"])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_table("activity_logs")
    op.drop_table("user_role_assignments")
    op.drop_table("role_permissions")
    op.drop_table("roles")
    op.drop_table("permissions")
    op.drop_table("students")
    op.drop_constraint("fk_branches_manager_id", "branches", type_="foreignkey")
    op.drop_table("users")
    op.drop_table("branches")
    op.drop_table("agencies")
