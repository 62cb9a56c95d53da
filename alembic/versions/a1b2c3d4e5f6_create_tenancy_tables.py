"""create_tenancy_tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-16 00:00:00.000000

Creates users, tenants and the tenant-scoped tables: memberships,
invitations, custom domains, configuration, daily usage metrics and the
audit log.
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic
revision: str = "a1b2c3d4e5f6"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _tenant_fk() -> sa.Column:
    return sa.Column("tenant_id", sa.String(36), sa.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("subdomain", sa.String(100), nullable=False),
        sa.Column("domain", sa.String(253), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("plan", sa.String(20), nullable=False, server_default="free"),
        sa.Column("isolation_level", sa.String(20), nullable=False, server_default="shared"),
        sa.Column("status", sa.String(20), nullable=False, server_default="trial"),
        sa.Column("database_name", sa.String(100), nullable=True),
        sa.Column("schema_name", sa.String(100), nullable=True),
        sa.Column("features", sa.JSON(), nullable=True),
        sa.Column("branding", sa.JSON(), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(), nullable=True),
        sa.Column("suspended_at", sa.DateTime(), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_access_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("subdomain"),
        sa.UniqueConstraint("domain"),
    )
    op.create_index("idx_tenant_status", "tenants", ["status"], unique=False)
    op.create_index("idx_tenant_plan", "tenants", ["plan"], unique=False)

    op.create_table(
        "tenant_users",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("invited_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "user_id", name="uq_tenant_user"),
    )
    op.create_index("ix_tenant_users_tenant_id", "tenant_users", ["tenant_id"], unique=False)
    op.create_index("ix_tenant_users_user_id", "tenant_users", ["user_id"], unique=False)
    op.create_index("idx_tenant_user_role", "tenant_users", ["role"], unique=False)
    op.create_index(
        "uq_tenant_single_owner",
        "tenant_users",
        ["tenant_id"],
        unique=True,
        postgresql_where=sa.text("role = 'owner'"),
        sqlite_where=sa.text("role = 'owner'"),
    )

    op.create_table(
        "tenant_invitations",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="student"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("invited_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("accepted_at", sa.DateTime(), nullable=True),
        sa.Column("accepted_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("token"),
    )
    op.create_index("ix_tenant_invitations_tenant_id", "tenant_invitations", ["tenant_id"], unique=False)
    op.create_index("ix_tenant_invitations_email", "tenant_invitations", ["email"], unique=False)
    op.create_index("idx_tenant_invitation_expires", "tenant_invitations", ["expires_at"], unique=False)
    op.create_index(
        "uq_tenant_invitation_pending_email",
        "tenant_invitations",
        ["tenant_id", "email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "tenant_domains",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("domain", sa.String(253), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="primary"),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("ssl_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("ssl_expires_at", sa.DateTime(), nullable=True),
        sa.Column("dns_records", sa.JSON(), nullable=True),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("domain"),
    )
    op.create_index("ix_tenant_domains_tenant_id", "tenant_domains", ["tenant_id"], unique=False)

    op.create_table(
        "tenant_configurations",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("updated_by", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "category", "key", name="uq_tenant_configuration_key"),
    )
    op.create_index("ix_tenant_configurations_tenant_id", "tenant_configurations", ["tenant_id"], unique=False)

    op.create_table(
        "tenant_usage_metrics",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("metric_type", sa.String(100), nullable=False),
        sa.Column("value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("unit", sa.String(20), nullable=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("granularity", sa.String(20), nullable=False, server_default="daily"),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("tenant_id", "metric_type", "date", "granularity", name="uq_tenant_usage_metric_day"),
    )
    op.create_index("ix_tenant_usage_metrics_tenant_id", "tenant_usage_metrics", ["tenant_id"], unique=False)
    op.create_index("idx_tenant_usage_date", "tenant_usage_metrics", ["date"], unique=False)

    op.create_table(
        "tenant_audit_logs",
        sa.Column("id", sa.String(36), primary_key=True),
        _tenant_fk(),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource", sa.String(100), nullable=True),
        sa.Column("resource_id", sa.String(36), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("level", sa.String(20), nullable=False, server_default="info"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_tenant_audit_logs_tenant_id", "tenant_audit_logs", ["tenant_id"], unique=False)
    op.create_index(
        "idx_tenant_audit_action_created", "tenant_audit_logs", ["tenant_id", "action", "created_at"], unique=False
    )


def downgrade() -> None:
    # Reverse dependency order: tenant-scoped tables → tenants → users
    op.drop_table("tenant_audit_logs")
    op.drop_table("tenant_usage_metrics")
    op.drop_table("tenant_configurations")
    op.drop_table("tenant_domains")
    op.drop_table("tenant_invitations")
    op.drop_table("tenant_users")
    op.drop_table("tenants")
    op.drop_table("users")
