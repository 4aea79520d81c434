"""create organizations, accounts, usage ledger, audit and auth tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Ground truth account tables; reconciliation counts rows with is_active = true.
    for table in ("managers", "workers"):
        op.create_table(
            table,
            sa.Column("id", sa.String(), primary_key=True, nullable=False),
            sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index(f"ix_{table}_organization_id", table, ["organization_id"], unique=False)
        op.create_index(f"ix_{table}_org_active", table, ["organization_id", "is_active"], unique=False)

    op.create_table(
        "subscription_usage",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("plan_type", sa.String(), nullable=False),
        sa.Column("planned_managers", sa.Integer(), nullable=True),
        sa.Column("planned_workers", sa.Integer(), nullable=True),
        sa.Column("active_managers", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("active_workers", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("effective_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("effective_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("superseded_by", sa.String(), sa.ForeignKey("subscription_usage.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )
    op.create_index("ix_subscription_usage_organization_id", "subscription_usage", ["organization_id"], unique=False)
    op.create_index(
        "ix_subscription_usage_org_range",
        "subscription_usage",
        ["organization_id", "effective_start", "effective_end"],
        unique=False,
    )

    op.create_table(
        "subscription_audit_log",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("organization_id", sa.String(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("before_count", sa.Integer(), nullable=True),
        sa.Column("after_count", sa.Integer(), nullable=True),
        sa.Column("trigger_source", sa.String(), nullable=False),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_subscription_audit_log_organization_id", "subscription_audit_log", ["organization_id"], unique=False)
    op.create_index("ix_subscription_audit_log_action", "subscription_audit_log", ["action"], unique=False)
    op.create_index("ix_subscription_audit_log_created_at", "subscription_audit_log", ["created_at"], unique=False)

    op.create_table(
        "super_admins",
        sa.Column("email", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "api_keys",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("key_prefix", sa.String(), nullable=False),
        sa.Column("key_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"], unique=False)
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)


def downgrade() -> None:
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_index("ix_api_keys_user_id", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("super_admins")
    op.drop_index("ix_subscription_audit_log_created_at", table_name="subscription_audit_log")
    op.drop_index("ix_subscription_audit_log_action", table_name="subscription_audit_log")
    op.drop_index("ix_subscription_audit_log_organization_id", table_name="subscription_audit_log")
    op.drop_table("subscription_audit_log")
    op.drop_index("ix_subscription_usage_org_range", table_name="subscription_usage")
    op.drop_index("ix_subscription_usage_organization_id", table_name="subscription_usage")
    op.drop_table("subscription_usage")
    for table in ("workers", "managers"):
        op.drop_index(f"ix_{table}_org_active", table_name=table)
        op.drop_index(f"ix_{table}_organization_id", table_name=table)
        op.drop_table(table)
    op.drop_table("organizations")
