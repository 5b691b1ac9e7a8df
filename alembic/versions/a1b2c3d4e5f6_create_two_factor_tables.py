"""Create users and two-factor authentication tables

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 12:00:00.000000

This migration adds:
- roles, users and activity_logs
- two_factor_registrations (one per user)
- two_factor_backup_codes, two_factor_trusted_devices, two_factor_challenges
- two_factor_settings (single policy row)
"""

from collections.abc import Sequence
from typing import Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "a1b2c3d4e5f6"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

two_factor_method = sa.Enum("totp", "email", "sms", name="twofactormethod")


def upgrade() -> None:
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    op.create_index(op.f("ix_roles_id"), "roles", ["id"], unique=False)

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=150), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("hashed_password", sa.String(length=255), nullable=False),
        sa.Column("role_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_id"), "users", ["id"], unique=False)
    op.create_index(op.f("ix_users_username"), "users", ["username"], unique=False)

    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("details", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_activity_logs_id"), "activity_logs", ["id"], unique=False)
    op.create_index("idx_user_action_timestamp", "activity_logs", ["user_id", "action", "timestamp"], unique=False)

    op.create_table(
        "two_factor_registrations",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("method", two_factor_method, nullable=False),
        sa.Column("secret", sa.String(length=64), nullable=True),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_confirmed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("enabled_at", sa.DateTime(), nullable=True),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_two_factor_registrations_id"), "two_factor_registrations", ["id"], unique=False)
    op.create_index(
        op.f("ix_two_factor_registrations_user_id"), "two_factor_registrations", ["user_id"], unique=True
    )

    op.create_table(
        "two_factor_backup_codes",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_two_factor_backup_codes_id"), "two_factor_backup_codes", ["id"], unique=False)
    op.create_index(op.f("ix_two_factor_backup_codes_user_id"), "two_factor_backup_codes", ["user_id"], unique=False)
    op.create_index(
        "ix_two_factor_backup_codes_user_used", "two_factor_backup_codes", ["user_id", "is_used"], unique=False
    )

    op.create_table(
        "two_factor_trusted_devices",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("device_name", sa.String(length=200), nullable=True),
        sa.Column("browser", sa.String(length=100), nullable=True),
        sa.Column("os", sa.String(length=100), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("trusted_until", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("token_hash"),
    )
    op.create_index(op.f("ix_two_factor_trusted_devices_id"), "two_factor_trusted_devices", ["id"], unique=False)
    op.create_index(
        op.f("ix_two_factor_trusted_devices_user_id"), "two_factor_trusted_devices", ["user_id"], unique=False
    )
    op.create_index(
        op.f("ix_two_factor_trusted_devices_trusted_until"),
        "two_factor_trusted_devices",
        ["trusted_until"],
        unique=False,
    )

    op.create_table(
        "two_factor_challenges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("code_hash", sa.String(length=64), nullable=False),
        sa.Column("method", two_factor_method, nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_two_factor_challenges_id"), "two_factor_challenges", ["id"], unique=False)
    op.create_index(op.f("ix_two_factor_challenges_user_id"), "two_factor_challenges", ["user_id"], unique=False)
    op.create_index(
        op.f("ix_two_factor_challenges_expires_at"), "two_factor_challenges", ["expires_at"], unique=False
    )

    op.create_table(
        "two_factor_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("trust_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("totp_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sms_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("grace_period_days", sa.Integer(), nullable=False, server_default="7"),
        sa.Column("required_roles", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("two_factor_settings")
    op.drop_index(op.f("ix_two_factor_challenges_expires_at"), table_name="two_factor_challenges")
    op.drop_index(op.f("ix_two_factor_challenges_user_id"), table_name="two_factor_challenges")
    op.drop_index(op.f("ix_two_factor_challenges_id"), table_name="two_factor_challenges")
    op.drop_table("two_factor_challenges")
    op.drop_index(op.f("ix_two_factor_trusted_devices_trusted_until"), table_name="two_factor_trusted_devices")
    op.drop_index(op.f("ix_two_factor_trusted_devices_user_id"), table_name="two_factor_trusted_devices")
    op.drop_index(op.f("ix_two_factor_trusted_devices_id"), table_name="two_factor_trusted_devices")
    op.drop_table("two_factor_trusted_devices")
    op.drop_index("ix_two_factor_backup_codes_user_used", table_name="two_factor_backup_codes")
    op.drop_index(op.f("ix_two_factor_backup_codes_user_id"), table_name="two_factor_backup_codes")
    op.drop_index(op.f("ix_two_factor_backup_codes_id"), table_name="two_factor_backup_codes")
    op.drop_table("two_factor_backup_codes")
    op.drop_index(op.f("ix_two_factor_registrations_user_id"), table_name="two_factor_registrations")
    op.drop_index(op.f("ix_two_factor_registrations_id"), table_name="two_factor_registrations")
    op.drop_table("two_factor_registrations")
    two_factor_method.drop(op.get_bind(), checkfirst=True)
    op.drop_index("idx_user_action_timestamp", table_name="activity_logs")
    op.drop_index(op.f("ix_activity_logs_id"), table_name="activity_logs")
    op.drop_table("activity_logs")
    op.drop_index(op.f("ix_users_username"), table_name="users")
    op.drop_index(op.f("ix_users_id"), table_name="users")
    op.drop_table("users")
    op.drop_index(op.f("ix_roles_id"), table_name="roles")
    op.drop_table("roles")
