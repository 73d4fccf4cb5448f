"""access control core tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None

ACCESS_OVERRIDE = sa.Enum("ALLOW", "DENY", name="accessoverride")
BADGE_REQUEST_STATUS = sa.Enum("ACTIVE", "PENDING", "INACTIVE", "REVOKED", name="badgerequeststatus")


def upgrade() -> None:
    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uuid", sa.String(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("card_serial", sa.String(), nullable=True),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("chargebee_payment_pause", sa.Boolean(), nullable=False),
        sa.Column("manual_pause", sa.Boolean(), nullable=False),
        sa.Column("payment_failed", sa.Boolean(), nullable=False),
        sa.Column("access_override", ACCESS_OVERRIDE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_members_uuid", "members", ["uuid"], unique=True)
    op.create_index("ix_members_username", "members", ["username"])
    op.create_index("ix_members_email", "members", ["email"], unique=True)
    op.create_index("ix_members_card_serial", "members", ["card_serial"])
    op.create_index("ix_members_is_active", "members", ["is_active"])
    op.create_index("ix_members_created_at", "members", ["created_at"])

    op.create_table(
        "member_profiles",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("profile_type", sa.String(), nullable=False),
        sa.Column("card_serial", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_member_profiles_member_id", "member_profiles", ["member_id"])
    op.create_index("ix_member_profiles_card_serial", "member_profiles", ["card_serial"])
    op.create_index("ix_member_profiles_created_at", "member_profiles", ["created_at"])
    op.create_index("ix_member_profiles_member_type", "member_profiles", ["member_id", "profile_type"])

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("text_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_badges_name", "badges", ["name"])
    op.create_index("ix_badges_text_id", "badges", ["text_id"])
    op.create_index("ix_badges_created_at", "badges", ["created_at"])

    op.create_table(
        "badge_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("badge_id", sa.Integer(), nullable=False),
        sa.Column("status", BADGE_REQUEST_STATUS, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"]),
        sa.ForeignKeyConstraint(["badge_id"], ["badges.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_badge_requests_member_id", "badge_requests", ["member_id"])
    op.create_index("ix_badge_requests_badge_id", "badge_requests", ["badge_id"])
    op.create_index("ix_badge_requests_created_at", "badge_requests", ["created_at"])
    op.create_index("ix_badge_requests_member_badge", "badge_requests", ["member_id", "badge_id"])
    op.create_index("ix_badge_requests_badge_status", "badge_requests", ["badge_id", "status"])

    op.create_table(
        "access_control_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=True),
        sa.Column("badge_id", sa.Integer(), nullable=True),
        sa.Column("result", sa.Boolean(), nullable=False),
        sa.Column("note", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_access_control_logs_member_id", "access_control_logs", ["member_id"])
    op.create_index("ix_access_control_logs_badge_id", "access_control_logs", ["badge_id"])
    op.create_index("ix_access_control_logs_created_at", "access_control_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("access_control_logs")
    op.drop_table("badge_requests")
    op.drop_table("badges")
    op.drop_table("member_profiles")
    op.drop_table("members")
    BADGE_REQUEST_STATUS.drop(op.get_bind(), checkfirst=True)
    ACCESS_OVERRIDE.drop(op.get_bind(), checkfirst=True)
