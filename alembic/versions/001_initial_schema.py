"""Initial schema — requests, registry, assignment matrix, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("request_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("actor_id", sa.String(100), comment="Directory user id, admin name, or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="Department or 'admin'"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Rule registry ──────────────────────────────────────────────────

    op.create_table(
        "booking_rules",
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("condition", sa.String(200), nullable=False, comment="Team name or service keyword"),
        sa.Column("assigned_pic", sa.String(200), nullable=False, comment="Engineer full name"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100", index=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "protocols",
        sa.Column("uid", sa.String(20), nullable=False, comment="PRT-####"),
        sa.Column("label", sa.String(200), nullable=False),
        sa.Column("description", sa.String(1000)),
        sa.Column("pics", postgresql.ARRAY(sa.String(200)), nullable=False, server_default="{}"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true(), index=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("uid"),
    )

    # ── Assignment matrix ──────────────────────────────────────────────

    op.create_table(
        "pic_assignments",
        sa.Column("manager_id", sa.String(100), nullable=False, index=True),
        sa.Column("manager_name", sa.String(200)),
        sa.Column("assigned_pics", postgresql.ARRAY(sa.String(200)), nullable=False, server_default="{}"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("manager_id"),
    )

    # ── Requests ───────────────────────────────────────────────────────

    op.create_table(
        "service_requests",
        sa.Column("kind", sa.String(20), nullable=False, index=True),
        sa.Column("submitted_by", sa.String(100), nullable=False, index=True),
        sa.Column("department", sa.String(50), nullable=False, index=True),
        sa.Column("protocols", postgresql.ARRAY(sa.String(200)), nullable=False, server_default="{}"),
        sa.Column("pic", sa.String(200), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING", index=True),
        sa.Column("client", sa.String(300)),
        sa.Column("address", sa.String(500)),
        sa.Column("landmark", sa.String(300)),
        sa.Column("agenda", sa.String(500)),
        sa.Column("appointment_date", sa.DateTime(timezone=True), index=True),
        sa.Column("project_name", sa.String(300)),
        sa.Column("details", postgresql.JSONB(astext_type=sa.Text())),
        sa.Column("notes", sa.Text()),
        sa.Column("file_url", sa.String(1000)),
        sa.Column("confirmation_notes", sa.Text()),
        sa.Column("confirmed_by", sa.String(200)),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_by", sa.String(200)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("last_modified_by", sa.String(100)),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('PENDING', 'CONFIRMED', 'COMPLETED')", name="ck_service_requests_status"),
    )


def downgrade() -> None:
    op.drop_table("service_requests")
    op.drop_table("pic_assignments")
    op.drop_table("protocols")
    op.drop_table("booking_rules")
    op.drop_table("audit_log")
