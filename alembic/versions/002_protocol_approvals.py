"""Protocol approvers (TSA/TSM), copied onto site visits at booking time.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def upgrade() -> None:
    for table in ("protocols", "service_requests"):
        op.add_column(table, sa.Column("tsa", sa.String(200)))
        op.add_column(table, sa.Column("tsm", sa.String(200)))


def downgrade() -> None:
    for table in ("service_requests", "protocols"):
        op.drop_column(table, "tsm")
        op.drop_column(table, "tsa")
