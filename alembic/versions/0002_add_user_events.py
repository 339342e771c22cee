"""Per-user change annotations.

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002"
down_revision: str = "0001"
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_table(
        "user_events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "project_id",
            sa.Integer,
            sa.ForeignKey("projects.project_id"),
            nullable=False,
        ),
        sa.Column("change_number", sa.Integer, nullable=False),
        sa.Column("user_name", sa.Text, nullable=False),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("updated_at", sa.Integer, nullable=False),
        sa.Column("synced_at", sa.Integer, nullable=True),
        sa.Column("vote", sa.Integer, nullable=True),
        sa.Column("investigating", sa.Boolean, nullable=True),
        sa.Column("starred", sa.Boolean, nullable=True),
        sa.Column("comment", sa.Text, nullable=True),
        sa.UniqueConstraint(
            "project_id", "user_name", "change_number", name="uq_user_events_slot"
        ),
    )


def downgrade() -> None:
    op.drop_table("user_events")
