"""Projects and badges.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("project_id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("stream", sa.Text(collation="NOCASE"), nullable=False),
        sa.Column("project_name", sa.Text(collation="NOCASE"), nullable=False),
        sa.UniqueConstraint(
            "stream", "project_name", name="uq_projects_stream_project"
        ),
    )

    op.create_table(
        "badges",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "project_id",
            sa.Integer,
            sa.ForeignKey("projects.project_id"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("change_number", sa.Integer, nullable=False),
        sa.Column("build_type", sa.Text, nullable=False),
        sa.Column("result", sa.Integer, nullable=False),
        sa.Column("url", sa.Text, nullable=False),
        sa.Column("added_at", sa.Integer, nullable=False),
        sa.UniqueConstraint(
            "project_id", "build_type", "change_number", name="uq_badges_slot"
        ),
    )


def downgrade() -> None:
    op.drop_table("badges")
    op.drop_table("projects")
