"""Composite indexes for cursor + change-range sync queries.

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0003"
down_revision: str = "0002"
branch_labels: str | None = None
depends_on: str | None = None


def upgrade() -> None:
    op.create_index(
        "idx_badges_project_sequence_change",
        "badges",
        ["project_id", "sequence", "change_number"],
    )
    op.create_index(
        "idx_user_events_project_sequence_change",
        "user_events",
        ["project_id", "sequence", "change_number"],
    )


def downgrade() -> None:
    op.drop_index("idx_user_events_project_sequence_change", table_name="user_events")
    op.drop_index("idx_badges_project_sequence_change", table_name="badges")
