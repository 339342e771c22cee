"""Per-project sequence numbers shared by badges and user events.

The counter is never kept in memory: the next value is derived from the
stored rows inside the writer's ``BEGIN IMMEDIATE`` transaction, so it
commits (or rolls back) together with the row it stamps.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rugs.models import Badge, UserEvent


async def current_sequence(sess: AsyncSession, project_id: int) -> int:
    """Highest sequence stamped on any row of *project_id*, or 0."""
    badge_max = (
        select(func.max(Badge.sequence))
        .where(Badge.project_id == project_id)
        .scalar_subquery()
    )
    event_max = (
        select(func.max(UserEvent.sequence))
        .where(UserEvent.project_id == project_id)
        .scalar_subquery()
    )
    stmt = select(func.coalesce(badge_max, 0), func.coalesce(event_max, 0))
    result = await sess.execute(stmt)
    badge_seq, event_seq = result.one()
    return max(int(badge_seq), int(event_seq))


async def next_sequence(sess: AsyncSession, project_id: int) -> int:
    """Sequence to stamp on the row about to be written for *project_id*.

    Call exactly once per row write, in the same write session.
    """
    return await current_sequence(sess, project_id) + 1
