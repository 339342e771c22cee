"""Badge store: build status per (project, build type, change number).

Publishing is an upsert on that key.  A CI job typically posts
``Starting`` and later ``Success``/``Failure`` for the same slot; the later
call overwrites the row and moves it to a fresh sequence number.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from rugs import db, projects
from rugs.errors import ValidationError
from rugs.models import Badge, BadgeResult
from rugs.sequencer import next_sequence
from rugs.validation import (
    require_change_number,
    require_int,
    require_text,
)

logger = logging.getLogger(__name__)


async def publish(
    sess: AsyncSession,
    project_id: int,
    build_type: str,
    change_number: int,
    result: BadgeResult,
    url: str,
    now: int,
) -> int:
    """Upsert one badge inside *sess* and return the sequence it was stamped with."""
    sequence = await next_sequence(sess, project_id)
    stmt = sqlite_insert(Badge).values(
        project_id=project_id,
        build_type=build_type,
        change_number=change_number,
        result=int(result),
        url=url,
        added_at=now,
        sequence=sequence,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Badge.project_id, Badge.build_type, Badge.change_number],
        set_={
            "result": stmt.excluded.result,
            "url": stmt.excluded.url,
            "added_at": stmt.excluded.added_at,
            "sequence": stmt.excluded.sequence,
        },
    )
    await sess.execute(stmt)
    return sequence


async def fetch(
    sess: AsyncSession,
    project_id: int,
    min_change: int = 0,
    max_change: int | None = None,
    since_sequence: int = 0,
) -> list[Badge]:
    """Badges of *project_id* newer than *since_sequence*, ascending by sequence."""
    stmt = select(Badge).where(
        Badge.project_id == project_id,
        Badge.sequence > since_sequence,
        Badge.change_number >= min_change,
    )
    if max_change is not None:
        stmt = stmt.where(Badge.change_number <= max_change)
    stmt = stmt.order_by(Badge.sequence.asc())
    result = await sess.execute(stmt)
    return list(result.scalars().all())


async def publish_badge(
    depot_path: str,
    build_type: str,
    change_number: int,
    result: Any,
    url: str,
    now: int | None = None,
) -> int:
    """Validate, then register the project and upsert the badge atomically."""
    projects.split_depot_path(depot_path)
    build_type = require_text(build_type, "build_type")
    change_number = require_change_number(change_number)
    badge_result = BadgeResult.parse(result)
    if not isinstance(url, str):
        raise ValidationError("url must be a string")
    ts = int(time.time()) if now is None else require_int(now, "now")

    async with db.session() as sess:
        project_id = await projects.resolve_or_create(sess, depot_path)
        sequence = await publish(
            sess, project_id, build_type, change_number, badge_result, url, ts
        )

    logger.info(
        "Badge %s/%s CL %d -> %s (seq %d)",
        depot_path,
        build_type,
        change_number,
        badge_result.label,
        sequence,
    )
    return sequence
