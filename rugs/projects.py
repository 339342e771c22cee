"""Project registry: depot path -> stable project id.

A depot path looks like ``//<stream-root>/<stream-name>/<project>[/...]``.
The part up to (not including) the fourth ``/`` is the stream, everything
after it is the project name.  Both are lower-cased, so paths differing
only in case name the same project.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from rugs.errors import ValidationError
from rugs.models import Project

logger = logging.getLogger(__name__)

# depot path -> project_id, only for rows read back from the database
_cache: dict[str, int] = {}


def clear_cache() -> None:
    _cache.clear()


def split_depot_path(depot_path: str) -> tuple[str, str]:
    """Return ``(stream, project_name)`` for *depot_path*, both lower-cased."""
    if not isinstance(depot_path, str):
        raise ValidationError("depot path must be a string")
    path = depot_path.strip()
    if not path.startswith("//"):
        raise ValidationError(f"depot path must start with '//': {depot_path!r}")

    root_end = path.find("/", 2)
    if root_end < 0:
        raise ValidationError(f"depot path has no stream name: {depot_path!r}")
    stream_end = path.find("/", root_end + 1)
    if stream_end < 0:
        raise ValidationError(f"depot path has no project name: {depot_path!r}")

    stream = path[:stream_end]
    project_name = path[stream_end + 1 :].rstrip("/")
    if root_end == 2 or stream_end == root_end + 1 or not project_name:
        raise ValidationError(f"depot path has an empty component: {depot_path!r}")
    return stream.lower(), project_name.lower()


def join_depot_path(stream: str, project: str) -> str:
    """Build a depot path from a stream and a project relative to it.

    *project* may already be a full depot path, in which case it is used
    as-is.
    """
    if not isinstance(project, str) or not project.strip():
        raise ValidationError("project must be a non-empty string")
    project = project.strip()
    if project.startswith("//"):
        return project
    if not isinstance(stream, str) or not stream.strip():
        raise ValidationError("stream is required for a relative project path")
    return f"{stream.strip().rstrip('/')}/{project.lstrip('/')}"


async def _select_id(sess: AsyncSession, stream: str, project_name: str) -> int | None:
    stmt = (
        select(Project.project_id)
        .where(Project.stream == stream, Project.project_name == project_name)
        .limit(1)
    )
    result = await sess.execute(stmt)
    row = result.first()
    return None if row is None else int(row[0])


async def lookup(sess: AsyncSession, depot_path: str) -> int | None:
    """Return the id for *depot_path*, or ``None`` if it was never seen."""
    cached = _cache.get(depot_path)
    if cached is not None:
        return cached

    stream, project_name = split_depot_path(depot_path)
    project_id = await _select_id(sess, stream, project_name)
    if project_id is not None:
        _cache[depot_path] = project_id
    return project_id


async def resolve_or_create(sess: AsyncSession, depot_path: str) -> int:
    """Return the id for *depot_path*, inserting the project if needed.

    Must run inside a write session; the unique ``(stream, project_name)``
    constraint turns a concurrent insert of the same project into a no-op.
    """
    project_id = await lookup(sess, depot_path)
    if project_id is not None:
        return project_id

    stream, project_name = split_depot_path(depot_path)
    stmt = sqlite_insert(Project).values(stream=stream, project_name=project_name)
    stmt = stmt.on_conflict_do_nothing(
        index_elements=[Project.stream, Project.project_name]
    )
    await sess.execute(stmt)

    project_id = await _select_id(sess, stream, project_name)
    if project_id is None:
        raise RuntimeError(f"project row for {depot_path!r} vanished after insert")
    # Not cached: the insert is only real once the caller commits.
    logger.info("Registered project %s %s as %d", stream, project_name, project_id)
    return project_id
