"""User event store: per-user annotations on a change.

Keyed by (project, user name, change number).  Updates are field-level
merges: a field the caller did not supply keeps its stored value, while a
field supplied as ``None`` is cleared.  ``UNSET`` marks "not supplied".
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Final

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from rugs import db, projects
from rugs.errors import ValidationError
from rugs.models import UserEvent, UserVote
from rugs.sequencer import next_sequence
from rugs.validation import require_change_number, require_int, require_text

logger = logging.getLogger(__name__)


class _Unset:
    _instance: "_Unset | None" = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Final = _Unset()

_KEY_COLUMNS = ("project_id", "user_name", "change_number")


def _optional_bool(value: Any, name: str) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    raise ValidationError(f"{name} must be true, false or null")


@dataclass(frozen=True, slots=True)
class UserEventPatch:
    """The fields one annotate call wants to change.

    ``synced`` is not a stored field: when true, ``synced_at`` is set to the
    time of the call.
    """

    vote: UserVote | None | _Unset = UNSET
    investigating: bool | None | _Unset = UNSET
    starred: bool | None | _Unset = UNSET
    comment: str | None | _Unset = UNSET
    synced: bool = False

    @classmethod
    def build(
        cls,
        vote: Any = UNSET,
        investigating: Any = UNSET,
        starred: Any = UNSET,
        comment: Any = UNSET,
        synced: Any = False,
    ) -> "UserEventPatch":
        """Validate raw values (names or codes for *vote*) into a patch."""
        if vote is not UNSET and vote is not None:
            vote = UserVote.parse(vote)
        if investigating is not UNSET:
            investigating = _optional_bool(investigating, "investigating")
        if starred is not UNSET:
            starred = _optional_bool(starred, "starred")
        if comment is not UNSET and comment is not None and not isinstance(
            comment, str
        ):
            raise ValidationError("comment must be a string or null")
        if synced is None:
            synced = False
        if not isinstance(synced, bool):
            raise ValidationError("synced must be a boolean")
        return cls(
            vote=vote,
            investigating=investigating,
            starred=starred,
            comment=comment,
            synced=synced,
        )

    def present_fields(self) -> dict[str, Any]:
        """Column values for the fields that were supplied."""
        fields: dict[str, Any] = {}
        if self.vote is not UNSET:
            fields["vote"] = None if self.vote is None else int(self.vote)
        if self.investigating is not UNSET:
            fields["investigating"] = self.investigating
        if self.starred is not UNSET:
            fields["starred"] = self.starred
        if self.comment is not UNSET:
            fields["comment"] = self.comment
        return fields


async def annotate(
    sess: AsyncSession,
    project_id: int,
    user_name: str,
    change_number: int,
    patch: UserEventPatch,
    now: int,
) -> int:
    """Merge *patch* into the user's row inside *sess*; return the new sequence."""
    sequence = await next_sequence(sess, project_id)
    values: dict[str, Any] = {
        "project_id": project_id,
        "user_name": user_name,
        "change_number": change_number,
        "sequence": sequence,
        "updated_at": now,
        **patch.present_fields(),
    }
    if patch.synced:
        values["synced_at"] = now

    stmt = sqlite_insert(UserEvent).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[
            UserEvent.project_id,
            UserEvent.user_name,
            UserEvent.change_number,
        ],
        set_={
            name: stmt.excluded[name] for name in values if name not in _KEY_COLUMNS
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
    user_name: str | None = None,
) -> list[UserEvent]:
    """User events newer than *since_sequence*, ascending by sequence."""
    stmt = select(UserEvent).where(
        UserEvent.project_id == project_id,
        UserEvent.sequence > since_sequence,
        UserEvent.change_number >= min_change,
    )
    if max_change is not None:
        stmt = stmt.where(UserEvent.change_number <= max_change)
    if user_name is not None:
        stmt = stmt.where(UserEvent.user_name == user_name)
    stmt = stmt.order_by(UserEvent.sequence.asc())
    result = await sess.execute(stmt)
    return list(result.scalars().all())


async def annotate_change(
    depot_path: str,
    user_name: str,
    change_number: int,
    patch: UserEventPatch,
    now: int | None = None,
) -> int:
    """Validate, then register the project and merge the annotation atomically."""
    projects.split_depot_path(depot_path)
    user_name = require_text(user_name, "user_name")
    change_number = require_change_number(change_number)
    if not isinstance(patch, UserEventPatch):
        raise ValidationError("patch must be a UserEventPatch")
    ts = int(time.time()) if now is None else require_int(now, "now")

    async with db.session() as sess:
        project_id = await projects.resolve_or_create(sess, depot_path)
        sequence = await annotate(sess, project_id, user_name, change_number, patch, ts)

    logger.info(
        "User event %s %s CL %d fields=%s (seq %d)",
        depot_path,
        user_name,
        change_number,
        sorted(patch.present_fields()),
        sequence,
    )
    return sequence
