"""Incremental sync queries over badges and user events.

Both stores share one sequence space per project.  A client keeps the
returned ``max_sequence`` and passes it back as ``since_sequence``; all
lookups for one call run in a single read snapshot so the two result
sets agree on what has been committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from rugs import badges, db, projects, user_events
from rugs.models import Badge, UserEvent
from rugs.sequencer import current_sequence
from rugs.validation import require_change_range, require_int

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SyncEntry:
    """One row of a sync result, tagged with the store it came from."""

    kind: Literal["badge", "user_event"]
    record: Badge | UserEvent

    @property
    def sequence(self) -> int:
        return self.record.sequence

    @property
    def change_number(self) -> int:
        return self.record.change_number


@dataclass(frozen=True, slots=True)
class SyncResult:
    badges: list[Badge] = field(default_factory=list)
    user_events: list[UserEvent] = field(default_factory=list)
    max_sequence: int = 0

    def entries(self) -> list[SyncEntry]:
        """Badges and user events merged into one list ordered by sequence."""
        merged = [SyncEntry("badge", b) for b in self.badges]
        merged.extend(SyncEntry("user_event", e) for e in self.user_events)
        merged.sort(key=lambda entry: entry.sequence)
        return merged


async def sync(
    depot_path: str,
    min_change: int = 0,
    max_change: int | None = None,
    since_sequence: int = 0,
    user_name: str | None = None,
) -> SyncResult:
    """Everything for *depot_path* in the change range committed after *since_sequence*.

    An unknown depot path yields an empty result with the cursor unchanged.
    """
    projects.split_depot_path(depot_path)
    min_change, max_change = require_change_range(min_change, max_change)
    since_sequence = require_int(since_sequence, "since_sequence")

    async with db.read_session() as sess:
        project_id = await projects.lookup(sess, depot_path)
        if project_id is None:
            return SyncResult(max_sequence=since_sequence)
        badge_rows = await badges.fetch(
            sess, project_id, min_change, max_change, since_sequence
        )
        event_rows = await user_events.fetch(
            sess, project_id, min_change, max_change, since_sequence, user_name
        )

    max_sequence = max(
        [since_sequence]
        + [b.sequence for b in badge_rows]
        + [e.sequence for e in event_rows]
    )
    logger.debug(
        "Sync %s since %d: %d badges, %d user events, cursor %d",
        depot_path,
        since_sequence,
        len(badge_rows),
        len(event_rows),
        max_sequence,
    )
    return SyncResult(
        badges=badge_rows, user_events=event_rows, max_sequence=max_sequence
    )


async def latest_sequence(depot_path: str) -> int:
    """Current high-water sequence for *depot_path* (0 if unknown)."""
    projects.split_depot_path(depot_path)
    async with db.read_session() as sess:
        project_id = await projects.lookup(sess, depot_path)
        if project_id is None:
            return 0
        return await current_sequence(sess, project_id)
