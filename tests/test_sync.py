"""Tests for rugs.sync (incremental queries)."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from rugs import badges, db, projects, user_events
from rugs.errors import ValidationError
from rugs.models import BadgeResult, Project
from rugs.sync import SyncResult, latest_sequence, sync
from rugs.user_events import UserEventPatch, annotate_change
from tests.conftest import PROJECT


class TestSync:
    async def test_unknown_project_is_empty_and_not_created(self, initialized_db):
        result = await sync("//nobody/main/Ghost", since_sequence=7)
        assert result == SyncResult(max_sequence=7)

        async with db.read_session() as sess:
            count = await sess.execute(select(func.count()).select_from(Project))
            assert count.scalar_one() == 0

    async def test_starting_then_success_scenario(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 123, "Starting", "u", now=1)
        first = await sync(PROJECT)
        assert [(b.change_number, b.sequence) for b in first.badges] == [(123, 1)]
        assert first.max_sequence == 1

        await badges.publish_badge(PROJECT, "Editor", 123, "Success", "u", now=2)
        again = await sync(PROJECT)
        assert len(again.badges) == 1
        assert again.badges[0].badge_result is BadgeResult.SUCCESS
        assert again.badges[0].sequence == 2

        since_one = await sync(PROJECT, since_sequence=1)
        assert [b.sequence for b in since_one.badges] == [2]
        assert since_one.max_sequence == 2

        since_two = await sync(PROJECT, since_sequence=2)
        assert since_two.badges == []
        assert since_two.user_events == []
        assert since_two.max_sequence == 2

    async def test_returns_both_stores(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 10, "Success", "", now=1)
        await annotate_change(PROJECT, "alice", 10, UserEventPatch(starred=True), now=1)
        await badges.publish_badge(PROJECT, "Game", 11, "Failure", "", now=1)

        result = await sync(PROJECT)
        assert [b.sequence for b in result.badges] == [1, 3]
        assert [e.sequence for e in result.user_events] == [2]
        assert result.max_sequence == 3
        assert [(e.kind, e.sequence) for e in result.entries()] == [
            ("badge", 1),
            ("user_event", 2),
            ("badge", 3),
        ]
        assert [e.change_number for e in result.entries()] == [10, 10, 11]

    async def test_repeated_sync_is_stable(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 1, "Success", "", now=1)
        await annotate_change(PROJECT, "alice", 1, UserEventPatch(comment="ok"), now=1)

        first = await sync(PROJECT)
        second = await sync(PROJECT)
        assert [b.id for b in first.badges] == [b.id for b in second.badges]
        assert [e.id for e in first.user_events] == [e.id for e in second.user_events]
        assert first.max_sequence == second.max_sequence == 2

        caught_up = await sync(PROJECT, since_sequence=first.max_sequence)
        assert caught_up.entries() == []
        assert caught_up.max_sequence == 2

    async def test_change_range_and_user_filter(self, initialized_db):
        for change in (100, 200, 300):
            await badges.publish_badge(PROJECT, "Editor", change, "Success", "")
            patch = UserEventPatch(starred=True)
            await annotate_change(PROJECT, "alice", change, patch)
        await annotate_change(PROJECT, "bob", 200, UserEventPatch(starred=True))

        result = await sync(PROJECT, min_change=150, max_change=300, user_name="bob")
        assert [b.change_number for b in result.badges] == [200, 300]
        assert [(e.user_name, e.change_number) for e in result.user_events] == [
            ("bob", 200)
        ]

    async def test_path_case_is_ignored(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 1, "Success", "", now=1)
        result = await sync(PROJECT.upper())
        assert len(result.badges) == 1

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"depot_path": "relative/path"},
            {"min_change": -1},
            {"min_change": 10, "max_change": 5},
            {"since_sequence": -3},
            {"since_sequence": "4"},
            {"since_sequence": 2**63},
            {"max_change": 2**64},
        ],
    )
    async def test_rejects_bad_arguments(self, initialized_db, kwargs):
        args = {"depot_path": PROJECT}
        args.update(kwargs)
        with pytest.raises(ValidationError):
            await sync(**args)


class TestLatestSequence:
    async def test_unknown_project_is_zero(self, initialized_db):
        assert await latest_sequence(PROJECT) == 0

    async def test_tracks_latest_write(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 1, "Success", "", now=1)
        await annotate_change(PROJECT, "alice", 1, UserEventPatch(starred=True), now=1)
        assert await latest_sequence(PROJECT) == 2


class TestSnapshot:
    async def test_writes_during_a_read_stay_invisible(self, initialized_db):
        await badges.publish_badge(PROJECT, "Editor", 1, "Success", "", now=1)

        async with db.read_session() as sess:
            project_id = await projects.lookup(sess, PROJECT)
            badge_rows = await badges.fetch(sess, project_id)
            # commits while the read transaction is still open
            await annotate_change(PROJECT, "alice", 1, UserEventPatch(starred=True))
            await badges.publish_badge(PROJECT, "Editor", 2, "Failure", "", now=2)
            event_rows = await user_events.fetch(sess, project_id)
            late_badges = await badges.fetch(sess, project_id, since_sequence=1)

        assert event_rows == []
        assert late_badges == []
        # rows loaded in the session remain readable after it closes
        assert [(b.sequence, b.badge_result) for b in badge_rows] == [
            (1, BadgeResult.SUCCESS)
        ]

        result = await sync(PROJECT)
        assert [e.sequence for e in result.user_events] == [2]
        assert [b.sequence for b in result.badges] == [1, 3]
        assert result.max_sequence == 3
