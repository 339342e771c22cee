"""Tests for rugs.user_events (user event store)."""

from __future__ import annotations

import pytest
from sqlalchemy import select

from rugs import db, projects, user_events
from rugs.errors import ValidationError
from rugs.models import UserEvent, UserVote
from rugs.user_events import UNSET, UserEventPatch, annotate_change
from tests.conftest import PROJECT


async def _rows() -> list[UserEvent]:
    async with db.read_session() as sess:
        result = await sess.execute(select(UserEvent).order_by(UserEvent.sequence))
        return list(result.scalars().all())


async def _one() -> UserEvent:
    rows = await _rows()
    assert len(rows) == 1
    return rows[0]


async def _alice(patch: UserEventPatch, now: int) -> int:
    return await annotate_change(PROJECT, "alice", 100, patch, now=now)


# -----------------------------------------------------------------------
# UserEventPatch
# -----------------------------------------------------------------------


class TestUserEventPatch:
    def test_empty_patch_has_no_fields(self):
        assert UserEventPatch().present_fields() == {}

    def test_none_is_present(self):
        patch = UserEventPatch(comment=None)
        assert patch.present_fields() == {"comment": None}

    def test_unset_is_falsy_singleton(self):
        assert not UNSET
        assert type(UNSET)() is UNSET
        assert repr(UNSET) == "UNSET"

    def test_build_parses_vote(self):
        patch = UserEventPatch.build(vote="Good", starred=True)
        assert patch.vote is UserVote.GOOD
        assert patch.present_fields() == {"vote": int(UserVote.GOOD), "starred": True}

    def test_build_vote_codes_and_null(self):
        assert UserEventPatch.build(vote=4).vote is UserVote.BAD
        patch = UserEventPatch.build(vote="CompileFailure")
        assert patch.vote is UserVote.COMPILE_FAILURE
        assert UserEventPatch.build(vote=None).present_fields() == {"vote": None}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"vote": "Meh"},
            {"investigating": "yes"},
            {"starred": 1},
            {"comment": 42},
            {"synced": "true"},
        ],
    )
    def test_build_rejects_bad_values(self, kwargs):
        with pytest.raises(ValidationError):
            UserEventPatch.build(**kwargs)

    def test_build_synced_none_means_false(self):
        assert UserEventPatch.build(synced=None).synced is False


# -----------------------------------------------------------------------
# annotate_change (merge semantics)
# -----------------------------------------------------------------------


class TestAnnotateChange:
    async def test_first_annotation_creates_row(self, initialized_db):
        seq = await annotate_change(
            PROJECT, "alice", 100, UserEventPatch(vote=UserVote.GOOD), now=1000
        )
        assert seq == 1
        row = await _one()
        assert row.user_name == "alice"
        assert row.change_number == 100
        assert row.user_vote is UserVote.GOOD
        assert row.investigating is None
        assert row.starred is None
        assert row.comment is None
        assert row.updated_at == 1000
        assert row.synced_at is None

    async def test_omitted_fields_keep_previous_values(self, initialized_db):
        await annotate_change(
            PROJECT,
            "alice",
            100,
            UserEventPatch(vote=UserVote.BAD, comment="broken", starred=True),
            now=1,
        )
        await annotate_change(
            PROJECT, "alice", 100, UserEventPatch(investigating=True), now=2
        )
        await _alice(UserEventPatch(comment="fixed"), now=3)

        row = await _one()
        assert row.user_vote is UserVote.BAD
        assert row.starred is True
        assert row.investigating is True
        assert row.comment == "fixed"
        assert row.updated_at == 3
        assert row.sequence == 3

    async def test_explicit_none_clears_field(self, initialized_db):
        await annotate_change(
            PROJECT, "alice", 100, UserEventPatch(comment="hi", starred=True), now=1
        )
        await _alice(UserEventPatch(comment=None), now=2)
        row = await _one()
        assert row.comment is None
        assert row.starred is True

    async def test_synced_at_only_set_when_marked(self, initialized_db):
        await _alice(UserEventPatch(starred=True), now=1)
        assert (await _one()).synced_at is None

        await _alice(UserEventPatch(synced=True), now=5)
        row = await _one()
        assert row.synced_at == 5
        assert row.updated_at == 5

        await _alice(UserEventPatch(starred=False), now=9)
        row = await _one()
        assert row.synced_at == 5
        assert row.updated_at == 9
        assert row.starred is False

    async def test_empty_patch_still_restamps(self, initialized_db):
        await _alice(UserEventPatch(starred=True), now=1)
        seq = await _alice(UserEventPatch(), now=2)
        assert seq == 2
        row = await _one()
        assert row.sequence == 2
        assert row.starred is True

    async def test_users_and_changes_are_separate_slots(self, initialized_db):
        await annotate_change(PROJECT, "alice", 1, UserEventPatch(starred=True), now=1)
        await annotate_change(PROJECT, "bob", 1, UserEventPatch(starred=True), now=1)
        await annotate_change(PROJECT, "alice", 2, UserEventPatch(starred=True), now=1)
        assert len(await _rows()) == 3

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"depot_path": "//broken"},
            {"user_name": " "},
            {"change_number": -5},
            {"change_number": 2**63},
            {"patch": {"vote": "Good"}},
        ],
    )
    async def test_validation_writes_nothing(self, initialized_db, kwargs):
        args = {
            "depot_path": PROJECT,
            "user_name": "alice",
            "change_number": 1,
            "patch": UserEventPatch(starred=True),
        }
        args.update(kwargs)
        with pytest.raises(ValidationError):
            await annotate_change(**args)
        assert await _rows() == []


# -----------------------------------------------------------------------
# fetch
# -----------------------------------------------------------------------


class TestFetch:
    async def test_filters(self, initialized_db):
        await annotate_change(PROJECT, "alice", 10, UserEventPatch(starred=True), now=1)
        await annotate_change(PROJECT, "bob", 20, UserEventPatch(starred=True), now=1)
        await annotate_change(PROJECT, "alice", 30, UserEventPatch(starred=True), now=1)

        async with db.read_session() as sess:
            project_id = await projects.lookup(sess, PROJECT)
            everything = await user_events.fetch(sess, project_id)
            since = await user_events.fetch(sess, project_id, since_sequence=1)
            ranged = await user_events.fetch(sess, project_id, 15, 30)
            alice = await user_events.fetch(sess, project_id, user_name="alice")

        assert [e.sequence for e in everything] == [1, 2, 3]
        assert [e.change_number for e in since] == [20, 30]
        assert [e.change_number for e in ranged] == [20, 30]
        assert [e.change_number for e in alice] == [10, 30]
