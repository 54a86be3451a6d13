"""Tests for the SCD2 version store"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from wikimirror.db.entities import VersionState
from wikimirror.db.models import EntityVersion
from wikimirror.errors import SyncError
from wikimirror.observability import metrics
from wikimirror.remote.records import (
    AttributionRecord,
    Connection,
    PageContent,
    RemoteUser,
    RevisionRecord,
    ScannedPage,
    VoteRecord,
)
from wikimirror.versioning import (
    import_children,
    mark_deleted,
    patch_snapshot_fields,
    should_create_new_version,
    upsert_content,
)


T0 = datetime(2024, 1, 1, 0, 0, 0)


def content(remote_id: int = 1, url: str = "http://w/a", **fields) -> PageContent:
    defaults = dict(
        title="A",
        rating=10.0,
        vote_count=3,
        revision_count=2,
        comment_count=0,
        tags=["tale"],
        category="_default",
        source="body",
        text_content="body",
        attributions=[],
    )
    defaults.update(fields)
    return PageContent(remote_id=remote_id, url=url, **defaults)


def revisions(*numbers: int) -> Connection[RevisionRecord]:
    return Connection(items=[
        RevisionRecord(
            remote_revision_id=n,
            timestamp=T0 + timedelta(minutes=n),
            user=RemoteUser(remote_id=1, display_name="alice"),
        )
        for n in numbers
    ])


# ============ Version gate ============


class TestShouldCreateNewVersion:
    def base(self, **fields) -> VersionState:
        state = VersionState(title="A", tags=["x", "y"], category="_default", source="s", text_content="t")
        for name, value in fields.items():
            setattr(state, name, value)
        return state

    def test_no_current_version(self):
        assert should_create_new_version(None, self.base())

    def test_statistics_do_not_open_versions(self):
        current = self.base(rating=1, vote_count=1, revision_count=1, comment_count=1, attribution_count=1)
        incoming = self.base(rating=99, vote_count=50, revision_count=20, comment_count=7,
                             attribution_count=3, alternate_title="Alt")
        assert not should_create_new_version(current, incoming)

    @pytest.mark.parametrize("field,value", [
        ("title", "B"),
        ("tags", ["x", "z"]),
        ("category", "other"),
        ("source", "changed"),
        ("text_content", "changed"),
        ("is_deleted", True),
    ])
    def test_content_changes_open_versions(self, field, value):
        assert should_create_new_version(self.base(), self.base(**{field: value}))

    def test_tag_order_ignored(self):
        assert not should_create_new_version(self.base(), self.base(tags=["y", "x", "x"]))

    def test_missing_category_is_default(self):
        assert not should_create_new_version(self.base(category=None), self.base(category="_default"))

    def test_unfetched_source_not_compared(self):
        assert not should_create_new_version(self.base(), self.base(source=None, text_content=None))

    def test_pure(self):
        current, incoming = self.base(), self.base(title="B")
        before = (current.title, incoming.title)
        should_create_new_version(current, incoming)
        assert (current.title, incoming.title) == before


# ============ Upsert ============


async def open_versions(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(
            select(func.count(EntityVersion.id)).where(EntityVersion.valid_to.is_(None))
        )
        return result.scalar()


class TestUpsertContent:
    @pytest.mark.asyncio
    async def test_new_entity_opens_first_version(self, uow_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(revisions=revisions(1, 2)), now=T0)

        assert outcome.created_entity
        assert outcome.opened_version
        assert outcome.revisions_written == 2

        async with uow_factory() as uow:
            entity = await uow.entities.get_by_remote_id(1)
            current = await uow.versions.get_current(entity.id)
            assert current.title == "A"
            assert current.valid_from == T0
            assert await uow.revisions.count_for_entity(entity.id) == 2

    @pytest.mark.asyncio
    async def test_counters_published_only_on_commit(self, uow_factory):
        with pytest.raises(RuntimeError):
            async with uow_factory() as uow:
                await upsert_content(uow, content(revisions=revisions(1, 2)), now=T0)
                raise RuntimeError("abort")
        assert metrics.entities_saved == 0
        assert metrics.revisions_written == 0

        async with uow_factory() as uow:
            await upsert_content(uow, content(revisions=revisions(1, 2)), now=T0)
        assert metrics.entities_saved == 1
        assert metrics.versions_opened == 1
        assert metrics.revisions_written == 2

    @pytest.mark.asyncio
    async def test_stat_change_patches_in_place(self, uow_factory):
        async with uow_factory() as uow:
            first = await upsert_content(uow, content(), now=T0)
        async with uow_factory() as uow:
            second = await upsert_content(uow, content(rating=42.0, vote_count=9), now=T0 + timedelta(days=1))

        assert not second.opened_version
        assert second.version_id == first.version_id
        async with uow_factory() as uow:
            versions = await uow.versions.list_for_entity(first.entity_id)
        assert len(versions) == 1
        assert versions[0].rating == 42.0
        assert versions[0].vote_count == 9

    @pytest.mark.asyncio
    async def test_title_change_closes_and_opens(self, uow_factory, session_factory):
        t1 = T0 + timedelta(days=1)
        async with uow_factory() as uow:
            first = await upsert_content(uow, content(), now=T0)
        async with uow_factory() as uow:
            second = await upsert_content(uow, content(title="A renamed"), now=t1)

        assert second.opened_version
        async with uow_factory() as uow:
            old, new = await uow.versions.list_for_entity(first.entity_id)
        assert old.valid_to == t1
        assert new.valid_from == t1
        assert new.is_current
        assert old.title == "A"
        assert await open_versions(session_factory) == 1

    @pytest.mark.asyncio
    async def test_closed_version_is_immutable(self, uow_factory):
        async with uow_factory() as uow:
            first = await upsert_content(uow, content(), now=T0)
        async with uow_factory() as uow:
            await upsert_content(uow, content(title="B"), now=T0 + timedelta(days=1))

        async with uow_factory() as uow:
            assert not await uow.versions.patch_current(first.version_id, rating=1.0)
            assert not await uow.versions.close(first.version_id, T0 + timedelta(days=5))
            closed = await uow.versions.get(first.version_id)
        assert closed.rating == 10.0
        assert closed.valid_to == T0 + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_patch_rejects_content_fields(self, uow_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(), now=T0)
            with pytest.raises(ValueError):
                await uow.versions.patch_current(outcome.version_id, title="sneaky")

    @pytest.mark.asyncio
    async def test_children_attach_to_new_version(self, uow_factory):
        async with uow_factory() as uow:
            await upsert_content(uow, content(revisions=revisions(1)), now=T0)
        async with uow_factory() as uow:
            outcome = await upsert_content(
                uow, content(title="B", revisions=revisions(1, 2)), now=T0 + timedelta(days=1)
            )
        assert outcome.revisions_written == 2

    @pytest.mark.asyncio
    async def test_reupsert_is_idempotent_for_children(self, uow_factory):
        votes = Connection(items=[
            VoteRecord(direction=1, timestamp=T0, user_id=5, user=RemoteUser(5, "eve")),
            VoteRecord(direction=-1, timestamp=T0, anon_key="k"),
        ])
        for _ in range(2):
            async with uow_factory() as uow:
                outcome = await upsert_content(uow, content(revisions=revisions(1, 2), votes=votes), now=T0)

        async with uow_factory() as uow:
            assert await uow.revisions.count_for_entity(outcome.entity_id) == 2
            assert await uow.votes.count_for_entity(outcome.entity_id) == 2

    @pytest.mark.asyncio
    async def test_url_move_recorded(self, uow_factory):
        async with uow_factory() as uow:
            await upsert_content(uow, content(url="http://w/old"), now=T0)
        async with uow_factory() as uow:
            await upsert_content(uow, content(url="http://w/new"), now=T0)
            entity = await uow.entities.get_by_remote_id(1)
        assert entity.current_url == "http://w/new"
        assert entity.url_history == ["http://w/old", "http://w/new"]

    @pytest.mark.asyncio
    async def test_missing_remote_id_rejected(self, uow_factory):
        with pytest.raises(SyncError):
            async with uow_factory() as uow:
                await upsert_content(uow, PageContent(remote_id=None, url="http://w/x"))


# ============ Deletion ============


class TestMarkDeleted:
    @pytest.mark.asyncio
    async def test_opens_deleted_copy(self, uow_factory, session_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(), now=T0)
        t1 = T0 + timedelta(days=2)
        async with uow_factory() as uow:
            entity = await uow.entities.get_by_remote_id(1)
            assert await mark_deleted(uow, entity, now=t1)

        async with uow_factory() as uow:
            entity = await uow.entities.get(outcome.entity_id)
            old, deleted = await uow.versions.list_for_entity(outcome.entity_id)
        assert entity.is_deleted
        assert old.valid_to == t1
        assert deleted.is_deleted and deleted.is_current
        assert deleted.title == "A"
        assert await open_versions(session_factory) == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, uow_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(), now=T0)
        for expected in (True, False):
            async with uow_factory() as uow:
                entity = await uow.entities.get_by_remote_id(1)
                assert await mark_deleted(uow, entity) is expected

        async with uow_factory() as uow:
            assert len(await uow.versions.list_for_entity(outcome.entity_id)) == 2

    @pytest.mark.asyncio
    async def test_restored_entity_gets_live_version(self, uow_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(), now=T0)
        async with uow_factory() as uow:
            entity = await uow.entities.get_by_remote_id(1)
            await mark_deleted(uow, entity, now=T0 + timedelta(days=1))
        async with uow_factory() as uow:
            await upsert_content(uow, content(), now=T0 + timedelta(days=2))

        async with uow_factory() as uow:
            entity = await uow.entities.get(outcome.entity_id)
            versions = await uow.versions.list_for_entity(outcome.entity_id)
        assert not entity.is_deleted
        assert [v.is_deleted for v in versions] == [False, True, False]


# ============ Children and snapshot fields ============


class TestChildren:
    @pytest.mark.asyncio
    async def test_import_children_requires_entity(self, uow_factory):
        with pytest.raises(SyncError):
            async with uow_factory() as uow:
                await import_children(uow, 404, revisions(1).items, [])

    @pytest.mark.asyncio
    async def test_import_children_lands_on_current_version(self, uow_factory):
        async with uow_factory() as uow:
            await upsert_content(uow, content(), now=T0)
        async with uow_factory() as uow:
            written = await import_children(uow, 1, revisions(1, 2, 3).items, [])
        assert written == (3, 0)

    @pytest.mark.asyncio
    async def test_patch_snapshot_fields(self, uow_factory):
        async with uow_factory() as uow:
            outcome = await upsert_content(uow, content(), now=T0)
            current = await uow.versions.get_current(outcome.entity_id)
        scanned = ScannedPage(
            remote_id=1,
            url="http://w/a",
            comment_count=4,
            alternate_title="Alt",
            attributions=[AttributionRecord(type="author", order=0, user_id=2, user=RemoteUser(2, "bo"))],
        )
        async with uow_factory() as uow:
            await patch_snapshot_fields(uow, current, scanned)

        async with uow_factory() as uow:
            patched = await uow.versions.get_current(outcome.entity_id)
            assert await uow.attributions.count_for_version(patched.id) == 1
        assert patched.id == current.id
        assert patched.comment_count == 4
        assert patched.alternate_title == "Alt"
        assert patched.attribution_count == 1
