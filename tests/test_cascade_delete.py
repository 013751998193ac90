import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from conftest import add_user, run, seed_book
from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.errors import AuthorizationError, BlobStoreError, NotFoundError
from memoir.models import (
    Chapter,
    DeletionTombstone,
    Recording,
    Session,
    Story,
    StoryGroup,
    StoryImage,
    Transcript,
    Turn,
)
from memoir.services.cascade_delete import (
    BOOK_REPORT_KEYS,
    SESSION_REPORT_KEYS,
    StepFailed,
    StepOk,
    delete_book,
    delete_session,
    discover_book,
    run_step,
)


class SpyRowStore(RowStore):
    """Records delete order; optionally fails the delete of one table."""

    def __init__(self, db, fail_table=None):
        super().__init__(db)
        self.fail_table = fail_table
        self.deletes = []

    async def delete_in(self, model, column, values):
        values = list(values)
        self.deletes.append((model.__tablename__, column))
        if model.__tablename__ == self.fail_table and values:
            raise OperationalError("DELETE", {}, Exception("connection reset"))
        return await super().delete_in(model, column, values)


class TombstoneFailsOnce(RowStore):
    failures = 1

    async def insert(self, *objs):
        if self.failures and any(isinstance(o, DeletionTombstone) for o in objs):
            self.failures -= 1
            raise OperationalError("INSERT", {}, Exception("statement timeout"))
        return await super().insert(*objs)


class OfflineBlobStore(BlobStore):
    def remove(self, bucket, paths):
        raise BlobStoreError(f"{bucket} is unreachable")


async def _count(maker, model, **eq):
    async with maker() as db:
        stmt = select(func.count()).select_from(model)
        for col, value in eq.items():
            stmt = stmt.where(getattr(model, col) == value)
        return (await db.execute(stmt)).scalar_one()


def test_example_book_counts(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            return await delete_book(RowStore(db), blobs, seeded["book_id"], owner)

    report = run(scenario())
    assert report.errors == []
    assert report.success is True
    assert report.deleted_counts == {
        "storyGroup": 1, "stories": 1, "sessions": 2, "chapters": 1, "recordings": 1,
        "transcripts": 1, "turns": 2, "images": 2, "audioFiles": 1, "imageFiles": 2,
    }


def test_report_serializes_with_wire_names(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            return await delete_book(RowStore(db), blobs, seeded["book_id"], owner)

    body = run(scenario()).model_dump(by_alias=True)
    assert set(body) == {"deletedCounts", "errors", "success"}
    assert list(body["deletedCounts"]) == list(BOOK_REPORT_KEYS)


def test_second_delete_is_all_zero(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            first = await delete_book(RowStore(db), blobs, seeded["book_id"], owner)
        async with session_maker() as db:
            second = await delete_book(RowStore(db), blobs, seeded["book_id"], owner)
        return first, second

    first, second = run(scenario())
    assert first.success and second.success
    assert all(v == 0 for v in second.deleted_counts.values())


def test_no_orphans_after_book_delete(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            report = await delete_book(RowStore(db), blobs, seeded["book_id"], owner)
        counts = {
            "sessions": await _count(session_maker, Session, story_group_id=seeded["book_id"]),
            "stories": await _count(session_maker, Story, story_group_id=seeded["book_id"]),
            "chapters": await _count(session_maker, Chapter),
            "recordings": await _count(session_maker, Recording),
            "transcripts": await _count(session_maker, Transcript),
            "turns": await _count(session_maker, Turn),
            "images": await _count(session_maker, StoryImage),
            "books": await _count(session_maker, StoryGroup, id=seeded["book_id"]),
        }
        return seeded, report, counts

    seeded, report, counts = run(scenario())
    assert report.success
    assert all(v == 0 for v in counts.values()), counts
    for p in seeded["audio_paths"]:
        assert not blobs.exists("recordings", p)
    for p in seeded["image_paths"]:
        assert not blobs.exists("story_images", p)


def test_book_delete_follows_dependency_order(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            spy = SpyRowStore(db)
            await delete_book(spy, blobs, seeded["book_id"], owner)
        return [t for t, _ in spy.deletes]

    order = run(scenario())
    assert order == [
        "transcripts",
        "story_images", "story_images", "story_images",
        "turns", "chapters", "recordings", "sessions",
        "story_embeddings", "stories", "story_groups",
    ]


def test_discovery_unions_image_lookups(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            return seeded, await discover_book(RowStore(db), seeded["book_id"])

    seeded, found = run(scenario())
    assert sorted(found.session_ids) == sorted(seeded["session_ids"])
    assert found.story_ids == [seeded["story_id"]]
    assert len(found.image_ids) == 2
    assert sorted(found.image_paths) == sorted(seeded["image_paths"])
    assert found.recording_paths == seeded["audio_paths"]


def test_recordings_failure_is_contained(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        async with session_maker() as db:
            rows = RowStore(db)
            sess = Session(user_id=owner)
            await rows.insert(sess)
            recs = [Recording(session_id=sess.id, storage_path=f"{owner}/{sess.id}/{i}.webm") for i in range(3)]
            await rows.insert(*recs)
            await rows.insert(
                Turn(session_id=sess.id, turn_index=0, prompt_text="q0", answer_text="a0"),
                Turn(session_id=sess.id, turn_index=1, prompt_text="q1"),
                Chapter(session_id=sess.id, title="c"),
            )
            sid = sess.id
        async with session_maker() as db:
            spy = SpyRowStore(db, fail_table="recordings")
            report = await delete_session(spy, blobs, sid, owner)
        return report, [t for t, _ in spy.deletes]

    report, order = run(scenario())
    assert report.success is False
    assert len([e for e in report.errors if e.startswith("Recordings: ")]) == 1
    assert report.deleted_counts["chapters"] == 1
    assert report.deleted_counts["turns"] == 2
    assert report.deleted_counts["recordings"] == 0
    # the session row is still attempted after the failing step
    assert order.index("sessions") > order.index("recordings")


def test_session_delete_counts_and_tombstone(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        s1 = seeded["session_ids"][0]
        async with session_maker() as db:
            report = await delete_session(RowStore(db), blobs, s1, owner)
        tombs = await _count(session_maker, DeletionTombstone, root_type="session", root_id=s1)
        book_left = await _count(session_maker, StoryGroup, id=seeded["book_id"])
        return report, tombs, book_left

    report, tombs, book_left = run(scenario())
    assert list(report.deleted_counts) == list(SESSION_REPORT_KEYS)
    assert report.deleted_counts == {
        "session": 1, "chapters": 1, "recordings": 1, "transcripts": 1, "turns": 2,
        "images": 1, "audioFiles": 1, "imageFiles": 1,
    }
    assert tombs == 1
    assert book_left == 1


def test_missing_and_foreign_roots(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        other = await add_user(session_maker, email="other@example.com")
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            with pytest.raises(NotFoundError):
                await delete_book(RowStore(db), blobs, 9999, owner)
            with pytest.raises(AuthorizationError):
                await delete_book(RowStore(db), blobs, seeded["book_id"], other)
            # refused before anything was touched
            assert await _count(session_maker, Session, story_group_id=seeded["book_id"]) == 2
            await delete_book(RowStore(db), blobs, seeded["book_id"], owner)
            with pytest.raises(AuthorizationError):
                await delete_book(RowStore(db), blobs, seeded["book_id"], other)

    run(scenario())


def test_concurrent_deletes_of_same_book_serialize(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)

        async def one():
            async with session_maker() as db:
                return await delete_book(RowStore(db), blobs, seeded["book_id"], owner)

        return await asyncio.gather(one(), one())

    a, b = run(scenario())
    assert a.success and b.success
    assert sorted([a.deleted_counts["storyGroup"], b.deleted_counts["storyGroup"]]) == [0, 1]
    assert a.deleted_counts["audioFiles"] + b.deleted_counts["audioFiles"] == 1


def test_run_step_tags_results():
    async def ok():
        return 3

    async def boom():
        raise OperationalError("DELETE", {}, Exception("disk I/O error"))

    assert run(run_step("Turns", ok)) == StepOk("Turns", 3)
    failed = run(run_step("Turns", boom))
    assert isinstance(failed, StepFailed)
    assert "disk I/O error" in failed.error


def test_failed_tombstone_keeps_book_and_retry_converges(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            first = await delete_book(TombstoneFailsOnce(db), blobs, seeded["book_id"], owner)
        book_left = await _count(session_maker, StoryGroup, id=seeded["book_id"])
        tombs = await _count(session_maker, DeletionTombstone, root_id=seeded["book_id"])
        async with session_maker() as db:
            second = await delete_book(RowStore(db), blobs, seeded["book_id"], owner)
        return first, book_left, tombs, second

    first, book_left, tombs, second = run(scenario())
    assert first.success is False
    assert [e for e in first.errors if e.startswith("StoryGroup: ")]
    assert first.deleted_counts["storyGroup"] == 0
    # the root delete was rolled back with the tombstone
    assert book_left == 1 and tombs == 0
    assert second.success is True
    assert second.deleted_counts["storyGroup"] == 1


def test_storage_outage_still_deletes_rows(session_maker, tmp_path):
    offline = OfflineBlobStore(tmp_path / "blobs", "test-signing-key")

    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, offline, owner)
        async with session_maker() as db:
            report = await delete_book(RowStore(db), offline, seeded["book_id"], owner)
        left = {
            "books": await _count(session_maker, StoryGroup, id=seeded["book_id"]),
            "sessions": await _count(session_maker, Session, story_group_id=seeded["book_id"]),
            "images": await _count(session_maker, StoryImage),
        }
        return report, left

    report, left = run(scenario())
    assert report.success is False
    assert len([e for e in report.errors if e.startswith("Audio files: ")]) == 1
    assert len([e for e in report.errors if e.startswith("Image files: ")]) == 1
    assert report.deleted_counts["audioFiles"] == 0
    assert report.deleted_counts["imageFiles"] == 0
    assert report.deleted_counts["storyGroup"] == 1
    assert report.deleted_counts["sessions"] == 2
    assert all(v == 0 for v in left.values()), left


def test_second_session_delete_is_all_zero(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        s1 = seeded["session_ids"][0]
        async with session_maker() as db:
            first = await delete_session(RowStore(db), blobs, s1, owner)
        async with session_maker() as db:
            second = await delete_session(RowStore(db), blobs, s1, owner)
        return first, second

    first, second = run(scenario())
    assert first.success and first.deleted_counts["session"] == 1
    assert second.success is True
    assert second.errors == []
    assert all(v == 0 for v in second.deleted_counts.values())


def test_session_delete_follows_dependency_order(session_maker, blobs):
    async def scenario():
        owner = await add_user(session_maker)
        seeded = await seed_book(session_maker, blobs, owner)
        async with session_maker() as db:
            spy = SpyRowStore(db)
            await delete_session(spy, blobs, seeded["session_ids"][0], owner)
        return spy.deletes

    deletes = run(scenario())
    assert [t for t, _ in deletes] == [
        "transcripts",
        "story_images", "story_images", "story_images",
        "turns", "chapters", "recordings", "sessions",
    ]
    assert deletes[-1] == ("sessions", "id")
