# memoir/services/cascade_delete.py
"""
Deep deletion of a book (story group) or a single session.

Two phases:
  1. discovery: every dependent id and storage path is read before anything is removed
  2. deletion:  one independent step per table, in foreign-key order, then storage

A failing step is recorded as "<Table>: <message>" in the report and the
remaining steps still run. Re-running the same call converges: discovery
finds whatever is left and an already-deleted root yields an all-zero report.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Union

from sqlalchemy.exc import SQLAlchemyError

from memoir.background import run_sync
from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.errors import AuthorizationError, BlobStoreError, NotFoundError
from memoir.models import (
    Chapter,
    DeletionTombstone,
    Recording,
    Session,
    Story,
    StoryEmbedding,
    StoryGroup,
    StoryImage,
    Transcript,
    Turn,
)
from memoir.schemas import DeleteReport
from memoir.settings.config import settings

logger = logging.getLogger(__name__)

BOOK_REPORT_KEYS = (
    "storyGroup", "stories", "sessions", "chapters", "recordings",
    "transcripts", "turns", "images", "audioFiles", "imageFiles",
)
SESSION_REPORT_KEYS = (
    "session", "chapters", "recordings", "transcripts", "turns",
    "images", "audioFiles", "imageFiles",
)


# ---------------------------------------------------------------------------
# step results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class StepOk:
    label: str
    count: int


@dataclass(frozen=True)
class StepFailed:
    label: str
    error: str


StepResult = Union[StepOk, StepFailed]


async def run_step(label: str, op: Callable[[], Awaitable[int]]) -> StepResult:
    try:
        count = await op()
    except (SQLAlchemyError, BlobStoreError, OSError) as e:
        logger.error("Error deleting %s: %s", label, e)
        return StepFailed(label, str(e))
    return StepOk(label, int(count or 0))


def _record(report: DeleteReport, key: str, result: StepResult) -> None:
    if isinstance(result, StepOk):
        report.add(key, result.count)
    else:
        report.errors.append(f"{result.label}: {result.error}")


# ---------------------------------------------------------------------------
# discovery
# ---------------------------------------------------------------------------
@dataclass
class Discovery:
    session_ids: List[int] = field(default_factory=list)
    story_ids: List[int] = field(default_factory=list)
    chapter_ids: List[int] = field(default_factory=list)
    recording_ids: List[int] = field(default_factory=list)
    recording_paths: List[str] = field(default_factory=list)
    turn_ids: List[int] = field(default_factory=list)
    image_ids: List[int] = field(default_factory=list)
    image_paths: List[str] = field(default_factory=list)


async def _discover_sessions(store: RowStore, found: Discovery) -> None:
    """Fill chapters, recordings, turns and images for found.session_ids (plus story images)."""
    chapters = await store.select_in(Chapter, "session_id", found.session_ids)
    found.chapter_ids = [c.id for c in chapters]
    logger.info("Found %d chapters", len(found.chapter_ids))

    recordings = await store.select_in(Recording, "session_id", found.session_ids)
    found.recording_ids = [r.id for r in recordings]
    found.recording_paths = [r.storage_path for r in recordings if r.storage_path]
    logger.info("Found %d recordings", len(found.recording_ids))

    turns = await store.select_in(Turn, "session_id", found.session_ids)
    found.turn_ids = [t.id for t in turns]
    logger.info("Found %d turns", len(found.turn_ids))

    seen = set()
    for column, ids in (("story_id", found.story_ids), ("chapter_id", found.chapter_ids), ("turn_id", found.turn_ids)):
        for img in await store.select_in(StoryImage, column, ids):
            if img.id in seen:
                continue
            seen.add(img.id)
            found.image_ids.append(img.id)
            found.image_paths.extend(p for p in (img.storage_path, img.thumbnail_path) if p)
    logger.info("Found %d image files to delete", len(found.image_paths))


async def discover_book(store: RowStore, book_id: int) -> Discovery:
    found = Discovery()
    found.session_ids = [s.id for s in await store.select(Session, story_group_id=book_id)]
    logger.info("Found %d sessions", len(found.session_ids))
    found.story_ids = [s.id for s in await store.select(Story, story_group_id=book_id)]
    logger.info("Found %d stories", len(found.story_ids))
    await _discover_sessions(store, found)
    return found


async def discover_session(store: RowStore, session_id: int) -> Discovery:
    found = Discovery(session_ids=[session_id])
    await _discover_sessions(store, found)
    return found


# ---------------------------------------------------------------------------
# authorization + serialization
# ---------------------------------------------------------------------------
_root_locks: "weakref.WeakValueDictionary[tuple, asyncio.Lock]" = weakref.WeakValueDictionary()


def _root_lock(root_type: str, root_id: int) -> asyncio.Lock:
    key = (root_type, root_id)
    lock = _root_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _root_locks[key] = lock
    return lock


async def _authorize(store: RowStore, model, root_type: str, root_id: int, caller_id: int) -> None:
    """404 when the root never existed, 403 when someone else owns (or owned) it."""
    row = await store.get(model, root_id)
    if row is not None:
        if row.user_id != caller_id:
            raise AuthorizationError(f"you do not own this {root_type.replace('_', ' ')}")
        return
    tomb = await store.first(DeletionTombstone, root_type=root_type, root_id=root_id)
    if tomb is None:
        raise NotFoundError(f"{root_type.replace('_', ' ')} {root_id} not found")
    if tomb.owner_id != caller_id:
        raise AuthorizationError(f"you do not own this {root_type.replace('_', ' ')}")
    logger.info("%s %s was already deleted; re-checking for leftovers", root_type, root_id)


async def _delete_root(store: RowStore, model, label: str, key: str, root_type: str, root_id: int,
                       caller_id: int, report: DeleteReport) -> None:
    async def _delete_and_mark() -> int:
        # root delete and tombstone commit together
        async with store.transaction():
            count = await store.delete_in(model, "id", [root_id])
            if count:
                await store.insert(DeletionTombstone(root_type=root_type, root_id=root_id, owner_id=caller_id))
        return count

    _record(report, key, await run_step(label, _delete_and_mark))


# ---------------------------------------------------------------------------
# shared write phase
# ---------------------------------------------------------------------------
async def _delete_session_dependents(store: RowStore, found: Discovery, report: DeleteReport) -> None:
    """transcripts -> story images -> turns -> chapters -> recordings."""
    _record(report, "transcripts", await run_step(
        "Transcripts", lambda: store.delete_in(Transcript, "recording_id", found.recording_ids)))
    for column, ids in (("story_id", found.story_ids), ("chapter_id", found.chapter_ids), ("turn_id", found.turn_ids)):
        _record(report, "images", await run_step(
            "StoryImages", lambda column=column, ids=ids: store.delete_in(StoryImage, column, ids)))
    _record(report, "turns", await run_step(
        "Turns", lambda: store.delete_in(Turn, "session_id", found.session_ids)))
    _record(report, "chapters", await run_step(
        "Chapters", lambda: store.delete_in(Chapter, "session_id", found.session_ids)))
    _record(report, "recordings", await run_step(
        "Recordings", lambda: store.delete_in(Recording, "session_id", found.session_ids)))


async def _remove_files(blobs: BlobStore, found: Discovery, report: DeleteReport) -> None:
    if found.recording_paths:
        _record(report, "audioFiles", await run_step(
            "Audio files", lambda: run_sync(blobs.remove, settings.AUDIO_BUCKET, found.recording_paths)))
    if found.image_paths:
        _record(report, "imageFiles", await run_step(
            "Image files", lambda: run_sync(blobs.remove, settings.IMAGE_BUCKET, found.image_paths)))


# ---------------------------------------------------------------------------
# entry points
# ---------------------------------------------------------------------------
async def delete_book(store: RowStore, blobs: BlobStore, book_id: int, caller_id: int) -> DeleteReport:
    async with _root_lock("story_group", book_id):
        await _authorize(store, StoryGroup, "story_group", book_id, caller_id)
        logger.info("Starting deep deletion for story_group %s, user %s", book_id, caller_id)

        found = await discover_book(store, book_id)
        report = DeleteReport.empty(BOOK_REPORT_KEYS)

        await _delete_session_dependents(store, found, report)
        _record(report, "sessions", await run_step(
            "Sessions", lambda: store.delete_in(Session, "story_group_id", [book_id])))
        _record(report, "stories", await run_step(
            "StoryEmbeddings", lambda: _count_nothing(store.delete_in(StoryEmbedding, "story_id", found.story_ids))))
        _record(report, "stories", await run_step(
            "Stories", lambda: store.delete_in(Story, "story_group_id", [book_id])))
        await _delete_root(store, StoryGroup, "StoryGroup", "storyGroup", "story_group", book_id, caller_id, report)

        await _remove_files(blobs, found, report)
        logger.info("Deletion of story_group %s complete: %s", book_id, report.model_dump(by_alias=True))
        return report


async def delete_session(store: RowStore, blobs: BlobStore, session_id: int, caller_id: int) -> DeleteReport:
    async with _root_lock("session", session_id):
        await _authorize(store, Session, "session", session_id, caller_id)
        logger.info("Starting deep deletion for session %s, user %s", session_id, caller_id)

        found = await discover_session(store, session_id)
        report = DeleteReport.empty(SESSION_REPORT_KEYS)

        await _delete_session_dependents(store, found, report)
        await _delete_root(store, Session, "Session", "session", "session", session_id, caller_id, report)

        await _remove_files(blobs, found, report)
        logger.info("Deletion of session %s complete: %s", session_id, report.model_dump(by_alias=True))
        return report


async def _count_nothing(op: Awaitable[int]) -> int:
    # embeddings are derived rows; they are not part of the reported counts
    await op
    return 0


__all__ = [
    "BOOK_REPORT_KEYS",
    "SESSION_REPORT_KEYS",
    "Discovery",
    "StepOk",
    "StepFailed",
    "run_step",
    "discover_book",
    "discover_session",
    "delete_book",
    "delete_session",
]
