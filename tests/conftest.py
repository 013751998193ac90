import asyncio
import os
import pathlib
import sys
import tempfile

# settings are read at import time: configure before anything imports memoir
_TMP = pathlib.Path(tempfile.mkdtemp(prefix="memoir-tests-"))
os.environ.setdefault("SECRET", "test-secret-for-the-suite-only")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP / 'app.db'}")
os.environ.setdefault("STORAGE_ROOT", str(_TMP / "storage"))

sys.path.insert(0, str(pathlib.Path(__file__).resolve().parents[1]))

import pytest

from memoir.blob_store import BlobStore
from memoir.data_access import RowStore
from memoir.database import init_db, make_engine, make_session_maker
from memoir.models import (
    Chapter,
    Recording,
    RecordingStatus,
    Session,
    SessionStatus,
    Story,
    StoryGroup,
    StoryImage,
    Transcript,
    Turn,
    TurnStatus,
    User,
)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    run(init_db(eng, force=True))
    yield eng
    run(eng.dispose())


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
def blobs(tmp_path):
    return BlobStore(tmp_path / "blobs", "test-signing-key")


async def add_user(maker, email="owner@example.com") -> int:
    async with maker() as db:
        user = User(email=email, hashed_password="x", is_active=True)
        await RowStore(db).insert(user)
        return user.id


async def seed_book(maker, blobs, owner_id: int) -> dict:
    """
    Book with two sessions: S1 has 2 turns, 1 recording (+transcript), 1 chapter;
    S2 is empty. One story with two images: one on the story, one on S1's chapter.
    """
    async with maker() as db:
        rows = RowStore(db)
        book = StoryGroup(user_id=owner_id, title="Grandma's book")
        await rows.insert(book)
        s1 = Session(user_id=owner_id, story_group_id=book.id, status=SessionStatus.completed)
        s2 = Session(user_id=owner_id, story_group_id=book.id)
        await rows.insert(s1, s2)

        audio_path = f"{owner_id}/{s1.id}/a.webm"
        blobs.upload("recordings", audio_path, b"audio")
        rec = Recording(session_id=s1.id, storage_path=audio_path, status=RecordingStatus.processed)
        await rows.insert(rec)
        await rows.insert(Transcript(recording_id=rec.id, text="hello there", word_count=2))
        await rows.insert(
            Turn(session_id=s1.id, turn_index=0, prompt_text="Where did you grow up?",
                 answer_text="In Ohio.", recording_id=rec.id, status=TurnStatus.answered),
            Turn(session_id=s1.id, turn_index=1, prompt_text="What was the house like?"),
        )
        chapter = Chapter(session_id=s1.id, title="Ohio")
        story = Story(story_group_id=book.id, title="Early years")
        await rows.insert(chapter, story)

        story_img = f"{owner_id}/story.jpg"
        chapter_img = f"{owner_id}/chapter.jpg"
        blobs.upload("story_images", story_img, b"img1")
        blobs.upload("story_images", chapter_img, b"img2")
        await rows.insert(
            StoryImage(user_id=owner_id, story_id=story.id, storage_path=story_img,
                       file_name="story.jpg", mime_type="image/jpeg"),
            StoryImage(user_id=owner_id, chapter_id=chapter.id, storage_path=chapter_img,
                       file_name="chapter.jpg", mime_type="image/jpeg"),
        )
        return {
            "book_id": book.id,
            "session_ids": [s1.id, s2.id],
            "story_id": story.id,
            "chapter_id": chapter.id,
            "recording_id": rec.id,
            "audio_paths": [audio_path],
            "image_paths": [story_img, chapter_img],
        }
